"""
Coordination of local mutations with the external change-notification feed.

A coordinated update holds a gate for its entity while the mutation runs
and for a settle delay afterwards. The event listener consults the same
gates and skips notifications for entities that are being updated
locally, so the two paths never refresh the same cache entries over each
other. Gates are keyed by entity; an update without a key takes the
global gate, which excludes every other update.
"""
import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from labbooking.core.config import settings
from labbooking.core.exceptions import CoordinatorBusyError
from labbooking.core.logger import logger

GLOBAL_KEY = "*"


async def _call_hook(hook: Optional[Callable], *args) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class UpdateCoordinator:
    def __init__(
        self,
        invalidate: Optional[Callable[[Optional[str]], Any]] = None,
        schedule_refresh: Optional[Callable[[Optional[str], float], Any]] = None,
        refresh_delay: Optional[float] = None,
        settle_delay: Optional[float] = None,
    ):
        self._invalidate = invalidate
        self._schedule_refresh = schedule_refresh
        self.refresh_delay = settings.REFRESH_DELAY_SECONDS if refresh_delay is None else refresh_delay
        self.settle_delay = settings.SETTLE_DELAY_SECONDS if settle_delay is None else settle_delay
        # entity key -> monotonic time the update started
        self._in_flight: Dict[str, float] = {}
        self._settle_tasks = set()

    @staticmethod
    def _gate_key(entity_key: Optional[Any]) -> str:
        return GLOBAL_KEY if entity_key is None else str(entity_key)

    def is_update_in_progress(self, entity_key: Optional[Any] = None) -> bool:
        """
        With a key: whether that entity (or everything) is gated.
        Without a key: whether any coordinated update is in progress.
        """
        if entity_key is None:
            return bool(self._in_flight)
        return GLOBAL_KEY in self._in_flight or str(entity_key) in self._in_flight

    def begin_coordinated_update(self, entity_key: Optional[Any] = None) -> str:
        """Takes the gate for an entity, raising CoordinatorBusyError if it is held."""
        key = self._gate_key(entity_key)
        busy = (
            GLOBAL_KEY in self._in_flight
            or key in self._in_flight
            or (key == GLOBAL_KEY and bool(self._in_flight))
        )
        if busy:
            logger.warning(f"⏳ Update for {key} rejected, another update is in progress: {list(self._in_flight)}")
            raise CoordinatorBusyError(entity_key)

        self._in_flight[key] = time.monotonic()
        return key

    def _release_after_settle(self, key: str) -> None:
        if self.settle_delay <= 0:
            self._in_flight.pop(key, None)
            return
        task = asyncio.get_running_loop().create_task(self._settle(key))
        self._settle_tasks.add(task)
        task.add_done_callback(self._settle_tasks.discard)

    async def _settle(self, key: str) -> None:
        try:
            await asyncio.sleep(self.settle_delay)
        finally:
            started = self._in_flight.pop(key, None)
            if started is not None:
                logger.debug(f"Gate for {key} released after {time.monotonic() - started:.2f}s")

    async def _after_mutation(self, entity_key: Optional[Any], lab_id: Optional[Any]) -> None:
        scope = None if entity_key is None else str(entity_key)
        try:
            await _call_hook(self._invalidate, scope)
            if lab_id is not None and str(lab_id) != scope:
                await _call_hook(self._invalidate, str(lab_id))

            refresh_key = str(lab_id) if lab_id is not None else scope
            await _call_hook(self._schedule_refresh, refresh_key, self.refresh_delay)
        except Exception as e:
            # The mutation outcome is what the caller needs; a stale cache is rebuilt on the next refresh
            logger.error(f"❌ Cache invalidation after update of {scope or 'all'} failed: {e}")

    async def coordinated_update(
        self,
        mutation: Callable[[], Awaitable[Any]],
        entity_key: Optional[Any] = None,
        lab_id: Optional[Any] = None,
    ) -> Any:
        """
        Runs `mutation` under the entity gate.

        Whatever the outcome, the entity's cache entries are invalidated and a
        refresh is scheduled before the gate is released, which happens one
        settle delay later. Mutation errors are re-raised.
        """
        key = self.begin_coordinated_update(entity_key)
        logger.info(f"🚀 Coordinated update started for {key}" + (f" (lab {lab_id})" if lab_id is not None else ""))

        try:
            result = await mutation()
            logger.info(f"✅ Coordinated update finished for {key}")
            return result
        except Exception as e:
            logger.error(f"❌ Coordinated update failed for {key}: {e}")
            raise
        finally:
            await self._after_mutation(entity_key, lab_id)
            self._release_after_settle(key)

    async def coordinated_cancellation(
        self,
        cancel: Callable[[], Awaitable[Any]],
        reservation_key: Any,
        lab_id: Optional[Any] = None,
        on_removed: Optional[Callable[[str], Any]] = None,
    ) -> Any:
        """Coordinated update that also drops the reservation from local state once cancelled."""
        async def _mutation():
            result = await cancel()
            await _call_hook(on_removed, str(reservation_key))
            return result

        return await self.coordinated_update(_mutation, reservation_key, lab_id)

    async def coordinated_refresh(self, refresh: Callable[[], Any], entity_key: Optional[Any] = None) -> bool:
        """Runs an automatic refresh unless a local update holds the entity."""
        if self.is_update_in_progress(entity_key):
            logger.info(f"Manual update in progress for {self._gate_key(entity_key)}, skipping automatic refresh")
            return False
        await _call_hook(refresh)
        return True

    async def wait_idle(self) -> None:
        """Waits until every gate has been released."""
        while self._settle_tasks:
            await asyncio.gather(*list(self._settle_tasks), return_exceptions=True)
