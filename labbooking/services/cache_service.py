import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional

from labbooking.core.logger import logger
from labbooking.models.booking_models import Booking

LAB_PREFIX = "lab:"
RESERVATION_PREFIX = "reservation:"
GLOBAL_REFRESH_KEY = "*"


def lab_cache_key(lab_id: Any) -> str:
    return f"{LAB_PREFIX}{lab_id}"


def reservation_cache_key(key: Any) -> str:
    return f"{RESERVATION_PREFIX}{key}"


class BookingCache:
    """
    In-process cache of lab booking lists and single reservations.

    Entries are rebuilt from the reservation store after every coordinated
    mutation: `invalidate` drops the entries an entity touches and
    `schedule_refresh` debounces the reload, a newer schedule for the same
    key replacing the pending one.
    """

    def __init__(self, refresher: Optional[Callable[[Optional[str]], Awaitable[Any]]] = None):
        self._entries: Dict[str, Any] = {}
        # Bumped whenever an entry is dropped, so a load that started earlier cannot store stale data
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._loading: Dict[str, int] = {}
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._refresh_tasks = set()
        self._refresher = refresher
        logger.debug("BookingCache initialized")

    def set_refresher(self, refresher: Callable[[Optional[str]], Awaitable[Any]]) -> None:
        self._refresher = refresher

    def get(self, key: str) -> Optional[Any]:
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value
        logger.debug(f"Cached {key}")

    def keys(self) -> List[str]:
        return list(self._entries)

    async def get_lab_bookings(self, lab_id: Any, loader: Callable[[str], Awaitable[List[Booking]]]) -> List[Booking]:
        key = lab_cache_key(lab_id)
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        token = self._token(key)
        self._loading[key] = self._loading.get(key, 0) + 1
        try:
            bookings = await loader(str(lab_id))
        finally:
            self._loading[key] -= 1
            if not self._loading[key]:
                del self._loading[key]

        if self._token(key) != token:
            logger.debug(f"Discarding {key} load, invalidated while in flight")
            return bookings

        self._entries[key] = bookings
        for booking in bookings:
            self._entries[reservation_cache_key(booking.reservation_key)] = booking
        return bookings

    def _token(self, key: str) -> tuple:
        return self._epoch, self._generations.get(key, 0)

    def _bump(self, keys) -> None:
        for key in keys:
            self._generations[key] = self._generations.get(key, 0) + 1

    def remove_booking(self, key: Any) -> None:
        """Drops a reservation from every cached lab list without reloading."""
        key = str(key)
        if key.startswith(RESERVATION_PREFIX):
            key = key[len(RESERVATION_PREFIX):]
        self._entries.pop(reservation_cache_key(key), None)
        # A lab list still loading may hold the removed reservation
        self._bump([k for k in self._loading if k.startswith(LAB_PREFIX)])
        for entry_key, value in list(self._entries.items()):
            if entry_key.startswith(LAB_PREFIX):
                self._entries[entry_key] = [b for b in value if b.reservation_key != key]

    def invalidate(self, key: Optional[Any] = None) -> None:
        """
        Drops cached entries for an entity, or everything when no key is given.
        Accepts prefixed cache keys, lab ids and reservation keys.
        """
        if key is None:
            count = len(self._entries)
            self._epoch += 1
            self._entries.clear()
            logger.info(f"♻️ Cache cleared ({count} entries)")
            return

        key = str(key)
        if key.startswith(LAB_PREFIX):
            doomed, held = {key}, None
        elif key.startswith(RESERVATION_PREFIX):
            doomed, held = {key}, key[len(RESERVATION_PREFIX):]
        else:
            doomed, held = {lab_cache_key(key), reservation_cache_key(key)}, key

        # Lab lists holding the reservation are stale too
        if held is not None:
            for entry_key, value in self._entries.items():
                if entry_key.startswith(LAB_PREFIX) and any(b.reservation_key == held for b in value):
                    doomed.add(entry_key)
            doomed.update(k for k in self._loading if k.startswith(LAB_PREFIX))

        self._bump(doomed)
        removed = [k for k in doomed if self._entries.pop(k, None) is not None]
        logger.info(f"♻️ Cache invalidated for {key}: {removed}")

    def schedule_refresh(self, key: Optional[Any] = None, delay: float = 0.0) -> None:
        """Debounced refresh: replaces any refresh already pending for the same key."""
        refresh_key = GLOBAL_REFRESH_KEY if key is None else str(key)
        previous = self._pending.pop(refresh_key, None)
        if previous is not None:
            previous.cancel()
            logger.debug(f"Superseded pending refresh for {refresh_key}")

        loop = asyncio.get_running_loop()
        self._pending[refresh_key] = loop.call_later(delay, self._fire_refresh, refresh_key)

    def has_pending_refresh(self, key: Optional[Any] = None) -> bool:
        return (GLOBAL_REFRESH_KEY if key is None else str(key)) in self._pending

    def _fire_refresh(self, refresh_key: str) -> None:
        self._pending.pop(refresh_key, None)
        task = asyncio.get_running_loop().create_task(self._run_refresh(refresh_key))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _run_refresh(self, refresh_key: str) -> None:
        key = None if refresh_key == GLOBAL_REFRESH_KEY else refresh_key
        self.invalidate(key)
        if self._refresher is None:
            return
        try:
            result = self._refresher(key)
            if inspect.isawaitable(result):
                await result
            logger.info(f"🔄 Refreshed bookings for {refresh_key}")
        except Exception as e:
            logger.error(f"❌ Booking refresh failed for {refresh_key}: {e}")

    async def drain(self) -> None:
        """Waits for refreshes that already fired."""
        if self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
