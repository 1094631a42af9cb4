from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from labbooking.core.logger import logger
from labbooking.services.cache_service import BookingCache, lab_cache_key, reservation_cache_key
from labbooking.services.coordinator_service import UpdateCoordinator

# notification name -> invalidation reason
RESERVATION_EVENTS = {
    "ReservationRequested": "reservation_requested",
    "ReservationConfirmed": "reservation_confirmed",
    "ReservationRequestDenied": "reservation_denied",
    "ReservationRequestCanceled": "reservation_request_canceled",
    "BookingCanceled": "booking_canceled",
}


class ReservationEvent(BaseModel):
    """A change notification from the remote system of record."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_name: str = Field(alias="eventName")
    lab_id: Optional[str] = Field(default=None, alias="labId")
    reservation_key: Optional[str] = Field(default=None, alias="reservationKey")
    renter: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None

    @field_validator("lab_id", "reservation_key", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        return None if value is None else str(value)


class ReservationEventListener:
    """
    External-notification path of the cache.

    Each handled event invalidates the lab and reservation it refers to and
    schedules a refresh. Events for an entity that a coordinated update is
    currently holding are skipped: the local path refreshes that entity
    itself once its mutation settles.
    """

    def __init__(self, coordinator: UpdateCoordinator, cache: BookingCache, refresh_delay: float = 0.0):
        self._coordinator = coordinator
        self._cache = cache
        self._refresh_delay = refresh_delay

    @staticmethod
    def _entity_keys(event: ReservationEvent) -> List[str]:
        keys = []
        if event.reservation_key is not None:
            keys.append(reservation_cache_key(event.reservation_key))
        if event.lab_id is not None:
            keys.append(lab_cache_key(event.lab_id))
        return keys

    def _is_held(self, event: ReservationEvent) -> bool:
        keys = self._entity_keys(event)
        if not keys:
            return self._coordinator.is_update_in_progress()
        return any(self._coordinator.is_update_in_progress(key) for key in keys)

    async def handle(self, event: ReservationEvent) -> bool:
        """Returns True when the event caused an invalidation."""
        reason = RESERVATION_EVENTS.get(event.event_name)
        if reason is None:
            logger.warning(f"⚠️ Ignoring unknown reservation event '{event.event_name}'")
            return False

        if self._is_held(event):
            logger.info(f"Skipping {event.event_name} event - manual update in progress")
            return False

        logger.info(f"📝 {event.event_name} event received: lab={event.lab_id} reservation={event.reservation_key}")

        keys = self._entity_keys(event)
        for key in keys:
            self._cache.invalidate(key)
        if not keys:
            self._cache.invalidate()

        refresh_key = lab_cache_key(event.lab_id) if event.lab_id is not None else None
        self._cache.schedule_refresh(refresh_key, self._refresh_delay)
        logger.info(f"✅ Cache invalidation completed ({reason})")
        return True

    async def handle_many(self, events: Iterable[ReservationEvent]) -> int:
        handled = 0
        for event in events:
            try:
                if await self.handle(event):
                    handled += 1
            except Exception as e:
                logger.error(f"❌ Error processing {event.event_name} event: {e}")
        return handled
