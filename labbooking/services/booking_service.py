from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

from labbooking.core.config import settings
from labbooking.core.config_loader import load_lab_catalog, get_lab_schedule
from labbooking.core.exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    InvalidTransitionError,
    LabNotFoundError,
    LeadTimeError,
    SlotUnavailableError,
)
from labbooking.core.logger import logger
from labbooking.models.booking_models import (
    BlockReason,
    Booking,
    BookingOverview,
    BookingSubmission,
    DayAvailability,
    DisplayContext,
    LabSchedule,
)
from labbooking.services.availability_service import (
    bookings_for_day,
    generate_time_slots,
    is_day_fully_unavailable,
    is_slot_available,
    overlaps,
)
from labbooking.services.cache_service import (
    LAB_PREFIX,
    BookingCache,
    lab_cache_key,
    reservation_cache_key,
)
from labbooking.services.coordinator_service import UpdateCoordinator
from labbooking.services.db_service import db_service
from labbooking.services.event_service import ReservationEvent, ReservationEventListener
from labbooking.services.status_service import BookingState, encode_status_code, is_cancelled, status_text
from labbooking.services.validation_service import (
    can_access_now,
    can_cancel,
    can_modify,
    filter_by_display_context,
    get_lifecycle_status,
    validate_booking_submission,
)
from labbooking.utils.time_helpers import (
    calculate_booking_duration,
    format_duration,
    get_zone,
    local_instant,
    parse_day,
    parse_instant,
    utc_now,
    weekday_name,
)

CreateCommit = Callable[[str, int, int, str, str], Awaitable[str]]
StatusCommit = Callable[[str], Awaitable[Any]]

REQUEST_STATES = frozenset({BookingState.REQUESTED, BookingState.PENDING})
CANCELLABLE_STATES = REQUEST_STATES | {BookingState.CONFIRMED}


class BookingService:
    """
    Entry point used by the API: resolves lab schedules, serves cached
    bookings and runs every mutation through the update coordinator.
    """

    def __init__(
        self,
        catalog: Optional[Dict[str, Any]] = None,
        store: Any = None,
        cache: Optional[BookingCache] = None,
        coordinator: Optional[UpdateCoordinator] = None,
    ):
        self.catalog = catalog if catalog is not None else load_lab_catalog()
        self.store = store or db_service
        self.cache = cache or BookingCache()
        self.cache.set_refresher(self._refresh)
        self.coordinator = coordinator or UpdateCoordinator(
            invalidate=self.cache.invalidate,
            schedule_refresh=self.cache.schedule_refresh,
        )
        self.events = ReservationEventListener(self.coordinator, self.cache, settings.REFRESH_DELAY_SECONDS)

    async def _refresh(self, key: Optional[str]) -> None:
        # Global refreshes just leave the cache empty; the next read reloads lazily
        if key is None or not key.startswith(LAB_PREFIX):
            return
        await self.get_lab_bookings(key[len(LAB_PREFIX):])

    # --- Reads ---

    def get_schedule(self, lab_id: Any) -> LabSchedule:
        raw = get_lab_schedule(self.catalog, lab_id)
        if raw is None:
            raise LabNotFoundError(f"Lab {lab_id} not found")
        return LabSchedule.model_validate({**raw, "labId": str(lab_id)})

    async def get_lab_bookings(self, lab_id: Any) -> List[Booking]:
        return await self.cache.get_lab_bookings(lab_id, self.store.get_lab_bookings)

    async def get_booking(self, reservation_key: str) -> Booking:
        key = reservation_cache_key(reservation_key)
        booking = self.cache.get(key)
        if booking is None:
            booking = await self.store.get_reservation(reservation_key)
            if booking is None:
                raise BookingNotFoundError(f"Reservation {reservation_key} not found")
            self.cache.set(key, booking)
        return booking

    async def get_time_slots(self, lab_id: Any, day: Any, now: Optional[datetime] = None) -> DayAvailability:
        schedule = self.get_schedule(lab_id)
        parsed_day = parse_day(day)
        if parsed_day is None:
            raise ValueError(f"Invalid day '{day}', expected YYYY-MM-DD")

        bookings = await self.get_lab_bookings(lab_id)
        day_bookings = bookings_for_day(parsed_day, bookings, schedule.timezone)
        slots = generate_time_slots(parsed_day, schedule, day_bookings, now)
        logger.info(f"📅 Lab {lab_id} {parsed_day}: {sum(not s.disabled for s in slots)}/{len(slots)} slots free")

        return DayAvailability(
            lab_id=str(lab_id),
            day=parsed_day.isoformat(),
            fully_unavailable=is_day_fully_unavailable(parsed_day, schedule),
            slots=slots,
        )

    async def check_slot(self, lab_id: Any, start: Any, end: Any, now: Optional[datetime] = None) -> Optional[BlockReason]:
        """
        Returns why [start, end) cannot be booked, or None when it is free.
        Same precedence as the slot grid: past, schedule, maintenance, conflict.
        """
        schedule = self.get_schedule(lab_id)
        start_dt, end_dt = parse_instant(start), parse_instant(end)
        if start_dt is None or end_dt is None or end_dt <= start_dt:
            raise ValueError("A slot needs a valid start before its end")

        now = now or utc_now()
        if start_dt <= now:
            return BlockReason.PAST

        tz = get_zone(schedule.timezone)
        local_day = start_dt.astimezone(tz).date()
        if schedule.available_days and weekday_name(local_day) not in schedule.available_days:
            return BlockReason.SCHEDULE
        if schedule.available_hours is not None:
            opens = local_instant(local_day, schedule.available_hours.open_minutes, tz)
            closes = local_instant(local_day, schedule.available_hours.close_minutes, tz)
            if start_dt < opens or end_dt > closes:
                return BlockReason.SCHEDULE

        start_ts, end_ts = start_dt.timestamp(), end_dt.timestamp()
        for window in schedule.unavailable_windows:
            if window.end_unix > window.start_unix and overlaps(start_ts, end_ts, window.start_unix, window.end_unix):
                return BlockReason.MAINTENANCE

        bookings = await self.get_lab_bookings(lab_id)
        if not is_slot_available({"startDate": start_dt, "endDate": end_dt}, bookings):
            return BlockReason.CONFLICT
        return None

    async def list_lab_bookings(
        self, lab_id: Any, context: Any = DisplayContext.DEFAULT, now: Optional[datetime] = None
    ) -> List[Booking]:
        self.get_schedule(lab_id)
        return filter_by_display_context(await self.get_lab_bookings(lab_id), context, now)

    async def get_booking_overview(self, reservation_key: str, now: Optional[datetime] = None) -> BookingOverview:
        booking = await self.get_booking(reservation_key)
        now = now or utc_now()
        duration = calculate_booking_duration(booking.start_date, booking.end_date)
        return BookingOverview(
            booking=booking,
            status_text=status_text(booking),
            lifecycle=get_lifecycle_status(booking, now),
            duration=format_duration(duration["hours"], duration["minutes"]),
            can_cancel=can_cancel(booking, now=now),
            can_modify=can_modify(booking, now=now),
            can_access_now=can_access_now(booking, now=now),
        )

    # --- Mutations ---

    async def request_booking(
        self,
        submission: BookingSubmission,
        commit: Optional[CreateCommit] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Validates the request, then checks the slot and commits it while
        holding the lab's gate. Raises BookingValidationError,
        SlotUnavailableError or CoordinatorBusyError.
        """
        result = validate_booking_submission(submission, now)
        if not result.is_valid:
            logger.warning(f"⚠️ Booking request rejected: {result.errors}")
            raise BookingValidationError(result.errors)

        lab_id = str(submission.lab_id)
        self.get_schedule(lab_id)
        start = int(parse_instant(submission.start_date).timestamp())
        end = int(parse_instant(submission.end_date).timestamp())
        commit = commit or self.store.create_reservation
        lab_key = lab_cache_key(lab_id)

        async def _mutation() -> Booking:
            reason = await self.check_slot(lab_id, start, end, now)
            if reason is not None:
                raise SlotUnavailableError(f"Lab {lab_id} is not available from {start} to {end} ({reason.value})")
            reservation_key = await commit(lab_id, start, end, submission.user_account, submission.purpose.strip())
            return Booking(
                reservation_key=reservation_key,
                lab_id=lab_id,
                start=start,
                end=end,
                user_account=submission.user_account,
                purpose=submission.purpose.strip(),
                state=BookingState.PENDING,
            )

        logger.info(f"📥 Booking request for lab {lab_id}: {start}-{end} by {submission.user_account}")
        return await self.coordinator.coordinated_update(_mutation, entity_key=lab_key, lab_id=lab_key)

    async def _transition(
        self,
        reservation_key: str,
        allowed: FrozenSet[BookingState],
        target: BookingState,
        commit: Optional[StatusCommit] = None,
    ) -> Booking:
        """
        Moves a reservation from one of the `allowed` states to `target`,
        holding the reservation's gate. Cancellations also drop the
        reservation from the cached lab lists.
        """
        booking = await self.get_booking(reservation_key)
        if booking.state not in allowed:
            raise InvalidTransitionError(
                f"Reservation {reservation_key} is {booking.state.value} and cannot become {target.value}"
            )

        entity_key = reservation_cache_key(reservation_key)
        lab_key = lab_cache_key(booking.lab_id) if booking.lab_id is not None else None
        if target is BookingState.CANCELLED:
            commit = commit or self.store.cancel_reservation
            await self.coordinator.coordinated_cancellation(
                lambda: commit(reservation_key),
                entity_key,
                lab_id=lab_key,
                on_removed=self.cache.remove_booking,
            )
        else:
            commit = commit or (lambda key: self.store.update_status(key, target))
            await self.coordinator.coordinated_update(lambda: commit(reservation_key), entity_key=entity_key, lab_id=lab_key)

        logger.info(f"🔁 Reservation {reservation_key}: {booking.state.value} -> {target.value}")
        update: Dict[str, Any] = {"state": target, "status": encode_status_code(target)}
        if target is BookingState.CANCELLED:
            update["cancelled"] = True
        return booking.model_copy(update=update)

    async def confirm_booking(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        return await self._transition(reservation_key, REQUEST_STATES, BookingState.CONFIRMED, commit)

    async def deny_request(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        return await self._transition(reservation_key, REQUEST_STATES, BookingState.CANCELLED, commit)

    async def cancel_request(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        """Withdraws a request that has not been confirmed yet. No lead time applies."""
        return await self._transition(reservation_key, REQUEST_STATES, BookingState.CANCELLED, commit)

    async def mark_in_use(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        return await self._transition(reservation_key, frozenset({BookingState.CONFIRMED}), BookingState.IN_USE, commit)

    async def complete_booking(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        return await self._transition(
            reservation_key, frozenset({BookingState.CONFIRMED, BookingState.IN_USE}), BookingState.COMPLETED, commit
        )

    async def collect_booking(self, reservation_key: str, commit: Optional[StatusCommit] = None) -> Booking:
        return await self._transition(
            reservation_key, frozenset({BookingState.IN_USE, BookingState.COMPLETED}), BookingState.COLLECTED, commit
        )

    async def cancel_booking(
        self,
        reservation_key: str,
        commit: Optional[StatusCommit] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Cancels a pending request or a confirmed booking. Requests can be
        withdrawn at any time; confirmed bookings only up to the cancel lead
        time. Bookings already in use or past it raise InvalidTransitionError.
        """
        booking = await self.get_booking(reservation_key)
        if is_cancelled(booking):
            logger.info(f"Reservation {reservation_key} is already cancelled")
            return booking
        if booking.state in REQUEST_STATES:
            return await self.cancel_request(reservation_key, commit)
        if booking.state is not BookingState.CONFIRMED:
            raise InvalidTransitionError(
                f"Reservation {reservation_key} is {booking.state.value} and can no longer be cancelled"
            )
        if not can_cancel(booking, now=now):
            raise LeadTimeError(
                f"Reservation {reservation_key} can only be cancelled {settings.CANCEL_MIN_HOURS:g} hours before it starts"
            )

        cancelled = await self._transition(reservation_key, CANCELLABLE_STATES, BookingState.CANCELLED, commit)
        logger.info(f"🗑️ Reservation {reservation_key} cancelled")
        return cancelled

    async def handle_event(self, event: ReservationEvent) -> bool:
        return await self.events.handle(event)
