"""
Time-slot availability for labs.

Slots are computed from the lab schedule (open days, open hours,
maintenance windows) and the existing bookings of the day. Every interval
comparison goes through `overlaps`, which treats intervals as half-open so
back-to-back bookings never conflict.
"""
from datetime import date, datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from labbooking.core.logger import logger
from labbooking.models.booking_models import BlockReason, Booking, LabSchedule, TimeSlot
from labbooking.services.status_service import is_cancelled
from labbooking.utils.time_helpers import UTC, day_bounds, get_zone, local_instant, parse_instant, utc_now, weekday_name

DEFAULT_INTERVAL_MINUTES = 30


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    """Strict half-open overlap: touching boundaries do not overlap."""
    return start_a < end_b and start_b < end_a


def _as_schedule(schedule: Any) -> LabSchedule:
    if schedule is None:
        return LabSchedule()
    if isinstance(schedule, LabSchedule):
        return schedule
    return LabSchedule.model_validate(schedule)


def _as_day(day: Any, tz) -> date:
    if isinstance(day, datetime):
        return day.astimezone(tz).date() if day.tzinfo else day.date()
    if isinstance(day, date):
        return day
    return date.fromisoformat(str(day)[:10])


def _blocking_intervals(bookings: Iterable[Booking]) -> List[tuple]:
    intervals = []
    for booking in bookings:
        if is_cancelled(booking):
            continue
        if booking.start is None or booking.end is None:
            logger.warning(f"⚠️ Booking {booking.reservation_key} has no start/end, it does not block slots")
            continue
        if booking.end <= booking.start:
            logger.warning(f"⚠️ Booking {booking.reservation_key} has a non-positive duration, ignoring")
            continue
        intervals.append((booking.start, booking.end))
    return intervals


def _maintenance_intervals(schedule: LabSchedule) -> List[tuple]:
    intervals = []
    for window in schedule.unavailable_windows:
        if window.end_unix <= window.start_unix:
            logger.warning(f"⚠️ Maintenance window {window.start_unix}-{window.end_unix} is empty, ignoring")
            continue
        intervals.append((window.start_unix, window.end_unix))
    return intervals


def generate_time_slots(
    day: Any,
    schedule: Any = None,
    existing_bookings: Optional[Sequence[Booking]] = None,
    now: Optional[datetime] = None,
) -> List[TimeSlot]:
    """
    Partition a lab-local day into interval-sized slots and flag the blocked ones.

    The partitioned window is the whole day, or the opening hours when the
    schedule defines them. A slot is blocked, in this order of precedence,
    when it has already started (PAST), falls on a closed weekday or outside
    the opening hours (SCHEDULE), overlaps a maintenance window
    (MAINTENANCE) or overlaps a booking that is not cancelled (CONFLICT).
    """
    schedule = _as_schedule(schedule)
    tz = get_zone(schedule.timezone)
    day = _as_day(day, tz)
    now_ts = (now or utc_now()).timestamp()
    interval = timedelta(minutes=schedule.interval or DEFAULT_INTERVAL_MINUTES)

    # Step in UTC so DST days get their real length
    day_start, day_end = day_bounds(day, tz)
    window_start, window_end = day_start.astimezone(UTC), day_end.astimezone(UTC)
    hours = schedule.available_hours
    if hours is not None:
        window_start = local_instant(day, hours.open_minutes, tz)
        window_end = local_instant(day, hours.close_minutes, tz)

    day_closed = bool(schedule.available_days) and weekday_name(day) not in schedule.available_days
    maintenance = _maintenance_intervals(schedule)
    reserved = _blocking_intervals(existing_bookings or [])

    slots = []
    slot_start = window_start
    while slot_start < window_end:
        slot_end = slot_start + interval
        start_ts, end_ts = slot_start.timestamp(), slot_end.timestamp()

        reason = None
        if start_ts <= now_ts:
            reason = BlockReason.PAST
        elif day_closed or (hours is not None and slot_end > window_end):
            reason = BlockReason.SCHEDULE
        elif any(overlaps(start_ts, end_ts, m_start, m_end) for m_start, m_end in maintenance):
            reason = BlockReason.MAINTENANCE
        elif any(overlaps(start_ts, end_ts, b_start, b_end) for b_start, b_end in reserved):
            reason = BlockReason.CONFLICT

        label = slot_start.astimezone(tz).strftime("%H:%M")
        blocked = reason is not None
        slots.append(TimeSlot(
            value=label,
            label=label,
            start=int(start_ts),
            end=int(end_ts),
            disabled=blocked,
            is_reserved=blocked,
            reason=reason,
        ))
        slot_start = slot_end

    return slots


def is_day_fully_unavailable(day: Any, schedule: Any = None) -> bool:
    """True when the weekday is closed or a maintenance window spans the entire day."""
    schedule = _as_schedule(schedule)
    tz = get_zone(schedule.timezone)
    day = _as_day(day, tz)

    if schedule.available_days and weekday_name(day) not in schedule.available_days:
        return True

    day_start, next_day = day_bounds(day, tz)
    first_second = int(day_start.timestamp())
    last_second = int(next_day.timestamp()) - 1
    return any(
        window.start_unix <= first_second and window.end_unix >= last_second
        for window in schedule.unavailable_windows
    )


def _interval_of(record: Any) -> tuple:
    if isinstance(record, Booking):
        return parse_instant(record.start_date), parse_instant(record.end_date)
    if isinstance(record, Mapping):
        start = record.get("startDate", record.get("start_date", record.get("start")))
        end = record.get("endDate", record.get("end_date", record.get("end")))
    else:
        start = getattr(record, "start_date", None) or getattr(record, "start", None)
        end = getattr(record, "end_date", None) or getattr(record, "end", None)
    return parse_instant(start), parse_instant(end)


def _is_cancelled_record(record: Any) -> bool:
    flag = record.get("cancelled") if isinstance(record, Mapping) else getattr(record, "cancelled", None)
    return flag is True or is_cancelled(record)


def is_slot_available(candidate: Any, existing_bookings: Optional[Iterable[Any]] = None) -> bool:
    """
    Checks one {startDate, endDate} window against every booking in the list.
    Cancelled bookings and unparseable intervals never block.
    """
    cand_start, cand_end = _interval_of(candidate)
    if cand_start is None or cand_end is None:
        logger.warning(f"⚠️ Candidate slot {candidate!r} has no usable interval, treating as available")
        return True

    for booking in existing_bookings or []:
        if _is_cancelled_record(booking):
            continue
        b_start, b_end = _interval_of(booking)
        if b_start is None or b_end is None:
            continue
        if overlaps(cand_start, cand_end, b_start, b_end):
            return False
    return True


def bookings_for_day(day: Any, bookings: Iterable[Booking], tz_name: Optional[str] = None) -> List[Booking]:
    """Bookings whose interval intersects the lab-local day."""
    tz = get_zone(tz_name)
    day = _as_day(day, tz)
    day_start, day_end = day_bounds(day, tz)
    start_ts, end_ts = day_start.timestamp(), day_end.timestamp()

    result = []
    for booking in bookings:
        if booking.start is not None and booking.end is not None:
            if overlaps(booking.start, booking.end, start_ts, end_ts):
                result.append(booking)
        elif booking.date == day.isoformat():
            result.append(booking)
    return result
