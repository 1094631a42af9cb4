"""
Booking submission validation and lifecycle rules.

Functions that depend on the wall clock take an optional `now`; it defaults
to the current UTC time.
"""
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional

from labbooking.core.config import settings
from labbooking.core.logger import logger
from labbooking.models.booking_models import Booking, DisplayContext, LifecycleStatus, ValidationResult
from labbooking.services.status_service import is_cancelled, is_confirmed, is_pending
from labbooking.utils.time_helpers import parse_day, parse_instant, utc_now


def _get(candidate: Any, *names: str) -> Any:
    if isinstance(candidate, Mapping):
        for name in names:
            if candidate.get(name) not in (None, ""):
                return candidate[name]
        return None
    for name in names:
        value = getattr(candidate, name, None)
        if value not in (None, ""):
            return value
    return None


def validate_booking_submission(candidate: Any, now: Optional[datetime] = None) -> ValidationResult:
    """
    Collects every rule the candidate breaks instead of stopping at the first.
    Date-logic rules only run when both dates are present.
    """
    now = now or utc_now()
    errors: List[str] = []

    lab_id = _get(candidate, "labId", "lab_id")
    start_raw = _get(candidate, "startDate", "start_date")
    end_raw = _get(candidate, "endDate", "end_date")
    user_account = _get(candidate, "userAccount", "user_account")
    purpose = _get(candidate, "purpose")

    if lab_id is None:
        errors.append("Lab ID is required")
    if start_raw is None:
        errors.append("Start date is required")
    if end_raw is None:
        errors.append("End date is required")
    if user_account is None:
        errors.append("User account is required")

    if start_raw is not None and end_raw is not None:
        start, end = parse_instant(start_raw), parse_instant(end_raw)
        if start is None:
            errors.append("Start date is invalid")
        if end is None:
            errors.append("End date is invalid")
        if start is not None and end is not None:
            if end <= start:
                errors.append("End date must be after start date")
            if start < now:
                errors.append("Start date cannot be in the past")

    if not isinstance(purpose, str) or not purpose.strip():
        errors.append("Purpose is required")

    return ValidationResult(is_valid=not errors, errors=errors)


def _start_of(booking: Any) -> Optional[datetime]:
    if isinstance(booking, Booking):
        return booking.start_date
    return parse_instant(_get(booking, "startDate", "start_date", "start"))


def _end_of(booking: Any) -> Optional[datetime]:
    if isinstance(booking, Booking):
        return booking.end_date
    return parse_instant(_get(booking, "endDate", "end_date", "end"))


def _is_cancelled(booking: Any) -> bool:
    if _get(booking, "cancelled") is True:
        return True
    return is_cancelled(booking)


def _hours_until_start(booking: Any, now: Optional[datetime]) -> Optional[float]:
    start = _start_of(booking)
    if start is None:
        return None
    return (start - (now or utc_now())).total_seconds() / 3600


def can_cancel(booking: Any, min_hours: Optional[float] = None, now: Optional[datetime] = None) -> bool:
    """Cancellation needs at least `min_hours` notice (inclusive)."""
    min_hours = settings.CANCEL_MIN_HOURS if min_hours is None else min_hours
    hours = _hours_until_start(booking, now)
    if hours is None:
        logger.warning(f"⚠️ Cannot evaluate cancellation window, booking has no start: {booking!r}")
        return False
    return hours >= min_hours


def can_modify(booking: Any, min_hours: Optional[float] = None, now: Optional[datetime] = None) -> bool:
    """Modification needs at least `min_hours` notice (inclusive)."""
    min_hours = settings.MODIFY_MIN_HOURS if min_hours is None else min_hours
    hours = _hours_until_start(booking, now)
    if hours is None:
        logger.warning(f"⚠️ Cannot evaluate modification window, booking has no start: {booking!r}")
        return False
    return hours >= min_hours


def get_lifecycle_status(booking: Any, now: Optional[datetime] = None) -> LifecycleStatus:
    if _is_cancelled(booking):
        return LifecycleStatus.CANCELLED

    now = now or utc_now()
    start, end = _start_of(booking), _end_of(booking)
    if start is None or end is None:
        logger.warning(f"⚠️ Booking without start/end treated as upcoming: {booking!r}")
        return LifecycleStatus.UPCOMING

    if now < start:
        return LifecycleStatus.UPCOMING
    if now <= end:
        return LifecycleStatus.ACTIVE
    return LifecycleStatus.COMPLETED


def can_access_now(booking: Any, early_access_minutes: Optional[float] = None, now: Optional[datetime] = None) -> bool:
    """True inside [start - early access, end], both ends inclusive."""
    if _is_cancelled(booking):
        return False

    early_access_minutes = settings.EARLY_ACCESS_MINUTES if early_access_minutes is None else early_access_minutes
    start, end = _start_of(booking), _end_of(booking)
    if start is None or end is None:
        return False

    now = now or utc_now()
    return start - timedelta(minutes=early_access_minutes) <= now <= end


def has_valid_date(booking: Booking) -> bool:
    if parse_day(booking.date) is not None:
        return True
    if booking.start_date is not None:
        return True
    logger.warning(f"❌ Booking missing date field: {booking.reservation_key}")
    return False


def is_past_booking(booking: Booking, now: Optional[datetime] = None) -> bool:
    """A booking is past once it has ended; without times, once its day is before today."""
    now = now or utc_now()
    if booking.end_date is not None and booking.start_date is not None:
        return booking.end_date < now

    day = parse_day(booking.date)
    if day is None:
        return False
    return day < now.date()


def filter_by_display_context(
    bookings: Iterable[Booking],
    context: Any = DisplayContext.DEFAULT,
    now: Optional[datetime] = None,
) -> List[Booking]:
    """
    Selects the bookings a given view should show.

    Cancelled bookings and bookings without a derivable date are always
    dropped. The upcoming queue shows future pending or confirmed bookings;
    dashboards show confirmed past bookings and pending or confirmed future
    ones; the default view only hides pending bookings that are already past.
    """
    try:
        context = DisplayContext(context)
    except ValueError:
        logger.warning(f"⚠️ Unknown display context '{context}', using default")
        context = DisplayContext.DEFAULT

    now = now or utc_now()
    visible = []
    for booking in bookings:
        if _is_cancelled(booking):
            continue
        if not has_valid_date(booking):
            continue

        past = is_past_booking(booking, now)
        pending = is_pending(booking)
        confirmed = is_confirmed(booking)

        if context is DisplayContext.UPCOMING_QUEUE:
            keep = not past and (pending or confirmed)
        elif context in (DisplayContext.USER_DASHBOARD, DisplayContext.PROVIDER_DASHBOARD):
            keep = confirmed if past else (confirmed or pending)
        else:
            keep = not (pending and past)

        if keep:
            visible.append(booking)
    return visible
