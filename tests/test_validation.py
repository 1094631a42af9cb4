import pytest
from datetime import datetime, timedelta, timezone

from labbooking.models.booking_models import Booking, BookingSubmission, DisplayContext, LifecycleStatus
from labbooking.services.validation_service import (
    can_access_now,
    can_cancel,
    can_modify,
    filter_by_display_context,
    get_lifecycle_status,
    validate_booking_submission,
)

UTC = timezone.utc
NOW = datetime(2030, 1, 7, 12, 0, tzinfo=UTC)

def window(start_offset, length=timedelta(hours=1)):
    start = NOW + start_offset
    return {"startDate": start.isoformat(), "endDate": (start + length).isoformat()}

# --- Submission validation ---

def test_empty_submission_reports_every_missing_field():
    result = validate_booking_submission({}, now=NOW)
    assert not result.is_valid
    assert result.errors == [
        "Lab ID is required",
        "Start date is required",
        "End date is required",
        "User account is required",
        "Purpose is required",
    ]

def test_valid_submission():
    candidate = {"labId": "1", "userAccount": "0xabc", "purpose": "Spectrometer run", **window(timedelta(days=1))}
    result = validate_booking_submission(candidate, now=NOW)
    assert result.is_valid
    assert result.errors == []

def test_submission_model_is_accepted():
    start = NOW + timedelta(days=1)
    submission = BookingSubmission(lab_id=1, start_date=start, end_date=start + timedelta(hours=1), user_account="0xabc", purpose="x")
    assert validate_booking_submission(submission, now=NOW).is_valid

def test_date_logic_errors_accumulate():
    start = NOW - timedelta(hours=2)
    candidate = {
        "labId": "1",
        "userAccount": "0xabc",
        "purpose": "   ",
        "startDate": start.isoformat(),
        "endDate": (start - timedelta(hours=1)).isoformat(),
    }
    result = validate_booking_submission(candidate, now=NOW)
    assert result.errors == [
        "End date must be after start date",
        "Start date cannot be in the past",
        "Purpose is required",
    ]

def test_unparseable_dates():
    candidate = {"labId": "1", "userAccount": "u", "purpose": "p", "startDate": "soon", "endDate": "later"}
    result = validate_booking_submission(candidate, now=NOW)
    assert "Start date is invalid" in result.errors
    assert "End date is invalid" in result.errors

# --- Lead times ---

def test_cancellation_boundary():
    assert can_cancel(window(timedelta(hours=24)), now=NOW)
    assert not can_cancel(window(timedelta(hours=23, minutes=59)), now=NOW)
    assert can_cancel(window(timedelta(hours=2)), min_hours=1, now=NOW)

def test_modification_boundary():
    assert can_modify(window(timedelta(hours=48)), now=NOW)
    assert not can_modify(window(timedelta(hours=47)), now=NOW)

def test_missing_start_cannot_be_cancelled():
    assert not can_cancel({"endDate": NOW.isoformat()}, now=NOW)
    assert not can_modify({}, now=NOW)

# --- Access window ---

def test_early_access_window():
    assert can_access_now(window(timedelta(minutes=4)), now=NOW)
    assert not can_access_now(window(timedelta(minutes=6)), now=NOW)

def test_access_ends_inclusive_at_end():
    booking = window(-timedelta(hours=1))
    assert can_access_now(booking, now=NOW)
    assert not can_access_now(booking, now=NOW + timedelta(seconds=1))

def test_cancelled_booking_has_no_access():
    booking = {**window(timedelta(minutes=1)), "status": "cancelled"}
    assert not can_access_now(booking, now=NOW)

# --- Lifecycle ---

def test_lifecycle_status():
    assert get_lifecycle_status(window(timedelta(hours=1)), now=NOW) is LifecycleStatus.UPCOMING
    assert get_lifecycle_status(window(timedelta(0)), now=NOW) is LifecycleStatus.ACTIVE
    assert get_lifecycle_status(window(-timedelta(hours=1)), now=NOW) is LifecycleStatus.ACTIVE
    assert get_lifecycle_status(window(-timedelta(hours=2)), now=NOW) is LifecycleStatus.COMPLETED
    assert get_lifecycle_status({**window(timedelta(hours=1)), "cancelled": True}, now=NOW) is LifecycleStatus.CANCELLED
    assert get_lifecycle_status({}, now=NOW) is LifecycleStatus.UPCOMING

# --- Display filtering ---

@pytest.fixture
def mixed_bookings():
    def make(key, offset, status):
        start = NOW + offset
        return Booking.model_validate({
            "id": key,
            "startDate": start,
            "endDate": start + timedelta(hours=1),
            "status": status,
        })

    return [
        make("future-pending", timedelta(days=1), 0),
        make("future-confirmed", timedelta(days=1), 1),
        make("past-pending", -timedelta(days=1), 0),
        make("past-confirmed", -timedelta(days=1), 1),
        make("past-completed", -timedelta(days=1), 3),
        make("future-cancelled", timedelta(days=1), 5),
        Booking.model_validate({"id": "no-date", "status": 1}),
    ]

def _ids(bookings):
    return [b.id for b in bookings]

def test_upcoming_queue(mixed_bookings):
    visible = filter_by_display_context(mixed_bookings, DisplayContext.UPCOMING_QUEUE, now=NOW)
    assert _ids(visible) == ["future-pending", "future-confirmed"]

def test_dashboards(mixed_bookings):
    for context in ("user-dashboard", "provider-dashboard"):
        visible = filter_by_display_context(mixed_bookings, context, now=NOW)
        assert _ids(visible) == ["future-pending", "future-confirmed", "past-confirmed"]

def test_default_view_hides_only_stale_requests(mixed_bookings):
    visible = filter_by_display_context(mixed_bookings, "something-else", now=NOW)
    assert _ids(visible) == ["future-pending", "future-confirmed", "past-confirmed", "past-completed"]
