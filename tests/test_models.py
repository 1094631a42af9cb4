import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from labbooking.models.booking_models import Booking, LabSchedule, bookings_from_records
from labbooking.services.status_service import BookingState

UTC = timezone.utc

def test_reservation_key_backfills_id():
    booking = Booking.model_validate({"reservationKey": "0xabc", "labId": 3})
    assert booking.id == "0xabc"
    assert booking.reservation_key == "0xabc"
    assert booking.lab_id == "3"

def test_id_backfills_reservation_key():
    booking = Booking.model_validate({"id": 42})
    assert booking.reservation_key == "42"
    assert booking.id == "42"

def test_booking_without_identifier_is_rejected():
    with pytest.raises(ValidationError):
        Booking.model_validate({"labId": "1", "start": 1893920400})

def test_epoch_and_datetime_views_are_synced():
    start = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)
    booking = Booking.model_validate({"id": "a", "start": str(int(start.timestamp())), "endDate": "2030-01-07T11:00:00Z"})
    assert booking.start_date == start
    assert booking.end == int(datetime(2030, 1, 7, 11, 0, tzinfo=UTC).timestamp())

def test_date_precedence():
    start = int(datetime(2030, 1, 7, 10, 0, tzinfo=UTC).timestamp())

    explicit = Booking.model_validate({"id": "a", "date": "2030-02-01", "dateString": "2030-03-01", "start": start})
    assert explicit.date == "2030-02-01"

    from_string = Booking.model_validate({"id": "b", "dateString": "2030-03-01", "start": start})
    assert from_string.date == "2030-03-01"

    derived = Booking.model_validate({"id": "c", "start": start})
    assert derived.date == "2030-01-07"

def test_state_is_resolved_at_ingestion():
    assert Booking.model_validate({"id": "a", "status": "1"}).state is BookingState.CONFIRMED
    assert Booking.model_validate({"id": "a", "isPending": True}).state is BookingState.PENDING
    assert Booking.model_validate({"id": "a", "status": 1, "cancelled": True}).state is BookingState.CANCELLED
    assert Booking.model_validate({"id": "a"}).state is BookingState.UNKNOWN

def test_malformed_records_are_skipped():
    bookings = bookings_from_records([{"id": "ok"}, {"labId": "1"}, {"reservationKey": "also-ok"}])
    assert [b.id for b in bookings] == ["ok", "also-ok"]

def test_lab_schedule_normalization():
    schedule = LabSchedule.model_validate({
        "availableDays": "monday, Friday",
        "availableHours": {"start": "09:00", "end": "17:00"},
        "interval": "60",
    })
    assert schedule.available_days == ["MONDAY", "FRIDAY"]
    assert schedule.available_hours.open_minutes == 9 * 60
    assert schedule.available_hours.close_minutes == 17 * 60
    assert schedule.interval == 60

    # Empty hours mean no restriction
    assert LabSchedule.model_validate({"availableHours": {}}).available_hours is None

@pytest.mark.parametrize("raw", [
    {"availableDays": ["FUNDAY"]},
    {"interval": 0},
    {"availableHours": {"start": "9am", "end": "17:00"}},
])
def test_lab_schedule_rejects_bad_metadata(raw):
    with pytest.raises(ValidationError):
        LabSchedule.model_validate(raw)
