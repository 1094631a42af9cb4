import pytest
from datetime import date, datetime, timezone

from labbooking.models.booking_models import BlockReason, Booking, LabSchedule
from labbooking.services.availability_service import (
    bookings_for_day,
    generate_time_slots,
    is_day_fully_unavailable,
    is_slot_available,
    overlaps,
)

UTC = timezone.utc
MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)
BEFORE = datetime(2030, 1, 1, tzinfo=UTC)

def ts(hour, minute=0, day=MONDAY):
    return int(datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC).timestamp())

def weekday_lab(**overrides):
    raw = {
        "availableDays": ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY"],
        "availableHours": {"start": "09:00", "end": "17:00"},
        "interval": 60,
        "timezone": "UTC",
    }
    raw.update(overrides)
    return LabSchedule.model_validate(raw)

def test_overlap_is_symmetric():
    intervals = [(0, 10), (5, 15), (10, 20), (20, 30), (-5, 0), (2, 3)]
    for a in intervals:
        for b in intervals:
            assert overlaps(*a, *b) == overlaps(*b, *a)

def test_touching_intervals_do_not_overlap():
    assert not overlaps(0, 10, 10, 20)
    assert not overlaps(10, 20, 0, 10)
    assert overlaps(0, 11, 10, 20)

def test_monday_scenario():
    bookings = [
        Booking.model_validate({"id": "confirmed", "start": ts(10), "end": ts(12), "status": 1}),
        Booking.model_validate({"id": "cancelled", "start": ts(13), "end": ts(14), "status": 5}),
    ]

    slots = generate_time_slots(MONDAY, weekday_lab(), bookings, now=BEFORE)

    assert [s.label for s in slots] == ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00"]
    blocked = [s.label for s in slots if s.disabled]
    assert blocked == ["10:00", "11:00"]
    assert slots[1].reason is BlockReason.CONFLICT
    assert slots[2].is_reserved
    # Ends exactly when the 12:00 slot starts
    assert slots[3].disabled is False
    assert slots[4].disabled is False

def test_cancelled_booking_frees_its_slots():
    bookings = [Booking.model_validate({"id": "confirmed", "start": ts(10), "end": ts(12), "status": 5})]

    slots = generate_time_slots(MONDAY, weekday_lab(), bookings, now=BEFORE)

    assert len(slots) == 8
    assert not any(s.disabled for s in slots)

def test_slot_generation_is_deterministic():
    bookings = [Booking.model_validate({"id": "x", "start": ts(12), "end": ts(13), "status": "booked"})]
    first = generate_time_slots(MONDAY, weekday_lab(), bookings, now=BEFORE)
    second = generate_time_slots(MONDAY, weekday_lab(), bookings, now=BEFORE)
    assert first == second

def test_past_slots_are_blocked_first():
    bookings = [Booking.model_validate({"id": "x", "start": ts(9), "end": ts(10), "status": 1})]
    now = datetime(2030, 1, 7, 12, 30, tzinfo=UTC)

    slots = generate_time_slots(MONDAY, weekday_lab(), bookings, now=now)

    reasons = [s.reason for s in slots]
    # The 09:00 slot conflicts too, but it is reported as past
    assert reasons[:4] == [BlockReason.PAST] * 4
    assert reasons[4:] == [None] * 4

def test_closed_weekday_blocks_every_slot():
    slots = generate_time_slots(SUNDAY, weekday_lab(), [], now=BEFORE)
    assert len(slots) == 8
    assert all(s.reason is BlockReason.SCHEDULE for s in slots)
    assert is_day_fully_unavailable(SUNDAY, weekday_lab())
    assert not is_day_fully_unavailable(MONDAY, weekday_lab())

def test_slot_running_past_closing_time_is_blocked():
    schedule = weekday_lab(availableHours={"start": "09:00", "end": "10:30"})
    slots = generate_time_slots(MONDAY, schedule, [], now=BEFORE)
    assert [(s.label, s.reason) for s in slots] == [("09:00", None), ("10:00", BlockReason.SCHEDULE)]

def test_maintenance_windows_block_overlapping_slots():
    schedule = weekday_lab(unavailableWindows=[{"startUnix": ts(14), "endUnix": ts(15, 30), "reason": "calibration"}])
    slots = generate_time_slots(MONDAY, schedule, [], now=BEFORE)
    maintenance = [s.label for s in slots if s.reason is BlockReason.MAINTENANCE]
    assert maintenance == ["14:00", "15:00"]

def test_maintenance_covering_whole_day():
    schedule = weekday_lab(unavailableWindows=[{"startUnix": ts(0), "endUnix": ts(23, 59) + 59}])
    assert is_day_fully_unavailable(MONDAY, schedule)

    partial = weekday_lab(unavailableWindows=[{"startUnix": ts(0), "endUnix": ts(23, 59)}])
    assert not is_day_fully_unavailable(MONDAY, partial)

def test_without_schedule_the_whole_day_is_partitioned():
    slots = generate_time_slots(MONDAY, None, [], now=BEFORE)
    assert len(slots) == 48
    assert slots[0].label == "00:00"
    assert slots[-1].label == "23:30"
    assert not any(s.disabled for s in slots)

def test_lab_local_day_uses_lab_timezone():
    schedule = LabSchedule.model_validate({"interval": 60, "timezone": "Europe/Madrid"})
    slots = generate_time_slots(MONDAY, schedule, [], now=BEFORE)
    # Madrid is UTC+1 in January
    assert slots[0].start == ts(0) - 3600
    assert slots[0].label == "00:00"

def test_spring_forward_day_has_no_duplicate_slots():
    schedule = LabSchedule.model_validate({"interval": 60, "timezone": "Europe/Madrid"})
    slots = generate_time_slots(date(2030, 3, 31), schedule, [], now=BEFORE)

    assert len(slots) == 23
    assert len({s.start for s in slots}) == 23
    assert all(a.end == b.start for a, b in zip(slots, slots[1:]))
    labels = [s.label for s in slots]
    assert "02:00" not in labels
    assert labels[:3] == ["00:00", "01:00", "03:00"]

def test_fall_back_day_has_the_extra_hour():
    schedule = LabSchedule.model_validate({"interval": 60, "timezone": "Europe/Madrid"})
    slots = generate_time_slots(date(2030, 10, 27), schedule, [], now=BEFORE)

    assert len(slots) == 25
    assert len({s.start for s in slots}) == 25
    assert [s.label for s in slots].count("02:00") == 2

def test_opening_hours_on_spring_forward_day():
    schedule = LabSchedule.model_validate({
        "availableHours": {"start": "09:00", "end": "17:00"},
        "interval": 60,
        "timezone": "Europe/Madrid",
    })
    slots = generate_time_slots(date(2030, 3, 31), schedule, [], now=BEFORE)

    assert [s.label for s in slots][0] == "09:00"
    assert len(slots) == 8
    # 09:00 CEST
    assert slots[0].start == int(datetime(2030, 3, 31, 7, tzinfo=UTC).timestamp())

def test_is_slot_available():
    existing = [
        {"startDate": "2030-01-07T10:00:00Z", "endDate": "2030-01-07T11:00:00Z"},
        {"startDate": "not a date", "endDate": "2030-01-07T16:00:00Z"},
    ]
    assert is_slot_available({"startDate": "2030-01-07T11:00:00Z", "endDate": "2030-01-07T12:00:00Z"}, existing)
    assert is_slot_available({"startDate": "2030-01-07T09:00:00Z", "endDate": "2030-01-07T10:00:00Z"}, existing)
    assert not is_slot_available({"startDate": "2030-01-07T10:30:00Z", "endDate": "2030-01-07T11:30:00Z"}, existing)
    # Unparseable candidates never block
    assert is_slot_available({"startDate": None, "endDate": "2030-01-07T11:00:00Z"}, existing)

def test_bookings_for_day():
    bookings = [
        Booking.model_validate({"id": "mon", "start": ts(10), "end": ts(11)}),
        Booking.model_validate({"id": "sun", "start": ts(10, day=SUNDAY), "end": ts(11, day=SUNDAY)}),
        Booking.model_validate({"id": "dated", "date": "2030-01-07"}),
    ]
    assert [b.id for b in bookings_for_day(MONDAY, bookings, "UTC")] == ["mon", "dated"]

def test_cancelled_bookings_never_block_a_candidate():
    candidate = {"startDate": "2030-01-07T10:00:00Z", "endDate": "2030-01-07T11:00:00Z"}
    cancelled_by_status = {"startDate": "2030-01-07T10:00:00Z", "endDate": "2030-01-07T12:00:00Z", "status": 5}
    cancelled_by_flag = {"startDate": "2030-01-07T10:30:00Z", "endDate": "2030-01-07T11:30:00Z", "cancelled": True}
    confirmed = {"startDate": "2030-01-07T10:30:00Z", "endDate": "2030-01-07T11:30:00Z", "status": 1}

    assert is_slot_available(candidate, [cancelled_by_status, cancelled_by_flag])
    assert not is_slot_available(candidate, [cancelled_by_status, confirmed])
