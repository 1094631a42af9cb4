from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from labbooking.core.logger import logger

UTC = timezone.utc

WEEKDAY_NAMES = ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY"]

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


def utc_now() -> datetime:
    return datetime.now(UTC)


def get_zone(name: str | None) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ Unknown timezone '{name}', using UTC")
        return ZoneInfo("UTC")


def parse_epoch(value: Any) -> int | None:
    """Epoch seconds from an int, float, numeric string or datetime. None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return int(ensure_aware(value).timestamp())
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        trimmed = value.strip()
        if _NUMERIC_RE.match(trimmed):
            return int(float(trimmed))
    return None


def ensure_aware(value: datetime) -> datetime:
    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_instant(value: Any) -> datetime | None:
    """
    Parse a point in time into an aware datetime.
    Accepts datetimes, epoch seconds (number or numeric string) and ISO 8601 strings.
    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=UTC)

    epoch = parse_epoch(value)
    if epoch is not None:
        try:
            return datetime.fromtimestamp(epoch, UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str) and value.strip():
        try:
            return ensure_aware(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def parse_day(value: Any) -> date | None:
    """Calendar day from a date, datetime or YYYY-MM-DD (or ISO datetime) string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an HH:MM string (24:00 allowed as end of day)."""
    match = _HHMM_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Lab-local [start, next day start) for a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def local_instant(day: date, minutes: int, tz: ZoneInfo) -> datetime:
    """
    UTC instant of a lab-local wall-clock time, given as minutes since midnight
    (1440 is the next midnight).
    """
    day = day + timedelta(days=minutes // 1440)
    minutes %= 1440
    local = datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)
    return local.astimezone(UTC)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def calculate_booking_duration(start: Any, end: Any) -> dict:
    """Duration between two instants as hours, minutes and total minutes."""
    start_dt, end_dt = parse_instant(start), parse_instant(end)
    if start_dt is None or end_dt is None:
        return {"hours": 0, "minutes": 0, "total_minutes": 0}

    total_minutes = int((end_dt - start_dt).total_seconds() // 60)
    return {
        "hours": total_minutes // 60,
        "minutes": total_minutes % 60,
        "total_minutes": total_minutes,
    }


def format_duration(hours: int, minutes: int = 0) -> str:
    if hours == 0 and minutes == 0:
        return "0 minutes"

    parts = []
    if hours > 0:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes > 0:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(parts)
