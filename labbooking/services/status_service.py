"""
Booking status normalization.

Status values reach the engine as numeric codes, numeric strings, free-form
labels or auxiliary hint fields (isPending, statusCategory). Everything is
resolved to a single BookingState here so the rest of the engine compares
canonical values only.
"""
import math
import re
from enum import Enum, IntEnum
from typing import Any, Mapping, Optional, Union

from labbooking.core.config import settings


class BookingState(str, Enum):
    REQUESTED = "requested"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_USE = "in_use"
    COMPLETED = "completed"
    COLLECTED = "collected"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class BookingStatusCode(IntEnum):
    """Canonical numeric table of the reservation contract."""
    PENDING = 0
    CONFIRMED = 1
    IN_USE = 2
    COMPLETED = 3
    COLLECTED = 4
    CANCELLED = 5


class StatusScheme(str, Enum):
    CURRENT = "current"
    # Older five-state table without a separate COMPLETED state
    LEGACY = "legacy"


# legacy code -> canonical code
LEGACY_TO_CURRENT = {
    0: BookingStatusCode.PENDING,
    1: BookingStatusCode.CONFIRMED,
    2: BookingStatusCode.IN_USE,
    3: BookingStatusCode.COLLECTED,
    4: BookingStatusCode.CANCELLED,
}

# COMPLETED has no legacy code
_CURRENT_TO_LEGACY = {int(current): legacy for legacy, current in LEGACY_TO_CURRENT.items()}

_CODE_TO_STATE = {code: BookingState[code.name] for code in BookingStatusCode}

_STATE_TO_CODE = {state: code for code, state in _CODE_TO_STATE.items()}
_STATE_TO_CODE[BookingState.REQUESTED] = BookingStatusCode.PENDING

_SYNONYMS = {
    "requested": BookingState.REQUESTED,
    "requesting": BookingState.REQUESTED,
    "request_submitted": BookingState.REQUESTED,
    "pending": BookingState.PENDING,
    "confirmed": BookingState.CONFIRMED,
    "booked": BookingState.CONFIRMED,
    "in_use": BookingState.IN_USE,
    "in use": BookingState.IN_USE,
    "completed": BookingState.COMPLETED,
    "collected": BookingState.COLLECTED,
    "cancelled": BookingState.CANCELLED,
    "canceled": BookingState.CANCELLED,
}

_STATUS_TEXT = {
    BookingState.REQUESTED: "Pending",
    BookingState.PENDING: "Pending",
    BookingState.CONFIRMED: "Confirmed",
    BookingState.IN_USE: "In Use",
    BookingState.COMPLETED: "Completed",
    BookingState.COLLECTED: "Collected",
    BookingState.CANCELLED: "Cancelled",
    BookingState.UNKNOWN: "Unknown",
}

_INTEGER_RE = re.compile(r"^-?\d+$")

# Sentinel for "not a number at all" as opposed to "a number outside the table"
_NOT_NUMERIC = object()


def _field(record: Any, *names: str) -> Any:
    if record is None:
        return None
    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return None


def _to_numeric(status: Any) -> Any:
    if isinstance(status, bool):
        return _NOT_NUMERIC
    if isinstance(status, int):
        return status
    if isinstance(status, float):
        if math.isfinite(status) and status.is_integer():
            return int(status)
        return None if math.isfinite(status) else _NOT_NUMERIC
    if isinstance(status, str):
        trimmed = status.strip()
        if _INTEGER_RE.match(trimmed):
            return int(trimmed)
    return _NOT_NUMERIC


def _resolve_scheme(scheme: Union[StatusScheme, str, None]) -> StatusScheme:
    return StatusScheme(scheme or settings.STATUS_CODE_SCHEME)


def translate_legacy_status_code(code: Any) -> Optional[int]:
    """Maps a code from the legacy 0-4 table to the canonical 0-5 table (None if unknown)."""
    numeric = _to_numeric(code)
    if numeric is _NOT_NUMERIC or numeric is None:
        return None
    translated = LEGACY_TO_CURRENT.get(numeric)
    return int(translated) if translated is not None else None


def _state_from_code(code: Optional[int], scheme: StatusScheme) -> BookingState:
    if code is None:
        return BookingState.UNKNOWN
    if scheme is StatusScheme.LEGACY:
        code = translate_legacy_status_code(code)
        if code is None:
            return BookingState.UNKNOWN
    try:
        return _CODE_TO_STATE[BookingStatusCode(code)]
    except ValueError:
        return BookingState.UNKNOWN


def normalize_status_state(record: Any, scheme: Union[StatusScheme, str, None] = None) -> BookingState:
    """
    Resolves a booking record (mapping or object) to its canonical state.

    Order: numeric status via the code table, then the label synonym table,
    then the isPending / statusCategory hints. Anything else is UNKNOWN.
    A bare status value (int, str, BookingState) is accepted as well.
    """
    if isinstance(record, BookingState):
        return record

    if isinstance(record, (int, float, str)) and not isinstance(record, bool):
        status, is_pending, category = record, None, None
    else:
        status = _field(record, "status", "raw_status")
        is_pending = _field(record, "isPending", "is_pending")
        category = _field(record, "statusCategory", "status_category")

    numeric = _to_numeric(status)
    if numeric is not _NOT_NUMERIC:
        return _state_from_code(numeric, _resolve_scheme(scheme))

    semantic = status.strip().lower() if isinstance(status, str) else ""
    if semantic in _SYNONYMS:
        return _SYNONYMS[semantic]

    category = category.strip().lower() if isinstance(category, str) else ""
    if is_pending is True or category == "pending":
        return BookingState.PENDING
    if category in ("cancelled", "canceled"):
        return BookingState.CANCELLED

    return BookingState.UNKNOWN


def normalize_status_code(record: Any, scheme: Union[StatusScheme, str, None] = None) -> Optional[int]:
    """Canonical numeric code for a record, or None when the status is unknown."""
    state = normalize_status_state(record, scheme)
    code = _STATE_TO_CODE.get(state)
    return int(code) if code is not None else None


def encode_status_code(state: BookingState, scheme: Union[StatusScheme, str, None] = None) -> Optional[int]:
    """Numeric code to send to the remote system for a state, in its configured table."""
    code = _STATE_TO_CODE.get(state)
    if code is None:
        return None
    if _resolve_scheme(scheme) is StatusScheme.LEGACY:
        return _CURRENT_TO_LEGACY.get(code)
    return int(code)


def _state_of(booking: Any) -> BookingState:
    # Ingested bookings carry a resolved state already
    state = _field(booking, "state")
    if isinstance(state, BookingState):
        return state
    return normalize_status_state(booking)


def is_cancelled(booking: Any) -> bool:
    return _state_of(booking) is BookingState.CANCELLED


def is_pending(booking: Any) -> bool:
    return _state_of(booking) in (BookingState.PENDING, BookingState.REQUESTED)


def is_confirmed(booking: Any) -> bool:
    return _state_of(booking) is BookingState.CONFIRMED


def is_in_use(booking: Any) -> bool:
    return _state_of(booking) is BookingState.IN_USE


def is_collected(booking: Any) -> bool:
    return _state_of(booking) is BookingState.COLLECTED


def status_text(booking_or_state: Any) -> str:
    """Human-readable label for UI display."""
    state = booking_or_state if isinstance(booking_or_state, BookingState) else _state_of(booking_or_state)
    return _STATUS_TEXT[state]
