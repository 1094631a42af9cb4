from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from labbooking.core.config import settings
from labbooking.core.logger import logger
from labbooking.services.status_service import BookingState, normalize_status_state
from labbooking.utils.time_helpers import UTC, parse_epoch, parse_hhmm, parse_instant, WEEKDAY_NAMES

# --- Booking ---

class Booking(BaseModel):
    """
    A single reservation of a lab, normalized at the ingestion boundary.

    `status` keeps the raw value as received; `state` is the canonical
    lifecycle state resolved once when the record is validated.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    reservation_key: Optional[str] = Field(default=None, alias="reservationKey")
    lab_id: Optional[str] = Field(default=None, alias="labId")
    lab_name: Optional[str] = Field(default=None, alias="labName")

    # Epoch seconds
    start: Optional[int] = None
    end: Optional[int] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")

    date: Optional[str] = None
    date_string: Optional[str] = Field(default=None, alias="dateString")

    status: Any = None
    is_pending: Optional[bool] = Field(default=None, alias="isPending")
    status_category: Optional[str] = Field(default=None, alias="statusCategory")
    cancelled: bool = False

    user_account: Optional[str] = Field(default=None, alias="userAccount")
    purpose: Optional[str] = None

    state: BookingState = BookingState.UNKNOWN

    @field_validator("id", "reservation_key", "lab_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(int(value))
        return str(value) if str(value).strip() else None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_epoch(cls, value):
        if value is None or value == "":
            return None
        epoch = parse_epoch(value)
        if epoch is None:
            logger.warning(f"⚠️ Unparseable booking timestamp {value!r}, ignoring")
        return epoch

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _coerce_instant(cls, value):
        if value is None or value == "":
            return None
        instant = parse_instant(value)
        if instant is None:
            logger.warning(f"⚠️ Unparseable booking date {value!r}, ignoring")
        return instant

    @model_validator(mode="after")
    def _normalize(self):
        if self.id is None and self.reservation_key is None:
            raise ValueError("Booking requires an id or a reservationKey")
        if self.id is None:
            self.id = self.reservation_key
        if self.reservation_key is None:
            self.reservation_key = self.id

        # Keep epoch and datetime views of the interval in step
        if self.start is None and self.start_date is not None:
            self.start = int(self.start_date.timestamp())
        if self.end is None and self.end_date is not None:
            self.end = int(self.end_date.timestamp())
        if self.start_date is None and self.start is not None:
            self.start_date = datetime.fromtimestamp(self.start, UTC)
        if self.end_date is None and self.end is not None:
            self.end_date = datetime.fromtimestamp(self.end, UTC)

        # Explicit date wins over dateString, which wins over the derived one
        if not self.date:
            if self.date_string:
                self.date = self.date_string
            elif self.start is not None:
                self.date = datetime.fromtimestamp(self.start, UTC).strftime("%Y-%m-%d")

        resolved = normalize_status_state(self)
        if resolved is not BookingState.UNKNOWN or self.state is BookingState.UNKNOWN:
            self.state = resolved
        if self.cancelled:
            self.state = BookingState.CANCELLED
        return self


def bookings_from_records(records: Iterable[Any]) -> List[Booking]:
    """Converts raw records into Bookings, skipping (and logging) malformed ones."""
    bookings = []
    for record in records or []:
        if isinstance(record, Booking):
            bookings.append(record)
            continue
        try:
            bookings.append(Booking.model_validate(record))
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping malformed booking record {record!r}: {e.error_count()} errors")
    return bookings

# --- Lab schedule ---

class AvailableHours(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value):
        parse_hhmm(value)
        return value.strip()

    @property
    def open_minutes(self) -> int:
        return parse_hhmm(self.start)

    @property
    def close_minutes(self) -> int:
        return parse_hhmm(self.end)


class MaintenanceWindow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_unix: int = Field(alias="startUnix")
    end_unix: int = Field(alias="endUnix")
    reason: Optional[str] = None

    @field_validator("start_unix", "end_unix", mode="before")
    @classmethod
    def _coerce_epoch(cls, value):
        epoch = parse_epoch(value)
        if epoch is None:
            raise ValueError(f"Invalid unix timestamp {value!r}")
        return epoch


class LabSchedule(BaseModel):
    """Availability metadata of a bookable lab. Missing fields mean no restriction."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lab_id: Optional[str] = Field(default=None, alias="labId")
    available_days: List[str] = Field(default_factory=list, alias="availableDays")
    available_hours: Optional[AvailableHours] = Field(default=None, alias="availableHours")
    unavailable_windows: List[MaintenanceWindow] = Field(default_factory=list, alias="unavailableWindows")
    interval: int = Field(default_factory=lambda: settings.DEFAULT_SLOT_INTERVAL_MINUTES)
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)

    @field_validator("lab_id", mode="before")
    @classmethod
    def _coerce_lab_id(cls, value):
        return None if value is None else str(value)

    @field_validator("available_days", mode="before")
    @classmethod
    def _normalize_days(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        days = [str(day).strip().upper() for day in value if str(day).strip()]
        unknown = [day for day in days if day not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday names: {unknown}")
        return days

    @field_validator("available_hours", mode="before")
    @classmethod
    def _empty_hours(cls, value):
        if not value:
            return None
        return value

    @field_validator("interval", mode="before")
    @classmethod
    def _check_interval(cls, value):
        if value is None or value == "":
            return settings.DEFAULT_SLOT_INTERVAL_MINUTES
        interval = int(value)
        if interval <= 0:
            raise ValueError("interval must be a positive number of minutes")
        return interval

    @field_validator("timezone", mode="before")
    @classmethod
    def _default_timezone(cls, value):
        return value or settings.DEFAULT_TIMEZONE

# --- Derived values ---

class BlockReason(str, Enum):
    PAST = "past"
    SCHEDULE = "schedule"
    MAINTENANCE = "maintenance"
    CONFLICT = "conflict"


class TimeSlot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    value: str
    label: str
    start: int
    end: int
    disabled: bool
    # Mirrors `disabled`; `reason` tells schedule blocks and real reservations apart
    is_reserved: bool = Field(alias="isReserved")
    reason: Optional[BlockReason] = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(alias="isValid")
    errors: List[str] = Field(default_factory=list)


class LifecycleStatus(str, Enum):
    CANCELLED = "cancelled"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class DisplayContext(str, Enum):
    UPCOMING_QUEUE = "lab-reservation"
    USER_DASHBOARD = "user-dashboard"
    PROVIDER_DASHBOARD = "provider-dashboard"
    DEFAULT = "default"

# --- Requests ---

class BookingSubmission(BaseModel):
    """Raw booking request; fields stay optional so validation can report every gap."""
    model_config = ConfigDict(populate_by_name=True)

    lab_id: Optional[Union[str, int]] = Field(default=None, alias="labId")
    start_date: Optional[Union[datetime, int, float, str]] = Field(default=None, alias="startDate")
    end_date: Optional[Union[datetime, int, float, str]] = Field(default=None, alias="endDate")
    user_account: Optional[str] = Field(default=None, alias="userAccount")
    purpose: Optional[str] = None

# --- Responses ---

class DayAvailability(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lab_id: str = Field(alias="labId")
    day: str
    fully_unavailable: bool = Field(alias="fullyUnavailable")
    slots: List[TimeSlot] = Field(default_factory=list)


class BookingOverview(BaseModel):
    """Everything a dashboard card needs to render one reservation."""
    model_config = ConfigDict(populate_by_name=True)

    booking: Booking
    status_text: str = Field(alias="statusText")
    lifecycle: LifecycleStatus
    duration: str
    can_cancel: bool = Field(alias="canCancel")
    can_modify: bool = Field(alias="canModify")
    can_access_now: bool = Field(alias="canAccessNow")
