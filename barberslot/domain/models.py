"""
Domain models for working hours, shop settings and appointments.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pendulum import DateTime

from .exceptions import InvalidConfigurationError, InvalidTransitionError

# Index matches date.weekday(): 0=Monday, 6=Sunday
WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

SLOT_DURATION_CHOICES = (15, 30, 45, 60)

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> int:
    """
    Convert a 24h ``"HH:MM"`` string into minutes since midnight.

    Raises:
        ValueError: If the value is not a well-formed ``"HH:MM"`` string
    """
    match = _HHMM_PATTERN.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Expected time as 'HH:MM', got {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_hhmm(minutes: int) -> str:
    """Format minutes since midnight as ``"HH:MM"``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_hhmm(value: Any) -> bool:
    """Check whether a value is a well-formed ``"HH:MM"`` string."""
    return isinstance(value, str) and _HHMM_PATTERN.match(value) is not None


def weekday_key(day: date) -> str:
    """Resolve a calendar date to its weekday key without touching locales."""
    return WEEKDAYS[day.weekday()]


@dataclass(frozen=True)
class DayHours:
    """
    Opening hours of a single weekday.

    Invariant: on open days ``start`` must not be after ``end``. A day whose
    start equals its end is accepted and simply offers no slots.
    """
    start: str
    end: str
    closed: bool = False

    def __post_init__(self):
        try:
            start_minutes = parse_hhmm(self.start)
            end_minutes = parse_hhmm(self.end)
        except ValueError as exc:
            raise InvalidConfigurationError(str(exc)) from exc

        if not isinstance(self.closed, bool):
            raise InvalidConfigurationError(f"'closed' must be a boolean, got {self.closed!r}")

        if not self.closed and start_minutes > end_minutes:
            raise InvalidConfigurationError(
                f"Opening time {self.start} must not be after closing time {self.end}"
            )

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end)

    @classmethod
    def from_mapping(cls, data: Any) -> "DayHours":
        """Build from a ``{"start", "end", "closed"}`` payload, rejecting missing fields."""
        if not isinstance(data, Mapping):
            raise InvalidConfigurationError(f"Day hours must be a mapping, got {data!r}")

        missing = [key for key in ("start", "end", "closed") if key not in data]
        if missing:
            raise InvalidConfigurationError(f"Day hours missing field(s): {', '.join(missing)}")

        return cls(start=data["start"], end=data["end"], closed=data["closed"])

    def to_mapping(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "closed": self.closed}


@dataclass(frozen=True)
class WorkingHours:
    """
    Weekly working hours keyed by weekday name.

    Invariant: all seven weekdays are present and no other keys exist.
    """
    days: Dict[str, DayHours]

    def __post_init__(self):
        keys = set(self.days)
        missing = [day for day in WEEKDAYS if day not in keys]
        unknown = sorted(keys - set(WEEKDAYS))

        if missing:
            raise InvalidConfigurationError(f"Working hours missing weekday(s): {', '.join(missing)}")
        if unknown:
            raise InvalidConfigurationError(f"Unknown weekday key(s): {', '.join(unknown)}")

        for key, hours in self.days.items():
            if not isinstance(hours, DayHours):
                raise InvalidConfigurationError(f"Entry for {key} must be DayHours, got {hours!r}")

    def for_date(self, day: date) -> Optional[DayHours]:
        """Get the hours that apply to a calendar date."""
        return self.days.get(weekday_key(day))

    def is_closed_on(self, day: date) -> bool:
        hours = self.for_date(day)
        return hours is None or hours.closed

    @classmethod
    def from_mapping(cls, data: Any) -> "WorkingHours":
        """
        Validate an untyped working-hours payload (e.g. JSON from the backend).

        Raises:
            InvalidConfigurationError: If the payload is not a complete,
                well-formed weekly schedule
        """
        if not isinstance(data, Mapping):
            raise InvalidConfigurationError(f"Working hours must be a mapping, got {type(data).__name__}")

        days = {
            str(key).lower(): DayHours.from_mapping(value)
            for key, value in data.items()
        }
        return cls(days=days)

    def to_mapping(self) -> Dict[str, Dict[str, Any]]:
        return {day: self.days[day].to_mapping() for day in WEEKDAYS}


DEFAULT_WORKING_HOURS = WorkingHours(
    days={
        "monday": DayHours("09:00", "18:00"),
        "tuesday": DayHours("09:00", "18:00"),
        "wednesday": DayHours("09:00", "18:00"),
        "thursday": DayHours("09:00", "18:00"),
        "friday": DayHours("09:00", "18:00"),
        "saturday": DayHours("09:00", "18:00"),
        "sunday": DayHours("09:00", "18:00", closed=True),
    }
)


class ShopStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class ShopSettings:
    """Shop-wide configuration driving slot generation."""
    working_hours: WorkingHours
    slot_duration_minutes: int = 30
    shop_status: ShopStatus = ShopStatus.OPEN
    shop_name: str = ""
    services: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        duration = self.slot_duration_minutes
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise InvalidConfigurationError(
                f"Slot duration must be a positive number of minutes, got {duration!r}"
            )

    @property
    def is_open(self) -> bool:
        return self.shop_status == ShopStatus.OPEN


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def occupies_slot(self) -> bool:
        """Cancelled appointments release their slot; every other status holds it."""
        return self is not AppointmentStatus.CANCELLED

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def ensure_transition(current: AppointmentStatus, new: AppointmentStatus) -> None:
    """
    Check a status change against the appointment lifecycle.

    Raises:
        InvalidTransitionError: If ``current`` may not move to ``new``
    """
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot change appointment status from {current.value} to {new.value}"
        )


@dataclass(frozen=True)
class BookingRequest:
    """Customer-supplied part of a booking."""
    customer_id: str
    service: str
    price: Optional[float] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Appointment:
    """
    A stored appointment.

    ``time`` is always a slot boundary in ``"HH:MM"`` form.
    """
    id: str
    shop_scope: str
    date: date
    time: str
    status: AppointmentStatus
    customer_id: str
    service: str
    price: Optional[float] = None
    notes: Optional[str] = None
    created_at: Optional[DateTime] = None

    @property
    def occupies_slot(self) -> bool:
        return self.status.occupies_slot

    def format_display(self) -> str:
        """
        Format the appointment for display.
        Format: YYYY-MM-DD HH:MM | service (status)
        """
        return f"{self.date.isoformat()} {self.time} | {self.service} ({self.status.value})"
