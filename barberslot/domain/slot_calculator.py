"""
Core business logic for calculating bookable appointment slots.

This is the heart of the application - pure domain logic without any
external dependencies (no API calls, no database, no I/O).
"""

from datetime import date
from typing import AbstractSet, Iterable, List, Optional

from .exceptions import InvalidConfigurationError
from .models import WorkingHours, format_hhmm, parse_hhmm


def _validate_duration(slot_duration_minutes: int) -> None:
    if (
        isinstance(slot_duration_minutes, bool)
        or not isinstance(slot_duration_minutes, int)
        or slot_duration_minutes <= 0
    ):
        raise InvalidConfigurationError(
            f"Slot duration must be a positive number of minutes, got {slot_duration_minutes!r}"
        )


def slots_for_day(
    working_hours: WorkingHours,
    slot_duration_minutes: int,
    day: date,
    *,
    allow_overrun: bool = False,
) -> List[str]:
    """
    Generate the candidate slot start times for a calendar date.

    Slots start at the day's opening time and step by the slot duration.
    By default a slot must fit entirely before closing time
    (``start + duration <= end``). With ``allow_overrun`` a slot only has to
    start before closing time.

    Example:
    Hours: 09:00 - 10:00, duration 30
    Result: ["09:00", "09:30"]

    Raises:
        InvalidConfigurationError: If the slot duration is not positive
    """
    _validate_duration(slot_duration_minutes)

    hours = working_hours.for_date(day)
    if hours is None or hours.closed:
        return []

    end = hours.end_minutes
    slots: List[str] = []
    current = hours.start_minutes

    while current < end:
        if not allow_overrun and current + slot_duration_minutes > end:
            break
        slots.append(format_hhmm(current))
        current += slot_duration_minutes

    return slots


def available_slots(
    candidate_slots: Iterable[str],
    booked_times: AbstractSet[str],
    *,
    is_today: bool = False,
    now_time: Optional[str] = None,
) -> List[str]:
    """
    Filter candidate slots down to the ones a customer may still book.

    Removes slots that are already booked and, for today, slots starting at
    or before the current wall-clock time. Candidate order is preserved.

    Raises:
        InvalidConfigurationError: If ``is_today`` is set without ``now_time``
    """
    if is_today:
        if now_time is None:
            raise InvalidConfigurationError("now_time is required when filtering today's slots")
        try:
            now_minutes = parse_hhmm(now_time)
        except ValueError as exc:
            raise InvalidConfigurationError(str(exc)) from exc

    result: List[str] = []
    for slot in candidate_slots:
        if slot in booked_times:
            continue
        if is_today and parse_hhmm(slot) <= now_minutes:
            continue
        result.append(slot)

    return result


def is_slot_boundary(
    working_hours: WorkingHours,
    slot_duration_minutes: int,
    day: date,
    time: str,
    *,
    allow_overrun: bool = False,
) -> bool:
    """Check whether ``time`` is one of the generated slots for ``day``."""
    return time in slots_for_day(
        working_hours,
        slot_duration_minutes,
        day,
        allow_overrun=allow_overrun,
    )


class SlotCalculator:
    """
    Calculates bookable slots for one shop configuration.

    Algorithm:
    1. Resolve the weekday of the requested date to its working hours
    2. Step through the open span by the slot duration
    3. Drop booked slots and, for today, slots that already started
    """

    def __init__(
        self,
        working_hours: WorkingHours,
        slot_duration_minutes: int,
        allow_overrun: bool = False,
    ):
        _validate_duration(slot_duration_minutes)
        self.working_hours = working_hours
        self.slot_duration_minutes = slot_duration_minutes
        self.allow_overrun = allow_overrun

    def slots_for_day(self, day: date) -> List[str]:
        return slots_for_day(
            self.working_hours,
            self.slot_duration_minutes,
            day,
            allow_overrun=self.allow_overrun,
        )

    def is_slot_boundary(self, day: date, time: str) -> bool:
        return time in self.slots_for_day(day)

    def find_available_slots(
        self,
        day: date,
        booked_times: AbstractSet[str],
        *,
        today: Optional[date] = None,
        now_time: Optional[str] = None,
    ) -> List[str]:
        """
        Find all slots of ``day`` that are neither booked nor in the past.

        Args:
            day: Date to compute slots for
            booked_times: Times already held by non-cancelled appointments
            today: Current local date; slots are time-filtered when it equals ``day``
            now_time: Current local wall-clock time as ``"HH:MM"``

        Returns:
            Ordered list of bookable ``"HH:MM"`` start times
        """
        is_today = today is not None and day == today
        return available_slots(
            self.slots_for_day(day),
            booked_times,
            is_today=is_today,
            now_time=now_time,
        )
