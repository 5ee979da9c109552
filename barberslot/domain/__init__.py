"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    DayHours,
    ShopSettings,
    ShopStatus,
    WorkingHours,
)
from .results import Outcome
from .slot_calculator import SlotCalculator, available_slots, slots_for_day

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "BookingRequest",
    "DayHours",
    "Outcome",
    "ShopSettings",
    "ShopStatus",
    "SlotCalculator",
    "WorkingHours",
    "available_slots",
    "slots_for_day",
]
