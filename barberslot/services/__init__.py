"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .booking import AppointmentStoreProtocol, BookingService, ShopSettingsProviderProtocol
from .notifier import AvailabilityChanged, AvailabilityNotifier

__all__ = [
    "AppointmentStoreProtocol",
    "AvailabilityChanged",
    "AvailabilityNotifier",
    "BookingService",
    "ShopSettingsProviderProtocol",
]
