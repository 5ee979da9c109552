"""
Domain-specific exception hierarchy for the barber shop booking core.

Every error carries an ``ErrorKind`` so callers can branch on the kind of
failure without inspecting messages, and a ``retryable`` flag telling the
user interface whether offering "try again" makes sense.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Stable identifiers for the failure categories surfaced to callers."""

    INVALID_CONFIGURATION = "invalid_configuration"
    INVALID_SLOT = "invalid_slot"
    SHOP_CLOSED = "shop_closed"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


class BarberSlotError(Exception):
    """Base class for all application-level errors."""

    kind: ErrorKind = ErrorKind.INVALID_CONFIGURATION
    retryable: bool = False


class InvalidConfigurationError(BarberSlotError):
    """Raised when working hours or slot duration are malformed."""

    kind = ErrorKind.INVALID_CONFIGURATION


class InvalidSlotError(BarberSlotError):
    """Raised when a requested date/time is not a bookable slot."""

    kind = ErrorKind.INVALID_SLOT


class InvalidBookingError(InvalidSlotError):
    """Raised when the booking payload itself is unacceptable (e.g. unknown service)."""


class ShopClosedError(BarberSlotError):
    """Raised when the shop currently does not accept bookings."""

    kind = ErrorKind.SHOP_CLOSED


class SlotConflictError(BarberSlotError):
    """Raised when the slot was taken by another booking."""

    kind = ErrorKind.CONFLICT


class StoreError(BarberSlotError):
    """Raised when the appointment store or settings backend cannot be reached."""

    kind = ErrorKind.TIMEOUT
    retryable = True


class StoreTimeoutError(StoreError):
    """Raised when the store did not answer within the configured timeout."""


class StoreUnavailableError(StoreError):
    """Raised on transient transport failures talking to the store."""


class AppointmentNotFoundError(BarberSlotError):
    """Raised when a status update targets an appointment that does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidTransitionError(BarberSlotError):
    """Raised when a status change is not allowed by the appointment lifecycle."""

    kind = ErrorKind.INVALID_TRANSITION


class StoreRejectedError(BarberSlotError):
    """Raised when the backend refuses a request that retrying will not fix (bad key, bad payload)."""

    kind = ErrorKind.INVALID_CONFIGURATION
