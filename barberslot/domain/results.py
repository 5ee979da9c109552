"""
Typed outcomes returned by the service layer.

I/O-facing operations never raise domain errors to their callers; they hand
back an ``Outcome`` so the presentation layer can branch on ``kind``.
"""

from dataclasses import dataclass
from typing import Generic, Optional, Tuple, TypeVar

from .exceptions import BarberSlotError, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Either a value or a domain error.

    ``alternatives`` is filled after a booking conflict with freshly
    re-fetched free slots for the same date.
    """
    value: Optional[T] = None
    error: Optional[BarberSlotError] = None
    alternatives: Tuple[str, ...] = ()

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BarberSlotError, alternatives: Tuple[str, ...] = ()) -> "Outcome[T]":
        return cls(error=error, alternatives=tuple(alternatives))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value
