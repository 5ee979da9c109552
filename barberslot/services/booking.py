"""
Application service for browsing availability and booking appointments.

The service coordinates the shop settings provider and the appointment store
and delegates slot generation and filtering to the domain-level
``SlotCalculator``. Both collaborators are described by protocols so the
in-memory, SQL and REST adapters (or test stubs) can be plugged in.

Every store or provider call is bounded by a timeout. Domain errors are
returned as ``Outcome`` failures instead of being raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date
from typing import Awaitable, Callable, List, Optional, Protocol, Set, Tuple, TypeVar, Union

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    BarberSlotError,
    InvalidBookingError,
    InvalidConfigurationError,
    InvalidSlotError,
    InvalidTransitionError,
    ShopClosedError,
    SlotConflictError,
    StoreError,
    StoreTimeoutError,
)
from ..domain.models import (
    WEEKDAYS,
    Appointment,
    AppointmentStatus,
    BookingRequest,
    ShopSettings,
    ShopStatus,
    WorkingHours,
    is_hhmm,
    parse_hhmm,
)
from ..domain.results import Outcome
from ..domain.slot_calculator import SlotCalculator
from .notifier import AvailabilityNotifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppointmentStoreProtocol(Protocol):
    """Protocol describing the appointment store behaviour needed by the service."""

    async def read_booked_times(self, shop_scope: str, day: date) -> Set[str]:
        """Return the times held by non-cancelled appointments on ``day``."""

    async def insert_appointment_if_available(
        self,
        shop_scope: str,
        day: date,
        time: str,
        request: BookingRequest,
    ) -> Appointment:
        """Insert a pending appointment; raise ``SlotConflictError`` if the slot is held."""

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
    ) -> Appointment:
        """Apply a lifecycle transition atomically."""

    async def get_appointment(self, appointment_id: str) -> Appointment:
        """Return one appointment or raise ``AppointmentNotFoundError``."""

    async def list_appointments(
        self,
        shop_scope: str,
        *,
        day: Optional[date] = None,
        customer_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Return appointments ordered by date and time."""


class ShopSettingsProviderProtocol(Protocol):
    """Protocol describing where shop settings come from."""

    async def read_shop_settings(self, shop_scope: str) -> ShopSettings:
        """Return the current settings of the shop."""

    async def update_shop_settings(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        """Persist new settings and return them as stored."""


class BookingService:
    """
    Orchestrates availability lookups and conflict-checked bookings.

    Settings are read from the provider on every call rather than cached, so
    changes made in the admin panel apply to the next request.
    """

    def __init__(
        self,
        store: AppointmentStoreProtocol,
        settings_provider: ShopSettingsProviderProtocol,
        *,
        shop_scope: str = "main",
        timezone: str = "Europe/Istanbul",
        booking_window_days: int = 30,
        store_timeout_seconds: float = 10.0,
        allow_overrun: bool = False,
        notifier: Optional[AvailabilityNotifier] = None,
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self._store = store
        self._settings_provider = settings_provider
        self._shop_scope = shop_scope
        self._timezone = timezone
        self._booking_window_days = booking_window_days
        self._store_timeout_seconds = store_timeout_seconds
        self._allow_overrun = allow_overrun
        self._notifier = notifier or AvailabilityNotifier()
        self._clock = clock or (lambda: pendulum.now(timezone))

    @property
    def shop_scope(self) -> str:
        return self._shop_scope

    @property
    def notifier(self) -> AvailabilityNotifier:
        return self._notifier

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_settings(self) -> Outcome[ShopSettings]:
        try:
            return Outcome.success(await self._fetch_settings())
        except BarberSlotError as exc:
            logger.warning("Could not read shop settings for %s: %s", self._shop_scope, exc)
            return Outcome.failure(exc)

    async def get_availability(self, day: date) -> Outcome[List[str]]:
        """
        Compute the bookable slots of ``day``.

        Dates in the past or beyond the booking window have no slots.
        """
        try:
            return Outcome.success(await self._availability(day))
        except BarberSlotError as exc:
            logger.warning("Availability lookup for %s failed: %s", day.isoformat(), exc)
            return Outcome.failure(exc)

    async def bookable_dates(self) -> Outcome[List[date]]:
        """List every date from today through the booking window that is not a closed day."""
        try:
            settings = await self._fetch_settings()
        except BarberSlotError as exc:
            return Outcome.failure(exc)

        if not settings.is_open:
            return Outcome.failure(ShopClosedError("The shop is currently not accepting bookings"))

        today = self._now().date()
        candidates = (today.add(days=offset) for offset in range(self._booking_window_days + 1))
        return Outcome.success([day for day in candidates if self.is_date_bookable(day, settings)])

    def is_date_bookable(self, day: date, settings: ShopSettings) -> bool:
        """A date is bookable when it lies inside the window and the shop works that weekday."""
        return self._within_window(day) and not settings.working_hours.is_closed_on(day)

    async def list_appointments(self, day: Optional[date] = None) -> Outcome[List[Appointment]]:
        """Shop-side listing ordered by date and time."""
        try:
            appointments = await self._call(
                self._store.list_appointments(self._shop_scope, day=day)
            )
        except BarberSlotError as exc:
            return Outcome.failure(exc)
        return Outcome.success(appointments)

    async def customer_appointments(self, customer_id: str) -> Outcome[List[Appointment]]:
        """A customer's appointments, newest first."""
        try:
            appointments = await self._call(
                self._store.list_appointments(self._shop_scope, customer_id=customer_id)
            )
        except BarberSlotError as exc:
            return Outcome.failure(exc)
        return Outcome.success(list(reversed(appointments)))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def try_book(
        self,
        day: date,
        time: str,
        request: BookingRequest,
    ) -> Outcome[Appointment]:
        """
        Book ``time`` on ``day`` unless another booking holds it.

        The slot is re-checked against the store right before the insert, and
        the store itself rejects a second active appointment for the same
        slot. A conflict is reported together with freshly fetched
        alternatives; it is never retried automatically.
        """
        try:
            appointment = await self._book(day, time, request)
        except SlotConflictError as exc:
            logger.info("Slot %s %s is no longer available: %s", day.isoformat(), time, exc)
            alternatives = await self._refetch_alternatives(day)
            return Outcome.failure(exc, alternatives)
        except StoreError as exc:
            logger.warning("Booking %s %s failed with a transient error: %s", day.isoformat(), time, exc)
            return Outcome.failure(exc)
        except BarberSlotError as exc:
            logger.info("Booking %s %s rejected: %s", day.isoformat(), time, exc)
            return Outcome.failure(exc)

        logger.info(
            "Booked %s %s for customer %s (appointment %s)",
            day.isoformat(),
            time,
            request.customer_id,
            appointment.id,
        )
        self._notifier.publish(self._shop_scope, day)
        return Outcome.success(appointment)

    async def update_status(
        self,
        appointment_id: str,
        new_status: Union[AppointmentStatus, str],
    ) -> Outcome[Appointment]:
        """Move an appointment through its lifecycle (shop-owner action)."""
        try:
            status = AppointmentStatus(new_status)
        except ValueError:
            return Outcome.failure(InvalidTransitionError(f"Unknown appointment status: {new_status!r}"))

        try:
            appointment = await self._call(
                self._store.update_appointment_status(appointment_id, status)
            )
        except BarberSlotError as exc:
            logger.info("Status update of %s to %s rejected: %s", appointment_id, status.value, exc)
            return Outcome.failure(exc)

        logger.info("Appointment %s is now %s", appointment_id, status.value)
        self._notifier.publish(appointment.shop_scope, appointment.date)
        return Outcome.success(appointment)

    # ------------------------------------------------------------------
    # Shop settings (owner actions)
    # ------------------------------------------------------------------

    async def set_day_hours(
        self,
        weekday: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        closed: bool = False,
    ) -> Outcome[ShopSettings]:
        """
        Change the opening hours of one weekday.

        ``start`` or ``end`` left as ``None`` keep their current value.
        """
        key = weekday.lower()

        def change(settings: ShopSettings) -> ShopSettings:
            if key not in WEEKDAYS:
                raise InvalidConfigurationError(
                    f"Unknown weekday {weekday!r}. Choose one of: {', '.join(WEEKDAYS)}"
                )
            hours = settings.working_hours.to_mapping()
            current = hours[key]
            hours[key] = {
                "start": start or current["start"],
                "end": end or current["end"],
                "closed": closed,
            }
            return replace(settings, working_hours=WorkingHours.from_mapping(hours))

        return await self._update_settings(change, f"{key} hours")

    async def set_shop_status(self, status: Union[ShopStatus, str]) -> Outcome[ShopSettings]:
        """Open or close the shop for new bookings."""
        try:
            new_status = ShopStatus(status)
        except ValueError:
            return Outcome.failure(InvalidConfigurationError(f"Unknown shop status: {status!r}"))

        return await self._update_settings(
            lambda settings: replace(settings, shop_status=new_status),
            "shop status",
        )

    async def set_slot_duration(self, minutes: int) -> Outcome[ShopSettings]:
        """Change the appointment length, which is also the slot grid step."""
        return await self._update_settings(
            lambda settings: replace(settings, slot_duration_minutes=minutes),
            "appointment duration",
        )

    async def set_service(self, name: str, price: float) -> Outcome[ShopSettings]:
        """Add a service or change its listed price."""
        name = name.strip()

        def change(settings: ShopSettings) -> ShopSettings:
            if not name:
                raise InvalidConfigurationError("A service needs a name")
            if price < 0:
                raise InvalidConfigurationError(f"Price of {name!r} must not be negative")
            return replace(settings, services={**settings.services, name: float(price)})

        return await self._update_settings(change, f"service {name!r}")

    async def remove_service(self, name: str) -> Outcome[ShopSettings]:
        def change(settings: ShopSettings) -> ShopSettings:
            if name not in settings.services:
                raise InvalidConfigurationError(f"Service {name!r} is not offered")
            services = dict(settings.services)
            del services[name]
            return replace(settings, services=services)

        return await self._update_settings(change, f"service {name!r}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> DateTime:
        return self._clock().in_timezone(self._timezone)

    def _within_window(self, day: date) -> bool:
        today = self._now().date()
        return today <= day <= today.add(days=self._booking_window_days)

    def _calculator(self, settings: ShopSettings) -> SlotCalculator:
        return SlotCalculator(
            working_hours=settings.working_hours,
            slot_duration_minutes=settings.slot_duration_minutes,
            allow_overrun=self._allow_overrun,
        )

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreTimeoutError(
                f"Store did not respond within {self._store_timeout_seconds:g}s"
            ) from exc

    async def _fetch_settings(self) -> ShopSettings:
        return await self._call(self._settings_provider.read_shop_settings(self._shop_scope))

    async def _update_settings(
        self,
        change: Callable[[ShopSettings], ShopSettings],
        description: str,
    ) -> Outcome[ShopSettings]:
        """Read the current settings, apply ``change`` and write the result back."""
        try:
            current = await self._fetch_settings()
            updated = change(current)
            saved = await self._call(
                self._settings_provider.update_shop_settings(self._shop_scope, updated)
            )
        except BarberSlotError as exc:
            logger.warning("Updating %s of %s failed: %s", description, self._shop_scope, exc)
            return Outcome.failure(exc)

        logger.info("Updated %s of %s", description, self._shop_scope)
        return Outcome.success(saved)

    async def _availability(self, day: date) -> List[str]:
        if not self._within_window(day):
            return []

        settings = await self._fetch_settings()
        if not settings.is_open:
            raise ShopClosedError("The shop is currently not accepting bookings")

        booked = await self._call(self._store.read_booked_times(self._shop_scope, day))
        now = self._now()

        return self._calculator(settings).find_available_slots(
            day,
            booked,
            today=now.date(),
            now_time=now.format("HH:mm"),
        )

    async def _book(self, day: date, time: str, request: BookingRequest) -> Appointment:
        if not is_hhmm(time):
            raise InvalidSlotError(f"Time must be given as 'HH:MM', got {time!r}")

        now = self._now()
        today = now.date()
        if day < today:
            raise InvalidSlotError(f"Cannot book {day.isoformat()}: the date is in the past")
        if not self._within_window(day):
            raise InvalidSlotError(
                f"Cannot book {day.isoformat()}: bookings are accepted up to "
                f"{self._booking_window_days} days ahead"
            )

        settings = await self._fetch_settings()
        if not settings.is_open:
            raise ShopClosedError("The shop is currently not accepting bookings")

        request = self._resolve_request(request, settings)

        if not self._calculator(settings).is_slot_boundary(day, time):
            raise InvalidSlotError(f"{time} is not a bookable slot on {day.isoformat()}")
        if day == today and parse_hhmm(time) <= parse_hhmm(now.format("HH:mm")):
            raise InvalidSlotError(f"{time} has already started today")

        booked = await self._call(self._store.read_booked_times(self._shop_scope, day))
        if time in booked:
            raise SlotConflictError(f"{day.isoformat()} {time} is already booked")

        return await self._call(
            self._store.insert_appointment_if_available(self._shop_scope, day, time, request)
        )

    @staticmethod
    def _resolve_request(request: BookingRequest, settings: ShopSettings) -> BookingRequest:
        if not request.customer_id:
            raise InvalidBookingError("A customer is required to book an appointment")
        if not request.service:
            raise InvalidBookingError("A service is required to book an appointment")

        if settings.services:
            if request.service not in settings.services:
                offered = ", ".join(sorted(settings.services))
                raise InvalidBookingError(
                    f"Service {request.service!r} is not offered. Choose one of: {offered}"
                )
            if request.price is None:
                request = replace(request, price=settings.services[request.service])

        return request

    async def _refetch_alternatives(self, day: date) -> Tuple[str, ...]:
        outcome = await self.get_availability(day)
        if not outcome.ok:
            return ()
        return tuple(outcome.value)
