"""
In-memory appointment store and static settings provider.

Used by the test-suite and by the CLI mock mode. The store keeps the
uniqueness invariant of a real backend: at most one non-cancelled appointment
per ``(shop_scope, date, time)``. Optional latency simulates network round
trips so races between concurrent bookings can be reproduced.
"""

import asyncio
import json
import logging
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

import pendulum

from ..domain.exceptions import AppointmentNotFoundError, SlotConflictError
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    ShopSettings,
    ensure_transition,
)

logger = logging.getLogger(__name__)

DEFAULT_SEED_FILE = Path(__file__).parent / "mock_appointments.json"


class InMemoryAppointmentStore:
    """
    Appointment store kept in a dictionary.

    Check-and-insert and status updates run under one ``asyncio.Lock`` so
    concurrent coroutines cannot both claim the same slot.
    """

    def __init__(
        self,
        appointments: Optional[Iterable[Appointment]] = None,
        latency: float = 0.0,
    ):
        """
        Initialize the store.

        Args:
            appointments: Optional appointments to start with
            latency: Seconds to sleep before each operation (simulated I/O)
        """
        self.latency = latency
        self._lock = asyncio.Lock()
        self._appointments: Dict[str, Appointment] = {}

        for appointment in appointments or []:
            self._appointments[appointment.id] = appointment

    @classmethod
    def from_json(
        cls,
        data_file: Path = DEFAULT_SEED_FILE,
        shop_scope: str = "main",
        today: Optional[date] = None,
    ) -> "InMemoryAppointmentStore":
        """
        Load seed appointments from a JSON file.

        Entries carry ``day_offset`` relative to ``today`` instead of fixed
        dates so the demo data always lies inside the booking window.
        """
        today = today or pendulum.today().date()
        appointments: List[Appointment] = []

        if data_file.exists():
            with open(data_file, "r", encoding="utf-8") as f:
                entries = json.load(f)
        else:
            entries = []

        for entry in entries:
            try:
                appointments.append(
                    Appointment(
                        id=entry.get("id") or uuid4().hex,
                        shop_scope=entry.get("shop_scope", shop_scope),
                        date=today + timedelta(days=int(entry["day_offset"])),
                        time=entry["time"],
                        status=AppointmentStatus(entry.get("status", "pending")),
                        customer_id=entry["customer_id"],
                        service=entry["service"],
                        price=entry.get("price"),
                        notes=entry.get("notes"),
                    )
                )
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping invalid seed appointment %r: %s", entry, exc)

        return cls(appointments=appointments)

    async def _simulate_io(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    def _active_times(self, shop_scope: str, day: date) -> Set[str]:
        return {
            appointment.time
            for appointment in self._appointments.values()
            if appointment.shop_scope == shop_scope
            and appointment.date == day
            and appointment.occupies_slot
        }

    async def read_booked_times(self, shop_scope: str, day: date) -> Set[str]:
        await self._simulate_io()
        return self._active_times(shop_scope, day)

    async def insert_appointment_if_available(
        self,
        shop_scope: str,
        day: date,
        time: str,
        request: BookingRequest,
    ) -> Appointment:
        await self._simulate_io()

        async with self._lock:
            if time in self._active_times(shop_scope, day):
                raise SlotConflictError(f"{day.isoformat()} {time} is already booked")

            appointment = Appointment(
                id=uuid4().hex,
                shop_scope=shop_scope,
                date=day,
                time=time,
                status=AppointmentStatus.PENDING,
                customer_id=request.customer_id,
                service=request.service,
                price=request.price,
                notes=request.notes,
                created_at=pendulum.now("UTC"),
            )
            self._appointments[appointment.id] = appointment

        return appointment

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
    ) -> Appointment:
        await self._simulate_io()

        async with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} does not exist")

            ensure_transition(current.status, new_status)
            updated = replace(current, status=new_status)
            self._appointments[appointment_id] = updated

        return updated

    async def get_appointment(self, appointment_id: str) -> Appointment:
        await self._simulate_io()
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} does not exist")
        return appointment

    async def list_appointments(
        self,
        shop_scope: str,
        *,
        day: Optional[date] = None,
        customer_id: Optional[str] = None,
    ) -> List[Appointment]:
        await self._simulate_io()
        matches = [
            appointment
            for appointment in self._appointments.values()
            if appointment.shop_scope == shop_scope
            and (day is None or appointment.date == day)
            and (customer_id is None or appointment.customer_id == customer_id)
        ]
        return sorted(matches, key=_sort_key)


def _sort_key(appointment: Appointment) -> Tuple[date, str]:
    return appointment.date, appointment.time


class StaticSettingsProvider:
    """Settings provider holding one ``ShopSettings`` value in memory."""

    def __init__(self, settings: ShopSettings, latency: float = 0.0):
        self.settings = settings
        self.latency = latency

    async def read_shop_settings(self, shop_scope: str) -> ShopSettings:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        return self.settings

    async def update_shop_settings(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        self.settings = settings
        return self.settings
