"""
REST client for a hosted PostgREST-style backend.

Implements both the appointment store and the shop settings provider on top
of the ``appointments`` and ``shop_settings`` tables. The backend owns the
partial unique constraint on active slots; a violation comes back as HTTP 409
(PostgreSQL error code ``23505``) and is translated into
``SlotConflictError``.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Set

import pendulum
import requests

from ..domain.exceptions import (
    AppointmentNotFoundError,
    InvalidConfigurationError,
    InvalidTransitionError,
    SlotConflictError,
    StoreRejectedError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    ShopSettings,
    ShopStatus,
    WorkingHours,
    ensure_transition,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class RestBackendClient:
    """
    Client for the hosted database REST API.

    Requests are blocking and run in a worker thread, so the event loop of
    the caller is never blocked.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        """
        Initialize the REST client.

        Args:
            base_url: Base URL of the REST endpoint (e.g. ``https://x.example.co/rest/v1``)
            api_key: API key sent as ``apikey`` header and bearer token
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, table: str) -> str:
        return f"{self.base_url}/{table}"

    def _send(self, method: str, table: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method,
                self._url(table),
                headers={**self.headers, **kwargs.pop("headers", {})},
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout as exc:
            raise StoreTimeoutError(f"Backend request timed out: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise StoreUnavailableError(f"Backend request failed: {exc}") from exc

        if response.status_code >= 500:
            raise StoreUnavailableError(
                f"Backend returned {response.status_code} for {method} {table}"
            )
        return response

    @staticmethod
    def _error_code(response: requests.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("code"):
            return str(body["code"])
        return None

    @classmethod
    def _is_unique_violation(cls, response: requests.Response) -> bool:
        """
        Check for a duplicate active slot.

        PostgREST also answers 409 for foreign key violations (``23503``), so
        the PostgreSQL code wins over the status when the body carries one.
        """
        if response.status_code < 400:
            return False
        code = cls._error_code(response)
        if code is not None:
            return code == UNIQUE_VIOLATION
        return response.status_code == 409

    @classmethod
    def _raise_for_status(cls, response: requests.Response, action: str) -> None:
        status = response.status_code
        if status < 400:
            return

        code = cls._error_code(response)
        detail = f"Failed to {action}: HTTP {status}" + (f" (code {code})" if code else "")

        if status in (401, 403):
            raise InvalidConfigurationError(f"{detail}; check the REST api_key")
        if status == 404:
            raise InvalidConfigurationError(f"{detail}; check the REST url")
        if status in (408, 429):
            raise StoreUnavailableError(detail)
        raise StoreRejectedError(detail)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_appointment(row: Dict[str, Any]) -> Appointment:
        """
        Parse an ``appointments`` row into the domain model.

        Row format:
        {
            "id": "…",
            "shop_scope": "main",
            "appointment_date": "2024-11-25",
            "appointment_time": "09:30:00",
            "status": "pending",
            …
        }
        """
        created_at = row.get("created_at")
        return Appointment(
            id=str(row["id"]),
            shop_scope=row.get("shop_scope", "main"),
            date=pendulum.parse(row["appointment_date"]).date(),
            time=str(row["appointment_time"])[:5],
            status=AppointmentStatus(row["status"]),
            customer_id=str(row["customer_id"]),
            service=row["service"],
            price=row.get("price"),
            notes=row.get("notes"),
            created_at=pendulum.parse(created_at) if created_at else None,
        )

    @staticmethod
    def _parse_settings(row: Dict[str, Any]) -> ShopSettings:
        try:
            return ShopSettings(
                working_hours=WorkingHours.from_mapping(row["working_hours"]),
                slot_duration_minutes=row["appointment_duration"],
                shop_status=ShopStatus(row.get("shop_status", "open")),
                shop_name=row.get("shop_name") or "",
                services={
                    str(name): float(price)
                    for name, price in (row.get("services") or {}).items()
                },
            )
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise InvalidConfigurationError(f"Malformed shop settings from backend: {exc}") from exc

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _fetch_settings(self, shop_scope: str) -> ShopSettings:
        response = self._send(
            "GET",
            "shop_settings",
            params={"shop_scope": f"eq.{shop_scope}", "select": "*", "limit": "1"},
        )
        self._raise_for_status(response, "fetch shop settings")

        rows = response.json()
        if not rows:
            raise InvalidConfigurationError(f"No shop settings stored for {shop_scope!r}")
        return self._parse_settings(rows[0])

    def _booked_times(self, shop_scope: str, day: date) -> Set[str]:
        response = self._send(
            "GET",
            "appointments",
            params={
                "select": "appointment_time",
                "shop_scope": f"eq.{shop_scope}",
                "appointment_date": f"eq.{day.isoformat()}",
                "status": f"neq.{AppointmentStatus.CANCELLED.value}",
            },
        )
        self._raise_for_status(response, "fetch booked times")
        return {str(row["appointment_time"])[:5] for row in response.json()}

    def _insert(self, shop_scope: str, day: date, time: str, request: BookingRequest) -> Appointment:
        payload = {
            "shop_scope": shop_scope,
            "appointment_date": day.isoformat(),
            "appointment_time": time,
            "status": AppointmentStatus.PENDING.value,
            "customer_id": request.customer_id,
            "service": request.service,
            "price": request.price,
            "notes": request.notes,
        }
        response = self._send(
            "POST",
            "appointments",
            json=payload,
            headers={"Prefer": "return=representation"},
        )

        if self._is_unique_violation(response):
            raise SlotConflictError(f"{day.isoformat()} {time} is already booked")
        self._raise_for_status(response, "create appointment")

        rows = response.json()
        return self._parse_appointment(rows[0] if isinstance(rows, list) else rows)

    def _get(self, appointment_id: str) -> Appointment:
        response = self._send(
            "GET",
            "appointments",
            params={"id": f"eq.{appointment_id}", "select": "*"},
        )
        self._raise_for_status(response, "fetch appointment")

        rows = response.json()
        if not rows:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} does not exist")
        return self._parse_appointment(rows[0])

    def _update_status(self, appointment_id: str, new_status: AppointmentStatus) -> Appointment:
        current = self._get(appointment_id)
        ensure_transition(current.status, new_status)

        # Filtering on the current status makes the update a compare-and-set.
        response = self._send(
            "PATCH",
            "appointments",
            params={"id": f"eq.{appointment_id}", "status": f"eq.{current.status.value}"},
            json={"status": new_status.value},
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, "update appointment status")

        rows = response.json()
        if not rows:
            raise InvalidTransitionError(
                f"Appointment {appointment_id} changed status concurrently; reload and retry"
            )
        return self._parse_appointment(rows[0])

    def _list(self, shop_scope: str, day: Optional[date], customer_id: Optional[str]) -> List[Appointment]:
        params = {
            "select": "*",
            "shop_scope": f"eq.{shop_scope}",
            "order": "appointment_date.asc,appointment_time.asc",
        }
        if day is not None:
            params["appointment_date"] = f"eq.{day.isoformat()}"
        if customer_id is not None:
            params["customer_id"] = f"eq.{customer_id}"

        response = self._send("GET", "appointments", params=params)
        self._raise_for_status(response, "list appointments")

        appointments: List[Appointment] = []
        for row in response.json():
            try:
                appointments.append(self._parse_appointment(row))
            except (KeyError, ValueError) as exc:
                logger.warning("Could not parse appointment row %r: %s", row.get("id"), exc)
        return appointments

    def _update_settings(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        payload = {
            "shop_name": settings.shop_name,
            "shop_status": settings.shop_status.value,
            "appointment_duration": settings.slot_duration_minutes,
            "services": dict(settings.services),
            "working_hours": settings.working_hours.to_mapping(),
        }
        response = self._send(
            "PATCH",
            "shop_settings",
            params={"shop_scope": f"eq.{shop_scope}"},
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, "update shop settings")

        rows = response.json()
        if not rows:
            raise InvalidConfigurationError(f"No shop settings stored for {shop_scope!r}")
        return self._parse_settings(rows[0])

    # ------------------------------------------------------------------
    # Protocol implementations
    # ------------------------------------------------------------------

    async def read_shop_settings(self, shop_scope: str) -> ShopSettings:
        return await asyncio.to_thread(self._fetch_settings, shop_scope)

    async def update_shop_settings(self, shop_scope: str, settings: ShopSettings) -> ShopSettings:
        return await asyncio.to_thread(self._update_settings, shop_scope, settings)

    async def read_booked_times(self, shop_scope: str, day: date) -> Set[str]:
        return await asyncio.to_thread(self._booked_times, shop_scope, day)

    async def insert_appointment_if_available(
        self,
        shop_scope: str,
        day: date,
        time: str,
        request: BookingRequest,
    ) -> Appointment:
        return await asyncio.to_thread(self._insert, shop_scope, day, time, request)

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
    ) -> Appointment:
        return await asyncio.to_thread(self._update_status, appointment_id, new_status)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await asyncio.to_thread(self._get, appointment_id)

    async def list_appointments(
        self,
        shop_scope: str,
        *,
        day: Optional[date] = None,
        customer_id: Optional[str] = None,
    ) -> List[Appointment]:
        return await asyncio.to_thread(self._list, shop_scope, day, customer_id)
