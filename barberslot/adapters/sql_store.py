"""
SQL appointment store built on SQLModel.

The double-booking guarantee lives in the database: a partial unique index
over ``(shop_scope, appointment_date, appointment_time)`` restricted to rows
whose status is not ``cancelled``. A violating insert raises
``IntegrityError``, which is translated into ``SlotConflictError``.

SQLModel sessions are blocking, so every operation runs in a worker thread.
"""

import asyncio
import logging
from datetime import date as Date
from datetime import datetime, timezone
from typing import List, Optional, Set
from uuid import uuid4

import pendulum
from sqlalchemy import Index, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..domain.exceptions import AppointmentNotFoundError, SlotConflictError, StoreUnavailableError
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    ensure_transition,
)

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./barberslot.db"

_ACTIVE_ROWS = "status != 'cancelled'"


class AppointmentRecord(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_active_slot",
            "shop_scope",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=text(_ACTIVE_ROWS),
            postgresql_where=text(_ACTIVE_ROWS),
        ),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    shop_scope: str = Field(index=True)
    appointment_date: Date = Field(index=True)
    appointment_time: str
    status: str = AppointmentStatus.PENDING.value
    customer_id: str = Field(index=True)
    service: str
    price: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_domain(self) -> Appointment:
        created_at = self.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return Appointment(
            id=self.id,
            shop_scope=self.shop_scope,
            date=self.appointment_date,
            time=self.appointment_time,
            status=AppointmentStatus(self.status),
            customer_id=self.customer_id,
            service=self.service,
            price=self.price,
            notes=self.notes,
            created_at=pendulum.instance(created_at) if created_at is not None else None,
        )


class SqlAppointmentStore:
    """
    Appointment store backed by a relational database.

    Works with SQLite out of the box; PostgreSQL gets the same partial index
    through ``postgresql_where``.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, echo=echo, connect_args=connect_args)

    def create_schema(self) -> None:
        """Create the appointments table and its indexes if missing."""
        SQLModel.metadata.create_all(self.engine)

    # -- blocking implementations --------------------------------------

    def _booked_times(self, shop_scope: str, day: Date) -> Set[str]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppointmentRecord.appointment_time)
                .where(AppointmentRecord.shop_scope == shop_scope)
                .where(AppointmentRecord.appointment_date == day)
                .where(AppointmentRecord.status != AppointmentStatus.CANCELLED.value)
            ).all()
        return set(rows)

    def _insert(self, shop_scope: str, day: Date, time: str, request: BookingRequest) -> Appointment:
        record = AppointmentRecord(
            shop_scope=shop_scope,
            appointment_date=day,
            appointment_time=time,
            status=AppointmentStatus.PENDING.value,
            customer_id=request.customer_id,
            service=request.service,
            price=request.price,
            notes=request.notes,
        )

        with Session(self.engine) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise SlotConflictError(f"{day.isoformat()} {time} is already booked") from exc
            session.refresh(record)
            return record.to_domain()

    def _update_status(self, appointment_id: str, new_status: AppointmentStatus) -> Appointment:
        with Session(self.engine) as session:
            record = session.get(AppointmentRecord, appointment_id, with_for_update=True)
            if record is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} does not exist")

            ensure_transition(AppointmentStatus(record.status), new_status)
            record.status = new_status.value
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_domain()

    def _get(self, appointment_id: str) -> Appointment:
        with Session(self.engine) as session:
            record = session.get(AppointmentRecord, appointment_id)
            if record is None:
                raise AppointmentNotFoundError(f"Appointment {appointment_id} does not exist")
            return record.to_domain()

    def _list(self, shop_scope: str, day: Optional[Date], customer_id: Optional[str]) -> List[Appointment]:
        statement = select(AppointmentRecord).where(AppointmentRecord.shop_scope == shop_scope)
        if day is not None:
            statement = statement.where(AppointmentRecord.appointment_date == day)
        if customer_id is not None:
            statement = statement.where(AppointmentRecord.customer_id == customer_id)
        statement = statement.order_by(
            AppointmentRecord.appointment_date,
            AppointmentRecord.appointment_time,
        )

        with Session(self.engine) as session:
            return [record.to_domain() for record in session.exec(statement).all()]

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except OperationalError as exc:
            logger.warning("Database operation %s failed: %s", func.__name__, exc)
            raise StoreUnavailableError(f"Database unavailable: {exc}") from exc

    # -- AppointmentStoreProtocol --------------------------------------

    async def read_booked_times(self, shop_scope: str, day: Date) -> Set[str]:
        return await self._run(self._booked_times, shop_scope, day)

    async def insert_appointment_if_available(
        self,
        shop_scope: str,
        day: Date,
        time: str,
        request: BookingRequest,
    ) -> Appointment:
        return await self._run(self._insert, shop_scope, day, time, request)

    async def update_appointment_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
    ) -> Appointment:
        return await self._run(self._update_status, appointment_id, new_status)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await self._run(self._get, appointment_id)

    async def list_appointments(
        self,
        shop_scope: str,
        *,
        day: Optional[Date] = None,
        customer_id: Optional[str] = None,
    ) -> List[Appointment]:
        return await self._run(self._list, shop_scope, day, customer_id)
