"""
Tests for the BookingService orchestration layer.
"""

import asyncio
from datetime import date
from typing import List

import pendulum

from barberslot.adapters.memory_store import InMemoryAppointmentStore, StaticSettingsProvider
from barberslot.domain.exceptions import ErrorKind
from barberslot.domain.models import (
    WEEKDAYS,
    AppointmentStatus,
    BookingRequest,
    DayHours,
    ShopSettings,
    ShopStatus,
    WorkingHours,
)
from barberslot.services.booking import BookingService
from barberslot.services.notifier import AvailabilityChanged, AvailabilityNotifier

TZ = "Europe/Istanbul"

# Monday 2024-11-25, 09:15 local time
NOW = pendulum.datetime(2024, 11, 25, 9, 15, tz=TZ)
TODAY = date(2024, 11, 25)
TUESDAY = date(2024, 11, 26)
SUNDAY = date(2024, 12, 1)

TUESDAY_SLOTS = ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]


def _settings(**overrides) -> ShopSettings:
    values = dict(
        working_hours=WorkingHours(
            days={
                day: DayHours("09:00", "12:00", closed=day == "sunday")
                for day in WEEKDAYS
            }
        ),
        slot_duration_minutes=30,
        shop_status=ShopStatus.OPEN,
        shop_name="Makas Barber",
        services={"Haircut": 150.0, "Beard Trim": 80.0},
    )
    values.update(overrides)
    return ShopSettings(**values)


def _build_service(
    store: InMemoryAppointmentStore = None,
    settings: ShopSettings = None,
    **kwargs,
) -> BookingService:
    kwargs.setdefault("clock", lambda: NOW)
    return BookingService(
        store=store if store is not None else InMemoryAppointmentStore(),
        settings_provider=StaticSettingsProvider(settings or _settings()),
        timezone=TZ,
        **kwargs,
    )


def _request(customer_id: str = "customer-1", service: str = "Haircut") -> BookingRequest:
    return BookingRequest(customer_id=customer_id, service=service)


class TestAvailability:
    """Tests for get_availability and bookable dates."""

    def test_future_day_lists_all_slots(self):
        service = _build_service()

        outcome = asyncio.run(service.get_availability(TUESDAY))

        assert outcome.ok
        assert outcome.value == TUESDAY_SLOTS

    def test_today_hides_started_slots(self):
        service = _build_service()

        outcome = asyncio.run(service.get_availability(TODAY))

        assert outcome.value == ["09:30", "10:00", "10:30", "11:00", "11:30"]

    def test_booked_slots_are_hidden(self):
        store = InMemoryAppointmentStore()
        service = _build_service(store=store)

        async def scenario():
            await store.insert_appointment_if_available("main", TUESDAY, "10:00", _request())
            return await service.get_availability(TUESDAY)

        outcome = asyncio.run(scenario())

        assert "10:00" not in outcome.value
        assert len(outcome.value) == len(TUESDAY_SLOTS) - 1

    def test_past_and_out_of_window_days_have_no_slots(self):
        service = _build_service(booking_window_days=30)

        past = asyncio.run(service.get_availability(date(2024, 11, 24)))
        too_far = asyncio.run(service.get_availability(date(2024, 12, 26)))

        assert past.ok and past.value == []
        assert too_far.ok and too_far.value == []

    def test_get_settings(self):
        service = _build_service()

        outcome = asyncio.run(service.get_settings())

        assert outcome.ok
        assert outcome.value.shop_name == "Makas Barber"

    def test_closed_shop(self):
        service = _build_service(settings=_settings(shop_status=ShopStatus.CLOSED))

        outcome = asyncio.run(service.get_availability(TUESDAY))

        assert not outcome.ok
        assert outcome.kind == ErrorKind.SHOP_CLOSED

    def test_bookable_dates_skip_closed_weekdays(self):
        service = _build_service(booking_window_days=7)

        outcome = asyncio.run(service.bookable_dates())

        assert outcome.ok
        assert outcome.value[0] == TODAY
        assert outcome.value[-1] == date(2024, 12, 2)
        assert SUNDAY not in outcome.value
        assert len(outcome.value) == 7


class TestTryBook:
    """Tests for the conflict-checked booking path."""

    def test_successful_booking_is_pending(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "10:00", _request()))

        assert outcome.ok
        appointment = outcome.value
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.date == TUESDAY
        assert appointment.time == "10:00"
        assert appointment.shop_scope == "main"

    def test_price_defaults_to_service_price(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "10:00", _request(service="Beard Trim")))

        assert outcome.value.price == 80.0

    def test_unknown_service_is_rejected(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "10:00", _request(service="Massage")))

        assert outcome.kind == ErrorKind.INVALID_SLOT
        assert "Massage" in str(outcome.error)

    def test_conflict_reports_fresh_alternatives(self):
        store = InMemoryAppointmentStore()
        service = _build_service(store=store)

        async def scenario():
            await service.try_book(TUESDAY, "10:00", _request("customer-1"))
            return await service.try_book(TUESDAY, "10:00", _request("customer-2"))

        outcome = asyncio.run(scenario())

        assert not outcome.ok
        assert outcome.kind == ErrorKind.CONFLICT
        assert not outcome.retryable
        assert "10:00" not in outcome.alternatives
        assert list(outcome.alternatives) == [slot for slot in TUESDAY_SLOTS if slot != "10:00"]

    def test_concurrent_bookings_yield_exactly_one_success(self):
        """Both pre-checks see a free slot; the store lets only one insert through."""
        store = InMemoryAppointmentStore(latency=0.01)
        service = _build_service(store=store)

        async def scenario():
            return await asyncio.gather(
                service.try_book(TUESDAY, "10:30", _request("customer-1")),
                service.try_book(TUESDAY, "10:30", _request("customer-2")),
            )

        outcomes = asyncio.run(scenario())

        successes = [outcome for outcome in outcomes if outcome.ok]
        conflicts = [outcome for outcome in outcomes if outcome.kind == ErrorKind.CONFLICT]
        assert len(successes) == 1
        assert len(conflicts) == 1

    def test_cancellation_frees_the_slot(self):
        service = _build_service()

        async def scenario():
            first = await service.try_book(TUESDAY, "11:00", _request("customer-1"))
            cancelled = await service.update_status(first.value.id, AppointmentStatus.CANCELLED)
            second = await service.try_book(TUESDAY, "11:00", _request("customer-2"))
            return cancelled, second

        cancelled, second = asyncio.run(scenario())

        assert cancelled.ok
        assert cancelled.value.status == AppointmentStatus.CANCELLED
        assert second.ok
        assert second.value.customer_id == "customer-2"

    def test_misaligned_time_is_invalid_slot(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "10:15", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT

    def test_malformed_time_is_invalid_slot(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "10am", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT

    def test_slot_after_closing_is_invalid(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TUESDAY, "12:00", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT

    def test_past_date_is_invalid_slot(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(date(2024, 11, 22), "10:00", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT

    def test_started_slot_today_is_invalid(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(TODAY, "09:00", _request()))
        later = asyncio.run(service.try_book(TODAY, "09:30", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT
        assert later.ok

    def test_booking_window(self):
        service = _build_service(booking_window_days=30)

        last_day = asyncio.run(service.try_book(date(2024, 12, 25), "09:00", _request()))
        too_far = asyncio.run(service.try_book(date(2024, 12, 26), "09:00", _request()))

        assert last_day.ok
        assert too_far.kind == ErrorKind.INVALID_SLOT

    def test_closed_weekday_is_invalid(self):
        service = _build_service()

        outcome = asyncio.run(service.try_book(SUNDAY, "10:00", _request()))

        assert outcome.kind == ErrorKind.INVALID_SLOT

    def test_closed_shop_rejects_booking(self):
        service = _build_service(settings=_settings(shop_status=ShopStatus.CLOSED))

        outcome = asyncio.run(service.try_book(TUESDAY, "10:00", _request()))

        assert outcome.kind == ErrorKind.SHOP_CLOSED

    def test_slow_store_surfaces_retryable_timeout(self):
        store = InMemoryAppointmentStore(latency=0.5)
        service = _build_service(store=store, store_timeout_seconds=0.05)

        outcome = asyncio.run(service.try_book(TUESDAY, "10:00", _request()))

        assert outcome.kind == ErrorKind.TIMEOUT
        assert outcome.retryable


class TestUpdateStatus:
    """Tests for appointment status transitions."""

    def test_full_lifecycle(self):
        service = _build_service()

        async def scenario():
            booked = await service.try_book(TUESDAY, "09:00", _request())
            confirmed = await service.update_status(booked.value.id, "confirmed")
            completed = await service.update_status(booked.value.id, AppointmentStatus.COMPLETED)
            return confirmed, completed

        confirmed, completed = asyncio.run(scenario())

        assert confirmed.value.status == AppointmentStatus.CONFIRMED
        assert completed.value.status == AppointmentStatus.COMPLETED

    def test_cancelled_cannot_be_confirmed(self):
        service = _build_service()

        async def scenario():
            booked = await service.try_book(TUESDAY, "09:00", _request())
            await service.update_status(booked.value.id, "cancelled")
            return await service.update_status(booked.value.id, "confirmed")

        outcome = asyncio.run(scenario())

        assert outcome.kind == ErrorKind.INVALID_TRANSITION

    def test_completed_cannot_go_back_to_pending(self):
        service = _build_service()

        async def scenario():
            booked = await service.try_book(TUESDAY, "09:00", _request())
            await service.update_status(booked.value.id, "confirmed")
            await service.update_status(booked.value.id, "completed")
            return await service.update_status(booked.value.id, "pending")

        outcome = asyncio.run(scenario())

        assert outcome.kind == ErrorKind.INVALID_TRANSITION

    def test_unknown_appointment(self):
        service = _build_service()

        outcome = asyncio.run(service.update_status("missing", "confirmed"))

        assert outcome.kind == ErrorKind.NOT_FOUND

    def test_unknown_status(self):
        service = _build_service()

        outcome = asyncio.run(service.update_status("missing", "archived"))

        assert outcome.kind == ErrorKind.INVALID_TRANSITION


class TestListings:
    """Tests for appointment listings."""

    def test_shop_and_customer_views(self):
        service = _build_service()

        async def scenario():
            await service.try_book(date(2024, 11, 27), "09:00", _request("customer-1"))
            await service.try_book(TUESDAY, "11:00", _request("customer-1"))
            await service.try_book(TUESDAY, "09:30", _request("customer-2"))
            return (
                await service.list_appointments(),
                await service.list_appointments(TUESDAY),
                await service.customer_appointments("customer-1"),
            )

        everything, tuesday, customer = asyncio.run(scenario())

        assert [(a.date, a.time) for a in everything.value] == [
            (TUESDAY, "09:30"),
            (TUESDAY, "11:00"),
            (date(2024, 11, 27), "09:00"),
        ]
        assert [a.time for a in tuesday.value] == ["09:30", "11:00"]
        assert [(a.date, a.time) for a in customer.value] == [
            (date(2024, 11, 27), "09:00"),
            (TUESDAY, "11:00"),
        ]


class TestNotifications:
    """Tests for availability invalidation events."""

    def test_booking_and_status_change_publish_events(self):
        notifier = AvailabilityNotifier()
        events: List[AvailabilityChanged] = []
        notifier.subscribe(events.append)
        service = _build_service(notifier=notifier)

        async def scenario():
            booked = await service.try_book(TUESDAY, "09:00", _request())
            await service.update_status(booked.value.id, "cancelled")

        asyncio.run(scenario())

        assert events == [
            AvailabilityChanged(shop_scope="main", date=TUESDAY),
            AvailabilityChanged(shop_scope="main", date=TUESDAY),
        ]

    def test_rejected_booking_publishes_nothing(self):
        notifier = AvailabilityNotifier()
        events: List[AvailabilityChanged] = []
        notifier.subscribe(events.append)
        service = _build_service(notifier=notifier)

        asyncio.run(service.try_book(TUESDAY, "10:15", _request()))

        assert events == []

    def test_failing_subscriber_does_not_break_booking(self):
        notifier = AvailabilityNotifier()
        received: List[AvailabilityChanged] = []

        def broken(event):
            raise RuntimeError("view is gone")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)
        service = _build_service(notifier=notifier)

        outcome = asyncio.run(service.try_book(TUESDAY, "09:00", _request()))

        assert outcome.ok
        assert len(received) == 1

    def test_unsubscribe(self):
        notifier = AvailabilityNotifier()
        events: List[AvailabilityChanged] = []
        unsubscribe = notifier.subscribe(events.append)

        unsubscribe()
        notifier.publish("main", TUESDAY)

        assert events == []
        assert notifier.subscriber_count == 0


class TestShopSettingsChanges:
    """Tests for the owner-side settings operations."""

    def test_set_day_hours_changes_slots(self):
        service = _build_service()

        async def scenario():
            saved = await service.set_day_hours("Tuesday", "10:00", "11:00")
            return saved, await service.get_availability(TUESDAY)

        saved, availability = asyncio.run(scenario())

        assert saved.ok
        assert saved.value.working_hours.days["tuesday"] == DayHours("10:00", "11:00")
        assert availability.value == ["10:00", "10:30"]

    def test_closing_a_weekday_keeps_its_times(self):
        service = _build_service()

        outcome = asyncio.run(service.set_day_hours("tuesday", closed=True))

        assert outcome.value.working_hours.days["tuesday"] == DayHours("09:00", "12:00", closed=True)

    def test_invalid_day_hours_leave_settings_untouched(self):
        settings = _settings()
        provider = StaticSettingsProvider(settings)
        service = BookingService(
            store=InMemoryAppointmentStore(),
            settings_provider=provider,
            timezone=TZ,
            clock=lambda: NOW,
        )

        reversed_hours = asyncio.run(service.set_day_hours("monday", "18:00", "09:00"))
        malformed = asyncio.run(service.set_day_hours("monday", "9am", "12:00"))
        unknown_day = asyncio.run(service.set_day_hours("pazartesi", "09:00", "12:00"))

        for outcome in (reversed_hours, malformed, unknown_day):
            assert outcome.kind == ErrorKind.INVALID_CONFIGURATION
            assert not outcome.retryable
        assert provider.settings is settings

    def test_set_shop_status(self):
        service = _build_service()

        async def scenario():
            closed = await service.set_shop_status("closed")
            booking = await service.try_book(TUESDAY, "10:00", _request())
            reopened = await service.set_shop_status(ShopStatus.OPEN)
            return closed, booking, reopened

        closed, booking, reopened = asyncio.run(scenario())

        assert not closed.value.is_open
        assert booking.kind == ErrorKind.SHOP_CLOSED
        assert reopened.value.is_open

    def test_unknown_shop_status(self):
        service = _build_service()

        outcome = asyncio.run(service.set_shop_status("paused"))

        assert outcome.kind == ErrorKind.INVALID_CONFIGURATION

    def test_set_slot_duration(self):
        service = _build_service()

        async def scenario():
            saved = await service.set_slot_duration(60)
            rejected = await service.set_slot_duration(0)
            return saved, rejected, await service.get_availability(TUESDAY)

        saved, rejected, availability = asyncio.run(scenario())

        assert saved.value.slot_duration_minutes == 60
        assert rejected.kind == ErrorKind.INVALID_CONFIGURATION
        assert availability.value == ["09:00", "10:00", "11:00"]

    def test_services(self):
        service = _build_service()

        async def scenario():
            added = await service.set_service("Kids Cut", 100)
            negative = await service.set_service("Shave", -5)
            removed = await service.remove_service("Beard Trim")
            missing = await service.remove_service("Beard Trim")
            return added, negative, removed, missing

        added, negative, removed, missing = asyncio.run(scenario())

        assert added.value.services["Kids Cut"] == 100.0
        assert negative.kind == ErrorKind.INVALID_CONFIGURATION
        assert "Beard Trim" not in removed.value.services
        assert missing.kind == ErrorKind.INVALID_CONFIGURATION

    def test_slow_provider_times_out(self):
        provider = StaticSettingsProvider(_settings(), latency=0.5)
        service = BookingService(
            store=InMemoryAppointmentStore(),
            settings_provider=provider,
            timezone=TZ,
            store_timeout_seconds=0.05,
            clock=lambda: NOW,
        )

        outcome = asyncio.run(service.set_slot_duration(45))

        assert outcome.kind == ErrorKind.TIMEOUT
        assert outcome.retryable
