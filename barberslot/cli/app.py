"""
Main CLI application using Typer.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Annotated, Optional, Tuple

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.memory_store import InMemoryAppointmentStore
from ..adapters.rest_backend import RestBackendClient
from ..adapters.sql_store import SqlAppointmentStore
from ..adapters.yaml_settings import YamlSettingsProvider
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import ErrorKind
from ..domain.models import SLOT_DURATION_CHOICES, WEEKDAYS, BookingRequest, ShopSettings
from ..domain.results import Outcome
from ..services.booking import BookingService

app = typer.Typer(
    name="barberslot",
    help="Browse free appointment slots and book them",
    add_completion=False
)

console = Console()

logger = logging.getLogger(__name__)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
MockOption = Annotated[
    bool,
    typer.Option("--mock", help="Use in-memory demo appointments instead of the configured backend."),
]

FAILURE_HINTS = {
    ErrorKind.CONFLICT: "This time was just booked by someone else. Please pick another slot.",
    ErrorKind.TIMEOUT: "The booking backend did not answer in time. It is safe to try again.",
    ErrorKind.SHOP_CLOSED: "The shop is currently closed for bookings.",
    ErrorKind.INVALID_SLOT: "Please choose a different time.",
}


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
):
    """
    Barber shop appointment booking.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load(config_file: Optional[Path], mock: bool) -> Tuple[AppConfig, BookingService]:
    """
    Load configuration and wire the booking service to the configured backend.
    """
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    tz = config.timezone

    settings_provider = YamlSettingsProvider(config_path)

    if mock:
        store = InMemoryAppointmentStore.from_json(
            shop_scope=config.shop_scope,
            today=pendulum.today(tz).date(),
        )
    elif config.backend == "memory":
        store = InMemoryAppointmentStore()
    elif config.backend == "sqlite":
        store = SqlAppointmentStore(config.database_url)
        store.create_schema()
    else:
        client = RestBackendClient(
            base_url=config.rest.url,
            api_key=config.rest.api_key,
            timeout=config.store_timeout_seconds,
        )
        store = client
        settings_provider = client

    service = BookingService(
        store=store,
        settings_provider=settings_provider,
        shop_scope=config.shop_scope,
        timezone=tz,
        booking_window_days=config.booking_window_days,
        store_timeout_seconds=config.store_timeout_seconds,
        allow_overrun=config.allow_overrun_slots,
    )
    logger.debug("Using %s backend for shop %s", "mock" if mock else config.backend, config.shop_scope)
    return config, service


def _parse_date(value: Optional[str], tz: str) -> date:
    if value is None:
        return pendulum.today(tz).date()
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[red]Could not parse date {value!r}: {e}[/red]")
        raise typer.Exit(1)


def _fail(outcome: Outcome) -> None:
    """Print a failed outcome and exit with status 1."""
    console.print(f"[bold red]Error ({outcome.kind.value}):[/bold red] {outcome.error}")

    hint = FAILURE_HINTS.get(outcome.kind)
    if hint:
        console.print(f"[yellow]{hint}[/yellow]")

    if outcome.alternatives:
        console.print(f"Still available: {', '.join(outcome.alternatives)}")

    raise typer.Exit(1)


@app.command()
def slots(
    day: Annotated[Optional[str], typer.Argument(help="Date (YYYY-MM-DD). Defaults to today.")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show the bookable slots of a day.

    Examples:

        barberslot slots
        barberslot slots 2024-11-25 --mock
    """
    try:
        config, service = _load(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    target = _parse_date(day, config.timezone)
    outcome = asyncio.run(service.get_availability(target))
    if not outcome.ok:
        _fail(outcome)

    if not outcome.value:
        console.print(
            f"[yellow]⚠ No free slots on {target.isoformat()}.[/yellow]\n"
            "Try another date."
        )
        return

    console.print(f"[bold green]✓ {len(outcome.value)} free slot(s) on {target.isoformat()}:[/bold green]\n")
    console.print("  " + "  ".join(outcome.value))
    console.print()


@app.command()
def dates(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List the dates that can currently be booked.
    """
    try:
        _, service = _load(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    outcome = asyncio.run(service.bookable_dates())
    if not outcome.ok:
        _fail(outcome)

    for bookable in outcome.value:
        console.print(f"  {bookable.isoformat()} ({bookable.strftime('%a')})")


@app.command()
def book(
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    time: Annotated[str, typer.Argument(help="Slot start time (HH:MM)")],
    customer: Annotated[str, typer.Option("--customer", help="Customer identifier")],
    service_name: Annotated[str, typer.Option("--service", "-s", help="Service to book")],
    price: Annotated[Optional[float], typer.Option("--price", help="Price; defaults to the service's listed price")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes for the barber")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Book a slot.

    Examples:

        barberslot book 2024-11-25 09:30 --customer c-42 --service Haircut
    """
    try:
        config, service = _load(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    target = _parse_date(day, config.timezone)
    request = BookingRequest(customer_id=customer, service=service_name, price=price, notes=notes)

    outcome = asyncio.run(service.try_book(target, time, request))
    if not outcome.ok:
        _fail(outcome)

    appointment = outcome.value
    console.print(f"[bold green]✓ Appointment booked:[/bold green] {appointment.format_display()}")
    console.print(f"[dim]Appointment id: {appointment.id}[/dim]")


@app.command()
def appointments(
    day: Annotated[Optional[str], typer.Option("--date", help="Only this date (YYYY-MM-DD)")] = None,
    customer: Annotated[Optional[str], typer.Option("--customer", help="Only this customer's appointments")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List appointments (shop view, or one customer's view with --customer).
    """
    try:
        config, service = _load(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if customer:
        outcome = asyncio.run(service.customer_appointments(customer))
    else:
        target = _parse_date(day, config.timezone) if day else None
        outcome = asyncio.run(service.list_appointments(target))

    if not outcome.ok:
        _fail(outcome)

    if not outcome.value:
        console.print("[yellow]No appointments found.[/yellow]")
        return

    table = Table(
        title="Appointments",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Date", style="bold yellow")
    table.add_column("Time")
    table.add_column("Service")
    table.add_column("Customer", style="dim")
    table.add_column("Status")
    table.add_column("Id", style="dim")

    for appointment in outcome.value:
        table.add_row(
            appointment.date.isoformat(),
            appointment.time,
            appointment.service,
            appointment.customer_id,
            appointment.status.value,
            appointment.id,
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def set_status(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    status: Annotated[str, typer.Argument(help="confirmed, cancelled or completed")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Change the status of an appointment (shop owner action).
    """
    try:
        _, service = _load(config_file, mock)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    outcome = asyncio.run(service.update_status(appointment_id, status.lower()))
    if not outcome.ok:
        _fail(outcome)

    console.print(f"[green]✓ {outcome.value.format_display()}[/green]")


def _print_settings(settings: ShopSettings) -> None:
    status_style = "green" if settings.is_open else "red"
    console.print(
        f"\n[bold cyan]{settings.shop_name or 'Shop'}[/bold cyan] is "
        f"[{status_style}]{settings.shop_status.value}[/{status_style}]"
    )
    console.print(f"Appointment duration: {settings.slot_duration_minutes} minutes\n")

    hours_table = Table(title="Working hours", show_header=True, header_style="bold cyan")
    hours_table.add_column("Day", style="bold yellow")
    hours_table.add_column("Hours")
    for day in WEEKDAYS:
        hours = settings.working_hours.days[day]
        hours_table.add_row(day.capitalize(), "closed" if hours.closed else f"{hours.start} - {hours.end}")
    console.print(hours_table)

    if settings.services:
        services_table = Table(title="Services", show_header=True, header_style="bold cyan")
        services_table.add_column("Service")
        services_table.add_column("Price", justify="right")
        for name, price in sorted(settings.services.items()):
            services_table.add_row(name, f"{price:g}")
        console.print(services_table)
    console.print()


def _load_service(config_file: Optional[Path]) -> BookingService:
    try:
        _, service = _load(config_file, mock=False)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    return service


def _saved(outcome: Outcome) -> None:
    if not outcome.ok:
        _fail(outcome)
    console.print("[bold green]✓ Settings saved[/bold green]")
    _print_settings(outcome.value)


@app.command()
def settings(
    config_file: ConfigOption = None,
):
    """
    Show the shop settings.
    """
    service = _load_service(config_file)

    outcome = asyncio.run(service.get_settings())
    if not outcome.ok:
        _fail(outcome)
    _print_settings(outcome.value)


@app.command()
def set_hours(
    weekday: Annotated[str, typer.Argument(help="Weekday, e.g. monday")],
    start: Annotated[Optional[str], typer.Argument(help="Opening time (HH:MM)")] = None,
    end: Annotated[Optional[str], typer.Argument(help="Closing time (HH:MM)")] = None,
    closed: Annotated[bool, typer.Option("--closed", help="Mark the day as closed")] = False,
    config_file: ConfigOption = None,
):
    """
    Change the working hours of one weekday.

    Examples:

        barberslot set-hours saturday 10:00 16:00
        barberslot set-hours sunday --closed
    """
    if not closed and (start is None or end is None):
        console.print("[bold red]Error:[/bold red] Give START and END, or --closed.")
        raise typer.Exit(1)

    service = _load_service(config_file)
    _saved(asyncio.run(service.set_day_hours(weekday, start, end, closed=closed)))


@app.command()
def set_shop_status(
    status: Annotated[str, typer.Argument(help="open or closed")],
    config_file: ConfigOption = None,
):
    """
    Open or close the shop for new bookings.
    """
    service = _load_service(config_file)
    _saved(asyncio.run(service.set_shop_status(status.lower())))


@app.command()
def set_duration(
    minutes: Annotated[int, typer.Argument(help="Appointment length in minutes")],
    config_file: ConfigOption = None,
):
    """
    Change the appointment duration (and with it the slot grid).
    """
    if minutes not in SLOT_DURATION_CHOICES:
        choices = ", ".join(str(choice) for choice in SLOT_DURATION_CHOICES)
        console.print(f"[yellow]⚠ {minutes} is not one of the usual durations ({choices}).[/yellow]")

    service = _load_service(config_file)
    _saved(asyncio.run(service.set_slot_duration(minutes)))


@app.command()
def set_service(
    name: Annotated[str, typer.Argument(help="Service name")],
    price: Annotated[float, typer.Argument(help="Listed price")],
    config_file: ConfigOption = None,
):
    """
    Add a service or change its price.
    """
    service = _load_service(config_file)
    _saved(asyncio.run(service.set_service(name, price)))


@app.command()
def remove_service(
    name: Annotated[str, typer.Argument(help="Service name")],
    config_file: ConfigOption = None,
):
    """
    Stop offering a service.
    """
    service = _load_service(config_file)
    _saved(asyncio.run(service.remove_service(name)))


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]barberslot[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
