"""
Main CLI application using Typer.
"""

import logging
from pathlib import Path
from typing import List, Optional, Annotated, Tuple

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.event_sinks import LoggingEventSink
from ..adapters.memory_store import InMemoryStore
from ..adapters.yaml_fixture import load_store_from_yaml, save_appointments_to_yaml
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulingError
from ..domain.models import Appointment
from ..domain.recurrence import RecurrencePattern, RecurrenceType
from ..services.availability import AvailabilityService
from ..services.booking import BookingRequest, BookingService
from ..services.conflict_guard import ConflictGuard

app = typer.Typer(
    name="slotkeeper",
    help="Find free appointment slots and manage bookings",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]


class _Context:
    """Everything a command needs, built from the config file."""

    def __init__(self, config_file: Optional[Path]):
        config_path = config_file or get_default_config_path()
        self.config = AppConfig.load_from_yaml(config_path)

        logging.basicConfig(
            level=self.config.log_level,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
            force=True,
        )

        if self.config.data_file is None:
            raise ValueError(f"No data_file configured in {config_path}")
        self.data_file = self.config.data_file

        self.tz = self.config.policy.timezone
        self.store: InMemoryStore = load_store_from_yaml(self.data_file, timezone=self.tz)
        self.availability = AvailabilityService(
            schedules=self.store,
            catalog=self.store,
            appointments=self.store,
            policy=self.config.policy,
        )
        self.booking = BookingService(
            availability=self.availability,
            appointments=self.store,
            events=LoggingEventSink(),
            guard=ConflictGuard(timeout_seconds=self.config.guard.lock_timeout_seconds),
        )

    def save(self) -> None:
        save_appointments_to_yaml(self.store, self.data_file)


def _parse_date_range(tz: str, start: Optional[str], end: Optional[str]) -> Tuple[pendulum.Date, pendulum.Date]:
    """
    Resolve the search window from explicit dates.
    Defaults to today and the following seven days.
    """
    try:
        start_date = pendulum.from_format(start, "YYYY-MM-DD", tz=tz).date() if start else pendulum.today(tz).date()
    except ValueError as e:
        raise ValueError(f"Could not parse start date {start!r}: {e}") from e

    try:
        end_date = pendulum.from_format(end, "YYYY-MM-DD", tz=tz).date() if end else start_date.add(days=7)
    except ValueError as e:
        raise ValueError(f"Could not parse end date {end!r}: {e}") from e

    if end_date < start_date:
        raise ValueError("End date must not be before start date")
    return start_date, end_date


def _parse_start(value: str, tz: str) -> pendulum.DateTime:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD HH:mm", tz=tz)
    except ValueError as e:
        raise ValueError(f"Could not parse start {value!r}, expected YYYY-MM-DD HH:mm: {e}") from e


def _print_appointment(title: str, appointment: Appointment) -> None:
    console.print(f"\n[bold green]✓ {title}[/bold green]")
    console.print(f"   ID: [bold]{appointment.id}[/bold]")
    console.print(f"   Professional: {appointment.professional_id}")
    console.print(f"   Client: {appointment.client_id}")
    console.print(f"   Services: {', '.join(appointment.service_ids)}")
    console.print(f"   Time: {appointment.time_range()}")
    console.print(f"   Status: {appointment.status.value}")
    console.print()


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


@app.command()
def slots(
    professional: Annotated[str, typer.Argument(help="Professional ID")],
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service ID (repeat for combined services)")],
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    step: Annotated[Optional[int], typer.Option("--step", help="Slot granularity in minutes")] = None,
):
    """
    List bookable start times of a professional.

    Examples:

        slotkeeper slots anna -s haircut
        slotkeeper slots anna -s haircut -s coloring --start 2024-11-25 --end 2024-11-29
    """
    try:
        ctx = _Context(config_file)
        start_date, end_date = _parse_date_range(ctx.tz, start, end)

        found = ctx.availability.find_slots(professional, service, start_date, end_date, step)

        if not found:
            console.print(
                "[yellow]⚠ No free slots found.[/yellow]\n"
                "Try a longer date range or fewer services."
            )
            return

        console.print(f"\n[bold green]✓ {len(found)} free slot(s) for {professional}:[/bold green]\n")
        current_day = None
        for slot in found:
            if slot.date() != current_day:
                current_day = slot.date()
                console.print(f"  [bold]{slot.format('dddd, DD.MM.YYYY')}[/bold]")
            console.print(f"    {slot.format('HH:mm')}")
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def compare(
    professionals: Annotated[List[str], typer.Argument(help="Professional IDs to compare")],
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service ID (repeat for combined services)")],
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Show at most this many slots")] = 20,
):
    """
    Compare the earliest free slots of several professionals.
    """
    try:
        ctx = _Context(config_file)
        start_date, end_date = _parse_date_range(ctx.tz, start, end)

        found = ctx.availability.compare_professionals(professionals, service, start_date, end_date)

        if not found:
            console.print("[yellow]⚠ None of the professionals has a free slot in this range.[/yellow]")
            return

        table = Table(
            title="Free slots",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Start", style="bold")
        table.add_column("Professional", style="bold yellow")
        table.add_column("Preferred", style="dim")

        for slot in found[:limit]:
            table.add_row(
                slot.start.format("ddd DD.MM.YYYY HH:mm"),
                slot.professional_id,
                "★" if slot.preferred else ""
            )

        console.print()
        console.print(table)
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def book(
    professional: Annotated[str, typer.Argument(help="Professional ID")],
    start: Annotated[str, typer.Argument(help="Start time (YYYY-MM-DD HH:mm)")],
    client: Annotated[str, typer.Option("--client", help="Client ID")],
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service ID (repeat for combined services)")],
    config_file: ConfigOption = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Free-text notes")] = None,
    repeat: Annotated[Optional[RecurrenceType], typer.Option("--repeat", help="Book a recurring series")] = None,
    count: Annotated[int, typer.Option("--count", help="Number of occurrences for --repeat")] = 4,
):
    """
    Book an appointment, or a recurring series with --repeat.

    Examples:

        slotkeeper book anna "2024-11-25 14:00" --client c-17 -s haircut
        slotkeeper book anna "2024-11-25 14:00" --client c-17 -s haircut --repeat WEEKLY --count 6
    """
    try:
        ctx = _Context(config_file)
        request = BookingRequest(
            professional_id=professional,
            client_id=client,
            service_ids=tuple(service),
            start=_parse_start(start, ctx.tz),
            notes=notes,
        )

        if repeat is None:
            appointment = ctx.booking.create(request)
            ctx.save()
            _print_appointment("Appointment booked", appointment)
            return

        series = ctx.booking.create_recurring(request, RecurrencePattern(type=repeat, count=count))
        ctx.save()
        console.print(f"\n[bold green]✓ Booked {len(series)} appointment(s)[/bold green] "
                      f"(series {series[0].recurrence_group_id})\n")
        for appointment in series:
            console.print(f"  {appointment.id}  {appointment.time_range()}")
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def confirm(
    appointment_id: Annotated[str, typer.Argument(help="Appointment ID")],
    config_file: ConfigOption = None,
):
    """
    Confirm a pending appointment.
    """
    try:
        ctx = _Context(config_file)
        appointment = ctx.booking.confirm(appointment_id)
        ctx.save()
        _print_appointment("Appointment confirmed", appointment)

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def cancel(
    appointment_id: Annotated[str, typer.Argument(help="Appointment ID")],
    config_file: ConfigOption = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Cancellation reason")] = None,
    by_client: Annotated[bool, typer.Option("--by-client", help="The client cancelled")] = False,
):
    """
    Cancel an appointment. Short-notice cancellations are flagged as late.
    """
    try:
        ctx = _Context(config_file)
        appointment = ctx.booking.cancel(appointment_id, reason=reason, cancelled_by_client=by_client)
        ctx.save()
        _print_appointment("Appointment cancelled", appointment)

        if appointment.was_late_cancellation:
            console.print(
                f"[yellow]⚠ Late cancellation: less than "
                f"{ctx.config.policy.cancellation_policy.minimum_hours:g}h notice.[/yellow]\n"
            )

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def reschedule(
    appointment_id: Annotated[str, typer.Argument(help="Appointment ID")],
    new_start: Annotated[str, typer.Argument(help="New start time (YYYY-MM-DD HH:mm)")],
    config_file: ConfigOption = None,
    professional: Annotated[Optional[str], typer.Option("--professional", "-p", help="Move to another professional")] = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Reason for the move")] = None,
):
    """
    Move an appointment. The old one is kept with status RESCHEDULED.
    """
    try:
        ctx = _Context(config_file)
        replacement = ctx.booking.reschedule(
            appointment_id,
            _parse_start(new_start, ctx.tz),
            new_professional_id=professional,
            reason=reason,
        )
        ctx.save()
        _print_appointment(f"Appointment {appointment_id} rescheduled", replacement)

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def list_professionals(
    config_file: ConfigOption = None,
):
    """
    List all professionals in the data file.
    """
    try:
        ctx = _Context(config_file)
        professionals = ctx.store.list_professionals()

        if not professionals:
            console.print("[yellow]No professionals defined in the data file.[/yellow]")
            return

        table = Table(
            title="Professionals",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("ID", style="bold yellow")
        table.add_column("Name")
        table.add_column("Preferred", style="dim")

        for professional in professionals:
            table.add_row(
                professional.id,
                professional.name,
                "★" if professional.preferred else ""
            )

        console.print()
        console.print(table)
        console.print()

    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotkeeper[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
