"""CLI commands for the clinic calendar."""

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clinic_calendar.config import get_settings

app = typer.Typer(
    name="clinic-calendar",
    help="Clinician availability and time-zone-aware calendar views",
    add_completion=False,
)
console = Console()


def get_tz_service(diagnostics=None):
    from clinic_calendar.scheduling import TimeZoneConversionService

    return TimeZoneConversionService(get_settings().default_time_zone, diagnostics)


@app.command()
def zones():
    """List selectable time zones with their current UTC offset."""
    tz = get_tz_service()

    table = Table(title="Time Zones")
    table.add_column("Zone")
    table.add_column("Label")
    table.add_column("Now", justify="right")
    for option in tz.zone_options():
        now = datetime.now(tz.zone(option.value))
        table.add_row(option.value, option.label, now.strftime("%H:%M %Z"))
    console.print(table)


@app.command()
def convert(
    value: str = typer.Argument(..., help="ISO instant, or a date when CLOCK is given"),
    clock: Optional[str] = typer.Argument(None, help="Wall-clock time (HH:MM) on the given date"),
    from_zone: str = typer.Option("UTC", "--from", "-f", help="Zone of the wall-clock input"),
    to_zone: Optional[str] = typer.Option(None, "--to", "-t", help="Zone to display in"),
    pattern: str = typer.Option("DATETIME_FULL", "--format", help="Display preset or strftime pattern"),
):
    """Convert a wall-clock time or an instant between zones."""
    from clinic_calendar.scheduling import ConversionError

    tz = get_tz_service()
    target = tz.ensure_valid_zone(to_zone)
    try:
        if clock is not None:
            instant = tz.to_absolute_instant(value, clock, from_zone)
        else:
            instant = tz.parse_instant(value)
        rendered = tz.format_for_display(instant, pattern, target)
    except ConversionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"UTC:  {instant.isoformat()}")
    console.print(f"{tz.format_zone_label(target)}:  {rendered}")


@app.command()
def week(
    fixture: Path = typer.Option(..., "--fixture", help="JSON file with rules, exceptions and appointments"),
    clinician: Optional[str] = typer.Option(None, "--clinician", "-c", help="Clinician id (defaults to the fixture's)"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="Any day of the week to show (YYYY-MM-DD)"),
    zone: Optional[str] = typer.Option(None, "--tz", help="View time zone"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Render a clinician's week grid from a JSON fixture."""
    from clinic_calendar.diagnostics import DiagnosticsLog, EventType
    from clinic_calendar.scheduling import (
        CalendarDataLoader,
        CalendarQuery,
        CellKind,
        StaticCalendarStore,
        ViewAssembler,
    )

    if not fixture.exists():
        console.print(f"[red]Fixture file not found: {fixture}[/red]")
        raise typer.Exit(1)
    try:
        data = json.loads(fixture.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid fixture JSON: {e}[/red]")
        raise typer.Exit(1)

    clinician_id = clinician or data.get("clinician_id")
    if not clinician_id:
        console.print("[red]No clinician id given and none in the fixture[/red]")
        raise typer.Exit(1)

    settings = get_settings()
    diagnostics = DiagnosticsLog(log_dir=settings.diagnostics_dir)
    tz = get_tz_service(diagnostics)
    store = StaticCalendarStore.from_fixture(data)
    loader = CalendarDataLoader(store, tz, diagnostics, fetch_timeout=settings.fetch_timeout_seconds)
    assembler = ViewAssembler(
        tz,
        slot_minutes=settings.slot_minutes,
        day_start_hour=settings.day_start_hour,
        day_end_hour=settings.day_end_hour,
        week_starts_on=settings.week_starts_on,
    )

    try:
        anchor = date.fromisoformat(start) if start else date.today()
    except ValueError:
        console.print(f"[red]Invalid start date: {start}[/red]")
        raise typer.Exit(1)

    days = assembler.week_days(anchor)
    snapshot = asyncio.run(loader.load(CalendarQuery(clinician_id, tuple(days), zone, include_cancelled=False)))
    view = assembler.assemble_week(days, snapshot.index, snapshot.zone)

    if output_json:
        console.print_json(view.model_dump_json())
        return

    table = Table(title=f"Week of {days[0]:%b %d, %Y} ({view.zone_label})")
    table.add_column("Time", justify="right")
    for column in view.columns:
        table.add_column(column.label)

    for row, label in enumerate(view.time_labels):
        cells = []
        for column in view.columns:
            cell = column.cells[row]
            if cell.skipped:
                cells.append("[dim]-[/dim]")
            elif cell.kind == CellKind.APPOINTMENT:
                name = cell.appointment.client_name or cell.appointment.type
                cells.append(f"[bold magenta]{name}[/bold magenta]" if cell.is_start_of_appointment else "[magenta]|[/magenta]")
            elif cell.kind == CellKind.AVAILABLE:
                cells.append("[green]open[/green]")
            else:
                cells.append("")
        table.add_row(label, *cells)
    console.print(table)

    failed = snapshot.failed_sources
    excluded = diagnostics.of_type(EventType.RECORD_EXCLUDED)
    if failed or excluded:
        lines = [f"Failed sources: {', '.join(failed)}"] if failed else []
        lines += [f"Excluded {e.record_type} {e.record_id}: {e.error_message}" for e in excluded]
        console.print(Panel("\n".join(lines), title="Diagnostics", border_style="yellow"))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind"),
    port: int = typer.Option(8080, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    console.print(f"Starting clinic calendar API server on {host}:{port}")
    uvicorn.run(
        "clinic_calendar.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version():
    """Show version information."""
    from clinic_calendar import __version__

    console.print(f"clinic-calendar v{__version__}")
