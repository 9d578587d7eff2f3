"""CLI commands for the rehab progress engine."""

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rehab_progress.config import get_settings
from rehab_progress.plans.errors import RehabEngineError

app = typer.Typer(
    name="rehab-progress",
    help="Rehabilitation plan progress and compliance engine",
    add_completion=False,
)
console = Console()


def _parse_moment(value: str):
    """Parse an ISO date or datetime string."""
    try:
        if "T" in value or " " in value.strip():
            return datetime.fromisoformat(value.strip())
        return date.fromisoformat(value.strip())
    except ValueError:
        raise typer.BadParameter(f"Not an ISO date or datetime: {value}")


@app.command()
def version():
    """Show version information."""
    from rehab_progress import __version__

    console.print(f"rehab-progress v{__version__}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(f"Starting rehab progress API server on {host}:{port}")
    uvicorn.run(
        "rehab_progress.main:create_asgi_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command("init-db")
def init_db():
    """Create database tables."""
    from rehab_progress.core.database import dispose_engine, init_db as create_tables

    async def _run():
        try:
            await create_tables()
        finally:
            await dispose_engine()

    asyncio.run(_run())
    console.print("[green]Database tables created[/green]")


@app.command()
def series(
    timestamps: Optional[list[str]] = typer.Argument(None, help="ISO dates or datetimes"),
    start: str = typer.Option(..., "--start", "-s", help="Window start (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--end", "-e", help="Window end (YYYY-MM-DD)"),
    tz: Optional[str] = typer.Option(None, "--tz", help="IANA timezone; defaults to settings"),
    input_file: Optional[Path] = typer.Option(
        None, "--file", "-f", help="JSON file holding a list of timestamps"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Bucket timestamps into a dense daily or monthly series."""
    from rehab_progress.analytics.timeseries import bucket

    values = list(timestamps or [])
    if input_file:
        if not input_file.exists():
            console.print(f"[red]File not found: {input_file}[/red]")
            raise typer.Exit(1)
        values.extend(json.loads(input_file.read_text()))

    try:
        result = bucket(
            [_parse_moment(v) for v in values],
            date.fromisoformat(start),
            date.fromisoformat(end),
            tz or get_settings().local_timezone,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if output_json:
        console.print(result.model_dump_json(indent=2))
        return

    table = Table(title=f"{result.granularity.value.title()} series {result.start} to {result.end}")
    table.add_column("Bucket")
    table.add_column("Label")
    table.add_column("Count", justify="right")
    table.add_column("Trend", justify="right")
    for b in result.buckets:
        table.add_row(b.key, b.full_label, str(b.count), f"{b.trend:.2f}")
    console.print(table)
    console.print(f"Total: {result.total}  Average: {result.average:.2f}  Slope: {result.slope:.4f}")


@app.command()
def progress(
    plan_id: str = typer.Argument(..., help="Plan id"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show progress statistics for a plan."""
    from rehab_progress.core.database import dispose_engine, get_session_factory
    from rehab_progress.plans.service import PlanService

    async def _run():
        service = PlanService(get_session_factory())
        try:
            return await service.get_progress(plan_id, datetime.now().astimezone())
        finally:
            await service.close()
            await dispose_engine()

    try:
        view = asyncio.run(_run())
    except RehabEngineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if output_json:
        console.print(view.model_dump_json(indent=2))
        return

    _display_progress(view)


def _display_progress(view):
    plan = view.plan
    stats = view.progress_stats
    console.print(
        Panel(
            f"[bold]Plan:[/bold] {plan.name}\n"
            f"[bold]Status:[/bold] {plan.status.value}\n"
            f"[bold]Window:[/bold] {plan.start_date} to {plan.last_day}\n"
            f"[bold]Progress:[/bold] {stats.completed_days}/{stats.total_days} days "
            f"({stats.progress_percentage}%)",
            title=f"Plan {plan.id}",
            border_style="green" if view.stats_cache_consistent else "yellow",
        )
    )

    table = Table(title="Streaks")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Skipped days", str(stats.skipped_days))
    table.add_row("Consecutive completed", str(stats.consecutive_completed_days))
    table.add_row("Consecutive skipped", str(stats.consecutive_skipped_days))
    if stats.pain.history:
        table.add_row("Average pain", f"{stats.pain.average_pain_level:.1f}")
        table.add_row("Pain trend", stats.pain.pain_trend.value)
    console.print(table)

    if view.last_7_days:
        days = Table(title="Last 7 Days")
        days.add_column("Date")
        days.add_column("Completed", justify="right")
        days.add_column("Skipped", justify="right")
        days.add_column("Status")
        for summary in view.last_7_days:
            days.add_row(
                summary.day.isoformat(),
                f"{summary.completed_exercises}/{summary.total_exercises}",
                str(summary.skipped_exercises),
                summary.overall_status.value,
            )
        console.print(days)


@app.command()
def events(
    log_type: str = typer.Argument("operations", help="plans, alerts, case_sync or operations"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent events"),
):
    """Show recent engine events and basic statistics."""
    from rehab_progress.observability import get_event_logger

    event_logger = get_event_logger()
    stats = event_logger.get_stats(log_type)
    if not stats["total"]:
        console.print(f"[yellow]No {log_type} events logged yet.[/yellow]")
        return

    console.print(Panel.fit(f"[bold]{log_type} events[/bold]"))
    console.print(f"Total: {stats['total']}  Errors: {stats['errors']}  Error rate: {stats['error_rate']:.0%}\n")

    table = Table()
    table.add_column("Time")
    table.add_column("Event")
    table.add_column("Plan")
    for event in event_logger.get_recent_events(log_type, limit=limit):
        table.add_row(
            event.get("timestamp", ""),
            event.get("event_type", ""),
            event.get("plan_id") or event.get("case_id") or "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
