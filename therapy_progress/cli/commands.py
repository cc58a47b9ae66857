"""CLI commands for therapy-progress."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from therapy_progress.tracking.exceptions import TherapyProgressError
from therapy_progress.tracking.models import (
    AcceptanceResult,
    CollaborationRequest,
    MasteryStatus,
    ProgressReport,
    TherapyGoal,
    Trend,
)

app = typer.Typer(
    name="therapy-progress",
    help="Goal mastery tracking and progress reports for AAC therapy",
    add_completion=False,
)
console = Console()

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]

_STATUS_COLORS = {
    MasteryStatus.MASTERED: "green",
    MasteryStatus.IN_PROGRESS: "cyan",
    MasteryStatus.NOT_STARTED: "yellow",
    MasteryStatus.REGRESSED: "red",
}

_TREND_ARROWS = {Trend.IMPROVING: "↑", Trend.STABLE: "→", Trend.DECLINING: "↓"}


# ----------------------------------------------------------------------
# Engine calls (one session per command)
# ----------------------------------------------------------------------


@asynccontextmanager
async def _store():
    from therapy_progress.core.database import dispose_engine, session_scope
    from therapy_progress.core.repository import SqlTherapyStore

    try:
        async with session_scope() as session:
            yield SqlTherapyStore(session)
    finally:
        # pooled connections are bound to this command's event loop
        await dispose_engine()


async def _generate_report(
    patient_id: str, therapist_id: str, start: datetime, end: datetime
) -> ProgressReport:
    from therapy_progress.tracking.reports import ProgressReportGenerator

    async with _store() as store:
        return await ProgressReportGenerator(store).generate(patient_id, therapist_id, start, end)


async def _show_goal(goal_id: str) -> tuple[TherapyGoal, float]:
    from therapy_progress.tracking.goals import GoalTracker, progress_percentage

    async with _store() as store:
        goal = await GoalTracker(store).get_goal(goal_id)
        return goal, progress_percentage(goal)


async def _accept_request(request_id: str) -> AcceptanceResult:
    from therapy_progress.tracking.collaboration import CollaborationWorkflow

    async with _store() as store:
        return await CollaborationWorkflow(store).accept(request_id)


async def _decline_request(request_id: str) -> CollaborationRequest:
    from therapy_progress.tracking.collaboration import CollaborationWorkflow

    async with _store() as store:
        return await CollaborationWorkflow(store).decline(request_id)


def _run(coro):
    """Run an engine coroutine, reporting engine errors and exiting non-zero."""
    try:
        return asyncio.run(coro)
    except TherapyProgressError as e:
        console.print(f"[red]{e.kind}: {e}[/red]")
        raise typer.Exit(1)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


@app.command()
def version():
    """Show version information."""
    from therapy_progress import __version__

    console.print(f"therapy-progress v{__version__}")


@app.command("init-db")
def init_db():
    """Create the tracking tables."""
    from therapy_progress.config import get_settings
    from therapy_progress.core.database import init_db as _init_db

    asyncio.run(_init_db())
    console.print(f"[green]Schema ready:[/green] {get_settings().database_url}")


@app.command()
def report(
    patient_id: str = typer.Argument(..., help="Patient ID"),
    therapist_id: str = typer.Argument(..., help="Therapist ID"),
    start: datetime = typer.Option(..., "--start", "-s", formats=_DATE_FORMATS, help="Period start"),
    end: datetime = typer.Option(
        ..., "--end", "-e", formats=_DATE_FORMATS, help="Period end (a bare date covers the whole day)"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Generate and store a progress report for a patient."""
    if end.time() == time.min:
        end = end + timedelta(days=1) - timedelta(microseconds=1)

    result = _run(_generate_report(patient_id, therapist_id, start, end))

    if output_json:
        console.print(result.model_dump_json(indent=2))
    else:
        _display_report(result)


@app.command()
def goal(goal_id: str = typer.Argument(..., help="Goal ID")):
    """Show a goal's status and progress."""
    therapy_goal, percentage = _run(_show_goal(goal_id))
    current = therapy_goal.current_progress

    table = Table(title=therapy_goal.title, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", therapy_goal.status.value)
    table.add_row("Progress", f"{percentage:.1f}%")
    table.add_row("Frequency", f"{current.frequency:g} / {therapy_goal.target.frequency:g}")
    table.add_row("Accuracy", _fmt_pct(current.accuracy))
    table.add_row("Independence", _fmt_pct(current.independence))
    table.add_row("Mastery streak", str(therapy_goal.mastery_streak))
    if therapy_goal.mastered_at:
        table.add_row("Mastered at", therapy_goal.mastered_at.isoformat())
    console.print(table)


@app.command()
def accept(request_id: str = typer.Argument(..., help="Collaboration request ID")):
    """Accept a pending collaboration request."""
    result = _run(_accept_request(request_id))
    console.print(
        f"[green]Accepted {result.request.id}[/green]; relationship {result.relationship.id} "
        f"links therapist {result.relationship.therapist_id} and patient {result.relationship.patient_id}"
    )


@app.command()
def decline(request_id: str = typer.Argument(..., help="Collaboration request ID")):
    """Decline a pending collaboration request."""
    request = _run(_decline_request(request_id))
    console.print(f"[yellow]Declined {request.id}[/yellow]")


def _fmt_pct(value) -> str:
    return "-" if value is None else f"{value:.0f}%"


def _display_report(result: ProgressReport):
    """Display a progress report in rich format."""
    period = result.period
    console.print(
        Panel(
            result.summary,
            title=f"Progress Report {period.start_date:%Y-%m-%d} – {period.end_date:%Y-%m-%d}",
            border_style="blue",
        )
    )

    if result.goals:
        table = Table(title="Goals")
        table.add_column("Goal", style="cyan")
        table.add_column("Progress", justify="right")
        table.add_column("Status")
        table.add_column("Sessions", justify="right")
        table.add_column("Trend")
        for entry in result.goals:
            color = _STATUS_COLORS[entry.mastery_status]
            table.add_row(
                entry.goal_id,
                f"{entry.progress:.1f}%",
                f"[{color}]{entry.mastery_status.value}[/{color}]",
                str(entry.data_points),
                f"{_TREND_ARROWS[entry.trend]} {entry.trend.value}",
            )
        console.print(table)

    console.print("\n[bold]Recommendations:[/bold]")
    for rec in result.recommendations:
        console.print(f"  • {rec}")

    console.print("\n[bold]Next Steps:[/bold]")
    for step in result.next_steps:
        console.print(f"  • {step}")


if __name__ == "__main__":
    app()
