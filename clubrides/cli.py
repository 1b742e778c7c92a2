"""
Command-line interface for Club Rides.

Provides commands for:
- Database initialisation and membership seeding
- Ride code generation
- Offline activity matching against a ride
- Ride summary display
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from clubrides.activity_schemas import MatchResult, StravaActivity
from clubrides.authorization import ClubMembership, ClubRole
from clubrides.config import get_settings
from clubrides.database import SqlAlchemyStore, get_session_factory, init_database
from clubrides.logging_config import setup_logging
from clubrides.matching import ActivityMatcher, generate_ride_code
from clubrides.schemas import Ride, RideSummary, generate_id, utcnow

app = typer.Typer(help="Club Rides - ride lifecycle, participation and Strava attendance matching")
console = Console()

DATABASE_URL_OPTION = typer.Option(
    None, "--database-url", "-d", help="Database URL (defaults to DATABASE_URL)"
)


def _open_store(database_url: Optional[str]) -> SqlAlchemyStore:
    engine = init_database(database_url or get_settings().DATABASE_URL)
    return SqlAlchemyStore(get_session_factory(engine)())


def _load_json(path: Path) -> dict:
    with open(path, "r") as f:
        return json.load(f)


# ===== DISPLAY HELPER FUNCTIONS =====


def _display_match_result(ride: Ride, activity: StravaActivity, result: MatchResult):
    """
    Display a match outcome with the inputs that drove it.

    Args:
        ride: Ride matched against
        activity: Activity being evaluated
        result: Matcher output
    """
    color = "green" if result.matched else "red"
    verdict = "MATCHED" if result.matched else "NO MATCH"
    console.print(f"\n[bold][{color}]{verdict}[/{color}][/bold] ({result.match_type.value})")

    table = Table(title=f"{activity.name or activity.strava_activity_id} vs {ride.title}", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Ride code", generate_ride_code(ride.ride_id))
    table.add_row("Ride start", ride.start_date_time.isoformat())
    table.add_row("Activity start", activity.start_date_utc.isoformat())
    table.add_row("Activity type", activity.sport_type or activity.type)
    table.add_row("Distance", f"{activity.distance_meters / 1000:.1f} km")
    if ride.route and ride.route.distance:
        table.add_row("Planned distance", f"{ride.route.distance:.1f} km")
    table.add_row("Confidence", f"{result.confidence:.2f}")
    console.print(table)

    if result.reason:
        console.print(f"  {result.reason}")


def _display_summary(summary: RideSummary):
    table = Table(title=f"Ride {summary.ride_id}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="yellow")

    table.add_row("Completed", summary.completed_at.isoformat())
    table.add_row("Planned", str(summary.participants_planned))
    table.add_row("Attended", str(summary.participants_attended))
    table.add_row("No-show", str(summary.participants_no_show))
    table.add_row("With Strava", str(summary.participants_with_strava))
    table.add_row("With manual evidence", str(summary.participants_with_manual_evidence))

    metrics = summary.aggregated_metrics
    if metrics is not None:
        table.add_row("Total distance", f"{metrics.total_distance_meters / 1000:.1f} km")
        table.add_row("Total elevation", f"{metrics.total_elevation_gain_meters:.0f} m")
        table.add_row("Average speed", f"{metrics.average_speed_mps * 3.6:.1f} km/h")

    console.print(table)


# ===== COMMANDS =====


@app.callback()
def main():
    """Configure logging for every command."""
    setup_logging()


@app.command("init-db")
def init_db(database_url: Optional[str] = DATABASE_URL_OPTION):
    """Create all database tables."""
    url = database_url or get_settings().DATABASE_URL
    init_database(url)
    console.print(f"✓ Database ready: [cyan]{url}[/cyan]")


@app.command("add-member")
def add_member(
    user_id: str = typer.Argument(..., help="User to add"),
    club_id: str = typer.Argument(..., help="Club joined"),
    role: ClubRole = typer.Option(ClubRole.MEMBER, "--role", "-r", help="Club role"),
    database_url: Optional[str] = DATABASE_URL_OPTION,
):
    """Record an active club membership."""
    store = _open_store(database_url)
    try:
        store.memberships.add_membership(
            user_id,
            ClubMembership(
                membership_id=generate_id("mem"), club_id=club_id, role=role, joined_at=utcnow()
            ),
        )
    finally:
        store.session.close()
    console.print(f"✓ {user_id} is now [green]{role.value}[/green] of {club_id}")


@app.command("ride-code")
def ride_code(ride_id: str = typer.Argument(..., help="Ride identifier")):
    """Print the code riders put in their activity title."""
    console.print(generate_ride_code(ride_id))


@app.command("match-activity")
def match_activity(
    ride: Path = typer.Option(..., "--ride", "-r", help="Ride JSON file", exists=True),
    activity: Path = typer.Option(
        ..., "--activity", "-a", help="Strava activity JSON file (API payload)", exists=True
    ),
    user_id: str = typer.Option("cli", "--user-id", "-u", help="Owner of the activity"),
):
    """Match one Strava activity against one ride without touching the database."""
    try:
        ride_value = Ride.model_validate(_load_json(ride))
        activity_value = StravaActivity.from_strava_response(user_id, _load_json(activity))
    except (OSError, ValueError, KeyError) as e:
        console.print(f"[red]✗ Failed to load input: {e}[/red]")
        raise typer.Exit(1)

    result = ActivityMatcher().match(activity_value, ride_value)
    _display_match_result(ride_value, activity_value, result)


@app.command()
def summary(
    ride_id: str = typer.Argument(..., help="Ride identifier"),
    database_url: Optional[str] = DATABASE_URL_OPTION,
):
    """Show the stored summary of a completed ride."""
    store = _open_store(database_url)
    try:
        ride = store.rides.find_by_id(ride_id)
        if ride is None:
            console.print(f"[red]✗ Ride not found: {ride_id}[/red]")
            raise typer.Exit(1)

        stored = store.rides.find_ride_summary(ride_id)
        if stored is None:
            console.print(
                f"[yellow]No summary for ride {ride_id} (status: {ride.status.value})[/yellow]"
            )
            raise typer.Exit(1)
    finally:
        store.session.close()

    _display_summary(stored)


if __name__ == "__main__":
    app()
