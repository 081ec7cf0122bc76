"""Command-line interface for the Beacon companion."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .config import EngineSettings
from .events import EventBus
from .models import ReminderType
from .paths import get_db_path, get_log_path
from .projects import ProjectRegistry
from .reminders import ReminderEngine
from .server_runner import run_dashboard
from .store import DocumentStore

app = typer.Typer(help="Background coding companion: activity, projects and reminders.")

DB_OPTION_HELP = "Location of the Beacon SQLite database."
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


@contextmanager
def _open_store(db_path: Optional[Path]) -> Iterator[DocumentStore]:
    store = DocumentStore(db_path or get_db_path())
    try:
        yield store
    finally:
        store.close()


@app.command()
def run(
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    poll_seconds: float = typer.Option(
        2.0, "--interval", min=1.0, help="Foreground window sampling interval in seconds."
    ),
    idle_minutes: float = typer.Option(
        5.0, "--idle-threshold", min=0.5, help="Minutes without coding before counting as idle."
    ),
    session_gap_minutes: Optional[float] = typer.Option(
        None, "--session-gap", min=1.0, help="Idle minutes that close a session (default 10)."
    ),
    log_file: bool = typer.Option(
        False, "--log-file", help="Also append logs to beacon.log in the data directory."
    ),
) -> None:
    """Run the companion engine until interrupted."""
    from .companion import Companion

    if log_file:
        handler = logging.FileHandler(get_log_path(), encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)

    settings = EngineSettings.from_intervals(
        poll_seconds=poll_seconds,
        idle_minutes=idle_minutes,
        session_gap_minutes=session_gap_minutes,
    )
    companion = Companion(db_path=db_path or get_db_path(), settings=settings)
    companion.run_forever()


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8766, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    poll_seconds: float = typer.Option(
        2.0, "--interval", min=1.0, help="Foreground window sampling interval in seconds."
    ),
    idle_minutes: float = typer.Option(
        5.0, "--idle-threshold", min=0.5, help="Minutes without coding before counting as idle."
    ),
) -> None:
    """Start the local status API with the engine running behind it."""
    settings = EngineSettings.from_intervals(poll_seconds=poll_seconds, idle_minutes=idle_minutes)
    run_dashboard(host=host, port=port, db_path=db_path or get_db_path(), settings=settings)


@app.command()
def scan(
    roots: List[Path] = typer.Argument(..., help="Directories to search for projects."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    remember: bool = typer.Option(
        False, "--remember", help="Save these roots for periodic rescans."
    ),
) -> None:
    """Scan directories for project roots and register them."""
    with _open_store(db_path) as store:
        registry = ProjectRegistry(EventBus(), store)
        projects = registry.scan_roots(roots)
        if remember:
            store.merge_settings({"scanRoots": [str(root.expanduser().resolve()) for root in roots]})
    for project in projects:
        typer.echo(f"{project.name:<30} {project.language:<12} {project.root_path}")
    typer.echo(f"{len(projects)} project(s) found.")


@app.command()
def projects(
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """List tracked projects with their accumulated time."""
    from .reporting import print_project_stats

    with _open_store(db_path) as store:
        stats = ProjectRegistry(EventBus(), store).get_all_project_stats()
    print_project_stats(stats)


@app.command()
def remind(
    text: str = typer.Argument(..., help="What to be reminded about."),
    at: Optional[datetime] = typer.Option(
        None, "--at", formats=["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M"], help="Fire once at this time."
    ),
    in_minutes: Optional[float] = typer.Option(
        None, "--in", min=0.1, help="Fire once after this many minutes."
    ),
    every_minutes: Optional[float] = typer.Option(
        None, "--every", min=1.0, help="Fire repeatedly at this interval in minutes."
    ),
    daily: Optional[str] = typer.Option(None, "--daily", help="Fire every day at HH:MM."),
    project: Optional[str] = typer.Option(
        None, "--project", help="Fire when the named project becomes active."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Create a reminder."""
    with _open_store(db_path) as store:
        engine = ReminderEngine(EventBus(), store)
        try:
            if project:
                match = next(
                    (p for p in store.get_projects().values() if p.name.lower() == project.lower()),
                    None,
                )
                if match is None:
                    raise ValueError(f"Unknown project {project!r}")
                reminder = engine.add_reminder(
                    text,
                    ReminderType.PROJECT_CONTEXT,
                    project_id=match.id,
                    project_name=match.name,
                )
            elif every_minutes or daily:
                reminder = engine.add_reminder(
                    text,
                    ReminderType.RECURRING,
                    interval_ms=int(every_minutes * 60_000) if every_minutes else None,
                    recurring_time=None if every_minutes else daily,
                )
            else:
                fire_at = at or (
                    datetime.now() + timedelta(minutes=in_minutes) if in_minutes else None
                )
                reminder = engine.add_reminder(text, ReminderType.ONE_SHOT, fire_at=fire_at)
        except ValueError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Created {reminder.type.value} reminder {reminder.id}.")


@app.command()
def reminders(
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Show active reminders and when they will fire."""
    from .reporting import print_briefing

    with _open_store(db_path) as store:
        items = ReminderEngine(EventBus(), store).get_pending_for_briefing()
    print_briefing(items)


if __name__ == "__main__":
    app()
