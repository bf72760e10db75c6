"""Command-line interface for the activity ledger."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import typer

from .config import ReconcileSettings
from .errors import ReconcileError
from .models import (
    ActivityRef,
    AdjustmentPlan,
    ConflictResolution,
    MergeStrategy,
    SourceType,
)
from .paths import get_db_path
from .reporting import ReportPrinter
from .service import DataQualityService

app = typer.Typer(help="Reconcile tracked time: gaps, overlaps, duplicates and cleanup.")

DB_OPTION = typer.Option(
    None, "--db", path_type=Path, help="Location of the activity SQLite database."
)
START_OPTION = typer.Option(
    None, "--start", help="First day (YYYY-MM-DD) of the range. Defaults to today."
)
END_OPTION = typer.Option(
    None, "--end", help="Last day (YYYY-MM-DD) of the range, inclusive. Defaults to --start."
)


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command()
def gaps(
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    min_gap_minutes: float = typer.Option(
        15.0, "--min-gap", min=0.0, help="Ignore gaps shorter than this many minutes."
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """List untracked time gaps."""
    window_start, window_end = _window(start, end)
    service = _service(db_path, ReconcileSettings.from_options(min_gap_minutes=min_gap_minutes))
    found = _run(service.gaps, window_start, window_end)
    ReportPrinter().print_gaps(found)


@app.command()
def conflicts(
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    duplicate_ratio: float = typer.Option(
        0.95, "--duplicate-ratio", min=0.01, max=1.0,
        help="Overlap ratio at which same-source records with matching labels are duplicates.",
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """List groups of overlapping or duplicate activities."""
    window_start, window_end = _window(start, end)
    service = _service(db_path, ReconcileSettings.from_options(duplicate_ratio=duplicate_ratio))
    groups = _run(service.conflicts, window_start, window_end)
    ReportPrinter().print_conflicts(groups)


@app.command()
def merge(
    ids: List[str] = typer.Option(
        ..., "--id", help="Record to merge as SOURCE:ID, e.g. manual:12. Repeat for each record."
    ),
    strategy: MergeStrategy = typer.Option(MergeStrategy.LONGEST, "--strategy"),
    keep: Optional[str] = typer.Option(
        None, "--keep", help="SOURCE:ID to keep when using manual-selection."
    ),
    widen: bool = typer.Option(
        False, "--widen", help="Stretch the kept record over the whole group."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without applying it."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Merge a group of conflicting records into one."""
    refs = [_parse_ref(value) for value in ids]
    survivor = _parse_ref(keep) if keep else None
    service = _service(db_path)
    decision = _run(
        lambda: service.plan_merge(refs, strategy, survivor_id=survivor, widen=widen)
    )
    ReportPrinter().print_merge(decision)
    if dry_run:
        typer.echo("Dry run: nothing was changed.")
        return
    _run(service.execute_plan, decision)
    typer.echo("Merge applied.")


@app.command()
def resolve(
    ids: List[str] = typer.Option(
        ..., "--id", help="Conflicting record as SOURCE:ID. Repeat for each record."
    ),
    resolution: ConflictResolution = typer.Option(
        ConflictResolution.MERGE, "--resolution",
        help="merge into one, keep one (delete_one) or trim the overlaps (adjust_time).",
    ),
    strategy: MergeStrategy = typer.Option(MergeStrategy.LONGEST, "--strategy"),
    keep: Optional[str] = typer.Option(None, "--keep", help="SOURCE:ID of the record to keep."),
    widen: bool = typer.Option(False, "--widen"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without applying it."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Resolve a conflict group by merging, keeping one record or trimming overlaps."""
    refs = [_parse_ref(value) for value in ids]
    survivor = _parse_ref(keep) if keep else None
    service = _service(db_path)
    plan = _run(
        lambda: service.plan_resolution(
            refs, resolution, strategy, survivor_id=survivor, widen=widen
        )
    )
    printer = ReportPrinter()
    if isinstance(plan, AdjustmentPlan):
        printer.print_adjustment(plan)
    else:
        printer.print_merge(plan)
    if dry_run:
        typer.echo("Dry run: nothing was changed.")
        return
    _run(service.execute_plan, plan)
    typer.echo("Resolution applied.")


@app.command()
def mergeable(
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    max_gap: float = typer.Option(
        300.0, "--max-gap", min=0.0,
        help="Largest gap in seconds between records of one source that still merge.",
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """List same-source records close enough together to merge."""
    window_start, window_end = _window(start, end)
    service = _service(db_path)
    groups = _run(service.mergeable_groups, window_start, window_end, max_gap)
    ReportPrinter().print_mergeable_groups(groups)


@app.command()
def cleanup(
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    apply: bool = typer.Option(False, "--apply", help="Apply every suggested fix."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Find structurally invalid records and optionally fix them."""
    window_start, window_end = _window(start, end)
    service = _service(db_path)
    found = _run(service.defects, window_start, window_end)
    ReportPrinter().print_defects(found)
    if apply and found:
        applied = _run(service.apply_fixes, found)
        typer.echo(f"Applied {applied} fixes.")


@app.command()
def report(
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Print a data-quality report for the range."""
    window_start, window_end = _window(start, end)
    service = _service(db_path)
    ReportPrinter().print_quality_report(_run(service.quality_report, window_start, window_end))


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8766, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = DB_OPTION,
    min_gap_minutes: float = typer.Option(15.0, "--min-gap", min=0.0),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the interactive API docs in your default browser.",
    ),
) -> None:
    """Serve the data-quality HTTP API."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=ReconcileSettings.from_options(min_gap_minutes=min_gap_minutes),
        open_browser=open_browser,
    )


def _service(db_path: Optional[Path], settings: Optional[ReconcileSettings] = None) -> DataQualityService:
    return DataQualityService(db_path or get_db_path(), settings)


def _run(func, *args):
    try:
        return func(*args)
    except (ReconcileError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _window(start: Optional[str], end: Optional[str]) -> tuple[datetime, datetime]:
    start_day = _parse_day(start, "--start")
    end_day = _parse_day(end, "--end") if end else start_day
    if end_day < start_day:
        raise typer.BadParameter("end date must be on or after start date", param_hint="--end")
    return start_day, end_day + timedelta(days=1)


def _parse_day(value: Optional[str], hint: str) -> datetime:
    if not value:
        return datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise typer.BadParameter("expected YYYY-MM-DD", param_hint=hint) from exc


def _parse_ref(value: str) -> ActivityRef:
    source, _, raw_id = value.partition(":")
    try:
        return ActivityRef(int(raw_id), SourceType(source.strip().lower()))
    except ValueError as exc:
        raise typer.BadParameter(
            f"{value!r} is not SOURCE:ID (source is manual, automatic or pomodoro)",
            param_hint="--id",
        ) from exc
