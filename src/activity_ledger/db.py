"""SQLite storage for activity records and atomic execution of mutation plans."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from .errors import StaleConflict, StorageFailure
from .models import (
    ActivityInterval,
    ActivityRef,
    AdjustmentPlan,
    Defect,
    FixAction,
    MergeDecision,
    SourceType,
)
from .normalization import parse_timestamp

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

_UNSET = object()

SOURCE_TABLES: dict[SourceType, str] = {
    SourceType.MANUAL: "time_entries",
    SourceType.AUTOMATIC: "app_usage",
    SourceType.POMODORO: "pomodoro_sessions",
}

_REFERENCE_COLUMNS: dict[SourceType, tuple[str, ...]] = {
    SourceType.MANUAL: ("category_id", "todo_id"),
    SourceType.AUTOMATIC: ("category_id",),
    SourceType.POMODORO: ("todo_id",),
}


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT
        );

        CREATE TABLE IF NOT EXISTS todos (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS time_entries (
            id INTEGER PRIMARY KEY,
            task TEXT NOT NULL DEFAULT '',
            start_time TEXT,
            end_time TEXT,
            duration INTEGER,
            category_id INTEGER,
            todo_id INTEGER
        );

        CREATE TABLE IF NOT EXISTS app_usage (
            id INTEGER PRIMARY KEY,
            app_name TEXT,
            window_title TEXT,
            domain TEXT,
            url TEXT,
            is_browser INTEGER NOT NULL DEFAULT 0,
            is_idle INTEGER NOT NULL DEFAULT 0,
            start_time TEXT,
            end_time TEXT,
            duration INTEGER,
            category_id INTEGER
        );

        CREATE TABLE IF NOT EXISTS pomodoro_sessions (
            id INTEGER PRIMARY KEY,
            task TEXT NOT NULL DEFAULT '',
            session_type TEXT NOT NULL DEFAULT 'focus',
            start_time TEXT,
            end_time TEXT,
            duration INTEGER,
            completed INTEGER NOT NULL DEFAULT 0,
            interrupted INTEGER NOT NULL DEFAULT 0,
            todo_id INTEGER
        );

        CREATE INDEX IF NOT EXISTS idx_time_entries_start_time
            ON time_entries(start_time);
        CREATE INDEX IF NOT EXISTS idx_app_usage_start_time
            ON app_usage(start_time);
        CREATE INDEX IF NOT EXISTS idx_pomodoro_sessions_start_time
            ON pomodoro_sessions(start_time);
        """
    )


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(DATETIME_FMT) if value is not None else None


def insert_category(conn: sqlite3.Connection, name: str, color: Optional[str] = None) -> int:
    cur = conn.execute("INSERT INTO categories (name, color) VALUES (?, ?)", (name, color))
    return int(cur.lastrowid)


def insert_todo(conn: sqlite3.Connection, title: str) -> int:
    cur = conn.execute("INSERT INTO todos (title) VALUES (?)", (title,))
    return int(cur.lastrowid)


def insert_time_entry(
    conn: sqlite3.Connection,
    task: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    *,
    duration: Any = _UNSET,
    category_id: Optional[int] = None,
    todo_id: Optional[int] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO time_entries (task, start_time, end_time, duration, category_id, todo_id)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            task,
            format_timestamp(start_time),
            format_timestamp(end_time),
            _resolve_duration(duration, start_time, end_time),
            category_id,
            todo_id,
        ),
    )
    return int(cur.lastrowid)


def insert_app_usage(
    conn: sqlite3.Connection,
    app_name: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    *,
    window_title: Optional[str] = None,
    domain: Optional[str] = None,
    url: Optional[str] = None,
    is_browser: bool = False,
    is_idle: bool = False,
    duration: Any = _UNSET,
    category_id: Optional[int] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO app_usage (
            app_name, window_title, domain, url, is_browser, is_idle,
            start_time, end_time, duration, category_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            app_name,
            window_title,
            domain,
            url,
            1 if is_browser else 0,
            1 if is_idle else 0,
            format_timestamp(start_time),
            format_timestamp(end_time),
            _resolve_duration(duration, start_time, end_time),
            category_id,
        ),
    )
    return int(cur.lastrowid)


def insert_pomodoro_session(
    conn: sqlite3.Connection,
    task: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    *,
    session_type: str = "focus",
    completed: bool = True,
    interrupted: bool = False,
    duration: Any = _UNSET,
    todo_id: Optional[int] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO pomodoro_sessions (
            task, session_type, start_time, end_time, duration,
            completed, interrupted, todo_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            task,
            session_type,
            format_timestamp(start_time),
            format_timestamp(end_time),
            _resolve_duration(duration, start_time, end_time),
            1 if completed else 0,
            1 if interrupted else 0,
            todo_id,
        ),
    )
    return int(cur.lastrowid)


def fetch_records_in_range(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> dict[SourceType, list[sqlite3.Row]]:
    """Fetch every record of each source that intersects ``[start, end)``.

    Open records and records with inverted bounds are included when they
    start inside the window so the cleanup pass can see them.
    """
    start_iso = format_timestamp(start)
    end_iso = format_timestamp(end)
    records: dict[SourceType, list[sqlite3.Row]] = {}
    for source, table in SOURCE_TABLES.items():
        records[source] = list(
            conn.execute(
                f"""
                SELECT *
                FROM {table}
                WHERE start_time < ?
                  AND (end_time IS NULL OR end_time > ? OR start_time >= ?)
                ORDER BY start_time, id;
                """,
                (end_iso, start_iso, start_iso),
            )
        )
    return records


def fetch_known_references(conn: sqlite3.Connection) -> dict[str, set[int]]:
    return {
        "category_id": {row["id"] for row in conn.execute("SELECT id FROM categories")},
        "todo_id": {row["id"] for row in conn.execute("SELECT id FROM todos")},
    }


def existing_refs(conn: sqlite3.Connection, refs: Iterable[ActivityRef]) -> set[ActivityRef]:
    found: set[ActivityRef] = set()
    for ref in refs:
        row = conn.execute(
            f"SELECT 1 FROM {SOURCE_TABLES[ref.source_type]} WHERE id = ?", (ref.id,)
        ).fetchone()
        if row is not None:
            found.add(ref)
    return found


def fetch_records_by_refs(
    conn: sqlite3.Connection, refs: Iterable[ActivityRef]
) -> dict[ActivityRef, sqlite3.Row]:
    """Fetch stored rows by identity, whatever day they fall on.

    Refs with no row are simply absent from the result.
    """
    wanted: dict[SourceType, list[int]] = {}
    for ref in dict.fromkeys(refs):
        wanted.setdefault(ref.source_type, []).append(ref.id)
    found: dict[ActivityRef, sqlite3.Row] = {}
    for source, ids in wanted.items():
        placeholders = ", ".join("?" for _ in ids)
        rows = conn.execute(
            f"SELECT * FROM {SOURCE_TABLES[source]} WHERE id IN ({placeholders})",
            ids,
        )
        for row in rows:
            found[ActivityRef(row["id"], source)] = row
    return found


def apply_merge_decision(conn: sqlite3.Connection, decision: MergeDecision) -> None:
    """Execute a merge plan in one transaction.

    The survivor is updated (when its bounds changed) and confirmed before any
    discarded row is deleted; any failure rolls the whole plan back.
    """
    survivor = decision.survivor
    with _transaction(conn, "merge"):
        _require_existing(conn, [survivor.ref, *decision.discard])
        if decision.widened:
            _update_bounds(conn, survivor)
        for ref in decision.discard:
            _delete(conn, ref)
    logger.info(
        "Merged %d records into %s (resolution=%s, strategy=%s)",
        len(decision.discard) + 1,
        survivor.ref,
        decision.resolution.value,
        decision.strategy.value,
    )


def apply_adjustment_plan(conn: sqlite3.Connection, plan: AdjustmentPlan) -> int:
    """Write trimmed bounds and drop collapsed records in one transaction."""
    refs = [interval.ref for interval in plan.updates] + list(plan.discard)
    with _transaction(conn, "adjust"):
        _require_existing(conn, refs)
        for interval in plan.updates:
            _update_bounds(conn, interval)
        for ref in plan.discard:
            _delete(conn, ref)
    logger.info(
        "Adjusted %d records, discarded %d", len(plan.updates), len(plan.discard)
    )
    return len(refs)


def delete_activities(conn: sqlite3.Connection, refs: Sequence[ActivityRef]) -> int:
    unique = list(dict.fromkeys(refs))
    with _transaction(conn, "delete"):
        _require_existing(conn, unique)
        for ref in unique:
            _delete(conn, ref)
    logger.info("Deleted %d records", len(unique))
    return len(unique)


def _update_bounds(conn: sqlite3.Connection, interval: ActivityInterval) -> None:
    end = interval.end
    if end is None:
        raise ValueError(f"Cannot store open bounds for {interval.ref}")
    cur = conn.execute(
        f"""
        UPDATE {SOURCE_TABLES[interval.source_type]}
        SET start_time = ?, end_time = ?, duration = ?
        WHERE id = ?
        """,
        (
            format_timestamp(interval.start),
            format_timestamp(end),
            int((end - interval.start).total_seconds()),
            interval.id,
        ),
    )
    if cur.rowcount != 1:
        raise StaleConflict([interval.ref])


def apply_defect_fixes(conn: sqlite3.Connection, defects: Sequence[Defect]) -> int:
    """Apply the suggested fix of every defect atomically; returns fixes applied."""
    deleted = {defect.ref for defect in defects if defect.fix.action is FixAction.DELETE}
    applied = 0
    with _transaction(conn, "cleanup"):
        _require_existing(conn, {defect.ref for defect in defects})
        for ref in sorted(deleted, key=lambda r: (r.source_type.value, r.id)):
            _delete(conn, ref)
            applied += 1
        for defect in defects:
            if defect.ref in deleted:
                continue
            _repair(conn, defect)
            applied += 1
    logger.info("Applied %d cleanup fixes", applied)
    return applied


def _repair(conn: sqlite3.Connection, defect: Defect) -> None:
    ref = defect.ref
    table = SOURCE_TABLES[ref.source_type]
    field = defect.fix.field
    if field == "end_time":
        row = conn.execute(f"SELECT start_time FROM {table} WHERE id = ?", (ref.id,)).fetchone()
        start = parse_timestamp(row["start_time"])
        end = parse_timestamp(defect.fix.value)
        if start is None or end is None:
            raise ValueError(f"Cannot repair end_time of {ref} without both timestamps")
        conn.execute(
            f"UPDATE {table} SET end_time = ?, duration = ? WHERE id = ?",
            (format_timestamp(end), int((end - start).total_seconds()), ref.id),
        )
    elif field == "duration":
        conn.execute(f"UPDATE {table} SET duration = ? WHERE id = ?", (defect.fix.value, ref.id))
    elif field in _REFERENCE_COLUMNS[ref.source_type]:
        conn.execute(f"UPDATE {table} SET {field} = ? WHERE id = ?", (defect.fix.value, ref.id))
    else:
        raise ValueError(f"Unsupported repair field {field!r} for {ref}")


def _delete(conn: sqlite3.Connection, ref: ActivityRef) -> None:
    cur = conn.execute(f"DELETE FROM {SOURCE_TABLES[ref.source_type]} WHERE id = ?", (ref.id,))
    if cur.rowcount != 1:
        raise StaleConflict([ref])


def _require_existing(conn: sqlite3.Connection, refs: Iterable[ActivityRef]) -> None:
    wanted = list(dict.fromkeys(refs))
    present = existing_refs(conn, wanted)
    missing = [ref for ref in wanted if ref not in present]
    if missing:
        raise StaleConflict(missing)


@contextmanager
def _transaction(conn: sqlite3.Connection, operation: str) -> Iterator[sqlite3.Connection]:
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise StorageFailure(operation, str(exc)) from exc
    try:
        yield conn
    except sqlite3.Error as exc:
        conn.execute("ROLLBACK")
        logger.exception("Storage operation %s failed; rolled back.", operation)
        raise StorageFailure(operation, str(exc)) from exc
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise StorageFailure(operation, str(exc)) from exc


def _resolve_duration(
    duration: Any, start_time: datetime, end_time: Optional[datetime]
) -> Optional[int]:
    if duration is not _UNSET:
        return duration
    if end_time is None:
        return None
    return int((end_time - start_time).total_seconds())
