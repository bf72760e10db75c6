"""Normalize manual, automatic and Pomodoro records into activity intervals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from .errors import MalformedRecord
from .models import ActivityInterval, SourceType
from .normalization import normalize_window_title, parse_timestamp

logger = logging.getLogger(__name__)

REFERENCE_COLUMNS: tuple[str, ...] = ("category_id", "todo_id")


@dataclass(slots=True)
class NormalizationResult:
    intervals: list[ActivityInterval] = field(default_factory=list)
    diagnostics: list[MalformedRecord] = field(default_factory=list)

    def extend(self, other: "NormalizationResult") -> None:
        self.intervals.extend(other.intervals)
        self.diagnostics.extend(other.diagnostics)


def interval_from_time_entry(row: Mapping[str, Any]) -> ActivityInterval:
    source = SourceType.MANUAL
    record_id, start, end, duration = _core_fields(row, source)
    return ActivityInterval(
        id=record_id,
        source_type=source,
        start=start,
        end=end,
        label=(_get(row, "task") or "").strip(),
        recorded_duration=duration,
        completed=_completed(row, default=bool(duration and duration > 0)),
        references=_references(row, source, record_id),
        metadata={"original_table": "time_entries"},
    )


def interval_from_app_usage(row: Mapping[str, Any]) -> ActivityInterval:
    source = SourceType.AUTOMATIC
    record_id, start, end, duration = _core_fields(row, source)
    app_name = _get(row, "app_name")
    domain = _get(row, "domain")
    is_browser = bool(_get(row, "is_browser"))
    label = (domain or app_name) if is_browser else app_name
    return ActivityInterval(
        id=record_id,
        source_type=source,
        start=start,
        end=end,
        label=(label or "").strip(),
        recorded_duration=duration,
        completed=_completed(row, default=bool(duration and duration > 0)),
        references=_references(row, source, record_id),
        metadata={
            "original_table": "app_usage",
            "app_name": app_name,
            "window_title": normalize_window_title(app_name, _get(row, "window_title")),
            "domain": domain,
            "url": _get(row, "url"),
            "is_browser": is_browser,
            "is_idle": bool(_get(row, "is_idle")),
        },
    )


def interval_from_pomodoro_session(row: Mapping[str, Any]) -> ActivityInterval:
    source = SourceType.POMODORO
    record_id, start, end, duration = _core_fields(row, source)
    session_type = _get(row, "session_type") or "focus"
    if session_type == "focus":
        label = (_get(row, "task") or "").strip()
    else:
        label = f"{session_type} Break"
    completed = bool(_get(row, "completed"))
    interrupted = bool(_get(row, "interrupted"))
    return ActivityInterval(
        id=record_id,
        source_type=source,
        start=start,
        end=end,
        label=label,
        recorded_duration=duration,
        completed=completed or interrupted,
        references=_references(row, source, record_id),
        metadata={
            "original_table": "pomodoro_sessions",
            "session_type": session_type,
            "completed": completed,
            "interrupted": interrupted,
        },
    )


_BUILDERS: dict[SourceType, Callable[[Mapping[str, Any]], ActivityInterval]] = {
    SourceType.MANUAL: interval_from_time_entry,
    SourceType.AUTOMATIC: interval_from_app_usage,
    SourceType.POMODORO: interval_from_pomodoro_session,
}


def normalize_record(row: Mapping[str, Any], source_type: SourceType | str) -> ActivityInterval:
    """Build an interval for one stored row; raises ``MalformedRecord``."""
    return _BUILDERS[SourceType(source_type)](row)


def normalize_records(
    rows: Iterable[Mapping[str, Any]], source_type: SourceType | str
) -> NormalizationResult:
    source = SourceType(source_type)
    result = NormalizationResult()
    for row in rows:
        try:
            result.intervals.append(normalize_record(row, source))
        except MalformedRecord as exc:
            logger.warning("Skipping malformed record: %s", exc)
            result.diagnostics.append(exc)
    return result


def _core_fields(row: Mapping[str, Any], source: SourceType):
    raw_id = _get(row, "id")
    if raw_id is None:
        raise MalformedRecord(source, None, "record has no id")
    try:
        record_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(source, raw_id, "record id is not an integer") from exc
    try:
        start = parse_timestamp(_get(row, "start_time"))
    except ValueError as exc:
        raise MalformedRecord(source, record_id, f"unparsable start_time: {exc}") from exc
    if start is None:
        raise MalformedRecord(source, record_id, "record has no start_time")
    try:
        end = parse_timestamp(_get(row, "end_time"))
    except ValueError as exc:
        raise MalformedRecord(source, record_id, f"unparsable end_time: {exc}") from exc
    duration = _get(row, "duration")
    try:
        recorded = float(duration) if duration is not None else None
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(source, record_id, f"unparsable duration: {duration!r}") from exc
    return record_id, start, end, recorded


def _completed(row: Mapping[str, Any], default: bool) -> bool:
    value = _get(row, "completed")
    if value is None:
        return default
    return bool(value)


def _references(row: Mapping[str, Any], source: SourceType, record_id: int) -> dict[str, int]:
    references: dict[str, int] = {}
    for column in REFERENCE_COLUMNS:
        value = _get(row, column)
        if value is None:
            continue
        try:
            references[column] = int(value)
        except (TypeError, ValueError) as exc:
            raise MalformedRecord(source, record_id, f"unparsable {column}: {value!r}") from exc
    return references


def _get(row: Mapping[str, Any], key: str) -> Optional[Any]:
    # sqlite3.Row supports keys() and [] but not get()
    try:
        if key not in row.keys():
            return None
    except AttributeError:
        return None
    return row[key]
