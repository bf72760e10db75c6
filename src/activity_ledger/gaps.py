"""Untracked-time detection over a closed query window.

Intervals are treated as half-open ``[start, end)`` spans in both the merge
step and the gap-emission step, so records that touch (``a.end == b.start``)
form one busy run and never produce a zero-length gap between them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .errors import InvalidWindow
from .models import ActivityInterval, ActivityRef, TimeGap

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BusyRun:
    start: datetime
    end: datetime
    first: ActivityRef
    last: ActivityRef

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass(frozen=True, slots=True)
class GapStatistics:
    total_gaps: int
    total_untracked_seconds: float
    average_gap_seconds: float
    longest_gap_seconds: float

    def as_dict(self) -> dict[str, float]:
        return {
            "total_gaps": self.total_gaps,
            "total_untracked_seconds": self.total_untracked_seconds,
            "average_gap_seconds": self.average_gap_seconds,
            "longest_gap_seconds": self.longest_gap_seconds,
        }


def busy_runs(
    intervals: Iterable[ActivityInterval],
    window_start: datetime,
    window_end: datetime,
) -> list[BusyRun]:
    """Merge the window-clipped intervals into maximal busy runs."""
    _check_window(window_start, window_end)

    clipped: list[tuple[datetime, datetime, ActivityRef]] = []
    for interval in intervals:
        end = interval.end
        if end is None or end <= interval.start:
            continue
        if interval.start >= window_end or end <= window_start:
            continue
        clipped.append((max(interval.start, window_start), min(end, window_end), interval.ref))
    clipped.sort(key=lambda item: (item[0], item[1], item[2].source_type.value, item[2].id))

    runs: list[BusyRun] = []
    for start, end, ref in clipped:
        if runs and start <= runs[-1].end:
            if end > runs[-1].end:
                runs[-1] = replace(runs[-1], end=end, last=ref)
            continue
        runs.append(BusyRun(start, end, ref, ref))
    return runs


def detect_gaps(
    intervals: Iterable[ActivityInterval],
    window_start: datetime,
    window_end: datetime,
    min_gap_seconds: float = 15 * 60,
) -> list[TimeGap]:
    """Return the untracked spans of the window at least ``min_gap_seconds`` long."""
    if min_gap_seconds < 0:
        raise ValueError("min_gap_seconds must not be negative")
    runs = busy_runs(intervals, window_start, window_end)

    gaps: list[TimeGap] = []
    cursor = window_start
    before: Optional[ActivityRef] = None
    for run in runs:
        _emit(gaps, cursor, run.start, before, run.first, min_gap_seconds)
        cursor = run.end
        before = run.last
    _emit(gaps, cursor, window_end, before, None, min_gap_seconds)

    logger.debug(
        "Detected %d gaps across %d busy runs in [%s, %s)",
        len(gaps),
        len(runs),
        window_start.isoformat(),
        window_end.isoformat(),
    )
    return gaps


def gap_statistics(gaps: Sequence[TimeGap]) -> GapStatistics:
    durations = [gap.duration_seconds for gap in gaps]
    total = sum(durations)
    return GapStatistics(
        total_gaps=len(durations),
        total_untracked_seconds=total,
        average_gap_seconds=total / len(durations) if durations else 0.0,
        longest_gap_seconds=max(durations) if durations else 0.0,
    )


def _emit(
    gaps: list[TimeGap],
    start: datetime,
    end: datetime,
    before: Optional[ActivityRef],
    after: Optional[ActivityRef],
    min_gap_seconds: float,
) -> None:
    if end <= start:
        return
    if (end - start).total_seconds() >= min_gap_seconds:
        gaps.append(TimeGap(start=start, end=end, before=before, after=after))


def _check_window(window_start: datetime, window_end: datetime) -> None:
    if window_start >= window_end:
        raise InvalidWindow(window_start, window_end)
