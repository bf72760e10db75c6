"""Structural validation of stored activity records."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Collection, Iterable, Mapping, Optional

from .models import ActivityInterval, Defect, DefectKind, FixAction, SuggestedFix

logger = logging.getLogger(__name__)

DELETE = SuggestedFix(FixAction.DELETE)


def validate(
    intervals: Iterable[ActivityInterval],
    known_references: Optional[Mapping[str, Collection[int]]] = None,
    tolerance_seconds: float = 1.0,
) -> list[Defect]:
    """Flag records that are structurally broken, with a suggested fix each.

    ``known_references`` maps a reference column (``category_id``) to the ids
    that exist; columns missing from the mapping are not checked.
    """
    defects: list[Defect] = []
    for interval in intervals:
        defects.extend(_check_span(interval, tolerance_seconds))
        if known_references:
            defects.extend(_check_references(interval, known_references))
    logger.debug("Cleanup pass found %d defects", len(defects))
    return defects


def _check_span(interval: ActivityInterval, tolerance_seconds: float) -> list[Defect]:
    ref = interval.ref
    recorded = interval.recorded_duration
    end = interval.end
    if end is None:
        if not interval.completed:
            return []
        if recorded and recorded > 0:
            fix = SuggestedFix(
                FixAction.REPAIR, "end_time", interval.start + timedelta(seconds=recorded)
            )
        else:
            fix = DELETE
        return [Defect(ref, DefectKind.MISSING_END, fix, "Completed record has no end time")]

    span = (end - interval.start).total_seconds()
    if span == 0:
        return [Defect(ref, DefectKind.ZERO_DURATION, DELETE, "Record starts and ends at the same time")]
    if span < 0:
        if recorded and recorded > 0:
            fix = SuggestedFix(
                FixAction.REPAIR, "end_time", interval.start + timedelta(seconds=recorded)
            )
        else:
            fix = DELETE
        return [
            Defect(
                ref,
                DefectKind.NEGATIVE_DURATION,
                fix,
                f"Record ends {abs(span):.0f}s before it starts",
            )
        ]
    if recorded is not None and abs(recorded - span) > tolerance_seconds:
        return [
            Defect(
                ref,
                DefectKind.DURATION_MISMATCH,
                SuggestedFix(FixAction.REPAIR, "duration", int(span)),
                f"Stored duration {recorded:.0f}s, calculated {span:.0f}s",
            )
        ]
    return []


def _check_references(
    interval: ActivityInterval,
    known_references: Mapping[str, Collection[int]],
) -> list[Defect]:
    defects = []
    for column, value in sorted(interval.references.items()):
        known = known_references.get(column)
        if known is None or value in known:
            continue
        defects.append(
            Defect(
                interval.ref,
                DefectKind.ORPHANED_REFERENCE,
                SuggestedFix(FixAction.REPAIR, column, None),
                f"{column}={value} does not exist",
            )
        )
    return defects
