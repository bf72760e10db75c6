"""Snapshot loading and orchestration shared by the CLI and the HTTP API."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from .cleanup import validate
from .config import ReconcileSettings
from .conflicts import build_group, detect_conflicts
from .db import (
    apply_adjustment_plan,
    apply_defect_fixes,
    apply_merge_decision,
    database_connection,
    delete_activities,
    fetch_known_references,
    fetch_records_by_refs,
    fetch_records_in_range,
)
from .errors import InvalidWindow, MalformedRecord, StaleConflict, StorageFailure
from .gaps import GapStatistics, busy_runs, detect_gaps, gap_statistics
from .intervals import NormalizationResult, normalize_record, normalize_records
from .models import (
    ActivityInterval,
    ActivityRef,
    AdjustmentPlan,
    ConflictGroup,
    ConflictResolution,
    ConflictType,
    Defect,
    MergeableGroup,
    MergeDecision,
    MergeStrategy,
    Severity,
    TimeGap,
)
from .resolver import find_mergeable_groups, resolve, resolve_conflict

logger = logging.getLogger(__name__)

Plan = Union[MergeDecision, AdjustmentPlan]


@dataclass(slots=True)
class Snapshot:
    """Point-in-time view of every record intersecting a window."""

    start: datetime
    end: datetime
    intervals: list[ActivityInterval] = field(default_factory=list)
    diagnostics: list[MalformedRecord] = field(default_factory=list)
    known_references: dict[str, set[int]] = field(default_factory=dict)


class DataQualityService:
    """Run detection passes over stored records and execute remediation plans."""

    def __init__(self, db_path: Path, settings: Optional[ReconcileSettings] = None) -> None:
        self.db_path = Path(db_path)
        self.settings = settings or ReconcileSettings()

    def load_snapshot(self, start: datetime, end: datetime) -> Snapshot:
        if start >= end:
            raise InvalidWindow(start, end)
        with database_connection(self.db_path) as conn:
            rows = fetch_records_in_range(conn, start, end)
            known = fetch_known_references(conn)
        result = NormalizationResult()
        for source, source_rows in rows.items():
            result.extend(normalize_records(source_rows, source))
        result.intervals.sort(key=ActivityInterval.sort_key)
        logger.debug(
            "Loaded %d intervals (%d malformed) for [%s, %s)",
            len(result.intervals),
            len(result.diagnostics),
            start.isoformat(),
            end.isoformat(),
        )
        return Snapshot(start, end, result.intervals, result.diagnostics, known)

    def gaps(
        self,
        start: datetime,
        end: datetime,
        min_gap_seconds: Optional[float] = None,
    ) -> list[TimeGap]:
        snapshot = self.load_snapshot(start, end)
        minimum = self.settings.min_gap_seconds if min_gap_seconds is None else min_gap_seconds
        return detect_gaps(snapshot.intervals, start, end, minimum)

    def gap_statistics(
        self,
        start: datetime,
        end: datetime,
        min_gap_seconds: Optional[float] = None,
    ) -> GapStatistics:
        return gap_statistics(self.gaps(start, end, min_gap_seconds))

    def conflicts(self, start: datetime, end: datetime) -> list[ConflictGroup]:
        snapshot = self.load_snapshot(start, end)
        return detect_conflicts(snapshot.intervals, self.settings)

    def defects(self, start: datetime, end: datetime) -> list[Defect]:
        snapshot = self.load_snapshot(start, end)
        return validate(
            snapshot.intervals,
            snapshot.known_references,
            self.settings.duration_tolerance_seconds,
        )

    def mergeable_groups(
        self,
        start: datetime,
        end: datetime,
        max_gap_seconds: Optional[float] = None,
    ) -> list[MergeableGroup]:
        snapshot = self.load_snapshot(start, end)
        gap = self.settings.max_merge_gap_seconds if max_gap_seconds is None else max_gap_seconds
        return find_mergeable_groups(snapshot.intervals, gap)

    def load_records(self, refs: Sequence[ActivityRef]) -> list[ActivityInterval]:
        """Load the selected records by identity; raises ``StaleConflict`` for gone ids."""
        wanted = list(dict.fromkeys(refs))
        with database_connection(self.db_path) as conn:
            rows = fetch_records_by_refs(conn, wanted)
        missing = [ref for ref in wanted if ref not in rows]
        if missing:
            raise StaleConflict(missing)
        return [normalize_record(rows[ref], ref.source_type) for ref in wanted]

    def selection_group(self, refs: Sequence[ActivityRef]) -> ConflictGroup:
        """Group the selected records for resolution.

        Overlapping records form a regular conflict group. Same-source records
        that only sit close together (see ``find_mergeable_groups``) form a
        ``gap`` group so they can still be merged.
        """
        intervals = self.load_records(refs)
        try:
            return build_group(intervals, self.settings)
        except ValueError:
            closed = [interval for interval in intervals if interval.is_analyzable]
            candidates = find_mergeable_groups(closed, self.settings.max_merge_gap_seconds)
            if len(candidates) != 1 or len(candidates[0].members) != len(closed):
                raise
            return ConflictGroup(
                members=candidates[0].members,
                conflict_type=ConflictType.GAP,
                severity=Severity.LOW,
            )

    def plan_merge(
        self,
        refs: Sequence[ActivityRef],
        strategy: MergeStrategy | str,
        *,
        survivor_id: Optional[ActivityRef] = None,
        widen: bool = False,
    ) -> MergeDecision:
        group = self.selection_group(refs)
        return resolve(group, strategy, survivor_id=survivor_id, widen=widen)

    def plan_resolution(
        self,
        refs: Sequence[ActivityRef],
        resolution: ConflictResolution | str,
        strategy: MergeStrategy | str = MergeStrategy.LONGEST,
        *,
        survivor_id: Optional[ActivityRef] = None,
        widen: bool = False,
    ) -> Plan:
        group = self.selection_group(refs)
        return resolve_conflict(
            group, resolution, strategy, survivor_id=survivor_id, widen=widen
        )

    def merge(
        self,
        refs: Sequence[ActivityRef],
        strategy: MergeStrategy | str,
        *,
        survivor_id: Optional[ActivityRef] = None,
        widen: bool = False,
    ) -> MergeDecision:
        decision = self.plan_merge(refs, strategy, survivor_id=survivor_id, widen=widen)
        self.execute_plan(decision)
        return decision

    def execute_plan(self, plan: Plan) -> None:
        with database_connection(self.db_path) as conn:
            if isinstance(plan, AdjustmentPlan):
                apply_adjustment_plan(conn, plan)
            else:
                apply_merge_decision(conn, plan)

    def resolve_conflict(
        self,
        refs: Sequence[ActivityRef],
        resolution: ConflictResolution | str,
        strategy: MergeStrategy | str = MergeStrategy.LONGEST,
        *,
        survivor_id: Optional[ActivityRef] = None,
        widen: bool = False,
    ) -> dict[str, Any]:
        """Plan and apply a resolution: ``{"success": bool, "plan" | "error"}``."""
        plan = self.plan_resolution(
            refs, resolution, strategy, survivor_id=survivor_id, widen=widen
        )
        try:
            self.execute_plan(plan)
        except StorageFailure as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "plan": plan.as_dict()}

    def apply_fixes(self, defects: Sequence[Defect]) -> int:
        if not defects:
            return 0
        with database_connection(self.db_path) as conn:
            return apply_defect_fixes(conn, defects)

    def delete(self, refs: Sequence[ActivityRef]) -> int:
        with database_connection(self.db_path) as conn:
            return delete_activities(conn, refs)

    def bulk_operation(
        self,
        refs: Sequence[ActivityRef],
        operation: str,
        merge_strategy: MergeStrategy | str = MergeStrategy.LONGEST,
        survivor_id: Optional[ActivityRef] = None,
    ) -> dict[str, Any]:
        """Bulk entry point: ``{"success": bool, ...}``.

        Records are addressed by identity, so any day can be touched. Storage
        failures are reported as ``success: False``; stale plans still raise
        ``StaleConflict`` so the caller knows to re-detect.
        """
        try:
            if operation == "merge":
                decision = self.merge(refs, merge_strategy, survivor_id=survivor_id)
                return {"success": True, "merge": decision.as_dict()}
            if operation == "delete":
                return {"success": True, "deleted": self.delete(refs)}
        except StorageFailure as exc:
            return {"success": False, "error": str(exc)}
        raise ValueError(f"Unsupported bulk operation: {operation!r}")

    def quality_report(self, start: datetime, end: datetime) -> dict[str, Any]:
        snapshot = self.load_snapshot(start, end)
        defects = validate(
            snapshot.intervals,
            snapshot.known_references,
            self.settings.duration_tolerance_seconds,
        )
        gaps = detect_gaps(snapshot.intervals, start, end, self.settings.min_gap_seconds)
        groups = detect_conflicts(snapshot.intervals, self.settings)
        tracked = sum(run.duration_seconds for run in busy_runs(snapshot.intervals, start, end))

        by_kind = Counter(defect.kind.value for defect in defects)
        defective = {defect.ref for defect in defects}
        total = len(snapshot.intervals) + len(snapshot.diagnostics)
        issues = len(defective) + len(snapshot.diagnostics)
        score = max(0, round(100 - (issues / total) * 100)) if total else 100
        stats = gap_statistics(gaps)
        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total_activities": total,
            "valid_activities": len(snapshot.intervals) - len(defective),
            "malformed_records": [diagnostic.as_dict() for diagnostic in snapshot.diagnostics],
            "defects_by_kind": dict(sorted(by_kind.items())),
            "tracked_seconds": tracked,
            "gaps_count": stats.total_gaps,
            "untracked_seconds": stats.total_untracked_seconds,
            "conflict_groups_count": len(groups),
            "duplicate_groups_count": sum(
                1 for group in groups if group.conflict_type is ConflictType.DUPLICATE
            ),
            "quality_score": score,
        }
