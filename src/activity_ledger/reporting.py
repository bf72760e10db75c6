"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .gaps import gap_statistics
from .models import (
    ActivityInterval,
    AdjustmentPlan,
    ConflictGroup,
    Defect,
    MergeableGroup,
    MergeDecision,
    TimeGap,
)

TIME_FMT = "%Y-%m-%d %H:%M"


class ReportPrinter:
    """Render detection results as human-readable console tables."""

    def print_gaps(self, gaps: Sequence[TimeGap]) -> None:
        if not gaps:
            print("No untracked gaps in the selected range.")
            return
        stats = gap_statistics(gaps)
        print(f"Untracked gaps: {stats.total_gaps}")
        print("-" * 40)
        for gap in gaps:
            print(
                f"  {gap.start.strftime(TIME_FMT)} -> {gap.end.strftime(TIME_FMT)}"
                f"  {format_duration(gap.duration_seconds)}"
            )
        print()
        print(f"Total untracked: {format_duration(stats.total_untracked_seconds)}")
        print(f"Longest gap:     {format_duration(stats.longest_gap_seconds)}")

    def print_conflicts(self, groups: Sequence[ConflictGroup]) -> None:
        if not groups:
            print("No overlapping or duplicate activities found.")
            return
        for number, group in enumerate(groups, start=1):
            print(
                f"[{number}] {group.conflict_type.value} ({group.severity.value})"
                f"  {group.start.strftime(TIME_FMT)} -> {group.end.strftime(TIME_FMT)}"
            )
            for member in group.members:
                print(f"    {describe_interval(member)}")

    def print_defects(self, defects: Sequence[Defect]) -> None:
        if not defects:
            print("No structural defects found.")
            return
        print(f"Defects: {len(defects)}")
        print("-" * 40)
        for defect in defects:
            print(f"  {str(defect.ref):<16} {defect.kind.value:<18} {defect.fix.describe()}")

    def print_merge(self, decision: MergeDecision) -> None:
        print(f"Kept:      {describe_interval(decision.survivor)}")
        for ref in decision.discard:
            print(f"Discarded: {ref}")

    def print_adjustment(self, plan: AdjustmentPlan) -> None:
        if not plan.updates and not plan.discard:
            print("Nothing to adjust.")
            return
        for interval in plan.updates:
            print(f"Trimmed:   {describe_interval(interval)}")
        for ref in plan.discard:
            print(f"Discarded: {ref}")

    def print_mergeable_groups(self, groups: Sequence[MergeableGroup]) -> None:
        if not groups:
            print("No mergeable records found.")
            return
        for number, group in enumerate(groups, start=1):
            print(f"[{number}] {group.source_type.value} ({len(group.members)} records)")
            for member in group.members:
                print(f"    {describe_interval(member)}")

    def print_quality_report(self, report: Mapping[str, Any]) -> None:
        print(f"Data quality {report['start'][:10]} .. {report['end'][:10]}")
        print("-" * 40)
        print(f"Quality score:    {report['quality_score']}")
        print(f"Activities:       {report['total_activities']}")
        print(f"Tracked time:     {format_duration(report['tracked_seconds'])}")
        print(f"Untracked time:   {format_duration(report['untracked_seconds'])}")
        print(f"Gaps:             {report['gaps_count']}")
        print(f"Conflict groups:  {report['conflict_groups_count']}")
        print(f"Duplicate groups: {report['duplicate_groups_count']}")
        for kind, count in _items(report["defects_by_kind"]):
            print(f"  {kind:<18} {count}")
        if report["malformed_records"]:
            print(f"Malformed records: {len(report['malformed_records'])}")


def describe_interval(interval: ActivityInterval) -> str:
    end = interval.end.strftime(TIME_FMT) if interval.end else "(running)"
    duration = interval.duration_seconds
    label = interval.label or "(untitled)"
    return (
        f"{str(interval.ref):<16} {label[:30]:<30} "
        f"{interval.start.strftime(TIME_FMT)} -> {end}"
        f"  {format_duration(duration) if duration is not None else '--:--:--'}"
    )


def _items(mapping: Mapping[str, int]) -> Iterable[tuple[str, int]]:
    return sorted(mapping.items(), key=lambda item: item[1], reverse=True)


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    sign = "-" if total_seconds < 0 else ""
    hours, remainder = divmod(abs(total_seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{secs:02d}"
