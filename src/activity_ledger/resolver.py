"""Turn a conflict group into a merge, keep-one or trim plan.

The resolver only decides; deleting discarded rows and updating survivors
is the storage layer's job (see ``db.apply_merge_decision`` and
``db.apply_adjustment_plan``).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional, Union

from .models import (
    ActivityInterval,
    ActivityRef,
    AdjustmentPlan,
    ConflictGroup,
    ConflictResolution,
    MergeableGroup,
    MergeDecision,
    MergeStrategy,
    SourceType,
)

logger = logging.getLogger(__name__)


def resolve(
    group: ConflictGroup,
    strategy: MergeStrategy | str,
    *,
    survivor_id: Optional[ActivityRef] = None,
    widen: bool = False,
) -> MergeDecision:
    """Pick the surviving record of ``group`` and list the ones to discard.

    ``longest`` keeps the chosen record's own bounds. ``earliest`` and
    ``latest`` stretch the survivor over the group's combined span, and so
    does ``manual-selection`` when the chosen record is shorter than another
    member. ``widen`` forces the combined span for every strategy.
    """
    strategy = MergeStrategy(strategy)
    members = [member for member in group.members if member.is_analyzable]
    if len(members) < 2:
        raise ValueError("A conflict group needs at least two closed records to merge")

    if strategy is MergeStrategy.LONGEST:
        chosen = _pick(members, key=lambda m: (-m.duration_seconds, m.start))
        stretch = False
    elif strategy is MergeStrategy.EARLIEST:
        chosen = _pick(members, key=lambda m: (m.start, -m.duration_seconds))
        stretch = True
    elif strategy is MergeStrategy.LATEST:
        chosen = max(members, key=lambda m: (m.end, m.duration_seconds))
        stretch = True
    else:
        if survivor_id is None:
            raise ValueError("manual-selection requires the id of the record to keep")
        selected = group.member(survivor_id)
        if selected is None or not selected.is_analyzable:
            raise ValueError(f"{survivor_id} is not a member of this conflict group")
        chosen = selected
        longest = max(member.duration_seconds for member in members)
        stretch = chosen.duration_seconds < longest

    survivor = chosen
    if stretch or widen:
        span_start = min(member.start for member in members)
        span_end = max(member.end for member in members)
        if span_start != chosen.start or span_end != chosen.end:
            survivor = replace(
                chosen,
                start=span_start,
                end=span_end,
                recorded_duration=(span_end - span_start).total_seconds(),
                references=dict(chosen.references),
                metadata=dict(chosen.metadata),
            )

    discard = tuple(member.ref for member in group.members if member.ref != chosen.ref)
    decision = MergeDecision(
        survivor=survivor,
        discard=discard,
        strategy=strategy,
        widened=survivor is not chosen,
    )
    logger.debug(
        "Resolved %d-member %s group with %s: keep %s, discard %d",
        len(group.members),
        group.conflict_type.value,
        strategy.value,
        chosen.ref,
        len(discard),
    )
    return decision


def keep_one(group: ConflictGroup, survivor_id: Optional[ActivityRef] = None) -> MergeDecision:
    """Keep one member untouched (the first by default) and discard the rest."""
    members = [member for member in group.members if member.is_analyzable]
    if len(members) < 2:
        raise ValueError("A conflict group needs at least two closed records to resolve")
    if survivor_id is None:
        chosen = members[0]
        strategy = MergeStrategy.EARLIEST
    else:
        selected = group.member(survivor_id)
        if selected is None or not selected.is_analyzable:
            raise ValueError(f"{survivor_id} is not a member of this conflict group")
        chosen = selected
        strategy = MergeStrategy.MANUAL_SELECTION
    return MergeDecision(
        survivor=chosen,
        discard=tuple(member.ref for member in group.members if member.ref != chosen.ref),
        strategy=strategy,
        resolution=ConflictResolution.DELETE_ONE,
    )


def adjust_overlaps(group: ConflictGroup) -> AdjustmentPlan:
    """Trim each record's end to the start of the record that follows it.

    Records are walked in start order. A record that starts together with
    the next one would be left with no length, so it is discarded instead.
    """
    members = sorted(
        (member for member in group.members if member.is_analyzable),
        key=ActivityInterval.sort_key,
    )
    updates: list[ActivityInterval] = []
    discard: list[ActivityRef] = []
    for current, following in zip(members, members[1:]):
        end = current.end
        if end is None or end <= following.start:
            continue
        if following.start <= current.start:
            discard.append(current.ref)
            continue
        updates.append(
            replace(
                current,
                end=following.start,
                recorded_duration=(following.start - current.start).total_seconds(),
                references=dict(current.references),
                metadata=dict(current.metadata),
            )
        )
    logger.debug(
        "Adjusted %d-member group: %d trimmed, %d discarded",
        len(members),
        len(updates),
        len(discard),
    )
    return AdjustmentPlan(updates=tuple(updates), discard=tuple(discard))


def resolve_conflict(
    group: ConflictGroup,
    resolution: ConflictResolution | str,
    strategy: MergeStrategy | str = MergeStrategy.LONGEST,
    *,
    survivor_id: Optional[ActivityRef] = None,
    widen: bool = False,
) -> Union[MergeDecision, AdjustmentPlan]:
    resolution = ConflictResolution(resolution)
    if resolution is ConflictResolution.MERGE:
        return resolve(group, strategy, survivor_id=survivor_id, widen=widen)
    if resolution is ConflictResolution.DELETE_ONE:
        return keep_one(group, survivor_id)
    return adjust_overlaps(group)


def find_mergeable_groups(
    intervals: Iterable[ActivityInterval],
    max_gap_seconds: float = 300,
) -> list[MergeableGroup]:
    """Group same-source records separated by at most ``max_gap_seconds``.

    Overlapping records count as a gap of zero or less, so they group too.
    Only groups of two or more records are returned, ordered by start.
    """
    if max_gap_seconds < 0:
        raise ValueError("max_gap_seconds must not be negative")
    by_source: dict[SourceType, list[ActivityInterval]] = {}
    for interval in intervals:
        if interval.is_analyzable:
            by_source.setdefault(interval.source_type, []).append(interval)

    groups: list[MergeableGroup] = []
    for members in by_source.values():
        members.sort(key=ActivityInterval.sort_key)
        current = [members[0]]
        current_end = members[0].end
        for member in members[1:]:
            if (member.start - current_end).total_seconds() <= max_gap_seconds:
                current.append(member)
                current_end = max(current_end, member.end)
                continue
            if len(current) > 1:
                groups.append(MergeableGroup(current, max_gap_seconds))
            current = [member]
            current_end = member.end
        if len(current) > 1:
            groups.append(MergeableGroup(current, max_gap_seconds))

    groups.sort(key=lambda group: group.members[0].sort_key())
    return groups


def _pick(members: list[ActivityInterval], key) -> ActivityInterval:
    # min() and max() keep the first of equal keys, so ties fall back to group order
    return min(members, key=key)
