"""Overlap and duplicate detection across activity sources."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

from .config import ReconcileSettings
from .models import (
    ActivityInterval,
    ConflictGroup,
    ConflictPair,
    ConflictType,
    Severity,
)
from .normalization import normalize_label

logger = logging.getLogger(__name__)

LabelSimilarity = Callable[[str, str], float]


def label_similarity(first: str, second: str) -> float:
    """Exact-or-containment comparator on normalized labels (1.0 or 0.0)."""
    a = normalize_label(first)
    b = normalize_label(second)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 if a in b or b in a else 0.0


def severity_for_ratio(ratio: float, settings: Optional[ReconcileSettings] = None) -> Severity:
    settings = settings or ReconcileSettings()
    if ratio >= settings.high_severity_ratio:
        return Severity.HIGH
    if ratio >= settings.medium_severity_ratio:
        return Severity.MEDIUM
    return Severity.LOW


def classify_pair(
    first: ActivityInterval,
    second: ActivityInterval,
    settings: Optional[ReconcileSettings] = None,
    similarity: LabelSimilarity = label_similarity,
) -> Optional[ConflictPair]:
    """Classify two closed intervals; ``None`` when they do not overlap."""
    settings = settings or ReconcileSettings()
    first_end, second_end = first.end, second.end
    if first_end is None or second_end is None:
        return None
    if first_end <= first.start or second_end <= second.start:
        return None
    overlap_start = max(first.start, second.start)
    overlap_seconds = (min(first_end, second_end) - overlap_start).total_seconds()
    if overlap_seconds <= 0:
        return None
    shorter = min(
        (first_end - first.start).total_seconds(),
        (second_end - second.start).total_seconds(),
    )
    ratio = min(overlap_seconds / shorter, 1.0)

    if (
        first.source_type == second.source_type
        and ratio >= settings.duplicate_ratio
        and similarity(first.label, second.label) >= settings.label_similarity_threshold
    ):
        conflict_type = ConflictType.DUPLICATE
    else:
        conflict_type = ConflictType.OVERLAP

    return ConflictPair(
        first=first.ref,
        second=second.ref,
        overlap_seconds=overlap_seconds,
        overlap_ratio=ratio,
        conflict_type=conflict_type,
        severity=severity_for_ratio(ratio, settings),
    )


def detect_conflicts(
    intervals: Iterable[ActivityInterval],
    settings: Optional[ReconcileSettings] = None,
    similarity: LabelSimilarity = label_similarity,
) -> list[ConflictGroup]:
    """Group overlapping records into connected components.

    Sweeps intervals by start time keeping an active set of records that are
    still running; each record is compared only against that set. Records
    that overlap transitively end up in the same group.
    """
    settings = settings or ReconcileSettings()
    ordered = sorted(
        (interval for interval in intervals if interval.is_analyzable),
        key=ActivityInterval.sort_key,
    )

    ends = [interval.end for interval in ordered]
    edges: list[tuple[int, int, ConflictPair]] = []
    active: list[int] = []
    for index, current in enumerate(ordered):
        active = [i for i in active if ends[i] > current.start]
        for other in active:
            pair = classify_pair(ordered[other], current, settings, similarity)
            if pair is not None:
                edges.append((other, index, pair))
        active.append(index)

    groups = _group_components(ordered, edges)
    logger.debug(
        "Detected %d conflict groups from %d overlapping pairs over %d intervals",
        len(groups),
        len(edges),
        len(ordered),
    )
    return groups


def build_group(
    intervals: Sequence[ActivityInterval],
    settings: Optional[ReconcileSettings] = None,
    similarity: LabelSimilarity = label_similarity,
) -> ConflictGroup:
    """Classify a caller-selected set of records as a single conflict group."""
    selected = [interval for interval in intervals if interval.is_analyzable]
    if len(selected) < 2:
        raise ValueError("A merge needs at least two closed records with a positive duration")
    groups = detect_conflicts(selected, settings, similarity)
    if len(groups) != 1 or len(groups[0].members) != len(selected):
        raise ValueError("Selected records do not form a single overlapping group")
    return groups[0]


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, first: int, second: int) -> None:
        a, b = self.find(first), self.find(second)
        if a != b:
            # lower index stays the root so components are keyed by earliest member
            if b < a:
                a, b = b, a
            self._parent[b] = a


def _group_components(
    ordered: list[ActivityInterval],
    edges: list[tuple[int, int, ConflictPair]],
) -> list[ConflictGroup]:
    components = _DisjointSet(len(ordered))
    for first, second, _ in edges:
        components.union(first, second)

    members: dict[int, list[int]] = {}
    pairs: dict[int, list[ConflictPair]] = {}
    for first, second, pair in edges:
        root = components.find(first)
        pairs.setdefault(root, []).append(pair)
    for index in range(len(ordered)):
        root = components.find(index)
        if root in pairs:
            members.setdefault(root, []).append(index)

    groups: list[ConflictGroup] = []
    for root in sorted(members):
        group_pairs = pairs[root]
        if all(pair.conflict_type is ConflictType.DUPLICATE for pair in group_pairs):
            conflict_type = ConflictType.DUPLICATE
        else:
            conflict_type = ConflictType.OVERLAP
        severity = max((pair.severity for pair in group_pairs), key=lambda s: s.rank)
        groups.append(
            ConflictGroup(
                members=[ordered[i] for i in members[root]],
                conflict_type=conflict_type,
                severity=severity,
                pairs=group_pairs,
            )
        )
    return groups
