"""Domain models for reconciled activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SourceType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    POMODORO = "pomodoro"


class ConflictType(str, Enum):
    OVERLAP = "overlap"
    DUPLICATE = "duplicate"
    GAP = "gap"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class MergeStrategy(str, Enum):
    LONGEST = "longest"
    EARLIEST = "earliest"
    LATEST = "latest"
    MANUAL_SELECTION = "manual-selection"


class ConflictResolution(str, Enum):
    MERGE = "merge"
    DELETE_ONE = "delete_one"
    ADJUST_TIME = "adjust_time"


class DefectKind(str, Enum):
    NEGATIVE_DURATION = "negativeDuration"
    MISSING_END = "missingEnd"
    ORPHANED_REFERENCE = "orphanedReference"
    ZERO_DURATION = "zeroDuration"
    DURATION_MISMATCH = "durationMismatch"


class FixAction(str, Enum):
    DELETE = "delete"
    REPAIR = "repair"


@dataclass(frozen=True, slots=True)
class ActivityRef:
    """Identity of a stored record; ids are only unique within a source table."""

    id: int
    source_type: SourceType

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "source_type": self.source_type.value}

    def __str__(self) -> str:
        return f"{self.source_type.value}:{self.id}"


@dataclass(slots=True)
class ActivityInterval:
    """A time-bounded activity from any of the three sources.

    ``metadata`` holds source-specific fields (app name, session type, ...)
    and is passed through untouched by the detectors.
    """

    id: int
    source_type: SourceType
    start: datetime
    end: Optional[datetime]
    label: str = ""
    recorded_duration: Optional[float] = None
    completed: bool = True
    references: dict[str, int] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> ActivityRef:
        return ActivityRef(self.id, self.source_type)

    @property
    def is_closed(self) -> bool:
        return self.end is not None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end is None:
            return None
        return (self.end - self.start).total_seconds()

    @property
    def is_degenerate(self) -> bool:
        return self.end is not None and self.end == self.start

    @property
    def is_analyzable(self) -> bool:
        """Closed with a positive span; only these take part in gap/conflict passes."""
        return self.end is not None and self.end > self.start

    def sort_key(self) -> tuple:
        end = self.end if self.end is not None else self.start
        return (self.start, end, self.source_type.value, self.id)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_type": self.source_type.value,
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat() if self.end else None,
            "duration_seconds": self.duration_seconds,
            "label": self.label,
            "completed": self.completed,
            "references": dict(self.references),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class TimeGap:
    start: datetime
    end: datetime
    before: Optional[ActivityRef] = None
    after: Optional[ActivityRef] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def as_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat(),
            "duration_seconds": self.duration_seconds,
            "before": self.before.as_dict() if self.before else None,
            "after": self.after.as_dict() if self.after else None,
        }


@dataclass(frozen=True, slots=True)
class ConflictPair:
    first: ActivityRef
    second: ActivityRef
    overlap_seconds: float
    overlap_ratio: float
    conflict_type: ConflictType
    severity: Severity

    def as_dict(self) -> dict[str, Any]:
        return {
            "first": self.first.as_dict(),
            "second": self.second.as_dict(),
            "overlap_seconds": self.overlap_seconds,
            "overlap_ratio": round(self.overlap_ratio, 4),
            "conflict_type": self.conflict_type.value,
            "severity": self.severity.value,
        }


@dataclass(slots=True)
class ConflictGroup:
    """A connected set of overlapping records; references, never owns, the data."""

    members: list[ActivityInterval]
    conflict_type: ConflictType
    severity: Severity
    pairs: list[ConflictPair] = field(default_factory=list)

    @property
    def refs(self) -> list[ActivityRef]:
        return [member.ref for member in self.members]

    @property
    def start(self) -> datetime:
        return min(member.start for member in self.members)

    @property
    def end(self) -> datetime:
        return max(member.end for member in self.members if member.end is not None)

    def member(self, ref: ActivityRef) -> Optional[ActivityInterval]:
        for candidate in self.members:
            if candidate.ref == ref:
                return candidate
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "conflict_type": self.conflict_type.value,
            "severity": self.severity.value,
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat(),
            "activities": [member.as_dict() for member in self.members],
            "pairs": [pair.as_dict() for pair in self.pairs],
        }


@dataclass(slots=True)
class MergeDecision:
    survivor: ActivityInterval
    discard: tuple[ActivityRef, ...]
    strategy: MergeStrategy
    widened: bool = False
    resolution: ConflictResolution = ConflictResolution.MERGE

    def as_dict(self) -> dict[str, Any]:
        return {
            "resolution": self.resolution.value,
            "strategy": self.strategy.value,
            "survivor": self.survivor.as_dict(),
            "discard": [ref.as_dict() for ref in self.discard],
            "widened": self.widened,
        }


@dataclass(slots=True)
class AdjustmentPlan:
    """Trimmed bounds for overlapping records.

    ``updates`` holds the records whose end moved; ``discard`` the ones that
    would collapse to zero length once trimmed.
    """

    updates: tuple[ActivityInterval, ...]
    discard: tuple[ActivityRef, ...] = ()
    resolution: ConflictResolution = ConflictResolution.ADJUST_TIME

    def as_dict(self) -> dict[str, Any]:
        return {
            "resolution": self.resolution.value,
            "updates": [interval.as_dict() for interval in self.updates],
            "discard": [ref.as_dict() for ref in self.discard],
        }


@dataclass(slots=True)
class MergeableGroup:
    """Same-source records close enough in time to be merged into one."""

    members: list[ActivityInterval]
    max_gap_seconds: float

    @property
    def refs(self) -> list[ActivityRef]:
        return [member.ref for member in self.members]

    @property
    def source_type(self) -> SourceType:
        return self.members[0].source_type

    def as_dict(self) -> dict[str, Any]:
        return {
            "source_type": self.source_type.value,
            "max_gap_seconds": self.max_gap_seconds,
            "activities": [member.as_dict() for member in self.members],
        }


@dataclass(frozen=True, slots=True)
class SuggestedFix:
    action: FixAction
    field: Optional[str] = None
    value: Any = None

    def describe(self) -> str:
        if self.action is FixAction.DELETE:
            return "delete"
        value = self.value.isoformat() if isinstance(self.value, datetime) else self.value
        return f"repair-with({self.field}={value!r})"

    def as_dict(self) -> dict[str, Any]:
        value = self.value.isoformat() if isinstance(self.value, datetime) else self.value
        return {"action": self.action.value, "field": self.field, "value": value}


@dataclass(frozen=True, slots=True)
class Defect:
    ref: ActivityRef
    kind: DefectKind
    fix: SuggestedFix
    message: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            **self.ref.as_dict(),
            "kind": self.kind.value,
            "fix": self.fix.as_dict(),
            "suggestion": self.fix.describe(),
            "message": self.message,
        }
