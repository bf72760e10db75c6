"""Configuration models and helpers for the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class ReconcileSettings:
    """Tunable thresholds shared by the detectors and the cleanup pass."""

    min_gap: timedelta = timedelta(minutes=15)
    duplicate_ratio: float = 0.95
    label_similarity_threshold: float = 1.0
    high_severity_ratio: float = 0.75
    medium_severity_ratio: float = 0.25
    duration_tolerance_seconds: float = 1.0
    max_merge_gap: timedelta = timedelta(minutes=5)

    def __post_init__(self) -> None:
        if self.min_gap < timedelta(0):
            raise ValueError("min_gap must not be negative")
        if not 0.0 < self.duplicate_ratio <= 1.0:
            raise ValueError("duplicate_ratio must be within (0, 1]")
        if not 0.0 <= self.medium_severity_ratio <= self.high_severity_ratio <= 1.0:
            raise ValueError("severity ratios must satisfy 0 <= medium <= high <= 1")
        if not 0.0 <= self.label_similarity_threshold <= 1.0:
            raise ValueError("label_similarity_threshold must be within [0, 1]")
        if self.duration_tolerance_seconds < 0:
            raise ValueError("duration_tolerance_seconds must not be negative")
        if self.max_merge_gap < timedelta(0):
            raise ValueError("max_merge_gap must not be negative")

    @property
    def min_gap_seconds(self) -> float:
        return self.min_gap.total_seconds()

    @property
    def max_merge_gap_seconds(self) -> float:
        return self.max_merge_gap.total_seconds()

    @classmethod
    def from_options(
        cls,
        min_gap_minutes: float | None = None,
        duplicate_ratio: float | None = None,
        label_similarity_threshold: float | None = None,
    ) -> "ReconcileSettings":
        defaults = cls()
        return cls(
            min_gap=(
                timedelta(minutes=min_gap_minutes)
                if min_gap_minutes is not None
                else defaults.min_gap
            ),
            duplicate_ratio=(
                duplicate_ratio if duplicate_ratio is not None else defaults.duplicate_ratio
            ),
            label_similarity_threshold=(
                label_similarity_threshold
                if label_similarity_threshold is not None
                else defaults.label_similarity_threshold
            ),
        )
