"""Errors raised by the reconciliation engine and its storage layer."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .models import ActivityRef, SourceType


class ReconcileError(Exception):
    """Base class for every error the engine reports to callers."""


class MalformedRecord(ReconcileError):
    """A stored record that cannot be turned into an interval."""

    def __init__(
        self,
        source_type: SourceType,
        record_id: Optional[object],
        reason: str,
    ) -> None:
        self.source_type = source_type
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"{source_type.value}:{record_id}: {reason}")

    def as_dict(self) -> dict:
        return {
            "source_type": self.source_type.value,
            "id": self.record_id,
            "reason": self.reason,
        }


class InvalidWindow(ReconcileError):
    def __init__(self, start: datetime, end: datetime) -> None:
        self.start = start
        self.end = end
        super().__init__(
            f"Query window start {start.isoformat()} must be before end {end.isoformat()}"
        )


class StaleConflict(ReconcileError):
    """A plan references records that vanished since detection ran."""

    def __init__(self, missing: Iterable[ActivityRef]) -> None:
        self.missing = tuple(missing)
        listed = ", ".join(str(ref) for ref in self.missing)
        super().__init__(f"Records no longer exist: {listed}; re-run detection.")


class StorageFailure(ReconcileError):
    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        message = f"Storage operation '{operation}' failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
