"""FastAPI application that exposes the data-quality API."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import ReconcileSettings
from .errors import InvalidWindow, MalformedRecord, StaleConflict, StorageFailure
from .models import ActivityRef, ConflictResolution, DefectKind, MergeStrategy, SourceType
from .paths import get_db_path
from .service import DataQualityService

logger = logging.getLogger(__name__)


class ActivityRefPayload(BaseModel):
    id: int
    source_type: SourceType = Field(alias="sourceType")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def to_ref(self) -> ActivityRef:
        return ActivityRef(self.id, self.source_type)


class BulkOperationPayload(BaseModel):
    ids: List[ActivityRefPayload] = Field(min_length=1)
    operation: Literal["merge", "delete"]
    merge_strategy: MergeStrategy = Field(default=MergeStrategy.LONGEST, alias="mergeStrategy")
    survivor: Optional[ActivityRefPayload] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ConflictResolutionPayload(BaseModel):
    ids: List[ActivityRefPayload] = Field(min_length=2)
    resolution: ConflictResolution
    merge_strategy: MergeStrategy = Field(default=MergeStrategy.LONGEST, alias="mergeStrategy")
    survivor: Optional[ActivityRefPayload] = None
    widen: bool = False

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class DefectSelection(BaseModel):
    id: int
    source_type: SourceType = Field(alias="sourceType")
    kind: DefectKind

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class DefectFixPayload(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    defects: Optional[List[DefectSelection]] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[ReconcileSettings] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or ReconcileSettings()
    service = DataQualityService(resolved_db_path, resolved_settings)

    app = FastAPI(title="Activity Ledger", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.service = service

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "database_path": str(request.app.state.db_path),
            "min_gap_minutes": resolved_settings.min_gap_seconds / 60.0,
            "duplicate_ratio": resolved_settings.duplicate_ratio,
            "label_similarity_threshold": resolved_settings.label_similarity_threshold,
        }

    @app.get("/api/gaps")
    def gaps(
        start: Optional[str] = Query(default=None, description="Start date (YYYY-MM-DD), inclusive."),
        end: Optional[str] = Query(default=None, description="End date (YYYY-MM-DD), inclusive."),
        min_gap_minutes: Optional[float] = Query(default=None, ge=0),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        found = _call(service.gaps, window_start, window_end, _minutes(min_gap_minutes))
        return {
            "start": window_start.isoformat(),
            "end": window_end.isoformat(),
            "gaps": [gap.as_dict() for gap in found],
        }

    @app.get("/api/gaps/statistics")
    def gap_stats(
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
        min_gap_minutes: Optional[float] = Query(default=None, ge=0),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        stats = _call(
            service.gap_statistics, window_start, window_end, _minutes(min_gap_minutes)
        )
        return stats.as_dict()

    @app.get("/api/conflicts")
    def conflicts(
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        groups = _call(service.conflicts, window_start, window_end)
        return {
            "start": window_start.isoformat(),
            "end": window_end.isoformat(),
            "groups": [group.as_dict() for group in groups],
        }

    @app.post("/api/activities/bulk")
    def bulk_operation(payload: BulkOperationPayload) -> Dict[str, Any]:
        return _call(
            service.bulk_operation,
            [item.to_ref() for item in payload.ids],
            payload.operation,
            payload.merge_strategy,
            payload.survivor.to_ref() if payload.survivor else None,
        )

    @app.post("/api/conflicts/resolve")
    def resolve_conflict(payload: ConflictResolutionPayload) -> Dict[str, Any]:
        return _call(
            lambda: service.resolve_conflict(
                [item.to_ref() for item in payload.ids],
                payload.resolution,
                payload.merge_strategy,
                survivor_id=payload.survivor.to_ref() if payload.survivor else None,
                widen=payload.widen,
            )
        )

    @app.get("/api/mergeable-groups")
    def mergeable_groups(
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
        max_gap_seconds: Optional[float] = Query(default=None, ge=0),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        groups = _call(service.mergeable_groups, window_start, window_end, max_gap_seconds)
        return {
            "start": window_start.isoformat(),
            "end": window_end.isoformat(),
            "groups": [group.as_dict() for group in groups],
        }

    @app.get("/api/defects")
    def defects(
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        found = _call(service.defects, window_start, window_end)
        return {"defects": [defect.as_dict() for defect in found]}

    @app.post("/api/defects/apply")
    def apply_defects(payload: DefectFixPayload) -> Dict[str, Any]:
        window_start, window_end = _parse_window(payload.start, payload.end)
        current = _call(service.defects, window_start, window_end)
        if payload.defects is None:
            selected = current
        else:
            by_key = {(d.ref, d.kind): d for d in current}
            selected = []
            for item in payload.defects:
                key = (ActivityRef(item.id, item.source_type), item.kind)
                if key not in by_key:
                    raise HTTPException(
                        status_code=409,
                        detail=f"{key[0]} no longer has a {item.kind.value} defect; re-run detection.",
                    )
                selected.append(by_key[key])
        try:
            applied = _call(service.apply_fixes, selected)
        except StorageFailure as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "applied": applied}

    @app.get("/api/quality-report")
    def quality_report(
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        window_start, window_end = _parse_window(start, end)
        return _call(service.quality_report, window_start, window_end)

    return app


def _call(func, *args):
    try:
        return func(*args)
    except StaleConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (InvalidWindow, MalformedRecord, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _minutes(value: Optional[float]) -> Optional[float]:
    return value * 60 if value is not None else None


def _parse_window(start: Optional[str], end: Optional[str]) -> tuple[datetime, datetime]:
    start_day = _parse_date(start)
    end_day = _parse_date(end) if end else start_day
    if end_day < start_day:
        raise HTTPException(status_code=400, detail="end date must be on or after start date")
    return start_day, end_day + timedelta(days=1)


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
