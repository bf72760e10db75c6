"""Tests for the HTTP API."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from activity_ledger.db import database_connection, insert_pomodoro_session, insert_time_entry
from activity_ledger.server_runner import build_server
from activity_ledger.webapp import create_app

DAY = "2026-03-02"


@pytest.fixture
def seeded(db_path, at):
    with database_connection(db_path) as conn:
        return {
            "first": insert_time_entry(conn, "Write report", at(9), at(10)),
            "second": insert_time_entry(conn, "Write report", at(9, 30), at(10, 30)),
            "blink": insert_pomodoro_session(conn, "Focus", at(15), at(15)),
        }


@pytest.fixture
def client(db_path):
    return TestClient(create_app(db_path=db_path))


def test_status(client, db_path):
    payload = client.get("/api/status").json()

    assert payload["database_path"] == str(db_path)
    assert payload["min_gap_minutes"] == 15.0


def test_gaps(client, seeded):
    response = client.get("/api/gaps", params={"start": DAY, "min_gap_minutes": 0})

    assert response.status_code == 200
    gaps = response.json()["gaps"]
    assert [(gap["start_time"], gap["end_time"]) for gap in gaps] == [
        ("2026-03-02T00:00:00", "2026-03-02T09:00:00"),
        ("2026-03-02T10:30:00", "2026-03-03T00:00:00"),
    ]
    assert gaps[0]["after"] == {"id": seeded["first"], "source_type": "manual"}


def test_gap_statistics(client, seeded):
    payload = client.get("/api/gaps/statistics", params={"start": DAY}).json()

    assert payload["total_gaps"] == 2


def test_conflicts(client, seeded):
    groups = client.get("/api/conflicts", params={"start": DAY}).json()["groups"]

    assert len(groups) == 1
    assert groups[0]["conflict_type"] == "overlap"
    assert groups[0]["severity"] == "medium"
    assert groups[0]["pairs"][0]["overlap_ratio"] == 0.5


def test_bulk_merge(client, seeded):
    response = client.post(
        "/api/activities/bulk",
        json={
            "ids": [
                {"id": seeded["first"], "sourceType": "manual"},
                {"id": seeded["second"], "sourceType": "manual"},
            ],
            "operation": "merge",
            "mergeStrategy": "earliest",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["merge"]["survivor"]["id"] == seeded["first"]
    assert body["merge"]["survivor"]["end_time"] == "2026-03-02T10:30:00"
    assert client.get("/api/conflicts", params={"start": DAY}).json()["groups"] == []


def test_bulk_on_missing_records_is_a_conflict(client, seeded):
    response = client.post(
        "/api/activities/bulk",
        json={
            "ids": [{"id": 404, "sourceType": "automatic"}],
            "operation": "delete",
        },
    )

    assert response.status_code == 409


def test_bulk_merge_reaches_records_on_other_days(client, db_path):
    with database_connection(db_path) as conn:
        first = insert_time_entry(conn, "Plan", datetime(2026, 2, 27, 9), datetime(2026, 2, 27, 10))
        second = insert_time_entry(
            conn, "Plan", datetime(2026, 2, 27, 9, 30), datetime(2026, 2, 27, 11)
        )

    response = client.post(
        "/api/activities/bulk",
        json={
            "ids": [{"id": first, "sourceType": "manual"}, {"id": second, "sourceType": "manual"}],
            "operation": "merge",
            "mergeStrategy": "earliest",
        },
    )

    assert response.status_code == 200
    assert response.json()["merge"]["survivor"]["end_time"] == "2026-02-27T11:00:00"


def test_bulk_delete_with_repeated_id(client, seeded):
    item = {"id": seeded["first"], "sourceType": "manual"}

    response = client.post("/api/activities/bulk", json={"ids": [item, item], "operation": "delete"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "deleted": 1}


def test_resolve_conflict_by_adjusting_time(client, seeded):
    response = client.post(
        "/api/conflicts/resolve",
        json={
            "ids": [
                {"id": seeded["first"], "sourceType": "manual"},
                {"id": seeded["second"], "sourceType": "manual"},
            ],
            "resolution": "adjust_time",
        },
    )

    assert response.status_code == 200
    plan = response.json()["plan"]
    assert plan["resolution"] == "adjust_time"
    assert [(item["id"], item["end_time"]) for item in plan["updates"]] == [
        (seeded["first"], "2026-03-02T09:30:00")
    ]
    assert client.get("/api/conflicts", params={"start": DAY}).json()["groups"] == []


def test_resolve_conflict_rejects_unknown_resolution(client, seeded):
    response = client.post(
        "/api/conflicts/resolve",
        json={
            "ids": [
                {"id": seeded["first"], "sourceType": "manual"},
                {"id": seeded["second"], "sourceType": "manual"},
            ],
            "resolution": "split",
        },
    )

    assert response.status_code == 422


def test_mergeable_groups(client, seeded):
    response = client.get("/api/mergeable-groups", params={"start": DAY})

    assert response.status_code == 200
    (group,) = response.json()["groups"]
    assert group["source_type"] == "manual"
    assert group["max_gap_seconds"] == 300
    assert [item["id"] for item in group["activities"]] == [seeded["first"], seeded["second"]]
    assert client.get("/api/mergeable-groups", params={"max_gap_seconds": -1}).status_code == 422


def test_bulk_validates_payload(client, seeded):
    assert client.post("/api/activities/bulk", json={"ids": [], "operation": "delete"}).status_code == 422
    response = client.post(
        "/api/activities/bulk",
        json={"ids": [{"id": 1, "sourceType": "manual"}], "operation": "archive"},
    )
    assert response.status_code == 422


def test_manual_selection_without_survivor_is_rejected(client, seeded):
    response = client.post(
        "/api/activities/bulk",
        json={
            "ids": [
                {"id": seeded["first"], "sourceType": "manual"},
                {"id": seeded["second"], "sourceType": "manual"},
            ],
            "operation": "merge",
            "mergeStrategy": "manual-selection",
        },
    )

    assert response.status_code == 400


def test_defects_and_fixes(client, seeded):
    defects = client.get("/api/defects", params={"start": DAY}).json()["defects"]

    assert defects == [
        {
            "id": seeded["blink"],
            "source_type": "pomodoro",
            "kind": "zeroDuration",
            "fix": {"action": "delete", "field": None, "value": None},
            "suggestion": "delete",
            "message": defects[0]["message"],
        }
    ]

    selection = {"id": seeded["blink"], "sourceType": "pomodoro", "kind": "zeroDuration"}
    response = client.post("/api/defects/apply", json={"start": DAY, "defects": [selection]})
    assert response.json() == {"success": True, "applied": 1}

    again = client.post("/api/defects/apply", json={"start": DAY, "defects": [selection]})
    assert again.status_code == 409


def test_quality_report(client, seeded):
    report = client.get("/api/quality-report", params={"start": DAY}).json()

    assert report["total_activities"] == 3
    assert report["conflict_groups_count"] == 1
    assert report["defects_by_kind"] == {"zeroDuration": 1}


@pytest.mark.parametrize(
    "params",
    [{"start": "03/02/2026"}, {"start": "2026-03-03", "end": "2026-03-02"}],
)
def test_bad_windows_are_rejected(client, params):
    assert client.get("/api/gaps", params=params).status_code == 400


def test_build_server_prepares_the_database(tmp_path):
    target = tmp_path / "fresh.sqlite3"

    server = build_server(port=9123, db_path=target)

    assert target.exists()
    assert server.config.port == 9123
    assert server.config.app.state.db_path == target
