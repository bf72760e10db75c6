"""Tests for the command-line interface."""

from datetime import datetime

import pytest
from typer.testing import CliRunner

from activity_ledger.cli import app
from activity_ledger.db import database_connection, insert_app_usage, insert_time_entry

DAY = "2026-03-02"

runner = CliRunner()


@pytest.fixture
def seeded(db_path, at):
    with database_connection(db_path) as conn:
        return {
            "first": insert_time_entry(conn, "Write report", at(9), at(10)),
            "second": insert_time_entry(conn, "Write report", at(9), at(10, 30)),
            "blink": insert_app_usage(conn, "Code.exe", at(15), at(15)),
        }


def invoke(db_path, *args):
    return runner.invoke(app, [*args, "--start", DAY, "--db", str(db_path)])


def act(db_path, *args):
    return runner.invoke(app, [*args, "--db", str(db_path)])


def test_gaps_command(db_path, seeded):
    result = invoke(db_path, "gaps", "--min-gap", "30")

    assert result.exit_code == 0, result.output
    assert "Untracked gaps: 2" in result.output
    assert "2026-03-02 10:30 -> 2026-03-03 00:00" in result.output


def test_gaps_command_on_empty_database(db_path):
    result = runner.invoke(app, ["gaps", "--start", DAY, "--end", DAY, "--db", str(db_path)])

    assert result.exit_code == 0
    assert "Untracked gaps: 1" in result.output


def test_conflicts_command(db_path, seeded):
    result = invoke(db_path, "conflicts")

    assert result.exit_code == 0, result.output
    assert "[1] duplicate (high)" in result.output


def test_conflicts_command_on_empty_database(db_path):
    result = invoke(db_path, "conflicts")

    assert "No overlapping or duplicate activities found." in result.output


def test_merge_dry_run_changes_nothing(db_path, seeded):
    result = act(
        db_path, "merge", "--id", f"manual:{seeded['first']}", "--id", f"manual:{seeded['second']}", "--dry-run"
    )

    assert result.exit_code == 0, result.output
    assert f"Discarded: manual:{seeded['first']}" in result.output
    assert "Dry run: nothing was changed." in result.output
    assert "[1] duplicate" in invoke(db_path, "conflicts").output


def test_merge_applies_plan(db_path, seeded):
    result = act(
        db_path,
        "merge",
        "--id", f"manual:{seeded['first']}",
        "--id", f"manual:{seeded['second']}",
        "--strategy", "manual-selection",
        "--keep", f"manual:{seeded['first']}",
    )

    assert result.exit_code == 0, result.output
    assert "Merge applied." in result.output
    assert "No overlapping" in invoke(db_path, "conflicts").output


def test_merge_with_stale_ids_fails(db_path, seeded):
    result = act(db_path, "merge", "--id", f"manual:{seeded['first']}", "--id", "manual:999")

    assert result.exit_code == 1
    assert "manual:999" in result.output


@pytest.mark.parametrize("ref", ["manual", "calendar:1", "manual:x"])
def test_merge_rejects_malformed_ids(db_path, ref):
    result = act(db_path, "merge", "--id", ref, "--id", "manual:1")

    assert result.exit_code == 2


def test_cleanup_apply(db_path, seeded):
    result = invoke(db_path, "cleanup", "--apply")

    assert result.exit_code == 0, result.output
    assert "Defects: 1" in result.output
    assert "zeroDuration" in result.output
    assert "Applied 1 fixes." in result.output
    assert "No structural defects found." in invoke(db_path, "cleanup").output


def test_report_command(db_path, seeded):
    result = invoke(db_path, "report")

    assert result.exit_code == 0, result.output
    assert "Quality score:    67" in result.output
    assert "Duplicate groups: 1" in result.output


def test_bad_date_is_a_usage_error(db_path):
    result = runner.invoke(app, ["gaps", "--start", "yesterday", "--db", str(db_path)])

    assert result.exit_code == 2


def test_merge_records_from_another_day(db_path):
    with database_connection(db_path) as conn:
        first = insert_time_entry(conn, "Plan", datetime(2026, 2, 27, 9), datetime(2026, 2, 27, 10))
        second = insert_time_entry(
            conn, "Plan", datetime(2026, 2, 27, 9, 30), datetime(2026, 2, 27, 11)
        )

    result = act(db_path, "merge", "--id", f"manual:{first}", "--id", f"manual:{second}")

    assert result.exit_code == 0, result.output
    assert "Merge applied." in result.output


def test_resolve_keeps_one_record(db_path, seeded):
    result = act(
        db_path,
        "resolve",
        "--id", f"manual:{seeded['first']}",
        "--id", f"manual:{seeded['second']}",
        "--resolution", "delete_one",
        "--keep", f"manual:{seeded['second']}",
    )

    assert result.exit_code == 0, result.output
    assert f"Discarded: manual:{seeded['first']}" in result.output
    assert "Resolution applied." in result.output
    assert "No overlapping" in invoke(db_path, "conflicts").output


def test_resolve_adjust_time_dry_run(db_path, seeded):
    result = act(
        db_path,
        "resolve",
        "--id", f"manual:{seeded['first']}",
        "--id", f"manual:{seeded['second']}",
        "--resolution", "adjust_time",
        "--dry-run",
    )

    assert result.exit_code == 0, result.output
    assert f"Discarded: manual:{seeded['first']}" in result.output
    assert "Dry run: nothing was changed." in result.output


def test_mergeable_command(db_path, seeded):
    result = invoke(db_path, "mergeable", "--max-gap", "60")

    assert result.exit_code == 0, result.output
    assert "[1] manual (2 records)" in result.output
