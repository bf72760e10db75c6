"""Shared fixtures for the activity ledger tests."""

from datetime import datetime

import pytest

from activity_ledger.db import database_connection
from activity_ledger.models import ActivityInterval, SourceType

DAY = datetime(2026, 3, 2)


@pytest.fixture
def at():
    """Build a timestamp on the test day: ``at(9, 30)`` -> 09:30."""

    def _at(hour, minute=0):
        return DAY.replace(hour=hour, minute=minute)

    return _at


@pytest.fixture
def make_interval(at):
    """Build an interval from hour/minute tuples, e.g. ``make_interval(1, (9, 0), (10, 0))``."""

    def _make(
        record_id,
        start,
        end,
        source=SourceType.MANUAL,
        label="Write report",
        **kwargs,
    ):
        start_dt = at(*start) if isinstance(start, tuple) else start
        end_dt = at(*end) if isinstance(end, tuple) else end
        return ActivityInterval(
            id=record_id,
            source_type=source,
            start=start_dt,
            end=end_dt,
            label=label,
            **kwargs,
        )

    return _make


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "ledger.sqlite3"
    with database_connection(path):
        pass
    return path


@pytest.fixture
def conn(db_path):
    with database_connection(db_path) as connection:
        yield connection
