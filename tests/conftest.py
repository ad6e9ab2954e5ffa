import os
from datetime import datetime, timedelta, timezone

import pytest

from swarm_tickets.core.db import Base
from swarm_tickets.storage.json_adapter import JsonAdapter
from swarm_tickets.storage.sqlite_adapter import SqliteAdapter
from swarm_tickets.storage.supabase_adapter import SupabaseAdapter

TEST_DATABASE_URL_ENV = "SWARM_TICKETS_TEST_DATABASE_URL"


class TickingClock:
    """Deterministic clock that moves forward a little on every read."""

    def __init__(self, start=None, step=timedelta(milliseconds=1)):
        self.current = start or datetime(2024, 1, 15, 10, 15, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        value = self.current
        self.current = self.current + self.step
        return value

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def make_clock():
    """For tests that need a second, independent clock."""
    return TickingClock


@pytest.fixture
def json_adapter(tmp_path, clock):
    adapter = JsonAdapter(
        json_path=tmp_path / "tickets.json",
        backup_dir=tmp_path / "ticket-backups",
        clock=clock,
    )
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def sqlite_adapter(tmp_path, clock):
    adapter = SqliteAdapter(sqlite_path=tmp_path / "tickets.db", clock=clock)
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def supabase_adapter(clock):
    """Postgres-backed adapter, only when a disposable database is configured."""
    database_url = os.environ.get(TEST_DATABASE_URL_ENV)
    if not database_url:
        pytest.skip(f"{TEST_DATABASE_URL_ENV} is not set")
    pytest.importorskip("psycopg2")

    adapter = SupabaseAdapter(database_url=database_url, clock=clock)
    adapter.initialize()
    Base.metadata.drop_all(bind=adapter.engine)
    Base.metadata.create_all(bind=adapter.engine)
    yield adapter
    Base.metadata.drop_all(bind=adapter.engine)
    adapter.close()


@pytest.fixture(params=["json", "sqlite", "supabase"])
def adapter(request):
    # Every contract test runs once per backend; supabase skips without a database.
    return request.getfixturevalue(f"{request.param}_adapter")
