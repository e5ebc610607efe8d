from contextlib import asynccontextmanager
from datetime import UTC, datetime

import psycopg
import pytest

from linkme.db.pool import DatabaseError
from linkme.features.outreach.repository.event_repository import (
    OutreachEvent,
    OutreachEventRepository,
    OutreachEventType,
)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query, params=None):
        self.conn.queries.append((query, params))

    async def fetchall(self):
        return self.conn.rows


class FakeConnection:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.queries = []

    async def execute(self, query, params=None):
        if self.error:
            raise self.error
        self.queries.append((query, params))

    def cursor(self):
        if self.error:
            raise self.error
        return FakeCursor(self)


class FakePool:
    def __init__(self, available=True, conn=None):
        self.is_available = available
        self.conn = conn or FakeConnection()
        self.checkouts = 0

    @asynccontextmanager
    async def connection(self):
        self.checkouts += 1
        yield self.conn


@pytest.mark.asyncio
async def test_disabled_log_skips_writes():
    pool = FakePool(available=False)
    repo = OutreachEventRepository(pool=pool)

    assert await repo.record("abc", OutreachEventType.INVITE_SENT) is False
    assert await repo.list_for_record("abc") == []
    await repo.ensure_schema()
    assert pool.checkouts == 0


@pytest.mark.asyncio
async def test_ensure_schema_creates_table_and_index():
    pool = FakePool()
    await OutreachEventRepository(pool=pool).ensure_schema()

    statements = [query for query, _ in pool.conn.queries]
    assert "CREATE TABLE IF NOT EXISTS outreach_events" in statements[0]
    assert "CREATE INDEX IF NOT EXISTS" in statements[1]


@pytest.mark.asyncio
async def test_record_inserts_event():
    pool = FakePool()
    repo = OutreachEventRepository(pool=pool)
    when = datetime(2025, 1, 1, tzinfo=UTC)

    assert await repo.record("abc", OutreachEventType.DM_FAILED, "timeout", occurred_at=when)
    assert pool.conn.queries[0][1] == ("abc", "dm_failed", when, "timeout")


@pytest.mark.asyncio
async def test_record_failure_is_best_effort():
    pool = FakePool(conn=FakeConnection(error=psycopg.OperationalError("connection refused")))
    repo = OutreachEventRepository(pool=pool)

    assert await repo.record("abc", OutreachEventType.INVITE_SENT) is False


@pytest.mark.asyncio
async def test_list_for_record_returns_typed_events():
    when = datetime(2025, 1, 1, tzinfo=UTC)
    rows = [
        {"record_id": "abc", "event_type": "dm_sent", "occurred_at": when, "detail": None},
        {"record_id": "abc", "event_type": "invite_sent", "occurred_at": when, "detail": "ok"},
    ]
    pool = FakePool(conn=FakeConnection(rows=rows))

    events = await OutreachEventRepository(pool=pool).list_for_record("abc", limit=5)

    assert events == [
        OutreachEvent(record_id="abc", event_type=OutreachEventType.DM_SENT, occurred_at=when),
        OutreachEvent(
            record_id="abc",
            event_type=OutreachEventType.INVITE_SENT,
            occurred_at=when,
            detail="ok",
        ),
    ]
    assert pool.conn.queries[0][1] == ("abc", 5)
    assert events[0].model_dump(mode="json")["occurred_at"].startswith("2025-01-01T00:00:00")


@pytest.mark.asyncio
async def test_list_for_record_raises_database_error():
    pool = FakePool(conn=FakeConnection(error=psycopg.OperationalError("gone")))

    with pytest.raises(DatabaseError) as exc_info:
        await OutreachEventRepository(pool=pool).list_for_record("abc")
    assert exc_info.value.operation == "fetch"
