import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import pytest

from linkme.config import Settings
from linkme.features.outreach.domain.models import ActionResult, OutreachRecord
from linkme.features.outreach.pipeline import build_pipeline
from linkme.features.outreach.repository import OutreachEvent
from linkme.infrastructure.observability.session_tracker import SessionTracker
from linkme.services.redis_client import RedisClientError

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
TEST_SECRET = "test-secret"


class FakeRedis:
    """In-memory stand-in for FastRedisClient (strings + lists)."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.failing: set[str] = set()

    def _check(self, operation: str):
        if operation in self.failing:
            raise RedisClientError(f"Redis {operation} failed: simulated", operation=operation)

    async def ping(self) -> bool:
        return "PING" not in self.failing

    async def get(self, key: str) -> str | None:
        self._check("GET")
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check("SET")
        self.store[key] = value
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        self._check("SETNX")
        if key in self.store:
            return False
        self.store[key] = value
        return True

    async def compare_and_set(self, key: str, value: str, check) -> bool:
        self._check("CAS")
        if not check(self.store.get(key)):
            return False
        self.store[key] = value
        return True

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        self._check("CAD")
        if self.store.get(key) != expected:
            return False
        del self.store[key]
        return True

    async def delete(self, key: str) -> bool:
        self._check("DELETE")
        return self.store.pop(key, None) is not None

    async def scan_keys(self, prefix: str) -> list[str]:
        self._check("SCAN")
        return [key for key in self.store if key.startswith(prefix)]

    async def lpush(self, key: str, value: str) -> int:
        self._check("LPUSH")
        items = self.lists.setdefault(key, [])
        items.insert(0, value)
        return len(items)

    async def lmove(self, source: str, destination: str) -> str | None:
        self._check("LMOVE")
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop()
        self.lists.setdefault(destination, []).insert(0, value)
        return value

    async def lrem(self, key: str, value: str) -> int:
        self._check("LREM")
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def llen(self, key: str) -> int:
        self._check("LLEN")
        return len(self.lists.get(key, []))


class FakeExecutionContext:
    def __init__(self, executor: "FakeExecutor"):
        self.executor = executor

    async def connect(self, record_id, display_name, custom_message=None):
        self.executor.calls.append(("connect", record_id, display_name, custom_message))
        return await self.executor.respond()

    async def send_message(self, record_id, display_name, message):
        self.executor.calls.append(("message", record_id, display_name, message))
        return await self.executor.respond()


class FakeExecutor:
    """Scripted executor; pops queued results, defaults to success."""

    def __init__(self):
        self.results: list[ActionResult | Exception] = []
        self.calls: list[tuple] = []
        self.delay_seconds = 0.0
        self.session_open_delay_seconds = 0.0
        self.sessions_opened = 0
        self.sessions_closed = 0

    @asynccontextmanager
    async def session(self):
        if self.session_open_delay_seconds:
            await asyncio.sleep(self.session_open_delay_seconds)
        self.sessions_opened += 1
        try:
            yield FakeExecutionContext(self)
        finally:
            self.sessions_closed += 1

    async def respond(self) -> ActionResult:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return ActionResult(success=True, message="ok", logs=["clicked"])


class RecordingEvents:
    """Event log double that keeps events in memory."""

    enabled = True

    def __init__(self):
        self.events: list[tuple[str, str, str | None]] = []

    async def ensure_schema(self) -> None:
        return None

    async def record(self, record_id, event_type, detail=None, occurred_at=None) -> bool:
        self.events.append((record_id, event_type.value, detail))
        return True

    async def list_for_record(self, record_id, limit=100) -> list[OutreachEvent]:
        return [
            OutreachEvent(
                record_id=rid, event_type=event_type, occurred_at=NOW, detail=detail
            )
            for rid, event_type, detail in self.events
            if rid == record_id
        ][:limit]

    def types_for(self, record_id: str) -> list[str]:
        return [event_type for rid, event_type, _ in self.events if rid == record_id]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def recording_events():
    return RecordingEvents()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        WEBHOOK_SECRET=TEST_SECRET,
        EXECUTOR_BASE_URL="http://executor.test",
        DATABASE_URL=None,
        ACTION_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def tracker():
    return SessionTracker(max_screenshots=3)


@pytest.fixture
def pipeline(test_settings, fake_redis, fake_executor, tracker, recording_events):
    return build_pipeline(
        test_settings,
        fake_redis,
        executor=fake_executor,
        tracker=tracker,
        events=recording_events,
    )


@pytest.fixture
def seed_record(fake_redis):
    """Write a record straight into the fake store, bypassing versioning."""

    def _seed(record_id: str = "abc", **fields) -> OutreachRecord:
        fields.setdefault("display_name", "Ada Lovelace")
        record = OutreachRecord(id=record_id, **fields)
        fake_redis.store[f"target:{record_id}"] = record.model_dump_json()
        return record

    return _seed


@pytest.fixture
def load_record(fake_redis):
    def _load(record_id: str = "abc") -> OutreachRecord | None:
        raw = fake_redis.store.get(f"target:{record_id}")
        return OutreachRecord.model_validate_json(raw) if raw else None

    return _load
