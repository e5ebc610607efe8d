import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from linkme.features.outreach.domain.models import OutreachStatus, QueueName
from linkme.main import app

SECRET_HEADER = {"X-Shared-Secret": "test-secret"}
MESSAGES_KEY = "queue:linkedin-dms"


@pytest.fixture
def client(pipeline):
    app.state.pipeline = pipeline
    yield TestClient(app)
    app.state.pipeline = None


def test_webhook_accepts_and_enqueues_message(client, fake_redis, seed_record, load_record):
    seed_record(
        "abc", status=OutreachStatus.INVITED, next_action_at=datetime.now(UTC) + timedelta(days=1)
    )

    response = client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "id": "abc", "status": "accepted", "enqueued": True}

    record = load_record("abc")
    assert record.status is OutreachStatus.ACCEPTED
    assert record.next_action_at <= datetime.now(UTC)

    queued = [json.loads(raw) for raw in fake_redis.lists[MESSAGES_KEY]]
    assert queued == [{"schema_version": 1, "id": "abc", "display_name": "Ada Lovelace"}]


def test_webhook_accepts_legacy_urn_field(client, seed_record, load_record):
    seed_record("urn-1", status=OutreachStatus.INVITED)

    response = client.post("/accepted", json={"urn": "urn-1"}, headers=SECRET_HEADER)

    assert response.status_code == 200
    assert load_record("urn-1").status is OutreachStatus.ACCEPTED


@pytest.mark.parametrize("headers", [{}, {"X-Shared-Secret": "bad"}])
def test_webhook_rejects_bad_secret(client, fake_redis, seed_record, headers):
    seed_record("abc", status=OutreachStatus.INVITED)
    before = fake_redis.store["target:abc"]

    response = client.post("/accepted", json={"id": "abc"}, headers=headers)

    assert response.status_code == 401
    assert fake_redis.store["target:abc"] == before
    assert fake_redis.lists.get(MESSAGES_KEY, []) == []


def test_webhook_rejects_when_secret_unconfigured(client, pipeline, seed_record):
    seed_record("abc", status=OutreachStatus.INVITED)
    pipeline.settings.WEBHOOK_SECRET = None

    response = client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER)

    assert response.status_code == 401


def test_webhook_unknown_record(client, fake_redis):
    response = client.post("/accepted", json={"id": "ghost"}, headers=SECRET_HEADER)

    assert response.status_code == 404
    assert "target:ghost" not in fake_redis.store
    assert fake_redis.lists.get(MESSAGES_KEY, []) == []


@pytest.mark.parametrize("body", [b"{}", b'{"id": ""}', b"not json"])
def test_webhook_bad_body(client, body):
    response = client.post(
        "/accepted",
        content=body,
        headers={**SECRET_HEADER, "Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_webhook_still_succeeds_when_queue_down(client, fake_redis, seed_record, load_record):
    seed_record("abc", status=OutreachStatus.INVITED)
    fake_redis.failing.add("LPUSH")

    response = client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER)

    assert response.status_code == 200
    assert response.json()["enqueued"] is False
    assert load_record("abc").status is OutreachStatus.ACCEPTED


def test_webhook_store_failure_returns_500(client, fake_redis, seed_record):
    seed_record("abc", status=OutreachStatus.INVITED)
    fake_redis.failing.add("GET")

    response = client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER)

    assert response.status_code == 500


def test_duplicate_webhook_sends_one_message(
    client, pipeline, fake_redis, fake_executor, recording_events, seed_record, load_record
):
    seed_record("abc", status=OutreachStatus.INVITED)

    for _ in range(2):
        assert client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER).status_code == 200

    assert len(fake_redis.lists[MESSAGES_KEY]) == 2
    assert recording_events.types_for("abc") == ["connection_accepted", "connection_accepted"]

    async def drain():
        deliveries = await pipeline.queues[QueueName.MESSAGES].receive_batch(10)
        return await pipeline.message_consumer.process_batch(deliveries)

    metrics = asyncio.run(drain())

    assert metrics["succeeded"] == 1
    assert metrics["dropped"] == 1
    assert len(fake_executor.calls) == 1
    assert load_record("abc").status is OutreachStatus.DONE


@pytest.mark.parametrize(
    "status", [OutreachStatus.DONE, OutreachStatus.FAILED, OutreachStatus.PAUSED]
)
def test_webhook_leaves_finished_or_paused_record_alone(
    client, pipeline, fake_redis, fake_executor, recording_events, seed_record, status
):
    seed_record("abc", status=status)
    before = fake_redis.store["target:abc"]

    response = client.post("/accepted", json={"id": "abc"}, headers=SECRET_HEADER)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "id": "abc", "status": status.value, "enqueued": False}
    assert fake_redis.store["target:abc"] == before
    assert fake_redis.lists.get(MESSAGES_KEY, []) == []
    assert recording_events.types_for("abc") == []

    async def drain():
        deliveries = await pipeline.queues[QueueName.MESSAGES].receive_batch(10)
        return await pipeline.message_consumer.process_batch(deliveries)

    asyncio.run(drain())

    assert fake_executor.calls == []
