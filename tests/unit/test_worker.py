import asyncio

import pytest

from linkme.features.outreach.jobs import pipeline_jobs
from linkme.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_covers_pipeline_roles():
    assert set(worker.JOB_REGISTRY) == {"scheduler", "connection_consumer", "message_consumer"}


def test_job_name_from_env(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", " Message_Consumer ")

    assert worker._resolve_job_name() == "message_consumer"


@pytest.mark.asyncio
async def test_scheduler_loop_survives_failed_tick(monkeypatch, pipeline, fake_redis):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            raise asyncio.CancelledError

    monkeypatch.setattr(pipeline_jobs.asyncio, "sleep", fake_sleep)
    fake_redis.failing.add("SCAN")

    with pytest.raises(asyncio.CancelledError):
        await pipeline_jobs.run_scheduler_loop(pipeline)

    assert sleeps == [pipeline_jobs.ERROR_BACKOFF_SECONDS, pipeline_jobs.ERROR_BACKOFF_SECONDS]
