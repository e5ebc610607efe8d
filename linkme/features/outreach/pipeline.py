"""
Pipeline wiring.

Builds every outreach component around one Redis client, one session
tracker and one executor. The API lifespan and the worker entrypoint
each build their own OutreachPipeline; tests build one around fakes.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from linkme.config import ConfigurationError, Settings
from linkme.db.pool import db_pool
from linkme.features.outreach.domain.models import QueueName
from linkme.features.outreach.domain.policies import PipelineTiming
from linkme.features.outreach.repository.event_repository import OutreachEventRepository
from linkme.features.outreach.repository.record_store import RecordStore
from linkme.features.outreach.services.consumers import ConnectionConsumer, MessageConsumer
from linkme.features.outreach.services.executor import ActionExecutor, HttpActionExecutor
from linkme.features.outreach.services.leases import RecordLeases
from linkme.features.outreach.services.manual_actions import ManualActionService
from linkme.features.outreach.services.scheduler import OutreachScheduler
from linkme.features.outreach.services.webhook_service import AcceptanceWebhookService
from linkme.features.outreach.services.work_queue import WorkQueue
from linkme.infrastructure.observability.logging import get_logger
from linkme.infrastructure.observability.session_tracker import SessionTracker
from linkme.services.redis_client import fast_redis

logger = get_logger(__name__)


@dataclass
class OutreachPipeline:
    settings: Settings
    store: RecordStore
    queues: dict[QueueName, WorkQueue]
    tracker: SessionTracker
    events: OutreachEventRepository
    scheduler: OutreachScheduler
    connection_consumer: ConnectionConsumer
    message_consumer: MessageConsumer
    webhook: AcceptanceWebhookService
    manual_actions: ManualActionService


def build_executor(settings: Settings) -> ActionExecutor:
    if not settings.EXECUTOR_BASE_URL:
        raise ConfigurationError("EXECUTOR_BASE_URL is not configured", setting="EXECUTOR_BASE_URL")
    return HttpActionExecutor(settings.EXECUTOR_BASE_URL, api_key=settings.EXECUTOR_API_KEY)


def build_pipeline(
    settings: Settings,
    redis_client,
    *,
    executor: ActionExecutor | None = None,
    tracker: SessionTracker | None = None,
    events: OutreachEventRepository | None = None,
) -> OutreachPipeline:
    timing = PipelineTiming.from_settings(settings)
    store = RecordStore(redis_client)
    queues = {name: WorkQueue(redis_client, name) for name in QueueName}
    tracker = tracker or SessionTracker.from_settings(settings)
    events = events or OutreachEventRepository()
    executor = executor or build_executor(settings)
    leases = RecordLeases(redis_client, ttl_seconds=settings.lease_ttl_seconds())

    consumer_kwargs = dict(
        store=store,
        executor=executor,
        tracker=tracker,
        leases=leases,
        events=events,
        timing=timing,
        action_timeout_seconds=settings.ACTION_TIMEOUT_SECONDS,
        batch_size=settings.CONSUMER_BATCH_SIZE,
        poll_interval_seconds=settings.CONSUMER_POLL_INTERVAL_SECONDS,
    )

    return OutreachPipeline(
        settings=settings,
        store=store,
        queues=queues,
        tracker=tracker,
        events=events,
        scheduler=OutreachScheduler(store, queues, jitter=timing.dispatch_jitter),
        connection_consumer=ConnectionConsumer(
            queue=queues[QueueName.CONNECTIONS],
            message_template=settings.CONNECTION_NOTE_TEMPLATE,
            **consumer_kwargs,
        ),
        message_consumer=MessageConsumer(
            queue=queues[QueueName.MESSAGES],
            message_template=settings.FOLLOW_UP_MESSAGE_TEMPLATE,
            **consumer_kwargs,
        ),
        webhook=AcceptanceWebhookService(store, queues[QueueName.MESSAGES], events),
        manual_actions=ManualActionService(store, events),
    )


@asynccontextmanager
async def pipeline_resources(settings: Settings) -> AsyncIterator[OutreachPipeline]:
    """
    Open Redis, the optional event database and the session sweeper, and
    yield a ready pipeline. Everything is closed in reverse order on exit.

    Raises:
        ConfigurationError: Required settings missing (no retry)
    """
    settings.validate_runtime()

    startup_tasks = []
    pipeline = None
    try:
        await fast_redis.initialize()
        startup_tasks.append("redis")

        if settings.event_log_enabled():
            await db_pool.initialize()
            startup_tasks.append("database_pool")

        pipeline = build_pipeline(settings, fast_redis)
        await pipeline.events.ensure_schema()

        pipeline.tracker.start()
        startup_tasks.append("session_tracker")

        logger.info("Outreach pipeline ready", services=startup_tasks)
        yield pipeline

    finally:
        logger.info("Closing outreach pipeline", services=startup_tasks)
        if "session_tracker" in startup_tasks:
            await pipeline.tracker.shutdown()
        if "database_pool" in startup_tasks:
            await db_pool.close()
        if "redis" in startup_tasks:
            await fast_redis.close()
