"""
Background loops for the outreach pipeline.

`run_*` coroutines drive an already built pipeline and are what the API
lifespan schedules when RUN_PIPELINE_IN_APP is enabled. `start_*`
coroutines are worker entrypoints: they open their own Redis/database
resources and then run the matching loop forever.
"""

import asyncio

from linkme.config import settings
from linkme.features.outreach.pipeline import OutreachPipeline, pipeline_resources
from linkme.features.outreach.services.scheduler import SchedulerError
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


async def run_scheduler_loop(pipeline: OutreachPipeline) -> None:
    """Run a scheduler tick every SCHEDULER_INTERVAL_MINUTES until cancelled."""
    interval_minutes = pipeline.settings.SCHEDULER_INTERVAL_MINUTES
    logger.info("Starting outreach scheduler", interval_minutes=interval_minutes)

    while True:
        try:
            metrics = await pipeline.scheduler.run_once()
            if metrics.get("skipped", False):
                logger.warning("Outreach scheduler cycle skipped", reason=metrics.get("reason"))

            await asyncio.sleep(interval_minutes * 60)

        except SchedulerError as e:
            logger.error("Outreach scheduler tick failed", error=str(e), operation=e.operation)
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
        except Exception as e:
            logger.error(
                "Error in outreach scheduler loop", error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)


async def run_connection_consumer(pipeline: OutreachPipeline) -> None:
    await pipeline.connection_consumer.run_forever()


async def run_message_consumer(pipeline: OutreachPipeline) -> None:
    await pipeline.message_consumer.run_forever()


async def start_outreach_scheduler() -> None:
    async with pipeline_resources(settings) as pipeline:
        await run_scheduler_loop(pipeline)


async def start_connection_consumer() -> None:
    async with pipeline_resources(settings) as pipeline:
        await run_connection_consumer(pipeline)


async def start_message_consumer() -> None:
    async with pipeline_resources(settings) as pipeline:
        await run_message_consumer(pipeline)
