"""
FastAPI application with Redis, event-database and pipeline lifecycle management.
"""

import asyncio
import time
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request

from linkme.config import settings
from linkme.features.outreach.api.router import router as outreach_router
from linkme.features.outreach.jobs.pipeline_jobs import (
    run_connection_consumer,
    run_message_consumer,
    run_scheduler_loop,
)
from linkme.features.outreach.pipeline import pipeline_resources
from linkme.infrastructure.observability.logging import get_logger, setup_logging
from linkme.routes import debug, health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    async with AsyncExitStack() as stack:
        try:
            pipeline = await stack.enter_async_context(pipeline_resources(settings))
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e))
            raise

        app.state.pipeline = pipeline

        background_tasks: list[asyncio.Task] = []
        if settings.RUN_PIPELINE_IN_APP:
            background_tasks = [
                asyncio.create_task(run_scheduler_loop(pipeline), name="outreach-scheduler"),
                asyncio.create_task(
                    run_connection_consumer(pipeline), name="connection-consumer"
                ),
                asyncio.create_task(run_message_consumer(pipeline), name="message-consumer"),
            ]
            logger.info("Outreach loops started in-process", tasks=len(background_tasks))

        yield

        # Shutdown sequence (reverse order)
        logger.info("Application shutting down")

        shutdown_errors = []
        for task in background_tasks:
            task.cancel()
        for task in background_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("Background loop ended with error", task=task.get_name(), error=str(e))
                shutdown_errors.append(f"{task.get_name()}: {e}")

        app.state.pipeline = None

        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All background loops stopped")


app = FastAPI(
    title="LinkMe Outreach",
    description="Connection request and follow-up message pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(outreach_router)
app.include_router(debug.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
