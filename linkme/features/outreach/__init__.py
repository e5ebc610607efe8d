"""
Outreach feature package.

Every layer of the invite -> accept -> follow-up flow lives here: domain
models and transitions, the Redis record store, queues and consumers,
background loops and the HTTP router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as outreach_router  # noqa: F401
from .domain.models import OutreachRecord, OutreachStatus, QueueName, WorkItem  # noqa: F401
from .jobs.pipeline_jobs import start_outreach_scheduler  # noqa: F401
from .pipeline import OutreachPipeline, build_pipeline, pipeline_resources  # noqa: F401
