"""Long-running loops for the outreach scheduler and queue consumers."""

from .pipeline_jobs import (  # noqa: F401
    run_connection_consumer,
    run_message_consumer,
    run_scheduler_loop,
    start_connection_consumer,
    start_message_consumer,
    start_outreach_scheduler,
)
