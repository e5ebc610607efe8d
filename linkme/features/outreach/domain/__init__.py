"""
Domain subpackage for the outreach pipeline.
"""

from .models import (
    ActionResult,
    OutreachRecord,
    OutreachStatus,
    QueueName,
    Screenshot,
    WorkItem,
)
from .policies import JitterWindow, PipelineTiming, RetryPolicy
from .state_machine import InvalidTransitionError

__all__ = [
    "ActionResult",
    "InvalidTransitionError",
    "JitterWindow",
    "OutreachRecord",
    "OutreachStatus",
    "PipelineTiming",
    "QueueName",
    "RetryPolicy",
    "Screenshot",
    "WorkItem",
]
