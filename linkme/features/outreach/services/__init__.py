"""
Service layer for the outreach pipeline.
"""

from .consumers import ConnectionConsumer, MessageConsumer, QueueConsumer
from .executor import ActionExecutor, ActionExecutorError, HttpActionExecutor
from .leases import RecordLeases
from .manual_actions import ManualActionService
from .scheduler import OutreachScheduler, SchedulerError
from .webhook_service import AcceptanceWebhookService, WebhookAuthError, verify_shared_secret
from .work_queue import Delivery, QueueError, WorkQueue

__all__ = [
    "AcceptanceWebhookService",
    "ActionExecutor",
    "ActionExecutorError",
    "ConnectionConsumer",
    "Delivery",
    "HttpActionExecutor",
    "ManualActionService",
    "MessageConsumer",
    "OutreachScheduler",
    "QueueConsumer",
    "QueueError",
    "RecordLeases",
    "SchedulerError",
    "WebhookAuthError",
    "WorkQueue",
    "verify_shared_secret",
]
