"""
Acceptance webhook handling.

An external observer reports that a connection request was accepted.
The record is persisted as `accepted` first and only then is the
follow-up message enqueued, so a failed send still leaves the record for
the next scheduler tick.
"""

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from linkme.features.outreach.domain import state_machine
from linkme.features.outreach.domain.models import OutreachRecord
from linkme.features.outreach.domain.policies import utcnow
from linkme.features.outreach.repository.event_repository import (
    OutreachEventRepository,
    OutreachEventType,
)
from linkme.features.outreach.repository.record_store import RecordStore
from linkme.features.outreach.services.work_queue import QueueError, WorkQueue
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class WebhookAuthError(Exception):
    pass


def verify_shared_secret(provided: str | None, expected: str | None) -> None:
    """
    Exact, constant-time comparison of the shared-secret header.

    Raises:
        WebhookAuthError: Header missing, secret not configured, or mismatch
    """
    if not expected:
        logger.error("Webhook secret is not configured, rejecting request")
        raise WebhookAuthError("Webhook secret not configured")
    if not provided:
        raise WebhookAuthError("Missing shared secret")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise WebhookAuthError("Invalid shared secret")


@dataclass(slots=True)
class AcceptanceResult:
    record: OutreachRecord
    enqueued: bool


class AcceptanceWebhookService:
    def __init__(
        self,
        store: RecordStore,
        message_queue: WorkQueue,
        events: OutreachEventRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.message_queue = message_queue
        self.events = events
        self.clock = clock

    async def accept(self, record_id: str) -> AcceptanceResult:
        """
        Mark a record accepted and enqueue its follow-up message.

        Done, failed and paused records are returned unchanged and nothing
        is enqueued.

        Raises:
            RecordNotFoundError: Unknown id
            RecordStoreError: Store unavailable
        """
        now = self.clock()
        applied = False

        def mutate(current: OutreachRecord) -> OutreachRecord | None:
            nonlocal applied
            updated = state_machine.connection_accepted(current, now)
            applied = updated is not None
            return updated

        record = await self.store.update(record_id, mutate)

        if not applied:
            logger.info(
                "Acceptance ignored for record outside the active pipeline",
                record_id=record.id,
                status=record.status.value,
            )
            return AcceptanceResult(record=record, enqueued=False)

        logger.info("Connection accepted", record_id=record.id, display_name=record.display_name)

        enqueued = True
        try:
            await self.message_queue.send_record(record)
        except QueueError as e:
            enqueued = False
            logger.error(
                "Failed to enqueue follow-up after acceptance, scheduler will pick it up",
                record_id=record.id,
                error=str(e),
            )

        await self.events.record(record.id, OutreachEventType.CONNECTION_ACCEPTED)
        return AcceptanceResult(record=record, enqueued=enqueued)
