"""
Operator actions: pause and resume a record.
"""

from collections.abc import Callable
from datetime import datetime

from linkme.features.outreach.domain import state_machine
from linkme.features.outreach.domain.models import OutreachRecord, OutreachStatus
from linkme.features.outreach.domain.policies import utcnow
from linkme.features.outreach.repository.event_repository import (
    OutreachEventRepository,
    OutreachEventType,
)
from linkme.features.outreach.repository.record_store import RecordStore
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ManualActionService:
    def __init__(
        self,
        store: RecordStore,
        events: OutreachEventRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.events = events
        self.clock = clock

    async def pause(self, record_id: str) -> OutreachRecord:
        """
        Raises:
            RecordNotFoundError: Unknown id
            InvalidTransitionError: Record is done or failed
        """
        before: list[OutreachStatus] = []

        def mutate(record: OutreachRecord) -> OutreachRecord | None:
            before.append(record.status)
            return state_machine.pause(record)

        record = await self.store.update(record_id, mutate)
        if before[-1] is not OutreachStatus.PAUSED:
            logger.info("Record paused", record_id=record_id, previous_status=before[-1].value)
            await self.events.record(record_id, OutreachEventType.PAUSED)
        return record

    async def resume(self, record_id: str) -> OutreachRecord:
        """
        Raises:
            RecordNotFoundError: Unknown id
            InvalidTransitionError: Record is not paused
        """
        now = self.clock()
        record = await self.store.update(record_id, lambda current: state_machine.resume(current, now))
        logger.info("Record resumed", record_id=record_id)
        await self.events.record(record_id, OutreachEventType.RESUMED)
        return record
