"""
Redis-list work queues with at-least-once delivery.

send() pushes onto `queue:<name>`. receive_batch() moves items onto
`queue:<name>:processing`; ack() removes them from there. Anything left
in processing when a consumer starts is moved back by recover_unacked().
One consumer process per queue is assumed for recovery.
"""

from dataclasses import dataclass

from pydantic import ValidationError

from linkme.features.outreach.domain.models import (
    WORK_ITEM_SCHEMA_VERSION,
    OutreachRecord,
    QueueName,
    WorkItem,
)
from linkme.infrastructure.observability.logging import get_logger
from linkme.services.redis_client import RedisClientError

logger = get_logger(__name__)


class QueueError(Exception):
    """Queue unreachable; callers treat this as a hard dependency failure."""

    def __init__(self, message: str, queue: str, operation: str = "unknown"):
        super().__init__(message)
        self.queue = queue
        self.operation = operation
        self.recoverable = True


class WorkItemDecodeError(Exception):
    """Payload is not a work item this consumer understands."""


@dataclass(slots=True)
class Delivery:
    """A received queue entry; raw is kept verbatim for ack."""

    queue: QueueName
    raw: str

    def decode(self) -> WorkItem:
        try:
            item = WorkItem.model_validate_json(self.raw)
        except ValidationError as e:
            raise WorkItemDecodeError(f"Malformed work item: {e}") from e
        if item.schema_version > WORK_ITEM_SCHEMA_VERSION:
            raise WorkItemDecodeError(
                f"Unsupported work item schema_version {item.schema_version}"
            )
        return item


class WorkQueue:
    def __init__(self, redis_client, name: QueueName):
        self.redis = redis_client
        self.name = name
        self.key = f"queue:{name.value}"
        self.processing_key = f"{self.key}:processing"

    async def send(self, item: WorkItem) -> None:
        try:
            await self.redis.lpush(self.key, item.model_dump_json())
        except RedisClientError as e:
            raise QueueError(f"Failed to send to {self.name.value}: {e}", self.name.value, "send") from e
        logger.debug("Work item enqueued", queue=self.name.value, record_id=item.id)

    async def send_record(self, record: OutreachRecord) -> WorkItem:
        item = WorkItem.for_record(record)
        await self.send(item)
        return item

    async def receive_batch(self, max_items: int) -> list[Delivery]:
        deliveries: list[Delivery] = []
        try:
            for _ in range(max_items):
                raw = await self.redis.lmove(self.key, self.processing_key)
                if raw is None:
                    break
                deliveries.append(Delivery(queue=self.name, raw=raw))
        except RedisClientError as e:
            if deliveries:
                # Already-moved items stay in processing and are recovered on restart
                logger.warning(
                    "Queue receive interrupted", queue=self.name.value, received=len(deliveries)
                )
                return deliveries
            raise QueueError(
                f"Failed to receive from {self.name.value}: {e}", self.name.value, "receive"
            ) from e
        return deliveries

    async def ack(self, delivery: Delivery) -> None:
        try:
            await self.redis.lrem(self.processing_key, delivery.raw)
        except RedisClientError as e:
            logger.error("Failed to ack work item", queue=self.name.value, error=str(e))

    async def recover_unacked(self) -> int:
        """Move every in-flight item back onto the queue."""
        moved = 0
        try:
            while await self.redis.lmove(self.processing_key, self.key) is not None:
                moved += 1
        except RedisClientError as e:
            raise QueueError(
                f"Failed to recover {self.name.value}: {e}", self.name.value, "recover"
            ) from e
        if moved:
            logger.warning("Recovered unacknowledged work items", queue=self.name.value, count=moved)
        return moved

    async def depth(self) -> int:
        try:
            return await self.redis.llen(self.key)
        except RedisClientError as e:
            raise QueueError(str(e), self.name.value, "depth") from e
