"""
Connection and message queue consumers.

Each delivery is handled on its own: check the record is still at the
consumer's stage, take the per-record lease, run the executor inside a
released-on-exit execution context under a timeout, apply the state
transition, close the observability session and acknowledge.

Deliveries are always acknowledged. Retries are driven by the record's
next_action_at/retry_count, never by queue redelivery, so the two retry
mechanisms can't compound.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from linkme.features.outreach.domain import state_machine
from linkme.features.outreach.domain.models import (
    ActionResult,
    OutreachRecord,
    QueueName,
    WorkItem,
)
from linkme.features.outreach.domain.policies import PipelineTiming, utcnow
from linkme.features.outreach.repository.event_repository import (
    OutreachEventRepository,
    OutreachEventType,
)
from linkme.features.outreach.repository.record_store import (
    RecordNotFoundError,
    RecordStore,
    RecordStoreError,
)
from linkme.features.outreach.services.executor import (
    ActionExecutor,
    ActionExecutorError,
    ExecutionContext,
)
from linkme.features.outreach.services.leases import RecordLeases
from linkme.features.outreach.services.work_queue import (
    Delivery,
    QueueError,
    WorkItemDecodeError,
    WorkQueue,
)
from linkme.infrastructure.observability.logging import (
    bind_record_context,
    clear_record_context,
    get_logger,
)
from linkme.infrastructure.observability.session_tracker import SessionTracker
from linkme.services.redis_client import RedisClientError

logger = get_logger(__name__)

DEFAULT_ACTION_TIMEOUT_SECONDS = 180.0


class BatchMetrics:
    def __init__(self):
        self.received = 0
        self.succeeded = 0
        self.failed = 0
        self.dropped = 0

    def to_dict(self) -> dict:
        return {
            "received": self.received,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "dropped": self.dropped,
        }


class QueueConsumer:
    """Shared delivery handling; subclasses supply the action and transitions."""

    queue_name: QueueName
    operation: str
    success_event: OutreachEventType
    failure_event: OutreachEventType

    def __init__(
        self,
        queue: WorkQueue,
        store: RecordStore,
        executor: ActionExecutor,
        tracker: SessionTracker,
        leases: RecordLeases,
        events: OutreachEventRepository,
        message_template: str,
        timing: PipelineTiming | None = None,
        action_timeout_seconds: float = DEFAULT_ACTION_TIMEOUT_SECONDS,
        batch_size: int = 10,
        poll_interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.store = store
        self.executor = executor
        self.tracker = tracker
        self.leases = leases
        self.events = events
        self.message_template = message_template
        self.timing = timing or PipelineTiming()
        self.action_timeout_seconds = action_timeout_seconds
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock

    # -- subclass hooks -------------------------------------------------

    async def _perform(self, ctx: ExecutionContext, item: WorkItem) -> ActionResult:
        raise NotImplementedError

    def _on_success(self, record: OutreachRecord, now: datetime) -> OutreachRecord:
        raise NotImplementedError

    def _on_failure(self, record: OutreachRecord, error: str, now: datetime) -> OutreachRecord:
        raise NotImplementedError

    # -------------------------------------------------------------------

    def render_message(self, display_name: str) -> str:
        return self.message_template.format(name=display_name)

    @property
    def expected_status(self):
        return state_machine.source_status(self.queue_name)

    async def process_batch(self, deliveries: list[Delivery]) -> dict:
        """Handle deliveries one at a time; every one is acknowledged."""
        metrics = BatchMetrics()
        for delivery in deliveries:
            metrics.received += 1
            try:
                outcome = await self._handle(delivery)
            except Exception as e:
                outcome = None
                logger.exception(
                    "Unexpected error handling work item",
                    queue=self.queue_name.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                await self.queue.ack(delivery)
                clear_record_context()

            if outcome is None:
                metrics.dropped += 1
            elif outcome:
                metrics.succeeded += 1
            else:
                metrics.failed += 1

        logger.info("Consumer batch processed", queue=self.queue_name.value, **metrics.to_dict())
        return metrics.to_dict()

    async def _handle(self, delivery: Delivery) -> bool | None:
        """
        Returns:
            True/False for an executed action's outcome, None when dropped
        """
        try:
            item = delivery.decode()
        except WorkItemDecodeError as e:
            logger.error("Dropping undecodable work item", queue=self.queue_name.value, error=str(e))
            return None

        bind_record_context(item.id, queue=self.queue_name.value)

        try:
            record = await self.store.get(item.id)
        except RecordStoreError as e:
            logger.error("Failed to load record for work item", error=str(e))
            return None

        if record is None:
            logger.warning("Record missing, dropping work item")
            return None

        if record.status != self.expected_status:
            logger.info(
                "Record no longer at this stage, dropping work item",
                status=record.status.value,
                expected_status=self.expected_status.value,
            )
            return None

        try:
            lease_token = await self.leases.acquire(item.id)
        except RedisClientError as e:
            logger.error("Failed to acquire record lease", error=str(e))
            return None

        if lease_token is None:
            logger.info("Record is already being processed, dropping duplicate work item")
            return None

        try:
            session_id = self.tracker.create(self.operation, record_id=item.id)
            result = await self._execute(item, session_id)
            await self._apply_outcome(item, session_id, result)
            return result.success
        finally:
            await self.leases.release(item.id, lease_token)

    async def _run_in_session(self, item: WorkItem) -> ActionResult:
        """Open, use and release one execution context."""
        async with self.executor.session() as ctx:
            return await self._perform(ctx, item)

    async def _execute(self, item: WorkItem, session_id: str) -> ActionResult:
        self.tracker.append_log(
            session_id, f"Starting {self.operation} for {item.display_name} ({item.id})"
        )

        try:
            result = await asyncio.wait_for(
                self._run_in_session(item), timeout=self.action_timeout_seconds
            )
        except TimeoutError:
            result = ActionResult(
                success=False,
                message=f"{self.operation} timed out after {self.action_timeout_seconds}s",
            )
        except ActionExecutorError as e:
            result = ActionResult(success=False, message=str(e))
        except Exception as e:
            result = ActionResult(
                success=False, message=f"Unexpected executor error: {type(e).__name__}: {e}"
            )

        for line in result.logs:
            self.tracker.append_log(session_id, line)
        for shot in result.screenshots:
            self.tracker.append_screenshot(session_id, shot.label, shot.data)

        return result

    async def _apply_outcome(self, item: WorkItem, session_id: str, result: ActionResult) -> None:
        now = self.clock()
        applied = False

        def mutate(record: OutreachRecord) -> OutreachRecord | None:
            nonlocal applied
            if record.status != self.expected_status:
                return None
            if result.success:
                updated = self._on_success(record, now)
            else:
                updated = self._on_failure(record, result.message or "unknown error", now)
            applied = True
            return updated.model_copy(update={"debug_session_id": session_id})

        try:
            updated = await self.store.update(item.id, mutate)
        except RecordNotFoundError:
            logger.warning("Record deleted during action, outcome dropped", session_id=session_id)
        except RecordStoreError as e:
            logger.error("Failed to persist action outcome", session_id=session_id, error=str(e))
        else:
            if applied:
                logger.info(
                    f"{self.operation.capitalize()} outcome applied",
                    success=result.success,
                    status=updated.status.value,
                    retry_count=updated.retry_count,
                    next_action_at=(
                        updated.next_action_at.isoformat() if updated.next_action_at else None
                    ),
                    session_id=session_id,
                )
            else:
                logger.info(
                    "Record changed during action, outcome not applied",
                    status=updated.status.value,
                    session_id=session_id,
                )

        await self.events.record(
            item.id,
            self.success_event if result.success else self.failure_event,
            detail=None if result.success else result.message,
        )

        if result.success:
            self.tracker.append_log(session_id, f"{self.operation} succeeded: {result.message}")
            self.tracker.complete(session_id)
        else:
            self.tracker.complete(session_id, error=result.message or "unknown error")

    async def run_forever(self) -> None:
        """Poll the queue and process batches until cancelled."""
        logger.info(
            "Consumer started",
            queue=self.queue_name.value,
            batch_size=self.batch_size,
            poll_interval_seconds=self.poll_interval_seconds,
        )

        try:
            await self.queue.recover_unacked()
        except QueueError as e:
            logger.error("Failed to recover unacknowledged items", queue=e.queue, error=str(e))

        while True:
            try:
                deliveries = await self.queue.receive_batch(self.batch_size)
            except QueueError as e:
                logger.error("Queue receive failed", queue=e.queue, error=str(e))
                await asyncio.sleep(self.poll_interval_seconds)
                continue

            if not deliveries:
                await asyncio.sleep(self.poll_interval_seconds)
                continue

            await self.process_batch(deliveries)


class ConnectionConsumer(QueueConsumer):
    """new -> invited on success, new -> failed on the first failure."""

    queue_name = QueueName.CONNECTIONS
    operation = "connection"
    success_event = OutreachEventType.INVITE_SENT
    failure_event = OutreachEventType.INVITE_FAILED

    async def _perform(self, ctx: ExecutionContext, item: WorkItem) -> ActionResult:
        return await ctx.connect(item.id, item.display_name, self.render_message(item.display_name))

    def _on_success(self, record: OutreachRecord, now: datetime) -> OutreachRecord:
        return state_machine.connection_sent(record, now, self.timing)

    def _on_failure(self, record: OutreachRecord, error: str, now: datetime) -> OutreachRecord:
        return state_machine.connection_failed(record, error)


class MessageConsumer(QueueConsumer):
    """accepted -> done on success; bounded retries with backoff on failure."""

    queue_name = QueueName.MESSAGES
    operation = "message"
    success_event = OutreachEventType.DM_SENT
    failure_event = OutreachEventType.DM_FAILED

    async def _perform(self, ctx: ExecutionContext, item: WorkItem) -> ActionResult:
        return await ctx.send_message(
            item.id, item.display_name, self.render_message(item.display_name)
        )

    def _on_success(self, record: OutreachRecord, now: datetime) -> OutreachRecord:
        return state_machine.message_sent(record, now, self.timing)

    def _on_failure(self, record: OutreachRecord, error: str, now: datetime) -> OutreachRecord:
        return state_machine.message_failed(record, error, now, self.timing)
