"""
Outreach scheduler.

Runs on a fixed tick. Each run lists every record, dispatches the due
ones to the connection or message queue, and re-arms them 25-35 minutes
out whatever the consumer later does, so a lost queue item is simply
dispatched again after the window.
"""

import random
from collections.abc import Callable
from datetime import datetime

from linkme.features.outreach.domain.models import OutreachRecord, QueueName
from linkme.features.outreach.domain.policies import JitterWindow, utcnow
from linkme.features.outreach.domain.state_machine import dispatch_queue, rearm
from linkme.features.outreach.repository.record_store import (
    RecordStore,
    RecordStoreError,
    StaleRecordError,
)
from linkme.features.outreach.services.work_queue import QueueError, WorkQueue
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SchedulerError(Exception):
    """A tick could not run at all (record listing failed)."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class SchedulerMetrics:
    """Per-tick counters, logged at the end of every run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = utcnow()
        self.scanned = 0
        self.dispatched_connections = 0
        self.dispatched_messages = 0
        self.skipped_records = 0
        self.rearm_conflicts = 0
        self.errors: list[dict] = []
        self.total_duration_seconds = 0.0

    def record_dispatch(self, queue: QueueName):
        if queue is QueueName.CONNECTIONS:
            self.dispatched_connections += 1
        else:
            self.dispatched_messages += 1

    def record_error(self, record_id: str, error: str):
        self.errors.append({"record_id": record_id, "error": error})

    def finalize(self):
        self.total_duration_seconds = (utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "outreach_scheduler",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "scanned": self.scanned,
            "dispatched_connections": self.dispatched_connections,
            "dispatched_messages": self.dispatched_messages,
            "skipped_records": self.skipped_records,
            "rearm_conflicts": self.rearm_conflicts,
            "errors_count": len(self.errors),
        }


class OutreachScheduler:
    def __init__(
        self,
        store: RecordStore,
        queues: dict[QueueName, WorkQueue],
        jitter: JitterWindow | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.queues = queues
        self.jitter = jitter or JitterWindow()
        self.clock = clock
        self.rng = rng
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = SchedulerMetrics()

    async def run_once(self) -> dict:
        """
        Run a single scheduler tick.

        Returns:
            dict: Tick metrics

        Raises:
            SchedulerError: If the record listing is unavailable
        """
        if self.is_running:
            logger.warning("Scheduler tick already running, skipping this invocation")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()

            try:
                record_ids = await self.store.list_all_keys()
            except RecordStoreError as e:
                logger.error("Scheduler could not list records", error=str(e))
                raise SchedulerError(f"Failed to list records: {e}", operation="list") from e

            now = self.clock()
            for record_id in record_ids:
                self.metrics.scanned += 1
                await self._process_record(record_id, now)

            self.metrics.finalize()
            self.last_run_time = now
            metrics = self.metrics.to_dict()
            logger.info("Scheduler tick completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _process_record(self, record_id: str, now: datetime) -> None:
        try:
            record = await self.store.get(record_id)
        except RecordStoreError as e:
            logger.error("Scheduler failed to load record", record_id=record_id, error=str(e))
            self.metrics.record_error(record_id, str(e))
            return

        if record is None:
            # Deleted between listing and fetch
            self.metrics.skipped_records += 1
            return

        if not record.is_due(now):
            self.metrics.skipped_records += 1
            return

        queue_name = dispatch_queue(record.status)
        if queue_name is None:
            self.metrics.skipped_records += 1
            return

        try:
            await self.queues[queue_name].send_record(record)
        except QueueError as e:
            logger.error(
                "Scheduler failed to dispatch record",
                record_id=record_id,
                queue=queue_name.value,
                error=str(e),
            )
            self.metrics.record_error(record_id, str(e))
            return

        self.metrics.record_dispatch(queue_name)
        logger.info(
            "Record dispatched",
            record_id=record.id,
            display_name=record.display_name,
            queue=queue_name.value,
        )

        await self._rearm(record, now)

    async def _rearm(self, record: OutreachRecord, now: datetime) -> None:
        next_action_at = self.jitter.next_action_at(now, self.rng)
        try:
            await self.store.put(rearm(record, next_action_at), expected_version=record.version)
            logger.debug(
                "Record re-armed", record_id=record.id, next_action_at=next_action_at.isoformat()
            )
        except StaleRecordError:
            # A consumer or operator wrote first; their next_action_at wins
            self.metrics.rearm_conflicts += 1
            logger.info("Record changed during dispatch, keeping newer state", record_id=record.id)
        except RecordStoreError as e:
            logger.error("Scheduler failed to re-arm record", record_id=record.id, error=str(e))
            self.metrics.record_error(record.id, str(e))

    def get_status(self) -> dict:
        return {
            "job_name": "outreach_scheduler",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }
