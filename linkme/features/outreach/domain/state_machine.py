"""
Outreach state machine.

Pure transition functions: each takes the current record and returns the
record to persist, or raises InvalidTransitionError. Nothing here touches
storage or queues.

    new -> invited -> accepted -> done
      failed / paused are side branches; paused -> new is the only
      manual reverse edge.
"""

from datetime import datetime
from typing import assert_never

from linkme.features.outreach.domain.models import OutreachRecord, OutreachStatus, QueueName
from linkme.features.outreach.domain.policies import PipelineTiming

DEFAULT_TIMING = PipelineTiming()


class InvalidTransitionError(Exception):
    """Raised when an operator action does not apply to the record's status."""

    def __init__(self, record_id: str, status: OutreachStatus, action: str):
        super().__init__(f"Cannot {action} record {record_id} in status '{status.value}'")
        self.record_id = record_id
        self.status = status
        self.action = action


def dispatch_queue(status: OutreachStatus) -> QueueName | None:
    """Queue the scheduler sends a due record to, or None when it is not dispatchable."""
    match status:
        case OutreachStatus.NEW:
            return QueueName.CONNECTIONS
        case OutreachStatus.ACCEPTED:
            return QueueName.MESSAGES
        case (
            OutreachStatus.INVITED
            | OutreachStatus.DONE
            | OutreachStatus.FAILED
            | OutreachStatus.PAUSED
        ):
            return None
        case _:
            assert_never(status)


def source_status(queue: QueueName) -> OutreachStatus:
    """Status a record must still hold for a consumer of `queue` to act on it."""
    match queue:
        case QueueName.CONNECTIONS:
            return OutreachStatus.NEW
        case QueueName.MESSAGES:
            return OutreachStatus.ACCEPTED
        case _:
            assert_never(queue)


def rearm(record: OutreachRecord, next_action_at: datetime) -> OutreachRecord:
    """Scheduler re-arm after dispatch; status is left to the consumer."""
    return record.model_copy(update={"next_action_at": next_action_at})


def connection_sent(
    record: OutreachRecord, now: datetime, timing: PipelineTiming = DEFAULT_TIMING
) -> OutreachRecord:
    return record.model_copy(
        update={
            "status": OutreachStatus.INVITED,
            "next_action_at": now + timing.connection_followup,
            "last_error": None,
        }
    )


def connection_failed(record: OutreachRecord, error: str) -> OutreachRecord:
    return record.model_copy(update={"status": OutreachStatus.FAILED, "last_error": error})


def connection_accepted(record: OutreachRecord, now: datetime) -> OutreachRecord | None:
    """
    External acceptance signal; immediately eligible for the follow-up message.

    Returns None for finished or paused records, which the signal must not revive.
    """
    match record.status:
        case OutreachStatus.NEW | OutreachStatus.INVITED | OutreachStatus.ACCEPTED:
            return record.model_copy(
                update={"status": OutreachStatus.ACCEPTED, "next_action_at": now}
            )
        case OutreachStatus.DONE | OutreachStatus.FAILED | OutreachStatus.PAUSED:
            return None
        case _:
            assert_never(record.status)


def message_sent(
    record: OutreachRecord, now: datetime, timing: PipelineTiming = DEFAULT_TIMING
) -> OutreachRecord:
    return record.model_copy(
        update={
            "status": OutreachStatus.DONE,
            "next_action_at": now + timing.done_dormant,
            "last_error": None,
        }
    )


def message_failed(
    record: OutreachRecord, error: str, now: datetime, timing: PipelineTiming = DEFAULT_TIMING
) -> OutreachRecord:
    decision = timing.message_retry.on_failure(record.retry_count, now)
    if decision.retry:
        return record.model_copy(
            update={
                "status": OutreachStatus.ACCEPTED,
                "retry_count": decision.retry_count,
                "next_action_at": decision.next_action_at,
                "last_error": error,
            }
        )
    return record.model_copy(
        update={
            "status": OutreachStatus.FAILED,
            "retry_count": decision.retry_count,
            "last_error": error,
        }
    )


def pause(record: OutreachRecord) -> OutreachRecord | None:
    """Operator pause. Returns None when the record is already paused."""
    match record.status:
        case OutreachStatus.NEW | OutreachStatus.INVITED | OutreachStatus.ACCEPTED:
            return record.model_copy(update={"status": OutreachStatus.PAUSED})
        case OutreachStatus.PAUSED:
            return None
        case OutreachStatus.DONE | OutreachStatus.FAILED:
            raise InvalidTransitionError(record.id, record.status, "pause")
        case _:
            assert_never(record.status)


def resume(record: OutreachRecord, now: datetime) -> OutreachRecord:
    """Operator resume: back to the start of the pipeline, eligible now."""
    match record.status:
        case OutreachStatus.PAUSED:
            return record.model_copy(update={"status": OutreachStatus.NEW, "next_action_at": now})
        case (
            OutreachStatus.NEW
            | OutreachStatus.INVITED
            | OutreachStatus.ACCEPTED
            | OutreachStatus.DONE
            | OutreachStatus.FAILED
        ):
            raise InvalidTransitionError(record.id, record.status, "resume")
        case _:
            assert_never(record.status)
