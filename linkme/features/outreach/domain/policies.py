"""
Timing policies shared by the scheduler and consumers.
"""

import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class JitterWindow:
    """Uniform re-arm window used after every scheduler dispatch."""

    min_minutes: int = 25
    max_minutes: int = 35

    def next_action_at(self, now: datetime, rng: random.Random | None = None) -> datetime:
        rng = rng or random
        minutes = rng.uniform(self.min_minutes, self.max_minutes)
        return now + timedelta(minutes=minutes)


@dataclass(frozen=True, slots=True)
class BackoffDecision:
    retry: bool
    retry_count: int
    next_action_at: datetime | None


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Bounded retry with a fixed delay.

    retry_count is the number of failures so far at the current stage.
    A failure that brings the count to max_retries or below schedules a
    retry after `delay`; anything beyond gives up.
    """

    max_retries: int = 2
    delay: timedelta = timedelta(days=3)

    def on_failure(self, retry_count: int, now: datetime) -> BackoffDecision:
        attempts = retry_count + 1
        if attempts <= self.max_retries:
            return BackoffDecision(retry=True, retry_count=attempts, next_action_at=now + self.delay)
        return BackoffDecision(retry=False, retry_count=attempts, next_action_at=None)


@dataclass(frozen=True, slots=True)
class PipelineTiming:
    """All delays used by state transitions, built from settings."""

    connection_followup: timedelta = timedelta(days=1)
    done_dormant: timedelta = timedelta(days=30)
    message_retry: RetryPolicy = RetryPolicy()
    dispatch_jitter: JitterWindow = JitterWindow()

    @classmethod
    def from_settings(cls, settings) -> "PipelineTiming":
        return cls(
            connection_followup=timedelta(hours=settings.CONNECTION_FOLLOWUP_DELAY_HOURS),
            done_dormant=timedelta(days=settings.DONE_DORMANT_DAYS),
            message_retry=RetryPolicy(
                max_retries=settings.MESSAGE_MAX_RETRIES,
                delay=timedelta(hours=settings.MESSAGE_RETRY_DELAY_HOURS),
            ),
            dispatch_jitter=JitterWindow(
                min_minutes=settings.SCHEDULER_JITTER_MIN_MINUTES,
                max_minutes=settings.SCHEDULER_JITTER_MAX_MINUTES,
            ),
        )
