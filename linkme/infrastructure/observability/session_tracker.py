"""
In-memory observability sessions.

One session per dispatched action attempt: an append-only log plus a
bounded ring of screenshots. Sessions are diagnostic only; they are never
persisted and a restart loses them.

The tracker is owned by whoever builds the pipeline (start()/shutdown()),
not a module global, so the API process and tests each get their own.
"""

import asyncio
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SCREENSHOTS = 20
DEFAULT_MAX_AGE = timedelta(hours=2)
DEFAULT_RETENTION = timedelta(hours=2)
DEFAULT_SWEEP_INTERVAL_SECONDS = 60


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True)
class LogEntry:
    timestamp: datetime
    message: str


@dataclass(slots=True)
class SessionScreenshot:
    timestamp: datetime
    label: str
    data: bytes


@dataclass(slots=True)
class ObservabilitySession:
    id: str
    operation: str
    start_time: datetime
    screenshots: deque[SessionScreenshot]
    record_id: str | None = None
    status: SessionStatus = SessionStatus.RUNNING
    end_time: datetime | None = None
    logs: list[LogEntry] = field(default_factory=list)
    error: str | None = None

    def summary(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "record_id": self.record_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "log_count": len(self.logs),
            "screenshot_count": len(self.screenshots),
            "error": self.error,
        }


class SessionTracker:
    """Lock-guarded map of session id to ObservabilitySession."""

    def __init__(
        self,
        max_screenshots: int = DEFAULT_MAX_SCREENSHOTS,
        max_age: timedelta = DEFAULT_MAX_AGE,
        retention: timedelta = DEFAULT_RETENTION,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ):
        if max_screenshots < 1:
            raise ValueError("max_screenshots must be at least 1")
        self.max_screenshots = max_screenshots
        self.max_age = max_age
        self.retention = retention
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sessions: dict[str, ObservabilitySession] = {}
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings) -> "SessionTracker":
        return cls(
            max_screenshots=settings.SESSION_MAX_SCREENSHOTS,
            max_age=timedelta(seconds=settings.SESSION_MAX_AGE_SECONDS),
            retention=timedelta(seconds=settings.SESSION_RETENTION_SECONDS),
            sweep_interval_seconds=settings.SESSION_SWEEP_INTERVAL_SECONDS,
        )

    def create(self, operation: str, record_id: str | None = None) -> str:
        session_id = uuid.uuid4().hex
        session = ObservabilitySession(
            id=session_id,
            operation=operation,
            record_id=record_id,
            start_time=datetime.now(UTC),
            screenshots=deque(maxlen=self.max_screenshots),
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.debug("Observability session created", session_id=session_id, operation=operation)
        return session_id

    def append_log(self, session_id: str, message: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.logs.append(LogEntry(timestamp=datetime.now(UTC), message=message))

    def append_screenshot(self, session_id: str, label: str, data: bytes) -> None:
        """Keep the newest max_screenshots images; older ones drop silently."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.screenshots.append(
                SessionScreenshot(timestamp=datetime.now(UTC), label=label, data=data)
            )

    def complete(self, session_id: str, error: str | None = None) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            now = datetime.now(UTC)
            session.end_time = now
            if error:
                session.status = SessionStatus.ERROR
                session.error = error
                session.logs.append(LogEntry(timestamp=now, message=f"Error: {error}"))
            else:
                session.status = SessionStatus.COMPLETED

    def get(self, session_id: str) -> ObservabilitySession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> list[ObservabilitySession]:
        with self._lock:
            sessions = list(self._sessions.values())
        return sorted(sessions, key=lambda s: s.start_time, reverse=True)

    def finalize_expired(self, now: datetime | None = None) -> dict:
        """
        Close sessions that ran past max_age and drop finished ones past retention.

        Returns:
            dict: Counts of finalized and purged sessions
        """
        now = now or datetime.now(UTC)
        finalized = 0
        purged = 0

        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.status is SessionStatus.RUNNING:
                    if now - session.start_time >= self.max_age:
                        session.status = SessionStatus.COMPLETED
                        session.end_time = now
                        session.logs.append(
                            LogEntry(timestamp=now, message="Session auto-finalized after timeout")
                        )
                        finalized += 1
                elif session.end_time and now - session.end_time >= self.retention:
                    del self._sessions[session_id]
                    purged += 1

        if finalized or purged:
            logger.info("Observability sessions swept", finalized=finalized, purged=purged)

        return {"finalized": finalized, "purged": purged}

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.finalize_expired()
            except Exception as e:
                logger.error("Session sweep failed", error=str(e), error_type=type(e).__name__)

    def start(self) -> None:
        """Start the background sweeper on the running event loop."""
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info(
            "Session tracker started",
            max_screenshots=self.max_screenshots,
            max_age_seconds=self.max_age.total_seconds(),
        )

    async def shutdown(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        with self._lock:
            self._sessions.clear()
        logger.info("Session tracker shut down")
