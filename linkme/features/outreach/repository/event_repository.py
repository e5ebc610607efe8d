"""
Outreach event log.

Append-only history of what the pipeline did to each record
(invite_sent, dm_failed, ...). Writes are best effort: the record store
stays authoritative and a failed insert never changes pipeline outcome.
"""

from datetime import UTC, datetime
from enum import Enum

import psycopg
from pydantic import BaseModel

from linkme.db.pool import DatabaseError, db_pool
from linkme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CREATE_EVENTS_TABLE = """
    CREATE TABLE IF NOT EXISTS outreach_events (
        id BIGSERIAL PRIMARY KEY,
        record_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        occurred_at TIMESTAMPTZ NOT NULL,
        detail TEXT
    )
"""

CREATE_EVENTS_INDEX = """
    CREATE INDEX IF NOT EXISTS outreach_events_record_idx
    ON outreach_events (record_id, occurred_at)
"""

INSERT_EVENT = """
    INSERT INTO outreach_events (record_id, event_type, occurred_at, detail)
    VALUES (%s, %s, %s, %s)
"""

SELECT_EVENTS_FOR_RECORD = """
    SELECT record_id, event_type, occurred_at, detail
    FROM outreach_events
    WHERE record_id = %s
    ORDER BY occurred_at DESC
    LIMIT %s
"""


class OutreachEventType(str, Enum):
    INVITE_SENT = "invite_sent"
    INVITE_FAILED = "invite_failed"
    DM_SENT = "dm_sent"
    DM_FAILED = "dm_failed"
    CONNECTION_ACCEPTED = "connection_accepted"
    PAUSED = "paused"
    RESUMED = "resumed"


class OutreachEvent(BaseModel):
    record_id: str
    event_type: OutreachEventType
    occurred_at: datetime
    detail: str | None = None


class OutreachEventRepository:
    """Persistence for the outreach_events table."""

    def __init__(self, pool=db_pool):
        self.pool = pool

    @property
    def enabled(self) -> bool:
        return self.pool.is_available

    async def _execute(self, query: str, params: tuple = ()) -> None:
        try:
            async with self.pool.connection() as conn:
                await conn.execute(query, params)
        except psycopg.Error as e:
            logger.error("Event log write failed", query=query.strip()[:60], error=str(e))
            raise DatabaseError(f"Query failed: {e}", operation="execute") from e

    async def _fetch(self, query: str, params: tuple) -> list[dict]:
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except psycopg.Error as e:
            logger.error("Event log read failed", query=query.strip()[:60], error=str(e))
            raise DatabaseError(f"Query failed: {e}", operation="fetch") from e

    async def ensure_schema(self) -> None:
        if not self.enabled:
            return
        await self._execute(CREATE_EVENTS_TABLE)
        await self._execute(CREATE_EVENTS_INDEX)
        logger.info("Outreach events table ready")

    async def record(
        self,
        record_id: str,
        event_type: OutreachEventType,
        detail: str | None = None,
        occurred_at: datetime | None = None,
    ) -> bool:
        """Insert one event. Returns False when skipped or failed."""
        if not self.enabled:
            logger.debug("Event log disabled", record_id=record_id, event_type=event_type.value)
            return False

        try:
            await self._execute(
                INSERT_EVENT,
                (record_id, event_type.value, occurred_at or datetime.now(UTC), detail),
            )
            return True
        except (DatabaseError, RuntimeError) as e:
            logger.warning(
                "Failed to record outreach event",
                record_id=record_id,
                event_type=event_type.value,
                error=str(e),
            )
            return False

    async def list_for_record(self, record_id: str, limit: int = 100) -> list[OutreachEvent]:
        """
        Newest events first.

        Raises:
            DatabaseError: Query failed
        """
        if not self.enabled:
            return []

        rows = await self._fetch(SELECT_EVENTS_FOR_RECORD, (record_id, limit))
        return [OutreachEvent.model_validate(row) for row in rows]
