"""
Per-record execution leases.

A consumer holds `lease:<record_id>` for the duration of one executor
call so two deliveries for the same record (webhook + scheduler, or
overlapping batches) never drive the browser twice at once.
"""

import uuid

from linkme.infrastructure.observability.logging import get_logger
from linkme.services.redis_client import RedisClientError

logger = get_logger(__name__)

LEASE_PREFIX = "lease:"


class RecordLeases:
    def __init__(self, redis_client, ttl_seconds: int):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _key(self, record_id: str) -> str:
        return f"{LEASE_PREFIX}{record_id}"

    async def acquire(self, record_id: str) -> str | None:
        """Return a lease token, or None when another holder has it."""
        token = uuid.uuid4().hex
        acquired = await self.redis.set_if_absent(self._key(record_id), token, self.ttl_seconds)
        return token if acquired else None

    async def release(self, record_id: str, token: str) -> None:
        key = self._key(record_id)
        try:
            await self.redis.compare_and_delete(key, token)
        except RedisClientError as e:
            # TTL expiry frees it eventually
            logger.warning("Failed to release record lease", record_id=record_id, error=str(e))
