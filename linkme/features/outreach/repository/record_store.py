"""
Record store for outreach records.

Records live in Redis as JSON strings under `target:<id>`. Every write
bumps the record's version; conditional writes (expected_version) are
rejected when another component wrote in between, so overlapping
scheduler ticks, consumers and operator actions cannot silently
overwrite each other.
"""

import json
from collections.abc import Callable

from pydantic import ValidationError

from linkme.features.outreach.domain.models import OutreachRecord
from linkme.infrastructure.observability.logging import get_logger
from linkme.services.redis_client import RedisClientError

logger = get_logger(__name__)

KEY_PREFIX = "target:"
DEFAULT_UPDATE_ATTEMPTS = 3

Mutator = Callable[[OutreachRecord], OutreachRecord | None]


class RecordStoreError(Exception):
    """Transport-level failure talking to the store."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class RecordSerializationError(RecordStoreError):
    """Stored value could not be parsed into an OutreachRecord."""

    def __init__(self, record_id: str, message: str):
        super().__init__(
            f"Corrupt record {record_id}: {message}", operation="deserialize", recoverable=False
        )
        self.record_id = record_id


class RecordNotFoundError(RecordStoreError):
    def __init__(self, record_id: str):
        super().__init__(f"Record {record_id} not found", operation="get", recoverable=False)
        self.record_id = record_id


class StaleRecordError(RecordStoreError):
    """Conditional write lost against a concurrent writer."""

    def __init__(self, record_id: str, expected_version: int):
        super().__init__(
            f"Record {record_id} changed since version {expected_version}",
            operation="put",
        )
        self.record_id = record_id
        self.expected_version = expected_version


def _stored_version(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(json.loads(raw).get("version", 0))
    except (ValueError, TypeError, AttributeError):
        return None


class RecordStore:
    """Key-value persistence of outreach records keyed by their external id."""

    def __init__(self, redis_client, key_prefix: str = KEY_PREFIX):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, record_id: str) -> str:
        return f"{self.key_prefix}{record_id}"

    async def get(self, record_id: str) -> OutreachRecord | None:
        """
        Fetch a record.

        Raises:
            RecordStoreError: Redis unavailable
            RecordSerializationError: Stored JSON does not parse
        """
        try:
            raw = await self.redis.get(self._key(record_id))
        except RedisClientError as e:
            raise RecordStoreError(f"Failed to read {record_id}: {e}", operation="get") from e

        if raw is None:
            return None

        try:
            return OutreachRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Stored record is corrupt", record_id=record_id, error=str(e))
            raise RecordSerializationError(record_id, str(e)) from e

    async def put(
        self, record: OutreachRecord, expected_version: int | None = None
    ) -> OutreachRecord:
        """
        Persist a record and return it with its new version.

        Args:
            record: Record to write
            expected_version: When given, write only if the stored version still matches

        Raises:
            StaleRecordError: The stored record changed or disappeared since expected_version
            RecordStoreError: Redis unavailable
        """
        base_version = record.version if expected_version is None else expected_version
        to_write = record.model_copy(update={"version": base_version + 1})
        payload = to_write.model_dump_json()
        key = self._key(record.id)

        try:
            if expected_version is None:
                await self.redis.set(key, payload)
            else:
                written = await self.redis.compare_and_set(
                    key, payload, lambda current: _stored_version(current) == expected_version
                )
                if not written:
                    raise StaleRecordError(record.id, expected_version)
        except RedisClientError as e:
            raise RecordStoreError(f"Failed to write {record.id}: {e}", operation="put") from e

        return to_write

    async def list_all_keys(self) -> list[str]:
        """All record ids in store listing order."""
        try:
            keys = await self.redis.scan_keys(self.key_prefix)
        except RedisClientError as e:
            raise RecordStoreError(f"Failed to list records: {e}", operation="list") from e
        return [key[len(self.key_prefix) :] for key in keys]

    async def update(
        self, record_id: str, mutator: Mutator, attempts: int = DEFAULT_UPDATE_ATTEMPTS
    ) -> OutreachRecord:
        """
        Read-modify-write with optimistic concurrency.

        The mutator receives the freshest record on every attempt and may
        return None to leave it unchanged.

        Raises:
            RecordNotFoundError: The record does not exist (never re-created here)
            StaleRecordError: Every attempt lost a race
        """
        last_error: StaleRecordError | None = None

        for attempt in range(1, attempts + 1):
            current = await self.get(record_id)
            if current is None:
                raise RecordNotFoundError(record_id)

            updated = mutator(current)
            if updated is None:
                return current

            try:
                return await self.put(updated, expected_version=current.version)
            except StaleRecordError as e:
                last_error = e
                logger.info(
                    "Record changed during update, retrying",
                    record_id=record_id,
                    attempt=attempt,
                )

        raise last_error
