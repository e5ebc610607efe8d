"""
Persistence layer for the outreach pipeline.
"""

from .event_repository import OutreachEvent, OutreachEventRepository, OutreachEventType
from .record_store import (
    RecordNotFoundError,
    RecordSerializationError,
    RecordStore,
    RecordStoreError,
    StaleRecordError,
)

__all__ = [
    "OutreachEvent",
    "OutreachEventRepository",
    "OutreachEventType",
    "RecordNotFoundError",
    "RecordSerializationError",
    "RecordStore",
    "RecordStoreError",
    "StaleRecordError",
]
