"""
Domain models for the outreach pipeline.

OutreachRecord is the durable record kept in the record store; WorkItem
is the minimal payload carried by the two work queues.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

WORK_ITEM_SCHEMA_VERSION = 1


class OutreachStatus(str, Enum):
    NEW = "new"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DONE = "done"
    FAILED = "failed"
    PAUSED = "paused"


class QueueName(str, Enum):
    CONNECTIONS = "linkedin-connections"
    MESSAGES = "linkedin-dms"


class OutreachRecord(BaseModel):
    """One external profile being pursued through the pipeline."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "urn"))
    display_name: str = Field(validation_alias=AliasChoices("display_name", "name"))
    status: OutreachStatus = OutreachStatus.NEW
    next_action_at: datetime | None = None
    retry_count: int = Field(default=0, ge=0)
    debug_session_id: str | None = None
    last_error: str | None = None
    version: int = Field(default=0, ge=0)

    @field_validator("next_action_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_due(self, now: datetime) -> bool:
        return self.next_action_at is None or self.next_action_at <= now


class WorkItem(BaseModel):
    """Queue payload shared by the connection and message queues."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = WORK_ITEM_SCHEMA_VERSION
    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "urn"))
    display_name: str = Field(validation_alias=AliasChoices("display_name", "name"))

    @classmethod
    def for_record(cls, record: OutreachRecord) -> "WorkItem":
        return cls(id=record.id, display_name=record.display_name)


@dataclass(slots=True)
class Screenshot:
    label: str
    data: bytes


@dataclass(slots=True)
class ActionResult:
    """Outcome reported by the action executor."""

    success: bool
    message: str
    logs: list[str] = field(default_factory=list)
    screenshots: list[Screenshot] = field(default_factory=list)
