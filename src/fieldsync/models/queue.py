"""Outbound sync queue model."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from fieldsync.timeutil import utcnow


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncQueueItem(SQLModel, table=True):
    """One unit of outbound work: push a local entity change to a remote service."""

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)  # "project", "inventory_item", ...
    entity_id: int = Field(index=True)
    action: str  # SyncAction value; anything else fails as "unknown action"
    target_service: str = Field(index=True)

    # JSON object; merged over freshly-read entity data at execution time
    payload: Optional[str] = None

    priority: int = Field(default=5, index=True)  # higher first
    status: str = Field(default=QueueStatus.PENDING.value, index=True)
    attempts: int = 0
    max_attempts: int = 3

    # Earliest eligible time (retry backoff); None = eligible now
    scheduled_at: Optional[datetime] = None
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None  # lease timestamp while processing
    processed_at: Optional[datetime] = None
