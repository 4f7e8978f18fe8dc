"""Sync audit log and aggregate counters."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from fieldsync.timeutil import utcnow


class SyncLog(SQLModel, table=True):
    """Records each sync attempt for audit and debugging. Never updated."""

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: Optional[int] = None
    direction: str = "outbound"  # "outbound", "inbound"
    service: str = Field(index=True)
    action: str
    status: str = Field(index=True)  # "success", "error", "skipped"
    request_data: Optional[str] = None
    response_data: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow, index=True)


class SyncMetrics(SQLModel, table=True):
    """Single row (id=1) of cumulative queue processor counters."""

    id: Optional[int] = Field(default=1, primary_key=True)
    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    last_run_at: Optional[datetime] = None
