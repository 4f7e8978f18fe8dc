"""
AuditLog: append-only SyncLog writer plus the read queries health and
dashboards need. Nothing here feeds back into queue control flow.
"""
import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import func, insert, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from fieldsync.models.sync import SyncLog, SyncMetrics
from fieldsync.timeutil import utcnow

logger = logging.getLogger(__name__)

METRICS_ID = 1


def _encode(data: Any) -> Optional[str]:
    if data is None or isinstance(data, str):
        return data
    return json.dumps(data, default=str)


class AuditLog:
    def __init__(self, engine):
        self.engine = engine

    def record(
        self,
        *,
        entity_type: str,
        entity_id: Optional[int],
        service: str,
        action: str,
        status: str,
        request_data: Any = None,
        response_data: Any = None,
        error_message: Optional[str] = None,
        duration_ms: int = 0,
        direction: str = "outbound",
    ) -> SyncLog:
        entry = SyncLog(
            entity_type=entity_type,
            entity_id=entity_id,
            direction=direction,
            service=service,
            action=action,
            status=status,
            request_data=_encode(request_data),
            response_data=_encode(response_data),
            error_message=error_message,
            duration_ms=duration_ms,
        )
        with Session(self.engine) as s:
            s.add(entry)
            s.commit()
            s.refresh(entry)
        return entry

    def count_errors_since(self, since: datetime) -> int:
        with Session(self.engine) as s:
            return s.exec(
                select(func.count()).select_from(SyncLog).where(
                    SyncLog.status == "error", SyncLog.created_at >= since
                )
            ).one()

    def last_success_at(self) -> Optional[datetime]:
        with Session(self.engine) as s:
            return s.exec(
                select(func.max(SyncLog.created_at)).where(SyncLog.status == "success")
            ).one()

    def recent(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        service: Optional[str] = None,
        status: Optional[str] = None,
        direction: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncLog]:
        """Newest-first filtered listing for the operator API."""
        query = select(SyncLog)
        if entity_type:
            query = query.where(SyncLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(SyncLog.entity_id == entity_id)
        if service:
            query = query.where(SyncLog.service == service)
        if status:
            query = query.where(SyncLog.status == status)
        if direction:
            query = query.where(SyncLog.direction == direction)
        query = query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
        with Session(self.engine) as s:
            return list(s.exec(query.offset(offset).limit(limit)).all())

    # ─── Pass counters ────────────────────────────────────────────────────────

    def add_pass_counts(self, processed: int, succeeded: int, failed: int, skipped: int) -> SyncMetrics:
        """
        Fold one processor pass into the cumulative SyncMetrics row.

        The increments happen inside a single UPDATE, so overlapping passes
        never overwrite each other's counts.
        """
        self._ensure_metrics_row()
        with self.engine.begin() as conn:
            conn.execute(
                update(SyncMetrics)
                .where(SyncMetrics.id == METRICS_ID)
                .values(
                    total_processed=SyncMetrics.total_processed + processed,
                    total_succeeded=SyncMetrics.total_succeeded + succeeded,
                    total_failed=SyncMetrics.total_failed + failed,
                    total_skipped=SyncMetrics.total_skipped + skipped,
                    last_run_at=utcnow(),
                )
            )
        return self.get_metrics()

    def get_metrics(self) -> SyncMetrics:
        with Session(self.engine) as s:
            return s.get(SyncMetrics, METRICS_ID) or SyncMetrics(id=METRICS_ID)

    def _ensure_metrics_row(self) -> None:
        with Session(self.engine) as s:
            if s.get(SyncMetrics, METRICS_ID) is not None:
                return
        self._insert_metrics_row()

    def _insert_metrics_row(self) -> None:
        """Create the zeroed counters row; a row inserted first by another pass is kept."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(SyncMetrics).values(
                        id=METRICS_ID,
                        total_processed=0,
                        total_succeeded=0,
                        total_failed=0,
                        total_skipped=0,
                    )
                )
        except IntegrityError:
            logger.debug("SyncMetrics row already created by another pass")
