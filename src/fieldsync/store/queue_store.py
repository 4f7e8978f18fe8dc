"""
QueueStore: durable sync queue on top of the SyncQueueItem table.

Every status transition that can race with another processor is a single
conditional UPDATE executed through SQLAlchemy Core, so its rowcount tells
us whether we won. Read paths use short-lived SQLModel sessions and return
detached rows.

Eligibility for dequeue:
    status = 'pending' AND attempts < max_attempts
    AND (scheduled_at IS NULL OR scheduled_at <= now)
ordered by priority DESC, scheduled_at ASC (NULL first), id ASC.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, update
from sqlmodel import Session, select

from fieldsync.config import Settings, get_settings
from fieldsync.models.queue import QueueStatus, SyncAction, SyncQueueItem
from fieldsync.timeutil import utcnow

logger = logging.getLogger(__name__)


def dump_payload(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    if payload is None:
        return None
    return json.dumps(payload, default=str)


def load_payload(item: SyncQueueItem) -> Dict[str, Any]:
    """Decode an item's JSON payload; missing or non-object payloads become {}."""
    if not item.payload:
        return {}
    try:
        data = json.loads(item.payload)
    except ValueError:
        logger.warning("Queue item %s has an undecodable payload; ignoring it", item.id)
        return {}
    return data if isinstance(data, dict) else {}


class QueueStore:
    """Enqueue, bounded dequeue, atomic claim and bulk operator actions."""

    def __init__(self, engine, settings: Optional[Settings] = None):
        self.engine = engine
        self.settings = settings or get_settings()

    # ─── Producers ────────────────────────────────────────────────────────────

    def enqueue(
        self,
        entity_type: str,
        entity_id: int,
        target_service: str,
        action: str = SyncAction.UPDATE.value,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> int:
        """
        Queue an outbound sync and return the queue item id.

        If a pending item already exists for the same entity and service,
        that item is updated in place (action, priority, payload) instead of
        inserting a duplicate. When the pending item is claimed before the
        merge lands, a new item is inserted so the change is still sent.
        """
        if priority is None:
            priority = self.settings.default_priority
        if max_attempts is None:
            max_attempts = self.settings.default_max_attempts
        if isinstance(action, SyncAction):
            action = action.value
        values = {"action": action, "priority": priority, "payload": dump_payload(payload)}

        existing_id = self._find_pending(entity_type, entity_id, target_service)
        if existing_id is not None and self._merge_pending(existing_id, values):
            logger.debug("Merged %s %s/%s into queue item %s",
                         action, entity_type, entity_id, existing_id)
            return existing_id

        with Session(self.engine) as s:
            item = SyncQueueItem(
                entity_type=entity_type,
                entity_id=entity_id,
                target_service=target_service,
                max_attempts=max_attempts,
                **values,
            )
            s.add(item)
            s.commit()
            s.refresh(item)
            logger.debug("Queued %s %s/%s for %s as item %s",
                         action, entity_type, entity_id, target_service, item.id)
            return item.id

    def _find_pending(self, entity_type: str, entity_id: int, target_service: str) -> Optional[int]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncQueueItem.id).where(
                    SyncQueueItem.entity_type == entity_type,
                    SyncQueueItem.entity_id == entity_id,
                    SyncQueueItem.target_service == target_service,
                    SyncQueueItem.status == QueueStatus.PENDING.value,
                )
            ).first()

    def _merge_pending(self, item_id: int, values: Dict[str, Any]) -> bool:
        """Overwrite a row only while it is still pending; False if it was claimed meanwhile."""
        stmt = (
            update(SyncQueueItem)
            .where(
                SyncQueueItem.id == item_id,
                SyncQueueItem.status == QueueStatus.PENDING.value,
            )
            .values(updated_at=utcnow(), **values)
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    # ─── Consumers ────────────────────────────────────────────────────────────

    def dequeue_eligible(self, limit: int, now: Optional[datetime] = None) -> List[SyncQueueItem]:
        """Return up to `limit` eligible items in processing order (not claimed)."""
        now = now or utcnow()
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncQueueItem)
                    .where(
                        SyncQueueItem.status == QueueStatus.PENDING.value,
                        SyncQueueItem.attempts < SyncQueueItem.max_attempts,
                        or_(
                            SyncQueueItem.scheduled_at.is_(None),
                            SyncQueueItem.scheduled_at <= now,
                        ),
                    )
                    .order_by(
                        SyncQueueItem.priority.desc(),
                        SyncQueueItem.scheduled_at.asc().nulls_first(),
                        SyncQueueItem.id.asc(),
                    )
                    .limit(limit)
                ).all()
            )

    def claim(self, item: SyncQueueItem, now: Optional[datetime] = None) -> bool:
        """
        Atomically move `item` from pending to processing and bump attempts.

        The UPDATE only matches while the row is still pending with the
        attempt count we read, so two processors can never both claim it.
        On success the in-memory item is updated to match the row.
        """
        now = now or utcnow()
        stmt = (
            update(SyncQueueItem)
            .where(
                SyncQueueItem.id == item.id,
                SyncQueueItem.status == QueueStatus.PENDING.value,
                SyncQueueItem.attempts == item.attempts,
                SyncQueueItem.attempts < SyncQueueItem.max_attempts,
            )
            .values(
                status=QueueStatus.PROCESSING.value,
                attempts=SyncQueueItem.attempts + 1,
                updated_at=now,
            )
        )
        with self.engine.begin() as conn:
            claimed = conn.execute(stmt).rowcount == 1

        if claimed:
            item.status = QueueStatus.PROCESSING.value
            item.attempts += 1
            item.updated_at = now
        return claimed

    def update(self, item_id: int, **fields: Any) -> None:
        """Write `fields` onto one row; `updated_at` is always refreshed."""
        fields.setdefault("updated_at", utcnow())
        if isinstance(fields.get("status"), QueueStatus):
            fields["status"] = fields["status"].value
        with self.engine.begin() as conn:
            conn.execute(
                update(SyncQueueItem).where(SyncQueueItem.id == item_id).values(**fields)
            )

    def get(self, item_id: int) -> Optional[SyncQueueItem]:
        with Session(self.engine) as s:
            return s.get(SyncQueueItem, item_id)

    def list_items(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[SyncQueueItem]:
        """Operator listing, in the same order the processor would take them."""
        query = select(SyncQueueItem)
        if status:
            query = query.where(SyncQueueItem.status == status)
        query = query.order_by(
            SyncQueueItem.priority.desc(),
            SyncQueueItem.scheduled_at.asc().nulls_first(),
            SyncQueueItem.id.asc(),
        ).offset(offset).limit(limit)
        with Session(self.engine) as s:
            return list(s.exec(query).all())

    # ─── Counters ─────────────────────────────────────────────────────────────

    def count_pending(self, include_exhausted: bool = False) -> int:
        """Pending items; by default only those with attempts left."""
        query = select(func.count()).select_from(SyncQueueItem).where(
            SyncQueueItem.status == QueueStatus.PENDING.value
        )
        if not include_exhausted:
            query = query.where(SyncQueueItem.attempts < SyncQueueItem.max_attempts)
        with Session(self.engine) as s:
            return s.exec(query).one()

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in QueueStatus}
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncQueueItem.status, func.count()).group_by(SyncQueueItem.status)
            ).all()
        for status, count in rows:
            counts[status] = count
        return counts

    # ─── Bulk / recovery ──────────────────────────────────────────────────────

    def delete_where(self, status: str) -> int:
        """Delete every row in `status`; returns the number removed."""
        with self.engine.begin() as conn:
            return conn.execute(
                delete(SyncQueueItem).where(SyncQueueItem.status == status)
            ).rowcount

    def reset_where(self, status: str, now: Optional[datetime] = None) -> int:
        """Return every row in `status` to pending with a fresh attempt budget."""
        now = now or utcnow()
        with self.engine.begin() as conn:
            return conn.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.status == status)
                .values(
                    status=QueueStatus.PENDING.value,
                    attempts=0,
                    scheduled_at=now,
                    updated_at=now,
                )
            ).rowcount

    def requeue_stale(self, grace_seconds: int, now: Optional[datetime] = None) -> int:
        """
        Release `processing` leases older than `grace_seconds`.

        Items with attempts left go back to pending (eligible immediately);
        exhausted ones are failed. Returns the number of rows touched.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=grace_seconds)
        stale = (
            SyncQueueItem.status == QueueStatus.PROCESSING.value,
            or_(SyncQueueItem.updated_at.is_(None), SyncQueueItem.updated_at < cutoff),
        )
        with self.engine.begin() as conn:
            requeued = conn.execute(
                update(SyncQueueItem)
                .where(*stale, SyncQueueItem.attempts < SyncQueueItem.max_attempts)
                .values(
                    status=QueueStatus.PENDING.value,
                    scheduled_at=None,
                    last_error="Processing lease expired",
                    updated_at=now,
                )
            ).rowcount
            exhausted = conn.execute(
                update(SyncQueueItem)
                .where(*stale, SyncQueueItem.attempts >= SyncQueueItem.max_attempts)
                .values(
                    status=QueueStatus.FAILED.value,
                    scheduled_at=None,
                    last_error="Processing lease expired after final attempt",
                    updated_at=now,
                )
            ).rowcount
        if requeued or exhausted:
            logger.warning(
                "Recovered stale processing items: %d requeued, %d failed",
                requeued, exhausted,
            )
        return requeued + exhausted
