"""
QueueProcessor: drains the sync queue in time-boxed passes.

One pass:
  1. Release stale "processing" leases left behind by a crashed pass
  2. Fetch a batch of eligible items (priority desc, scheduled_at asc, id asc)
  3. For each item, while the wall-clock budget lasts:
       claim (pending → processing, attempts + 1, atomic)
       skip if the local entity is gone
       merge entity data with the stored payload (payload wins)
       execute, then resolve to completed / pending (backoff) / failed
       write one SyncLog entry
  4. Repeat until a batch comes back empty or the budget is spent
  5. Fold the pass counts into SyncMetrics

Designed to be invoked by a periodic scheduler; overlapping passes are safe
because claiming is a conditional update in QueueStore.
"""
import logging
import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from fieldsync.config import Settings, get_settings
from fieldsync.models.queue import QueueStatus, SyncAction, SyncQueueItem
from fieldsync.store.audit import AuditLog
from fieldsync.store.entity_store import EntityStore
from fieldsync.store.queue_store import QueueStore, load_payload
from fieldsync.sync.backoff import backoff_delay, should_retry
from fieldsync.sync.executor import ErrorKind, SyncExecutor, SyncResult
from fieldsync.timeutil import utcnow

logger = logging.getLogger(__name__)

ENTITY_GONE = "Entity no longer exists"

# process_item outcomes
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"
NOT_CLAIMED = "not_claimed"


@dataclass
class PassResult:
    """Counts for one processor pass. A retried item counts as failed."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    recovered: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class QueueProcessor:
    """Batch loop with retry/backoff, audit logging and operator actions."""

    def __init__(
        self,
        queue: QueueStore,
        entities: EntityStore,
        audit: AuditLog,
        executor: SyncExecutor,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            queue: durable queue store.
            entities: local record store used for the existence guard and data merge.
            audit: SyncLog writer.
            executor: performs the remote call for one item.
            settings: batch size, budget and retry settings.
            clock: monotonic seconds source for the pass budget.
        """
        self.queue = queue
        self.entities = entities
        self.audit = audit
        self.executor = executor
        self.settings = settings or get_settings()
        self.clock = clock
        self.batch_size = self.settings.queue_batch_size
        self.max_execution_time = self.settings.queue_max_execution_seconds
        self._started_at: Optional[float] = None

    # ─── Pass ─────────────────────────────────────────────────────────────────

    async def process(self) -> PassResult:
        """Run one bounded pass over the queue and return its counts."""
        self._started_at = self.clock()
        result = PassResult()

        result.recovered = self.queue.requeue_stale(self.settings.stale_processing_grace_seconds)

        while self.should_continue():
            items = self.queue.dequeue_eligible(self.batch_size)
            if not items:
                break

            for item in items:
                if not self.should_continue():
                    break

                outcome = await self.process_item(item)
                if outcome == NOT_CLAIMED:
                    continue

                result.processed += 1
                if outcome == SUCCEEDED:
                    result.succeeded += 1
                elif outcome == SKIPPED:
                    result.skipped += 1
                else:
                    result.failed += 1

        self.audit.add_pass_counts(
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        if result.processed or result.recovered:
            logger.info(
                "Sync pass: %d processed, %d succeeded, %d failed, %d skipped, %d recovered",
                result.processed, result.succeeded, result.failed, result.skipped, result.recovered,
            )
        return result

    def should_continue(self) -> bool:
        """True while the pass is inside its wall-clock budget."""
        if self._started_at is None:
            return True
        return (self.clock() - self._started_at) < self.max_execution_time

    # ─── One item ─────────────────────────────────────────────────────────────

    async def process_item(self, item: SyncQueueItem) -> str:
        """Claim and resolve one item. Returns one of the outcome constants."""
        if not self.queue.claim(item):
            logger.debug("Queue item %s was claimed by another processor", item.id)
            return NOT_CLAIMED

        if not self.entities.exists(item.entity_type, item.entity_id):
            self.queue.update(
                item.id,
                status=QueueStatus.SKIPPED,
                last_error=ENTITY_GONE,
                processed_at=utcnow(),
            )
            self.audit.record(
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                service=item.target_service,
                action=item.action,
                status="skipped",
                request_data=item.payload,
            )
            logger.info("Skipped queue item %s: %s %s no longer exists",
                        item.id, item.entity_type, item.entity_id)
            return SKIPPED

        started = time.monotonic()
        data = self._build_data(item)
        if data is None:
            result = SyncResult.failure("Entity data not found", ErrorKind.TERMINAL)
        else:
            result = await self.executor.execute(item, data)
        duration_ms = int(round((time.monotonic() - started) * 1000))

        if result.success:
            self._complete(item, result, duration_ms)
            return SUCCEEDED

        self._fail(item, result, duration_ms)
        return FAILED

    def _build_data(self, item: SyncQueueItem) -> Optional[Dict[str, Any]]:
        """Fresh entity fields overlaid with the stored payload; None if the row vanished."""
        payload = load_payload(item)
        if item.action == SyncAction.DELETE:
            return payload
        entity = self.entities.get(item.entity_type, item.entity_id)
        if entity is None:
            return None
        return {**entity, **payload}

    def _complete(self, item: SyncQueueItem, result: SyncResult, duration_ms: int) -> None:
        self.queue.update(
            item.id,
            status=QueueStatus.COMPLETED,
            processed_at=utcnow(),
            last_error=None,
        )
        self.audit.record(
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            service=item.target_service,
            action=item.action,
            status="success",
            request_data=item.payload,
            response_data=result.data,
            duration_ms=duration_ms,
        )

    def _fail(self, item: SyncQueueItem, result: SyncResult, duration_ms: int) -> None:
        message = result.error or "Unknown error"
        retry = should_retry(item.attempts, item.max_attempts, message, terminal=result.is_terminal)
        now = utcnow()

        if retry:
            delay = backoff_delay(
                item.attempts,
                base=self.settings.backoff_base_seconds,
                cap=self.settings.backoff_max_seconds,
            )
            fields = {
                "status": QueueStatus.PENDING,
                "scheduled_at": now + timedelta(seconds=delay),
            }
            logger.warning(
                "Queue item %s (%s %s/%s → %s) failed attempt %d/%d, retrying in %ds: %s",
                item.id, item.action, item.entity_type, item.entity_id, item.target_service,
                item.attempts, item.max_attempts, delay, message,
            )
        else:
            fields = {"status": QueueStatus.FAILED, "scheduled_at": None, "processed_at": now}
            logger.warning(
                "Queue item %s (%s %s/%s → %s) failed permanently after %d attempt(s): %s",
                item.id, item.action, item.entity_type, item.entity_id, item.target_service,
                item.attempts, message,
            )

        truncated = message[: self.settings.error_message_max_length]
        self.queue.update(item.id, last_error=truncated, **fields)
        self.audit.record(
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            service=item.target_service,
            action=item.action,
            status="error",
            request_data=item.payload,
            error_message=truncated,
            duration_ms=duration_ms,
        )

    # ─── Operator surface ─────────────────────────────────────────────────────

    def trigger_sync(self, entity_type: str, entity_id: int, service: str) -> int:
        """Queue a high-priority update of one entity to one service."""
        item_id = self.queue.enqueue(
            entity_type=entity_type,
            entity_id=entity_id,
            target_service=service,
            action=SyncAction.UPDATE.value,
            priority=self.settings.manual_sync_priority,
        )
        logger.info("Manual sync of %s %s to %s queued as item %s",
                    entity_type, entity_id, service, item_id)
        return item_id

    def get_pending_count(self) -> int:
        return self.queue.count_pending()

    def clear_failed(self) -> int:
        """Delete every failed item. Returns the number removed."""
        removed = self.queue.delete_where(QueueStatus.FAILED.value)
        logger.info("Cleared %d failed queue items", removed)
        return removed

    def retry_failed(self) -> int:
        """Reset every failed item to pending with attempts = 0. Returns the count."""
        reset = self.queue.reset_where(QueueStatus.FAILED.value)
        logger.info("Requeued %d failed queue items", reset)
        return reset
