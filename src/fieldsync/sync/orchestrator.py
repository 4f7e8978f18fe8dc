"""
SyncOrchestrator: cross-system workflows and sync health.

Full quote propagation:
  1. Quote → local Project (import or refresh from the quoting system)
  2. Project → CRM deal
  3. Project → field-service work order

Step 1 must succeed for the rest to run. Steps 2 and 3 are independent:
each one's failure is recorded and the other still runs, so the result can
be a partial success.

Each remote step updates the remote record when its id is already cached on
the local entity, and otherwise creates it and caches the returned id plus
a sync timestamp. That cache is what makes repeating a workflow safe.

Every remote call made here is written to the SyncLog like a queue attempt.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from fieldsync.adapters.base import AdapterError, QuoteSource
from fieldsync.adapters.registry import AdapterRegistry
from fieldsync.config import Settings, get_settings
from fieldsync.models.queue import SyncAction
from fieldsync.store.audit import AuditLog
from fieldsync.store.entity_store import EntityStore
from fieldsync.store.queue_store import QueueStore
from fieldsync.sync import mapping
from fieldsync.timeutil import utcnow

logger = logging.getLogger(__name__)

QUOTE_SERVICE = "quotewerks"


@dataclass(frozen=True)
class RemoteTarget:
    """Where one local entity type lands in one remote system."""
    label: str        # used in error messages
    service: str      # adapter registry name
    module: str       # remote entity type passed to the adapter
    remote_key: str   # local column prefix: <key>_id / <key>_sync_at
    id_field: str = "id"  # key of the new id in the create response


CRM_DEALS = RemoteTarget("Project to CRM", "zoho_crm", "Deals", "zoho_crm")
FSM_WORK_ORDERS = RemoteTarget("Project to field service", "zoho_fsm", "WorkOrders", "zoho_fsm")
BOOKS_ITEMS = RemoteTarget(
    "Inventory to accounting", "zoho_books", "items", "zoho_books", id_field="item_id"
)


@dataclass
class WorkflowResult:
    """Per-step values (remote ids, or None when the step failed) and errors."""
    steps: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {**self.steps, "success": self.success, "errors": list(self.errors)}


@dataclass
class SyncHealth:
    status: str  # "healthy", "warning", "critical"
    failed_syncs_24h: int
    pending_queue_items: int
    last_successful_sync: Optional[datetime]
    connections: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_health(failures: int, pending: int, settings: Settings) -> str:
    """Bucket recent failures and backlog into healthy / warning / critical."""
    if failures > settings.health_critical_failures:
        return "critical"
    if failures > settings.health_warning_failures or pending > settings.health_warning_pending:
        return "warning"
    return "healthy"


class SyncOrchestrator:
    """Coordinates multi-system propagation of local records."""

    def __init__(
        self,
        registry: AdapterRegistry,
        entities: EntityStore,
        queue: QueueStore,
        audit: AuditLog,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.entities = entities
        self.queue = queue
        self.audit = audit
        self.settings = settings or get_settings()

    # ─── Workflows ────────────────────────────────────────────────────────────

    async def full_quote_sync(self, quote_id: str) -> WorkflowResult:
        """Quote → Project → {CRM deal, field-service work order}."""
        result = WorkflowResult(steps={
            "quote_to_project": None,
            "project_to_crm": None,
            "project_to_fsm": None,
        })

        try:
            project_id = await self.import_quote(quote_id)
        except Exception as exc:
            result.errors.append(f"Quote to project: {_message(exc)}")
            logger.warning("Quote %s import failed: %s", quote_id, _message(exc))
            self._log_outcome(f"quote {quote_id}", result)
            return result

        result.steps["quote_to_project"] = project_id
        await self._run_project_steps(project_id, result)
        self._log_outcome(f"quote {quote_id}", result)
        return result

    async def sync_project(self, project_id: int) -> WorkflowResult:
        """Push an existing project to the CRM and field-service systems."""
        result = WorkflowResult(steps={"project_to_crm": None, "project_to_fsm": None})
        await self._run_project_steps(project_id, result)
        self._log_outcome(f"project {project_id}", result)
        return result

    async def sync_inventory_to_books(self, item_id: int) -> WorkflowResult:
        """Push one inventory item to the accounting system."""
        result = WorkflowResult(steps={"inventory_to_books": None})
        await self._run_step(
            result, "inventory_to_books", "inventory_item", item_id,
            BOOKS_ITEMS, mapping.inventory_to_books_item,
        )
        self._log_outcome(f"inventory item {item_id}", result)
        return result

    async def import_quote(self, quote_id: str) -> int:
        """Fetch a quote and create or refresh its local project. Returns the project id."""
        source = self.registry.get(QUOTE_SERVICE)
        if not isinstance(source, QuoteSource):
            raise AdapterError(f"Adapter '{QUOTE_SERVICE}' cannot read quotes")

        started = time.monotonic()
        try:
            quote = await self._bounded(source.get_quote(quote_id))
            if not quote:
                raise AdapterError(f"Quote {quote_id} not found")
        except Exception as exc:
            self._audit(
                "project", None, QUOTE_SERVICE, "import", started,
                request={"quote_id": quote_id}, error=_message(exc), direction="inbound",
            )
            raise

        project_id = self.entities.upsert_project_from_quote(
            quote_id, mapping.quote_to_project_fields(quote)
        )
        self._audit(
            "project", project_id, QUOTE_SERVICE, "import", started,
            request={"quote_id": quote_id}, response=quote, direction="inbound",
        )
        return project_id

    def queue_project_sync(self, project_id: int, priority: Optional[int] = None) -> List[int]:
        """Queue update items for the project in both remote systems instead of calling them now."""
        return [
            self.queue.enqueue(
                entity_type="project",
                entity_id=project_id,
                target_service=target.service,
                action=SyncAction.UPDATE.value,
                priority=priority,
            )
            for target in (CRM_DEALS, FSM_WORK_ORDERS)
        ]

    # ─── Steps ────────────────────────────────────────────────────────────────

    async def _run_project_steps(self, project_id: int, result: WorkflowResult) -> None:
        await self._run_step(
            result, "project_to_crm", "project", project_id,
            CRM_DEALS, mapping.project_to_crm_deal,
        )
        await self._run_step(
            result, "project_to_fsm", "project", project_id,
            FSM_WORK_ORDERS, mapping.project_to_fsm_work_order,
        )

    async def _run_step(
        self,
        result: WorkflowResult,
        step: str,
        entity_type: str,
        entity_id: int,
        target: RemoteTarget,
        mapper: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> None:
        """Run one remote step; a failure lands in result.errors, never raises."""
        try:
            result.steps[step] = await self._push(entity_type, entity_id, target, mapper)
        except Exception as exc:
            result.errors.append(f"{target.label}: {_message(exc)}")
            logger.warning("%s failed for %s %s: %s", target.label, entity_type, entity_id, _message(exc))

    async def _push(
        self,
        entity_type: str,
        entity_id: int,
        target: RemoteTarget,
        mapper: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Any:
        """Create or update the remote record and return its remote id."""
        record = self.entities.get(entity_type, entity_id)
        if record is None:
            raise LookupError(f"{entity_type} {entity_id} not found")

        adapter = self.registry.get(target.service)
        data = mapper(record)
        remote_id = record.get(f"{target.remote_key}_id")
        action = SyncAction.UPDATE if remote_id else SyncAction.CREATE
        started = time.monotonic()

        try:
            if remote_id:
                response = await self._bounded(adapter.update(target.module, remote_id, data))
            else:
                response = await self._bounded(adapter.create(target.module, data))
                remote_id = (response or {}).get(target.id_field)
                if not remote_id:
                    raise AdapterError(f"{target.service} create returned no '{target.id_field}'")
        except Exception as exc:
            self._audit(entity_type, entity_id, target.service, action.value, started,
                        request=data, error=_message(exc))
            raise

        self._audit(entity_type, entity_id, target.service, action.value, started,
                    request=data, response=response)
        if action == SyncAction.CREATE:
            self.entities.record_remote_id(entity_type, entity_id, target.remote_key, remote_id)
        else:
            self.entities.touch_sync(entity_type, entity_id, target.remote_key)
        return remote_id

    async def _bounded(self, call):
        return await asyncio.wait_for(call, timeout=self.settings.adapter_timeout_seconds)

    def _audit(
        self,
        entity_type: str,
        entity_id: Optional[int],
        service: str,
        action: str,
        started: float,
        request: Any = None,
        response: Any = None,
        error: Optional[str] = None,
        direction: str = "outbound",
    ) -> None:
        self.audit.record(
            entity_type=entity_type,
            entity_id=entity_id,
            service=service,
            action=action,
            status="error" if error else "success",
            request_data=request,
            response_data=response,
            error_message=error[: self.settings.error_message_max_length] if error else None,
            duration_ms=int(round((time.monotonic() - started) * 1000)),
            direction=direction,
        )

    @staticmethod
    def _log_outcome(subject: str, result: WorkflowResult) -> None:
        if result.success:
            logger.info("Propagated %s to all systems", subject)
        else:
            logger.warning("Propagated %s with %d error(s)", subject, len(result.errors))

    # ─── Health ───────────────────────────────────────────────────────────────

    async def test_all_connections(self) -> Dict[str, Any]:
        """Call test_connection on every registered adapter; one failure never stops the rest."""
        services: Dict[str, Dict[str, Any]] = {}
        for service, adapter in self.registry.items():
            try:
                connected = await self._bounded(adapter.test_connection())
            except Exception as exc:
                services[service] = {"success": False, "error": _message(exc)}
                continue
            if connected:
                services[service] = {"success": True}
            else:
                services[service] = {"success": False, "error": "Connection test failed"}

        return {
            "services": services,
            "all_connected": all(entry["success"] for entry in services.values()),
        }

    async def get_sync_health(
        self, now: Optional[datetime] = None, check_connections: bool = True
    ) -> SyncHealth:
        """Recent failures, backlog, last success and connectivity in one report."""
        now = now or utcnow()
        since = now - timedelta(hours=self.settings.health_window_hours)
        failures = self.audit.count_errors_since(since)
        pending = self.queue.count_pending(include_exhausted=True)

        return SyncHealth(
            status=classify_health(failures, pending, self.settings),
            failed_syncs_24h=failures,
            pending_queue_items=pending,
            last_successful_sync=self.audit.last_success_at(),
            connections=await self.test_all_connections() if check_connections else None,
        )


def _message(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Timed out"
    return str(exc) or type(exc).__name__
