"""Wire stores, executor, processor and orchestrator around one engine."""
from dataclasses import dataclass
from typing import Optional

from fieldsync.adapters.registry import AdapterRegistry, build_registry
from fieldsync.config import Settings, get_settings
from fieldsync.store.audit import AuditLog
from fieldsync.store.entity_store import EntityStore
from fieldsync.store.queue_store import QueueStore
from fieldsync.sync.executor import SyncExecutor
from fieldsync.sync.orchestrator import SyncOrchestrator
from fieldsync.sync.processor import QueueProcessor


@dataclass
class SyncServices:
    registry: AdapterRegistry
    queue: QueueStore
    entities: EntityStore
    audit: AuditLog
    processor: QueueProcessor
    orchestrator: SyncOrchestrator


def build_services(
    engine,
    registry: Optional[AdapterRegistry] = None,
    settings: Optional[Settings] = None,
) -> SyncServices:
    """
    Args:
        engine: SQLAlchemy engine for all stores.
        registry: adapters to use; defaults to build_registry(settings).
        settings: defaults to get_settings().
    """
    settings = settings or get_settings()
    registry = registry if registry is not None else build_registry(settings)
    queue = QueueStore(engine, settings)
    entities = EntityStore(engine)
    audit = AuditLog(engine)
    executor = SyncExecutor(registry, timeout_seconds=settings.adapter_timeout_seconds)
    return SyncServices(
        registry=registry,
        queue=queue,
        entities=entities,
        audit=audit,
        processor=QueueProcessor(queue, entities, audit, executor, settings),
        orchestrator=SyncOrchestrator(registry, entities, queue, audit, settings),
    )
