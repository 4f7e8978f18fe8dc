"""Shared test fixtures."""
from datetime import date
from typing import Any, Dict, Generator, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from fieldsync.adapters.base import QuoteSource, RemoteNotFoundError, ServiceAdapter
from fieldsync.adapters.registry import AdapterRegistry
from fieldsync.config import Settings
from fieldsync.sync.services import build_services

# Import all models so SQLModel.metadata knows about them
from fieldsync.models.entities import InventoryItem, Project  # noqa: F401
from fieldsync.models.queue import SyncQueueItem  # noqa: F401
from fieldsync.models.sync import SyncLog, SyncMetrics  # noqa: F401


class FakeAdapter(ServiceAdapter, QuoteSource):
    """
    In-memory remote system.

    Every call is appended to `calls` as (method, args). Exceptions put in
    `failures` are raised by the next calls, one per call, in order.
    """

    def __init__(
        self,
        name: str = "fake",
        failures: Optional[List[Exception]] = None,
        connected: Any = True,
        quotes: Optional[Dict[str, Dict[str, Any]]] = None,
        id_field: str = "id",
    ):
        self.name = name
        self.failures = list(failures or [])
        self.connected = connected
        self.quotes = quotes or {}
        self.id_field = id_field
        self.calls: List[tuple] = []
        self._created = 0

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    async def create(self, entity_type, data):
        self.calls.append(("create", (entity_type, data)))
        self._maybe_fail()
        self._created += 1
        return {self.id_field: f"{self.name}-{self._created}"}

    async def update(self, entity_type, entity_id, data):
        self.calls.append(("update", (entity_type, entity_id, data)))
        self._maybe_fail()
        return {"id": entity_id, "updated": True}

    async def delete(self, entity_type, entity_id):
        self.calls.append(("delete", (entity_type, entity_id)))
        self._maybe_fail()
        return {"id": entity_id, "deleted": True}

    async def test_connection(self):
        self.calls.append(("test_connection", ()))
        if isinstance(self.connected, Exception):
            raise self.connected
        return self.connected

    async def get_quote(self, quote_id):
        self.calls.append(("get_quote", (quote_id,)))
        self._maybe_fail()
        if quote_id not in self.quotes:
            raise RemoteNotFoundError(f"Quote {quote_id} not found")
        return self.quotes[quote_id]


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Explicit settings so a local .env can't change test behaviour."""
    return Settings(
        database_url="sqlite:///:memory:",
        queue_batch_size=20,
        queue_max_execution_seconds=30,
        default_priority=5,
        manual_sync_priority=10,
        default_max_attempts=3,
        backoff_base_seconds=30,
        backoff_max_seconds=240,
        error_message_max_length=500,
        stale_processing_grace_seconds=300,
        adapter_timeout_seconds=5,
        health_window_hours=24,
        health_warning_failures=3,
        health_critical_failures=10,
        health_warning_pending=50,
        adapters={},
    )


@pytest.fixture(name="adapters")
def adapters_fixture() -> Dict[str, FakeAdapter]:
    """One fake per remote system, keyed by registry name."""
    return {
        "zoho_crm": FakeAdapter("crm"),
        "zoho_fsm": FakeAdapter("fsm"),
        "zoho_books": FakeAdapter("books", id_field="item_id"),
        "quotewerks": FakeAdapter("qw"),
    }


@pytest.fixture(name="registry")
def registry_fixture(adapters) -> AdapterRegistry:
    return AdapterRegistry(adapters)


@pytest.fixture(name="services")
def services_fixture(engine, registry, settings):
    return build_services(engine, registry=registry, settings=settings)


@pytest.fixture(name="make_adapter")
def make_adapter_fixture():
    """The FakeAdapter class, for tests that need a custom instance."""
    return FakeAdapter


@pytest.fixture(name="seeded_project")
def seeded_project_fixture(test_session: Session) -> Project:
    """A persisted, not-yet-synced Project."""
    project = Project(
        name="Warehouse Cabling",
        description="Cat6 runs for the north warehouse",
        status="in-progress",
        priority="high",
        budget_amount=12500.0,
        start_date=date(2026, 3, 2),
        end_date=date(2026, 4, 30),
    )
    test_session.add(project)
    test_session.commit()
    test_session.refresh(project)
    return project


@pytest.fixture(name="seeded_item")
def seeded_item_fixture(test_session: Session) -> InventoryItem:
    item = InventoryItem(
        name="Cat6 Patch Cable 2m",
        sku="CAT6-2M",
        unit_price=4.5,
        quantity=240,
    )
    test_session.add(item)
    test_session.commit()
    test_session.refresh(item)
    return item
