"""Integration tests for SyncOrchestrator workflows and health reporting."""
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from fieldsync.adapters.base import AdapterAuthError
from fieldsync.adapters.registry import AdapterRegistry
from fieldsync.models.entities import InventoryItem, Project
from fieldsync.models.queue import SyncQueueItem
from fieldsync.sync.orchestrator import SyncOrchestrator, WorkflowResult, classify_health
from fieldsync.timeutil import utcnow

QUOTE = {
    "id": "Q-2041",
    "name": "Clinic Wi-Fi Refresh",
    "description": "Replace 14 access points",
    "status": "Approved",
    "priority": "HIGH",
    "total": 18250.0,
    "start_date": "2026-05-04",
    "end_date": "2026-05-29T00:00:00",
}


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


class TestSyncProject:
    @pytest.mark.asyncio
    async def test_creates_in_both_systems_and_caches_ids(self, orchestrator, adapters, engine, seeded_project):
        result = await orchestrator.sync_project(seeded_project.id)

        assert result.success
        assert result.steps == {"project_to_crm": "crm-1", "project_to_fsm": "fsm-1"}
        module, deal = adapters["zoho_crm"].calls[0][1]
        assert module == "Deals"
        assert deal["Deal_Name"] == "Warehouse Cabling"
        assert deal["Stage"] == "Proposal/Price Quote"
        assert adapters["zoho_fsm"].calls[0][1][1]["Status"] == "In Progress"

        with Session(engine) as s:
            project = s.get(Project, seeded_project.id)
        assert project.zoho_crm_id == "crm-1"
        assert project.zoho_fsm_id == "fsm-1"
        assert project.zoho_crm_sync_at is not None

    @pytest.mark.asyncio
    async def test_second_run_updates_cached_records(self, orchestrator, adapters, seeded_project):
        await orchestrator.sync_project(seeded_project.id)
        result = await orchestrator.sync_project(seeded_project.id)

        assert result.success
        assert [c[0] for c in adapters["zoho_crm"].calls] == ["create", "update"]
        assert adapters["zoho_crm"].calls[1][1][:2] == ("Deals", "crm-1")
        assert [c[0] for c in adapters["zoho_fsm"].calls] == ["create", "update"]

    @pytest.mark.asyncio
    async def test_one_failed_step_does_not_stop_the_other(self, orchestrator, adapters, engine, seeded_project):
        adapters["zoho_crm"].failures = [Exception("CRM down")]

        result = await orchestrator.sync_project(seeded_project.id)

        assert result.success is False
        assert result.errors == ["Project to CRM: CRM down"]
        assert result.steps["project_to_crm"] is None
        assert result.steps["project_to_fsm"] == "fsm-1"
        with Session(engine) as s:
            project = s.get(Project, seeded_project.id)
        assert project.zoho_crm_id is None
        assert project.zoho_fsm_id == "fsm-1"

    @pytest.mark.asyncio
    async def test_missing_adapter_is_a_step_error(self, engine, services, make_adapter, seeded_project, settings):
        registry = AdapterRegistry({"zoho_fsm": make_adapter("fsm")})
        orchestrator = SyncOrchestrator(registry, services.entities, services.queue, services.audit, settings)

        result = await orchestrator.sync_project(seeded_project.id)

        assert result.errors == ["Project to CRM: Adapter not found for service 'zoho_crm'"]
        assert result.steps["project_to_fsm"] == "fsm-1"

    @pytest.mark.asyncio
    async def test_create_without_id_is_an_error(self, orchestrator, adapters, seeded_project):
        adapters["zoho_crm"].id_field = "record_id"

        result = await orchestrator.sync_project(seeded_project.id)

        assert len(result.errors) == 1
        assert "returned no 'id'" in result.errors[0]

    @pytest.mark.asyncio
    async def test_create_is_audited_when_caching_the_id_fails(
        self, services, orchestrator, adapters, seeded_project, monkeypatch
    ):
        def lost_row(*args):
            raise LookupError(f"project {seeded_project.id} not found")

        monkeypatch.setattr(services.entities, "record_remote_id", lost_row)

        result = await orchestrator.sync_project(seeded_project.id)

        assert f"Project to CRM: project {seeded_project.id} not found" in result.errors
        crm_logs = services.audit.recent(service="zoho_crm")
        assert len(crm_logs) == 1
        assert crm_logs[0].status == "success"
        assert crm_logs[0].action == "create"

    @pytest.mark.asyncio
    async def test_every_call_is_audited(self, services, orchestrator, adapters, seeded_project):
        adapters["zoho_fsm"].failures = [Exception("Rate limited")]

        await orchestrator.sync_project(seeded_project.id)

        logs = {log.service: log for log in services.audit.recent()}
        assert logs["zoho_crm"].status == "success"
        assert logs["zoho_crm"].action == "create"
        assert logs["zoho_fsm"].status == "error"
        assert logs["zoho_fsm"].error_message == "Rate limited"

    def test_queue_project_sync(self, orchestrator, engine, seeded_project):
        ids = orchestrator.queue_project_sync(seeded_project.id, priority=8)

        with Session(engine) as s:
            items = s.exec(select(SyncQueueItem)).all()
        assert sorted(i.id for i in items) == sorted(ids)
        assert {i.target_service for i in items} == {"zoho_crm", "zoho_fsm"}
        assert all(i.priority == 8 and i.action == "update" for i in items)


class TestFullQuoteSync:
    @pytest.mark.asyncio
    async def test_quote_becomes_project_and_propagates(self, services, orchestrator, adapters, engine):
        adapters["quotewerks"].quotes = {"Q-2041": QUOTE}

        result = await orchestrator.full_quote_sync("Q-2041")

        assert result.success
        project_id = result.steps["quote_to_project"]
        assert result.steps["project_to_crm"] == "crm-1"
        assert result.steps["project_to_fsm"] == "fsm-1"
        with Session(engine) as s:
            project = s.get(Project, project_id)
        assert project.quotewerks_id == "Q-2041"
        assert project.status == "in-progress"
        assert project.priority == "high"
        assert project.end_date.isoformat() == "2026-05-29"

        inbound = services.audit.recent(direction="inbound")
        assert len(inbound) == 1
        assert inbound[0].service == "quotewerks"

    @pytest.mark.asyncio
    async def test_repeat_sync_reuses_project_and_remote_records(self, orchestrator, adapters, engine):
        adapters["quotewerks"].quotes = {"Q-2041": QUOTE}

        first = await orchestrator.full_quote_sync("Q-2041")
        second = await orchestrator.full_quote_sync("Q-2041")

        assert first.steps["quote_to_project"] == second.steps["quote_to_project"]
        assert second.steps["project_to_crm"] == "crm-1"
        assert adapters["zoho_crm"].calls[-1][0] == "update"
        with Session(engine) as s:
            assert len(s.exec(select(Project)).all()) == 1

    @pytest.mark.asyncio
    async def test_empty_quote_is_audited_and_stops(self, services, orchestrator, adapters, caplog):
        adapters["quotewerks"].quotes = {"Q-0": {}}

        with caplog.at_level("WARNING", logger="fieldsync.sync.orchestrator"):
            result = await orchestrator.full_quote_sync("Q-0")

        assert result.errors == ["Quote to project: Quote Q-0 not found"]
        inbound = services.audit.recent(direction="inbound")
        assert len(inbound) == 1
        assert inbound[0].status == "error"
        assert inbound[0].error_message == "Quote Q-0 not found"
        assert "Propagated quote Q-0 with 1 error(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_quote_failure_stops_the_workflow(self, services, orchestrator, adapters):
        result = await orchestrator.full_quote_sync("Q-missing")

        assert result.success is False
        assert result.errors == ["Quote to project: Quote Q-missing not found"]
        assert result.steps == {
            "quote_to_project": None, "project_to_crm": None, "project_to_fsm": None,
        }
        assert adapters["zoho_crm"].calls == []
        assert adapters["zoho_fsm"].calls == []
        assert services.audit.recent(direction="inbound")[0].status == "error"

    def test_result_dict_shape(self):
        result = WorkflowResult(steps={"quote_to_project": 3}, errors=["x"])
        assert result.as_dict() == {"quote_to_project": 3, "success": False, "errors": ["x"]}


class TestInventoryToBooks:
    @pytest.mark.asyncio
    async def test_caches_item_id_from_response(self, orchestrator, adapters, engine, seeded_item):
        result = await orchestrator.sync_inventory_to_books(seeded_item.id)

        assert result.success
        assert result.steps == {"inventory_to_books": "books-1"}
        module, data = adapters["zoho_books"].calls[0][1]
        assert module == "items"
        assert data["rate"] == 4.5
        assert data["sku"] == "CAT6-2M"
        with Session(engine) as s:
            assert s.get(InventoryItem, seeded_item.id).zoho_books_id == "books-1"

    @pytest.mark.asyncio
    async def test_missing_item(self, orchestrator):
        result = await orchestrator.sync_inventory_to_books(404)
        assert result.errors == ["Inventory to accounting: inventory_item 404 not found"]


class TestConnections:
    @pytest.mark.asyncio
    async def test_all_connected(self, orchestrator):
        report = await orchestrator.test_all_connections()
        assert report["all_connected"] is True
        assert set(report["services"]) == {"zoho_crm", "zoho_fsm", "zoho_books", "quotewerks"}

    @pytest.mark.asyncio
    async def test_one_failure_is_isolated(self, orchestrator, adapters):
        adapters["zoho_fsm"].connected = AdapterAuthError("token expired")
        adapters["zoho_books"].connected = False

        report = await orchestrator.test_all_connections()

        assert report["all_connected"] is False
        assert report["services"]["zoho_fsm"] == {"success": False, "error": "token expired"}
        assert report["services"]["zoho_books"] == {"success": False, "error": "Connection test failed"}
        assert report["services"]["zoho_crm"] == {"success": True}

    @pytest.mark.asyncio
    async def test_no_adapters_counts_as_connected(self, services, settings):
        orchestrator = SyncOrchestrator(AdapterRegistry(), services.entities, services.queue,
                                        services.audit, settings)
        assert await orchestrator.test_all_connections() == {"services": {}, "all_connected": True}


class TestHealth:
    @pytest.mark.parametrize("failures,pending,expected", [
        (0, 0, "healthy"),
        (2, 10, "healthy"),
        (3, 50, "healthy"),
        (5, 0, "warning"),
        (0, 51, "warning"),
        (10, 0, "warning"),
        (11, 0, "critical"),
        (11, 500, "critical"),
    ])
    def test_classify_health(self, settings, failures, pending, expected):
        assert classify_health(failures, pending, settings) == expected

    @pytest.mark.asyncio
    async def test_report_counts_recent_errors_only(self, services, orchestrator, seeded_project):
        for _ in range(5):
            services.audit.record(entity_type="project", entity_id=seeded_project.id,
                                  service="zoho_crm", action="update", status="error",
                                  error_message="boom")
        services.audit.record(entity_type="project", entity_id=seeded_project.id,
                              service="zoho_crm", action="update", status="success")
        services.queue.enqueue("project", seeded_project.id, "zoho_crm")

        health = await orchestrator.get_sync_health(check_connections=False)
        assert health.status == "warning"
        assert health.failed_syncs_24h == 5
        assert health.pending_queue_items == 1
        assert health.last_successful_sync is not None
        assert health.connections is None

        later = await orchestrator.get_sync_health(
            now=utcnow() + timedelta(hours=25), check_connections=False
        )
        assert later.failed_syncs_24h == 0
        assert later.status == "healthy"

    @pytest.mark.asyncio
    async def test_report_includes_connections(self, orchestrator):
        health = await orchestrator.get_sync_health()
        assert health.status == "healthy"
        assert health.connections["all_connected"] is True
        assert health.as_dict()["last_successful_sync"] is None
