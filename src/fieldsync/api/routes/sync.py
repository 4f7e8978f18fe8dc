"""Sync trigger, operator and health routes."""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from fieldsync.models.queue import SyncQueueItem
from fieldsync.models.sync import SyncLog
from fieldsync.sync.services import SyncServices

router = APIRouter()


def get_services(request: Request) -> SyncServices:
    return request.app.state.services


class SyncTriggerRequest(BaseModel):
    entity_type: str
    entity_id: int
    service: str
    process_now: bool = False  # run a queue pass in the background after queuing


class SyncTriggerResponse(BaseModel):
    queued: bool
    queue_id: int


class SyncStatusResponse(BaseModel):
    pending_count: int
    failed_count: int
    queue: Dict[str, int]
    total_processed: int
    total_succeeded: int
    total_failed: int
    total_skipped: int
    last_run_at: Optional[datetime]
    last_successful_sync: Optional[datetime]


async def _process_in_background(services: SyncServices) -> None:
    await services.processor.process()


@router.post("/trigger", response_model=SyncTriggerResponse)
def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    services: SyncServices = Depends(get_services),
):
    """Queue a high-priority update of one entity to one service."""
    if not services.entities.exists(request.entity_type, request.entity_id):
        raise HTTPException(
            status_code=404,
            detail=f"{request.entity_type} {request.entity_id} not found",
        )
    queue_id = services.processor.trigger_sync(
        request.entity_type, request.entity_id, request.service
    )
    if request.process_now:
        background_tasks.add_task(_process_in_background, services)
    return SyncTriggerResponse(queued=True, queue_id=queue_id)


@router.post("/process")
async def process_queue(services: SyncServices = Depends(get_services)):
    """Run one bounded queue pass now and return its counts."""
    result = await services.processor.process()
    return result.as_dict()


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(services: SyncServices = Depends(get_services)):
    """Queue counts and cumulative processor counters."""
    counts = services.queue.count_by_status()
    metrics = services.audit.get_metrics()
    return SyncStatusResponse(
        pending_count=services.processor.get_pending_count(),
        failed_count=counts.get("failed", 0),
        queue=counts,
        total_processed=metrics.total_processed,
        total_succeeded=metrics.total_succeeded,
        total_failed=metrics.total_failed,
        total_skipped=metrics.total_skipped,
        last_run_at=metrics.last_run_at,
        last_successful_sync=services.audit.last_success_at(),
    )


@router.get("/health")
async def sync_health(
    check_connections: bool = True,
    services: SyncServices = Depends(get_services),
):
    health = await services.orchestrator.get_sync_health(check_connections=check_connections)
    return health.as_dict()


@router.get("/connections")
async def connections(services: SyncServices = Depends(get_services)):
    return await services.orchestrator.test_all_connections()


@router.get("/logs", response_model=List[SyncLog])
def sync_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    service: Optional[str] = None,
    status: Optional[str] = None,
    direction: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    services: SyncServices = Depends(get_services),
):
    """Audit entries, newest first."""
    return services.audit.recent(
        entity_type=entity_type,
        entity_id=entity_id,
        service=service,
        status=status,
        direction=direction,
        limit=limit,
        offset=offset,
    )


@router.get("/queue", response_model=List[SyncQueueItem])
def sync_queue(
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    services: SyncServices = Depends(get_services),
):
    """Queue items in processing order."""
    return services.queue.list_items(status=status, limit=limit, offset=offset)


@router.post("/queue/retry-failed")
def retry_failed(services: SyncServices = Depends(get_services)):
    return {"reset": services.processor.retry_failed()}


@router.delete("/queue/failed")
def clear_failed(services: SyncServices = Depends(get_services)):
    return {"deleted": services.processor.clear_failed()}


@router.post("/projects/{project_id}")
async def sync_project(project_id: int, services: SyncServices = Depends(get_services)):
    """Push a project to the CRM and field-service systems now."""
    if not services.entities.exists("project", project_id):
        raise HTTPException(status_code=404, detail=f"project {project_id} not found")
    result = await services.orchestrator.sync_project(project_id)
    return result.as_dict()


@router.post("/quotes/{quote_id}")
async def sync_quote(quote_id: str, services: SyncServices = Depends(get_services)):
    """Import a quote as a project and push it to the CRM and field-service systems."""
    result = await services.orchestrator.full_quote_sync(quote_id)
    return result.as_dict()


@router.post("/inventory/{item_id}")
async def sync_inventory(item_id: int, services: SyncServices = Depends(get_services)):
    """Push an inventory item to the accounting system now."""
    if not services.entities.exists("inventory_item", item_id):
        raise HTTPException(status_code=404, detail=f"inventory item {item_id} not found")
    result = await services.orchestrator.sync_inventory_to_books(item_id)
    return result.as_dict()
