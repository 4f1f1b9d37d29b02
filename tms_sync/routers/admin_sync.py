from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from tms_sync.auth import SuperAdminContext, get_current_super_admin, get_engine_context
from tms_sync.context import EngineContext
from tms_sync.domain.errors import (
    DeadLetterQueueError,
    ReconciliationInProgressError,
    StoreError,
    UpstreamError,
    upstream_error_detail,
    upstream_error_http_status,
)
from tms_sync.health import collect_sync_health
from tms_sync.models.dead_letters import (
    DeadLetterClearResponse,
    DeadLetterDeleteResponse,
    DeadLetterListResponse,
    DeadLetterRetryResponse,
)
from tms_sync.models.health import SyncHealthResponse
from tms_sync.models.reconciliation import ReconciliationRunRequest, ReconciliationRunSummary
from tms_sync.observability import incr_metric, log_event


router = APIRouter(prefix="/api/admin", tags=["admin-sync"])
_DLQ_LIST_LIMIT = 100


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _backend_unavailable(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"sync backend unavailable: {exc}",
    )


@router.get("/dlq", response_model=DeadLetterListResponse)
async def list_dead_letters(
    request: Request,
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    try:
        items = engine.dlq.list_items(limit=_DLQ_LIST_LIMIT)
        stats = engine.dlq.stats()
    except DeadLetterQueueError as exc:
        raise _backend_unavailable(exc) from exc
    log_event("dlq_listed", request_id=_request_id(request), super_admin_id=admin.super_admin_id, count=stats.count)
    return DeadLetterListResponse(items=items, stats=stats)


@router.delete("/dlq", response_model=DeadLetterClearResponse)
async def clear_dead_letters(
    request: Request,
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    try:
        removed = engine.dlq.clear()
    except DeadLetterQueueError as exc:
        raise _backend_unavailable(exc) from exc
    incr_metric("dlq.cleared", value=removed)
    log_event("dlq_cleared", request_id=_request_id(request), super_admin_id=admin.super_admin_id, removed=removed)
    return DeadLetterClearResponse(success=True, removed=removed)


@router.post("/dlq/{item_id}/retry", response_model=DeadLetterRetryResponse, response_model_exclude_none=True)
async def retry_dead_letter(
    item_id: str,
    request: Request,
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    try:
        result = engine.retry_driver.retry_one(item_id, request_id=request_id)
    except DeadLetterQueueError as exc:
        raise _backend_unavailable(exc) from exc
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dead-letter item not found")
    log_event(
        "dlq_manual_retry",
        request_id=request_id,
        super_admin_id=admin.super_admin_id,
        item_id=item_id,
        success=result.success,
    )
    return result


@router.delete("/dlq/{item_id}", response_model=DeadLetterDeleteResponse)
async def delete_dead_letter(
    item_id: str,
    request: Request,
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    try:
        removed = engine.dlq.remove(item_id)
    except DeadLetterQueueError as exc:
        raise _backend_unavailable(exc) from exc
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dead-letter item not found")
    log_event("dlq_item_deleted", request_id=_request_id(request), super_admin_id=admin.super_admin_id, item_id=item_id)
    return DeadLetterDeleteResponse(success=True)


@router.post("/reconciliation", response_model=ReconciliationRunSummary)
async def run_reconciliation(
    request: Request,
    data: ReconciliationRunRequest | None = None,
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    triggered_by = (data.triggered_by if data else None) or f"admin:{admin.super_admin_id}"
    try:
        return engine.reconciliation.run(triggered_by=triggered_by, request_id=request_id)
    except ReconciliationInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(
            status_code=upstream_error_http_status(exc),
            detail=upstream_error_detail(operation="reconciliation", exc=exc),
        ) from exc
    except StoreError as exc:
        raise _backend_unavailable(exc) from exc


@router.get("/sync-health", response_model=SyncHealthResponse)
async def get_sync_health(
    admin: SuperAdminContext = Depends(get_current_super_admin),
    engine: EngineContext = Depends(get_engine_context),
):
    try:
        return collect_sync_health(engine.store, engine.dlq)
    except (StoreError, DeadLetterQueueError) as exc:
        raise _backend_unavailable(exc) from exc
