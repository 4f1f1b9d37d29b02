from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from tms_sync.auth import get_engine_context, require_scheduler_token
from tms_sync.context import EngineContext
from tms_sync.domain.errors import (
    DeadLetterQueueError,
    ReconciliationInProgressError,
    StoreError,
    UpstreamError,
    upstream_error_detail,
    upstream_error_http_status,
)
from tms_sync.health import run_cleanup
from tms_sync.models.dead_letters import RetrySweepResponse
from tms_sync.models.health import CleanupResponse
from tms_sync.models.reconciliation import ReconciliationRunSummary
from tms_sync.observability import log_event


router = APIRouter(
    prefix="/api/internal/scheduler",
    tags=["internal-scheduler"],
    dependencies=[Depends(require_scheduler_token)],
)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _job_failed(job: str, exc: Exception, *, request_id: str | None) -> HTTPException:
    log_event("scheduled_job_failed", level=logging.ERROR, request_id=request_id, job=job, error=str(exc))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{job} failed: {exc}",
    )


@router.post("/reconcile", response_model=ReconciliationRunSummary)
async def scheduled_reconcile(
    request: Request,
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    try:
        return engine.reconciliation.run(triggered_by="scheduler", request_id=request_id)
    except ReconciliationInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(
            status_code=upstream_error_http_status(exc),
            detail=upstream_error_detail(operation="reconciliation", exc=exc),
        ) from exc
    except StoreError as exc:
        engine.notifier.send("reconciliation_drift", {"error": str(exc)})
        raise _job_failed("reconciliation", exc, request_id=request_id) from exc


@router.post("/dlq-retry", response_model=RetrySweepResponse)
async def scheduled_dlq_retry(
    request: Request,
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    try:
        return engine.retry_driver.run_sweep(request_id=request_id)
    except DeadLetterQueueError as exc:
        raise _job_failed("dlq retry", exc, request_id=request_id) from exc


@router.post("/cleanup", response_model=CleanupResponse)
async def scheduled_cleanup(
    request: Request,
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    try:
        return run_cleanup(
            engine.store,
            engine.dlq,
            webhook_log_retention_days=engine.settings.webhook_log_retention_days,
            reconciliation_run_retention_days=engine.settings.reconciliation_run_retention_days,
            request_id=request_id,
        )
    except (StoreError, DeadLetterQueueError) as exc:
        raise _job_failed("cleanup", exc, request_id=request_id) from exc
