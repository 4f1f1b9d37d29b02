from __future__ import annotations

import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from tms_sync.auth import get_engine_context
from tms_sync.context import EngineContext
from tms_sync.domain.errors import EventSchemaError, StoreError
from tms_sync.domain.events import extract_event_type, parse_envelope
from tms_sync.domain.idempotency import ClaimResult, generate_idempotency_key
from tms_sync.models.webhooks import WebhookAck, WebhookLiveness
from tms_sync.observability import incr_metric, log_event


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
_SUPPORTED_PROVIDERS = {"portpro"}
_SIGNATURE_HEADER = "X-Hub-Signature"


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _require_supported_provider(provider_slug: str) -> None:
    if provider_slug not in _SUPPORTED_PROVIDERS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unsupported webhook provider: {provider_slug}",
        )


def _verify_signature(request: Request, secret: str | None, *, request_id: str | None) -> None:
    header = request.headers.get(_SIGNATURE_HEADER)
    if not header or not secret:
        if not header:
            incr_metric("webhook.signature.missing")
        return
    token = header[len("sha1="):] if header.startswith("sha1=") else header
    if not hmac.compare_digest(token, secret):
        incr_metric("webhook.signature.rejected")
        log_event("webhook_signature_rejected", level=logging.WARNING, request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )


def _dead_letter(
    engine: EngineContext,
    *,
    event_type: str,
    raw_body: str,
    error: str,
    permanent: bool,
    request_id: str | None,
) -> WebhookAck:
    item = engine.dlq.push(event_type, raw_body, error, permanent=permanent)
    log_event(
        "webhook_processing_failed",
        level=logging.ERROR,
        request_id=request_id,
        event_type=event_type,
        permanent=permanent,
        dead_letter_id=item.id if item else None,
        error=error,
    )
    return WebhookAck(success=False, queued=item is not None, event=event_type)


@router.post("/{provider_slug}", response_model=WebhookAck, response_model_exclude_none=True)
async def receive_webhook(
    provider_slug: str,
    request: Request,
    engine: EngineContext = Depends(get_engine_context),
):
    request_id = _request_id(request)
    _require_supported_provider(provider_slug)
    raw = await request.body()
    _verify_signature(request, engine.settings.portpro_webhook_secret, request_id=request_id)

    raw_body = raw.decode("utf-8", errors="replace")
    try:
        payload: Any = json.loads(raw_body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        incr_metric("webhook.events.unparseable", provider_slug=provider_slug)
        log_event("webhook_payload_unparseable", level=logging.WARNING, request_id=request_id)
        return WebhookAck(success=False, event="unknown")

    event_type = extract_event_type(payload)
    incr_metric("webhook.events.received", provider_slug=provider_slug, event_type=event_type)
    try:
        event = parse_envelope(payload)
    except EventSchemaError as exc:
        incr_metric("webhook.events.schema_rejected", event_type=event_type)
        return _dead_letter(
            engine,
            event_type=event_type,
            raw_body=raw_body,
            error=str(exc),
            permanent=True,
            request_id=request_id,
        )

    idempotency_key = generate_idempotency_key(event.event_type, event.reference, event.occurred_at)
    claim = engine.idempotency.claim(idempotency_key)
    if claim == ClaimResult.DUPLICATE:
        incr_metric("webhook.events.duplicate", event_type=event.event_type)
        log_event(
            "webhook_duplicate_ignored",
            request_id=request_id,
            event_type=event.event_type,
            idempotency_key=idempotency_key,
        )
        return WebhookAck(success=True, duplicate=True, event=event.event_type)

    try:
        engine.store.log_webhook(
            event_type=event.event_type,
            reference_number=event.reference,
            idempotency_key=idempotency_key,
            payload=payload,
        )
    except StoreError as exc:
        log_event("webhook_audit_log_failed", level=logging.WARNING, request_id=request_id, error=str(exc))

    try:
        engine.handlers.dispatch(event, request_id=request_id)
    except Exception as exc:
        if claim == ClaimResult.CLAIMED:
            engine.idempotency.release(idempotency_key)
        return _dead_letter(
            engine,
            event_type=event.event_type,
            raw_body=raw_body,
            error=str(exc),
            permanent=False,
            request_id=request_id,
        )

    if claim == ClaimResult.CLAIMED:
        engine.idempotency.mark_processed(idempotency_key)
    incr_metric("webhook.events.processed", event_type=event.event_type)
    return WebhookAck(success=True, event=event.event_type)


@router.get("/{provider_slug}", response_model=WebhookLiveness)
async def webhook_liveness(provider_slug: str):
    _require_supported_provider(provider_slug)
    return WebhookLiveness(
        status="ok",
        webhook=provider_slug,
        timestamp=datetime.now(timezone.utc),
    )
