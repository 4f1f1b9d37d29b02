import hmac
from fastapi import Depends, Header, HTTPException, Request, status
from tms_sync.auth.context import SuperAdminContext
from tms_sync.auth.jwt import decode_super_admin_token
from tms_sync.context import EngineContext
from tms_sync.observability import incr_metric, log_event


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_engine_context(request: Request) -> EngineContext:
    return request.app.state.engine


async def get_current_super_admin(
    authorization: str | None = Header(None),
    engine: EngineContext = Depends(get_engine_context),
) -> SuperAdminContext:
    """
    Super-admin JWT auth. Validates token type is 'super_admin' and user exists in super_admins table.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_super_admin_token(engine.settings, token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired super-admin token",
        )

    super_admin = engine.store.get_super_admin(payload["sub"])
    if not super_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Super-admin not found",
        )

    return SuperAdminContext(
        super_admin_id=super_admin["id"],
        email=super_admin["email"],
    )


async def require_scheduler_token(
    request: Request,
    authorization: str | None = Header(None),
    engine: EngineContext = Depends(get_engine_context),
) -> None:
    """Scheduled jobs authenticate with ``Authorization: Bearer <CRON_SECRET>``. Fails closed."""
    request_id = getattr(request.state, "request_id", None)
    configured_secret = engine.settings.cron_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="scheduler secret is not configured",
        )
    token = _extract_bearer_token(authorization)
    if not token or not hmac.compare_digest(token, configured_secret):
        incr_metric("scheduler.auth_failed", path=request.url.path)
        log_event("scheduler_auth_failed", request_id=request_id, path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid scheduler secret",
        )
    incr_metric("scheduler.auth_succeeded", path=request.url.path)
