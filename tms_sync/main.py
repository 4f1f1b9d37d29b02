from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from tms_sync.config import Settings, load_settings
from tms_sync.context import EngineContext, build_context
from tms_sync.routers import (
    admin_sync,
    internal_scheduler,
    webhooks,
)


def create_app(settings: Settings | None = None, context: EngineContext | None = None) -> FastAPI:
    """Build the ASGI app. Configuration is validated here, before serving."""
    if context is None:
        context = build_context(settings or load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.engine.close()

    app = FastAPI(title="TMS Sync", version="0.1.0", lifespan=lifespan)
    app.state.engine = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid4())
        )
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(webhooks.router)
    app.include_router(admin_sync.router)
    app.include_router(internal_scheduler.router)

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "tms-sync"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app
