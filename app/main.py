"""
TeamChat API Server

Entry point for the FastAPI application.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.database import get_session_context, init_db, ping_db
from app.core.errors import register_exception_handlers
from app.core.hub import hub
from teamchat_shared.logging_config import configure_logging
from app.core.middleware import RequestLoggingMiddleware
from app.api import router as api_router
from app.api.invites import router as invites_router
from app.api.realtime import router as realtime_router
from app.services.projects import ensure_default_project

settings = get_settings()
log = structlog.get_logger()


async def _prune_sessions_forever() -> None:
    """Discard idle invite sessions older than the configured TTL."""
    max_age = timedelta(seconds=settings.invite_session_ttl_seconds)
    while True:
        await asyncio.sleep(settings.session_prune_interval_seconds)
        hub.prune_sessions(max_age)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    log.info("TeamChat starting", port=settings.port)
    await init_db()
    async with get_session_context() as session:
        await ensure_default_project(session)

    pruner = asyncio.create_task(_prune_sessions_forever())
    try:
        yield
    finally:
        log.info("TeamChat shutting down")
        pruner.cancel()
        with suppress(asyncio.CancelledError):
            await pruner


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TeamChat",
        description="Realtime group chat organized into projects and channels.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (order matters, outermost first)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")
    app.include_router(invites_router, tags=["Invites"])
    app.include_router(realtime_router, tags=["Realtime"])

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the store must answer."""
        try:
            await ping_db()
        except Exception as exc:
            log.warning("readiness.store_unavailable", error=str(exc))
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ready"}

    return app


app = create_app()


def run() -> None:
    """CLI entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("app.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
