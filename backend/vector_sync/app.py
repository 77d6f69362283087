"""FastAPI application setup for vector-sync."""

from __future__ import annotations

from fastapi import FastAPI

from vector_sync.api import dependencies
from vector_sync.api.routes_admin import router as admin_router
from vector_sync.api.routes_webhook import router as webhook_router
from vector_sync.core.logging import configure_logging, get_logger
from vector_sync.models.dto import HealthResponse
from vector_sync.utils.time import utc_now

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Vector Sync",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(webhook_router, prefix="/webhook", tags=["webhook"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons and optionally start the sweep loop."""
    settings = dependencies.get_app_settings()
    dependencies.get_database()
    orchestrator = dependencies.get_orchestrator()
    if settings.auto_start_monitor:
        orchestrator.launch()
    logger.info("Vector sync service started")


@app.on_event("shutdown")
async def shutdown() -> None:
    await dependencies.close_resources()


@app.get("/health", response_model=HealthResponse, tags=["admin"])
def health() -> HealthResponse:
    """Simple liveness check."""
    return HealthResponse(status="ok", timestamp=utc_now())
