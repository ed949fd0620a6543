"""Uflow Health Sync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.config import get_settings
from src.dependencies import build_driver, build_source
from src.healthsync.sync.scheduler import BackgroundSyncScheduler
from src.routers import dashboard, health, sync

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("uflow")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks.

    Builds the health source and sync driver once, runs the launch sync and,
    when enabled, the background refresh loop.
    """
    settings = get_settings()
    logger.info(
        "Starting Uflow Health Sync v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    app.state.source = build_source(settings)
    app.state.driver = build_driver(settings, app.state.source)

    stop_event = asyncio.Event()
    loop_task: asyncio.Task | None = None
    if settings.background_sync_enabled:
        scheduler = BackgroundSyncScheduler(app.state.driver)
        app.state.scheduler = scheduler
        await scheduler.run_once("launch")
        loop_task = asyncio.create_task(scheduler.run_forever(stop_event))

    yield

    stop_event.set()
    if loop_task is not None:
        await loop_task
    logger.info("Uflow Health Sync shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Uflow Health Sync API",
        description=(
            "Reads health samples from the device store, reconstructs nightly "
            "sleep, and uploads day-bucketed metric batches to the account service."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(dashboard.router, prefix=v1_prefix)

    return app


app = create_app()
