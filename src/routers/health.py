"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from src.config import get_settings
from src.models.base import HealthStatus

router = APIRouter(tags=["system"])
logger = logging.getLogger("uflow.health")


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether account credentials are configured; without them
    every sync short-circuits.
    """
    settings = get_settings()
    has_credentials = bool(settings.api_token) and bool(settings.api_user_id)
    if not has_credentials:
        logger.debug("Health check: no account credentials configured")

    return HealthStatus(
        status="healthy" if has_credentials else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        health_source=settings.health_source,
        credentials="present" if has_credentials else "missing",
    )
