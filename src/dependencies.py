"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import replace
from typing import Annotated

from fastapi import Depends, Request

from src.config import Settings, get_settings
from src.healthsync.base import HealthDataSource
from src.healthsync.config_loader import get_sync_config
from src.healthsync.dashboard import DashboardService
from src.healthsync.sources import get_source
from src.healthsync.sync.driver import DaySequencedSyncDriver
from src.healthsync.sync.uploader import AccountCredentials, HealthDataUploader


def build_source(settings: Settings) -> HealthDataSource:
    """Instantiate the configured health data source.

    Raises:
        KeyError: If ``health_source`` names no registered source.
    """
    source_cls = get_source(settings.health_source)
    if settings.health_source == "apple_health":
        return source_cls(path=settings.health_export_path)
    return source_cls()


def build_driver(settings: Settings, source: HealthDataSource) -> DaySequencedSyncDriver:
    credentials = AccountCredentials(token=settings.api_token, user_id=settings.api_user_id)
    upload_config = replace(get_sync_config().upload, timeout_seconds=settings.http_timeout_seconds)
    uploader = HealthDataUploader(settings.api_base_url, credentials, config=upload_config)
    return DaySequencedSyncDriver(source, uploader, settings.tz)


def get_health_source(request: Request) -> HealthDataSource:
    """Return the process-wide source created at startup.

    The lifespan hook stores it on ``app.state.source``; falls back to
    building one from settings when the app was started without lifespan.
    """
    source: HealthDataSource | None = getattr(request.app.state, "source", None)
    if source is None:
        source = build_source(get_settings())
        request.app.state.source = source
    return source


def get_sync_driver(request: Request) -> DaySequencedSyncDriver:
    driver: DaySequencedSyncDriver | None = getattr(request.app.state, "driver", None)
    if driver is None:
        driver = build_driver(get_settings(), get_health_source(request))
        request.app.state.driver = driver
    return driver


def get_dashboard(request: Request) -> DashboardService:
    return DashboardService(get_health_source(request), get_settings().tz)


# Annotated shortcuts for route signatures
SyncDriver = Annotated[DaySequencedSyncDriver, Depends(get_sync_driver)]
Dashboard = Annotated[DashboardService, Depends(get_dashboard)]
