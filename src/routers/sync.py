"""Sync endpoint: run a day-sequenced walk and return its report."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import SyncDriver
from src.models.sync import SyncReportRead, SyncRequest

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("uflow.routers.sync")


@router.post("", response_model=SyncReportRead)
async def run_sync(driver: SyncDriver, body: SyncRequest | None = None) -> Any:
    """Walk the requested range (default: the configured lookback window).

    Returns 401 when no account credentials are configured.  Partial upload
    failures still return 200 with ``success: false``.
    """
    body = body or SyncRequest()
    if body.start is not None and body.end is not None:
        report = await driver.run(body.start, body.end)
    else:
        report = await driver.sync_latest()

    if report.aborted and report.days_processed == 0:
        raise HTTPException(status_code=401, detail=report.abort_reason or "Not authenticated")
    return report.to_json()
