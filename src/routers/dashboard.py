"""Dashboard endpoints: latest values, 7-day trends and reconstructed sleep."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import Dashboard
from src.healthsync.base import MetricKind
from src.models.dashboard import (
    DashboardRead,
    MetricSummaryRead,
    SleepSummaryRead,
)

router = APIRouter(tags=["dashboard"])


def _parse_metric(metric: str) -> MetricKind:
    """Accept either the slug ('heart_rate') or the wire name ('heartRateData')."""
    try:
        return MetricKind(metric)
    except ValueError:
        pass
    try:
        return MetricKind.from_wire_name(metric)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown metric '{metric}'")


@router.get("/dashboard", response_model=DashboardRead)
async def read_dashboard(service: Dashboard) -> Any:
    summaries, sleep = await service.summary()
    return DashboardRead(
        metrics=[MetricSummaryRead.from_summary(s) for s in summaries],
        sleep=SleepSummaryRead.from_summary(sleep),
    )


@router.get("/dashboard/{metric}", response_model=MetricSummaryRead)
async def read_metric(metric: str, service: Dashboard) -> Any:
    kind = _parse_metric(metric)
    if kind is MetricKind.SLEEP:
        raise HTTPException(status_code=404, detail="Sleep is served from /sleep")
    if not service.tracks(kind):
        raise HTTPException(status_code=404, detail=f"Metric '{metric}' is not tracked")
    summary = await service.metric_summary(kind)
    return MetricSummaryRead.from_summary(summary)


@router.get("/sleep", response_model=SleepSummaryRead)
async def read_sleep(
    service: Dashboard,
    days: int = Query(default=7, ge=1, le=31),
) -> Any:
    summary = await service.sleep_summary(days=days)
    return SleepSummaryRead.from_summary(summary)
