"""Tests for the background sync scheduler — due checks, time budget, overlap."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.healthsync.base import MetricKind
from src.healthsync.config_loader import ScheduleConfig
from src.healthsync.sync.driver import SyncReport
from src.healthsync.sync.scheduler import BackgroundSyncScheduler
from src.healthsync.tests.conftest import TEST_DATE

SCHEDULE = ScheduleConfig(background_interval_minutes=15, time_budget_seconds=0.05)


def make_report(failed: int = 0) -> SyncReport:
    report = SyncReport(start_day=TEST_DATE, end_day=TEST_DATE, days_processed=1)
    if failed:
        report.counts_for(MetricKind.STEPS).failed = failed
    return report


def make_driver(report: SyncReport | None = None, delay: float = 0.0) -> MagicMock:
    async def sync_latest(*args, **kwargs) -> SyncReport:
        if delay:
            await asyncio.sleep(delay)
        return report or make_report()

    driver = MagicMock()
    driver.sync_latest = AsyncMock(side_effect=sync_latest)
    return driver


class TestShouldSync:
    def test_never_synced(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(), SCHEDULE)
        assert scheduler.should_sync() is True

    def test_interval_not_elapsed(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(), SCHEDULE)
        now = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
        assert scheduler.should_sync(now - timedelta(minutes=10), now) is False

    def test_interval_elapsed(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(), SCHEDULE)
        now = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
        assert scheduler.should_sync(now - timedelta(minutes=15), now) is True


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_successful_run(self) -> None:
        driver = make_driver()
        scheduler = BackgroundSyncScheduler(driver, SCHEDULE)
        run = await scheduler.run_once("launch")

        assert run.success
        assert run.report is not None
        assert scheduler.last_success_at == run.started_at
        assert scheduler.should_sync() is False
        driver.sync_latest.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_uploads_mark_run_failed(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(make_report(failed=1)), SCHEDULE)
        run = await scheduler.run_once("foreground")
        assert run.status == "failed"
        assert scheduler.last_success_at is None

    @pytest.mark.asyncio
    async def test_background_run_abandoned_when_budget_elapses(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(delay=1.0), SCHEDULE)
        run = await scheduler.run_once("background")
        assert run.status == "timeout"
        assert run.report is None
        assert not run.success

    @pytest.mark.asyncio
    async def test_foreground_run_not_time_boxed(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(delay=0.1), SCHEDULE)
        run = await scheduler.run_once("foreground")
        assert run.success

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(delay=0.1), SCHEDULE)
        first, second = await asyncio.gather(
            scheduler.run_once("launch"), scheduler.run_once("foreground")
        )
        assert first.status == "success"
        assert second.status == "skipped"

    @pytest.mark.asyncio
    async def test_driver_exception_reported(self) -> None:
        driver = MagicMock()
        driver.sync_latest = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = BackgroundSyncScheduler(driver, SCHEDULE)
        run = await scheduler.run_once("manual")
        assert run.status == "failed"
        assert run.error == "boom"

    @pytest.mark.asyncio
    async def test_unknown_trigger_rejected(self) -> None:
        scheduler = BackgroundSyncScheduler(make_driver(), SCHEDULE)
        with pytest.raises(ValueError):
            await scheduler.run_once("cron")


class TestRunForever:
    @pytest.mark.asyncio
    async def test_runs_once_then_stops(self) -> None:
        driver = make_driver()
        scheduler = BackgroundSyncScheduler(driver, SCHEDULE)
        stop = asyncio.Event()

        task = asyncio.create_task(scheduler.run_forever(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert driver.sync_latest.await_count == 1
        assert scheduler.history[0].trigger == "background"
