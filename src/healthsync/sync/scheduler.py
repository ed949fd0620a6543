"""Background sync scheduler for the health sync pipeline.

Decides when a sync is due and runs it under the host's execution budget:
1. Sync on launch and whenever the app becomes active ("foreground")
2. Sync from the background refresh task, no more often than every
   ``schedule.background_interval_minutes``
3. Background runs are time-boxed by ``schedule.time_budget_seconds``.  When
   the budget elapses the in-flight walk is abandoned mid-day with no
   rollback, and the next run walks the whole window again.

Only one run is in flight at a time; a trigger that arrives while a run is
active is reported as skipped rather than queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from src.healthsync.config_loader import ScheduleConfig, get_sync_config
from src.healthsync.sync.driver import DaySequencedSyncDriver, SyncReport

logger = logging.getLogger("uflow.healthsync.sync.scheduler")

TRIGGERS = ("launch", "foreground", "background", "manual")


@dataclass
class SyncRun:
    """Result of one scheduler-triggered sync.

    Attributes:
        trigger:     What started the run ('launch', 'foreground', 'background', 'manual').
        status:      'success', 'failed', 'timeout', 'skipped'.
        report:      Driver report (None when skipped or timed out).
        error:       Error message if the run did not complete.
        started_at:  UTC timestamp the run began.
        finished_at: UTC timestamp the run ended.
    """

    trigger: str
    status: str = "success"
    report: SyncReport | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == "success"


class BackgroundSyncScheduler:
    """Run the sync driver on app lifecycle events and a background interval.

    Usage::

        scheduler = BackgroundSyncScheduler(driver)
        await scheduler.run_once("launch")
        await scheduler.run_forever(stop_event)
    """

    def __init__(
        self,
        driver: DaySequencedSyncDriver,
        config: ScheduleConfig | None = None,
    ) -> None:
        self._driver = driver
        self._config = config or get_sync_config().schedule
        self._lock = asyncio.Lock()
        self.last_attempt_at: datetime | None = None
        self.last_success_at: datetime | None = None
        self.history: list[SyncRun] = []

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self._config.background_interval_minutes)

    def should_sync(
        self, last_attempt_at: datetime | None = None, now: datetime | None = None
    ) -> bool:
        """Return True if a background sync is due.

        Args:
            last_attempt_at: UTC datetime of the previous attempt (defaults to
                             the scheduler's own record; None = never).
            now:             Current UTC time, injectable for tests.
        """
        last = last_attempt_at if last_attempt_at is not None else self.last_attempt_at
        if last is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - last >= self.interval

    async def run_once(self, trigger: str = "manual") -> SyncRun:
        """Run one sync over the configured lookback window.

        Background triggers are cancelled once the time budget elapses.

        Args:
            trigger: One of TRIGGERS.

        Returns:
            SyncRun describing the outcome.
        """
        if trigger not in TRIGGERS:
            raise ValueError(f"Unknown sync trigger {trigger!r}; expected one of {TRIGGERS}")

        run = SyncRun(trigger=trigger)
        if self._lock.locked():
            logger.info("Sync already in progress; skipping %s trigger", trigger)
            run.status = "skipped"
            run.finished_at = datetime.now(timezone.utc)
            return run

        async with self._lock:
            self.last_attempt_at = run.started_at
            try:
                if trigger == "background":
                    report = await asyncio.wait_for(
                        self._driver.sync_latest(), timeout=self._config.time_budget_seconds
                    )
                else:
                    report = await self._driver.sync_latest()
            except asyncio.TimeoutError:
                logger.warning(
                    "Background sync exceeded its %.0fs budget; walk abandoned",
                    self._config.time_budget_seconds,
                )
                run.status = "timeout"
                run.error = "Background time budget exceeded"
            except Exception as exc:
                logger.error("Sync (%s) failed with exception: %s", trigger, exc)
                run.status = "failed"
                run.error = str(exc)
            else:
                run.report = report
                run.status = "success" if report.success else "failed"
                if report.success:
                    self.last_success_at = run.started_at

        run.finished_at = datetime.now(timezone.utc)
        self.history.append(run)
        del self.history[:-20]  # keep the last 20 runs
        logger.info("Sync (%s) finished: status=%s", trigger, run.status)
        return run

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Run background syncs every interval until ``stop_event`` is set."""
        logger.info("Background sync loop started (every %s)", self.interval)
        while not stop_event.is_set():
            if self.should_sync():
                await self.run_once("background")
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self.interval.total_seconds()
                )
            except asyncio.TimeoutError:
                continue
        logger.info("Background sync loop stopped")
