"""Dashboard summaries: latest values, daily trends and the weekly sleep view.

Everything here is read-only over the same aggregator and sleep
reconstructor the sync driver uses, so the numbers on screen match what gets
uploaded.

Latest-value rules per metric:
    steps, exercise minutes — today's cumulative total
    heart rate              — latest non-zero reading in the last day,
                              widening to ``dashboard.latest_fallback_days``
    menstruation            — latest reading in the last 28 days
    everything else         — latest non-zero reading in the last day
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo

from src.healthsync.aggregator import SampleAggregator
from src.healthsync.base import DailySleepRecord, HealthDataSource, MetricKind
from src.healthsync.config_loader import SyncConfig, get_sync_config
from src.healthsync.sleep_reconstructor import SleepReconstructor, latest_with_fallback

logger = logging.getLogger("uflow.healthsync.dashboard")

_CUMULATIVE = frozenset({MetricKind.STEPS, MetricKind.EXERCISE_MINUTES})
_WIDENING = frozenset({MetricKind.HEART_RATE})
_MENSTRUATION_LOOKBACK_DAYS = 28


def calculate_change(trend: list[tuple[date, float]]) -> str:
    """Label the move between the last two trend points: '+3', '-2', '+0'.

    Fewer than two points yields 'No Change'.
    """
    if len(trend) < 2:
        return "No Change"
    difference = int(trend[-1][1]) - int(trend[-2][1])
    return f"+{difference}" if difference >= 0 else str(difference)


@dataclass
class MetricSummary:
    """Dashboard card for one metric.

    Attributes:
        metric: Metric kind.
        latest: Latest value per the rules above (None if no data).
        trend:  (day, statistic) per day, oldest first.
        change: Label for the last day-over-day move.
    """

    metric: MetricKind
    latest: float | None
    trend: list[tuple[date, float]] = field(default_factory=list)
    change: str = "No Change"


@dataclass
class SleepSummary:
    latest: DailySleepRecord | None
    records: list[DailySleepRecord] = field(default_factory=list)

    @property
    def latest_hours(self) -> float | None:
        return round(self.latest.hours, 2) if self.latest is not None else None


class DashboardService:
    """Compute the values the dashboard and detail views display.

    Usage::

        service = DashboardService(source, tz)
        summaries, sleep = await service.summary()
    """

    def __init__(
        self,
        source: HealthDataSource,
        tz: tzinfo,
        config: SyncConfig | None = None,
    ) -> None:
        self._config = config or get_sync_config()
        self._tz = tz
        self._aggregator = SampleAggregator(source, tz, self._config)
        self._reconstructor = SleepReconstructor(source, tz, self._config)

    def tracks(self, metric: MetricKind) -> bool:
        """True if ``metric`` is an enabled quantity metric with a summary."""
        return metric in self._config.quantity_metrics

    async def latest_value(self, metric: MetricKind, now: datetime | None = None) -> float | None:
        now = now or datetime.now(self._tz)

        if metric in _CUMULATIVE:
            fetch = await self._aggregator.fetch_day(metric, now.astimezone(self._tz).date())
            return float(sum(s.value for s in fetch.samples if s.timestamp <= now))

        if metric is MetricKind.MENSTRUATION:
            return await self._latest_reading(metric, _MENSTRUATION_LOOKBACK_DAYS, now, nonzero=False)

        value = await self._latest_reading(metric, 1, now)
        if value is None and metric in _WIDENING:
            value = await self._latest_reading(
                metric, self._config.dashboard.latest_fallback_days, now
            )
        return value

    async def trend(
        self, metric: MetricKind, now: datetime | None = None
    ) -> list[tuple[date, float]]:
        now = now or datetime.now(self._tz)
        return await self._aggregator.daily_statistics(
            metric, self._config.dashboard.trend_days, now
        )

    async def metric_summary(self, metric: MetricKind, now: datetime | None = None) -> MetricSummary:
        if metric is MetricKind.SLEEP:
            raise ValueError("Use sleep_summary() for sleep")
        now = now or datetime.now(self._tz)
        trend = await self.trend(metric, now)
        return MetricSummary(
            metric=metric,
            latest=await self.latest_value(metric, now),
            trend=trend,
            change=calculate_change(trend),
        )

    async def sleep_summary(self, days: int | None = None, now: datetime | None = None) -> SleepSummary:
        """Daily sleep records for the last ``days`` days plus the latest one.

        The latest record falls back to the most recent earlier night when
        today has none.
        """
        now = now or datetime.now(self._tz)
        days = days or self._config.dashboard.trend_days
        records = await self._reconstructor.recent_records(days, now)
        latest = latest_with_fallback(records, now.astimezone(self._tz).date())
        return SleepSummary(latest=latest, records=records)

    async def summary(
        self, now: datetime | None = None
    ) -> tuple[list[MetricSummary], SleepSummary]:
        now = now or datetime.now(self._tz)
        summaries = [
            await self.metric_summary(metric, now)
            for metric in self._config.quantity_metrics
        ]
        sleep = await self.sleep_summary(now=now)
        logger.debug("Built dashboard summary for %d metrics", len(summaries))
        return summaries, sleep

    async def _latest_reading(
        self, metric: MetricKind, days: int, now: datetime, nonzero: bool = True
    ) -> float | None:
        fetch = await self._aggregator.fetch(metric, now - timedelta(days=days), now)
        for sample in reversed(fetch.samples):
            if not nonzero or sample.value != 0:
                return sample.value
        return None
