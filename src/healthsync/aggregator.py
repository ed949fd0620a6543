"""Sample aggregator: query raw samples, normalize units, group by local day.

Absence of health data is an expected state, so the aggregator is fail-open:
authorization denials and query failures are logged and come back as an empty
result.  ``fetch()`` still tells the two apart through ``SampleFetch.status``
so callers and tests can distinguish "nothing recorded" from "could not read".
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import AsyncIterator, Callable

from src.healthsync.base import (
    AuthorizationDenied,
    HealthDataError,
    HealthDataSource,
    MetricKind,
    RawSample,
    SourceRecord,
)
from src.healthsync.config_loader import SyncConfig, get_sync_config

logger = logging.getLogger("uflow.healthsync.aggregator")


class FetchStatus(str, enum.Enum):
    OK = "ok"
    EMPTY = "empty"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


@dataclass(frozen=True)
class SampleFetch:
    """Outcome of one aggregator query.

    Attributes:
        metric:  Metric kind queried.
        status:  ok / empty / unauthorized / failed.
        samples: Normalized samples, ascending by timestamp (empty unless ok).
        error:   Error message for unauthorized / failed fetches.
    """

    metric: MetricKind
    status: FetchStatus
    samples: tuple[RawSample, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK


# ---------------------------------------------------------------------------
# Unit normalization
# ---------------------------------------------------------------------------

# (canonical unit, source unit) → converter.  Identity pairs are implicit.
_UNIT_CONVERSIONS: dict[tuple[str, str], Callable[[float], float]] = {
    ("count/min", "count/s"): lambda v: v * 60.0,
    ("count/min", "count/h"): lambda v: v / 60.0,
    ("ms", "s"): lambda v: v * 1000.0,
    ("ms", "us"): lambda v: v / 1000.0,
    ("degC", "degF"): lambda v: (v - 32.0) * 5.0 / 9.0,
    ("degC", "K"): lambda v: v - 273.15,
    ("min", "s"): lambda v: v / 60.0,
    ("min", "hr"): lambda v: v * 60.0,
    ("min", "h"): lambda v: v * 60.0,
}

# Units that carry no scale; a record without a unit is taken as canonical
_UNITLESS = frozenset({"count", "level", "stage", ""})

# HKCategoryValueMenstrualFlow names → numeric flow level
_FLOW_LEVELS: dict[str, float] = {
    "HKCategoryValueMenstrualFlowUnspecified": 1.0,
    "HKCategoryValueMenstrualFlowLight": 2.0,
    "HKCategoryValueMenstrualFlowMedium": 3.0,
    "HKCategoryValueMenstrualFlowHeavy": 4.0,
    "HKCategoryValueMenstrualFlowNone": 5.0,
}


def normalize_value(
    value: float | str, source_unit: str | None, canonical_unit: str
) -> float | None:
    """Convert a source value into the canonical unit.

    Returns None when the value is not numeric or the unit is unknown, so the
    caller can drop the sample and keep the rest of the batch.
    """
    if isinstance(value, str):
        if value in _FLOW_LEVELS:
            return _FLOW_LEVELS[value]
        try:
            value = float(value)
        except ValueError:
            return None

    unit = source_unit or ""
    if not unit or unit == canonical_unit or (canonical_unit in _UNITLESS and unit in _UNITLESS):
        return float(value)
    converter = _UNIT_CONVERSIONS.get((canonical_unit, unit))
    if converter is None:
        return None
    return converter(float(value))


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class SampleAggregator:
    """Query, normalize and bucket samples for the quantity metrics.

    Usage::

        aggregator = SampleAggregator(source, tz)
        fetch = await aggregator.fetch(MetricKind.HEART_RATE, start, end)
        for day, samples in aggregator.by_day(fetch.samples).items():
            ...
    """

    def __init__(
        self,
        source: HealthDataSource,
        tz: tzinfo,
        config: SyncConfig | None = None,
    ) -> None:
        self._source = source
        self._tz = tz
        self._config = config or get_sync_config()

    async def fetch(self, metric: MetricKind, start: datetime, end: datetime) -> SampleFetch:
        """Fetch normalized samples whose start lies in [start, end).

        Never raises for source-level problems: denial and failure are
        logged and reported through the returned status.
        """
        cfg = self._config.metric(metric)
        try:
            records = await self._source.query(cfg.source_type, start, end)
        except AuthorizationDenied as exc:
            logger.info("No read access for %s: %s", metric.value, exc)
            return SampleFetch(metric, FetchStatus.UNAUTHORIZED, error=str(exc))
        except HealthDataError as exc:
            logger.warning(
                "Query failed for %s between %s and %s: %s",
                metric.value, start.isoformat(), end.isoformat(), exc,
            )
            return SampleFetch(metric, FetchStatus.FAILED, error=str(exc))

        samples = self._normalize(metric, cfg.unit, records)
        if not samples:
            return SampleFetch(metric, FetchStatus.EMPTY)
        return SampleFetch(metric, FetchStatus.OK, samples=samples)

    async def fetch_day(self, metric: MetricKind, day: date) -> SampleFetch:
        """Fetch one local calendar day (midnight to midnight)."""
        start, end = self.day_bounds(day)
        return await self.fetch(metric, start, end)

    async def iter_samples(
        self, metric: MetricKind, lookback_days: int, reference: datetime
    ) -> AsyncIterator[RawSample]:
        """Yield samples from ``lookback_days`` before ``reference`` up to it.

        Lazy and fail-open: yields nothing on error.
        """
        fetch = await self.fetch(metric, reference - timedelta(days=lookback_days), reference)
        for sample in fetch.samples:
            yield sample

    def by_day(self, samples: tuple[RawSample, ...] | list[RawSample]) -> dict[date, list[RawSample]]:
        """Group samples by local calendar day, keeping timestamp order."""
        grouped: dict[date, list[RawSample]] = defaultdict(list)
        for sample in samples:
            grouped[sample.local_day(self._tz)].append(sample)
        return dict(grouped)

    async def daily_statistics(
        self, metric: MetricKind, days: int, reference: datetime
    ) -> list[tuple[date, float]]:
        """Per-day statistic for the ``days`` local days ending on ``reference``'s day.

        The statistic (sum / average / latest) comes from the metric config.
        Days without data report 0.0 so charts keep a point per day.
        """
        last_day = reference.astimezone(self._tz).date()
        first_day = last_day - timedelta(days=days - 1)
        start, _ = self.day_bounds(first_day)
        _, end = self.day_bounds(last_day)

        fetch = await self.fetch(metric, start, end)
        grouped = self.by_day(fetch.samples)
        statistic = self._config.metric(metric).statistic

        result: list[tuple[date, float]] = []
        for offset in range(days):
            day = first_day + timedelta(days=offset)
            values = [s.value for s in grouped.get(day, [])]
            result.append((day, _apply_statistic(statistic, values)))
        return result

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """Local midnight of ``day`` and of the following day."""
        start = datetime(day.year, day.month, day.day, tzinfo=self._tz)
        nxt = day + timedelta(days=1)
        return start, datetime(nxt.year, nxt.month, nxt.day, tzinfo=self._tz)

    # ------------------------------------------------------------------

    def _normalize(
        self, metric: MetricKind, canonical_unit: str, records: list[SourceRecord]
    ) -> tuple[RawSample, ...]:
        samples: list[RawSample] = []
        dropped = 0
        for record in records:
            value = normalize_value(record.value, record.unit, canonical_unit)
            if value is None:
                dropped += 1
                continue
            samples.append(RawSample(timestamp=record.start, value=value))
        if dropped:
            logger.warning(
                "Dropped %d %s samples with unusable value or unit", dropped, metric.value
            )
        samples.sort(key=lambda s: s.timestamp)
        return tuple(samples)


def _apply_statistic(statistic: str, values: list[float]) -> float:
    if not values:
        return 0.0
    if statistic == "sum":
        return float(sum(values))
    if statistic == "latest":
        return float(values[-1])
    return float(sum(values) / len(values))
