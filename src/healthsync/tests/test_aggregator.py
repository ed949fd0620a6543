"""Tests for the sample aggregator — unit normalization, fail-open fetches, day buckets."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.healthsync.aggregator import (
    FetchStatus,
    SampleAggregator,
    normalize_value,
)
from src.healthsync.base import MetricKind, QueryFailed, RawSample
from src.healthsync.sources.memory import InMemoryHealthSource
from src.healthsync.tests.conftest import (
    EXERCISE,
    HEART_RATE,
    HRV,
    MENSTRUAL,
    STEPS,
    TEST_DATE,
    TEST_TZ,
    WRIST_TEMP,
    local,
    point,
)


# ---------------------------------------------------------------------------
# Unit normalization
# ---------------------------------------------------------------------------


class TestNormalizeValue:
    def test_identity(self) -> None:
        assert normalize_value(62, "count/min", "count/min") == 62.0

    def test_missing_unit_taken_as_canonical(self) -> None:
        assert normalize_value(48, None, "ms") == 48.0

    def test_seconds_to_milliseconds(self) -> None:
        assert normalize_value(0.048, "s", "ms") == pytest.approx(48.0)

    def test_fahrenheit_to_celsius(self) -> None:
        assert normalize_value(98.6, "degF", "degC") == pytest.approx(37.0)

    def test_beats_per_second_to_per_minute(self) -> None:
        assert normalize_value(1.1, "count/s", "count/min") == pytest.approx(66.0)

    def test_exercise_seconds_to_minutes(self) -> None:
        assert normalize_value(1800, "s", "min") == 30.0

    def test_unknown_unit_returns_none(self) -> None:
        assert normalize_value(5, "furlong", "ms") is None

    def test_menstrual_flow_name(self) -> None:
        assert normalize_value("HKCategoryValueMenstrualFlowMedium", None, "level") == 3.0

    def test_non_numeric_string_returns_none(self) -> None:
        assert normalize_value("lots", "count", "count") is None


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class TestFetch:
    @pytest.mark.asyncio
    async def test_ok_fetch_is_sorted_and_normalized(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(HRV, [
            point(local(TEST_DATE, 7), 0.052, "s"),
            point(local(TEST_DATE, 3), 45, "ms"),
        ])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.HRV, TEST_DATE)

        assert fetch.status is FetchStatus.OK
        assert fetch.ok
        assert [s.value for s in fetch.samples] == pytest.approx([45.0, 52.0])
        assert fetch.samples[0].timestamp < fetch.samples[1].timestamp

    @pytest.mark.asyncio
    async def test_empty_fetch(self, empty_source, sync_config) -> None:
        aggregator = SampleAggregator(empty_source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.STEPS, TEST_DATE)
        assert fetch.status is FetchStatus.EMPTY
        assert fetch.samples == ()

    @pytest.mark.asyncio
    async def test_unauthorized_is_empty_but_distinguishable(self, sync_config) -> None:
        source = InMemoryHealthSource(denied_types=[HEART_RATE])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.HEART_RATE, TEST_DATE)
        assert fetch.status is FetchStatus.UNAUTHORIZED
        assert fetch.samples == ()
        assert fetch.error

    @pytest.mark.asyncio
    async def test_query_failure_is_swallowed(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.fail(WRIST_TEMP, QueryFailed("store unavailable"))
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.WRIST_TEMPERATURE, TEST_DATE)
        assert fetch.status is FetchStatus.FAILED
        assert fetch.error == "store unavailable"

    @pytest.mark.asyncio
    async def test_unknown_units_dropped_rest_kept(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(HEART_RATE, [
            point(local(TEST_DATE, 8), 62, "count/min"),
            point(local(TEST_DATE, 9), 3, "bogus"),
        ])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.HEART_RATE, TEST_DATE)
        assert [s.value for s in fetch.samples] == [62.0]

    @pytest.mark.asyncio
    async def test_day_bounds_are_local_midnights(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(STEPS, [
            point(local(TEST_DATE, 0, 0), 10, "count"),
            point(local(TEST_DATE, 23, 59), 20, "count"),
            point(local(TEST_DATE + timedelta(days=1), 0, 0), 40, "count"),
        ])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.STEPS, TEST_DATE)
        assert [s.value for s in fetch.samples] == [10.0, 20.0]

    @pytest.mark.asyncio
    async def test_menstrual_flow_category_values(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(MENSTRUAL, [point(local(TEST_DATE, 7), "HKCategoryValueMenstrualFlowLight")])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        fetch = await aggregator.fetch_day(MetricKind.MENSTRUATION, TEST_DATE)
        assert [s.value for s in fetch.samples] == [2.0]

    @pytest.mark.asyncio
    async def test_iter_samples_yields_lookback(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(HEART_RATE, [
            point(local(TEST_DATE, 8) - timedelta(days=3), 58, "count/min"),
            point(local(TEST_DATE, 8) - timedelta(days=1), 60, "count/min"),
            point(local(TEST_DATE, 8), 62, "count/min"),
        ])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        values = [
            s.value
            async for s in aggregator.iter_samples(MetricKind.HEART_RATE, 2, local(TEST_DATE, 9))
        ]
        assert values == [60.0, 62.0]


# ---------------------------------------------------------------------------
# Day buckets and statistics
# ---------------------------------------------------------------------------


class TestDailyStatistics:
    def test_by_day_uses_local_calendar(self, empty_source, sync_config) -> None:
        aggregator = SampleAggregator(empty_source, TEST_TZ, sync_config)
        # 23:30 UTC on the 3rd is 00:30 local on the 4th
        sample = RawSample(timestamp=datetime(2024, 3, 3, 23, 30, tzinfo=timezone.utc), value=1.0)
        assert list(aggregator.by_day([sample])) == [TEST_DATE]

    @pytest.mark.asyncio
    async def test_sum_statistic_with_empty_days(self, sync_config) -> None:
        source = InMemoryHealthSource()
        source.add(EXERCISE, [
            point(local(TEST_DATE, 7), 20, "min"),
            point(local(TEST_DATE, 18), 15, "min"),
            point(local(TEST_DATE - timedelta(days=2), 18), 30, "min"),
        ])
        aggregator = SampleAggregator(source, TEST_TZ, sync_config)
        stats = await aggregator.daily_statistics(
            MetricKind.EXERCISE_MINUTES, 3, local(TEST_DATE, 20)
        )
        assert stats == [
            (TEST_DATE - timedelta(days=2), 30.0),
            (TEST_DATE - timedelta(days=1), 0.0),
            (TEST_DATE, 35.0),
        ]

    @pytest.mark.asyncio
    async def test_average_statistic(self, populated_source, sync_config) -> None:
        aggregator = SampleAggregator(populated_source, TEST_TZ, sync_config)
        stats = await aggregator.daily_statistics(MetricKind.HEART_RATE, 1, local(TEST_DATE, 20))
        assert stats == [(TEST_DATE, 68.5)]
