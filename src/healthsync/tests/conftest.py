"""Shared fixtures and sample builders for health sync tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from src.healthsync.base import SourceRecord
from src.healthsync.config_loader import SyncConfig, _validate_and_build, load_sync_config
from src.healthsync.sources.memory import InMemoryHealthSource

# Fixed +01:00 offset so local day buckets differ from UTC ones
TEST_TZ = timezone(timedelta(hours=1))
TEST_USER_ID = "u1"
TEST_TOKEN = "test-token"
TEST_DATE = date(2024, 3, 4)

STEPS = "HKQuantityTypeIdentifierStepCount"
HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
RESTING_HR = "HKQuantityTypeIdentifierRestingHeartRate"
HRV = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
WRIST_TEMP = "HKQuantityTypeIdentifierAppleSleepingWristTemperature"
EXERCISE = "HKQuantityTypeIdentifierAppleExerciseTime"
MENSTRUAL = "HKCategoryTypeIdentifierMenstrualFlow"
SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"


def local(day: date, hour: int, minute: int = 0) -> datetime:
    """A timezone-aware instant on ``day`` in TEST_TZ."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=TEST_TZ)


def point(at: datetime, value: float | str, unit: str | None = None) -> SourceRecord:
    return SourceRecord(start=at, end=at, value=value, unit=unit)


def stage(start: datetime, end: datetime, value: str) -> SourceRecord:
    return SourceRecord(start=start, end=end, value=value)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled sync config for tests."""
    return load_sync_config()


@pytest.fixture
def steps_only_config() -> SyncConfig:
    """A config that tracks step count alone and has no sleep section."""
    return _validate_and_build(
        {"metrics": {"steps": {"source_type": STEPS, "unit": "count", "statistic": "sum"}}}
    )


# ---------------------------------------------------------------------------
# Source fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def empty_source() -> InMemoryHealthSource:
    return InMemoryHealthSource()


@pytest.fixture
def night_source() -> InMemoryHealthSource:
    """One fragmented night ending on TEST_DATE: 23:10 → 07:05."""
    prev = TEST_DATE - timedelta(days=1)
    source = InMemoryHealthSource()
    source.add(
        SLEEP,
        [
            stage(local(prev, 23, 10), local(prev, 23, 55), "HKCategoryValueSleepAnalysisAsleepCore"),
            stage(local(prev, 23, 55), local(TEST_DATE, 0, 40), "HKCategoryValueSleepAnalysisAsleepDeep"),
            stage(local(TEST_DATE, 2, 0), local(TEST_DATE, 2, 10), "HKCategoryValueSleepAnalysisAsleepREM"),
            stage(local(TEST_DATE, 6, 50), local(TEST_DATE, 7, 5), "HKCategoryValueSleepAnalysisAsleepCore"),
        ],
    )
    return source


@pytest.fixture
def populated_source(night_source: InMemoryHealthSource) -> InMemoryHealthSource:
    """night_source plus a morning of quantity samples on TEST_DATE."""
    night_source.add(HEART_RATE, [
        point(local(TEST_DATE, 8, 0), 62, "count/min"),
        point(local(TEST_DATE, 12, 30), 75, "count/min"),
    ])
    night_source.add(STEPS, [
        point(local(TEST_DATE, 9, 0), 1200, "count"),
        point(local(TEST_DATE, 18, 0), 3400, "count"),
    ])
    night_source.add(HRV, [point(local(TEST_DATE, 6, 0), 0.048, "s")])
    return night_source
