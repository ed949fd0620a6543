"""Base classes and canonical data models for the Uflow health sync pipeline.

Every health data source must subclass HealthDataSource and return
SourceRecord lists.  The aggregator and sleep reconstructor turn those into
the canonical RawSample / SleepInterval / DailySleepRecord types, and the sync
driver ships them as MetricBatch uploads.  All of these types are immutable
once built and live for a single sync pass.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

logger = logging.getLogger("uflow.healthsync")


# ---------------------------------------------------------------------------
# Metric kinds
# ---------------------------------------------------------------------------


class MetricKind(str, enum.Enum):
    """Every metric the app reads from the health store and uploads."""

    STEPS = "steps"
    HEART_RATE = "heart_rate"
    RESTING_HEART_RATE = "resting_heart_rate"
    HRV = "hrv"
    WRIST_TEMPERATURE = "wrist_temperature"
    EXERCISE_MINUTES = "exercise_minutes"
    MENSTRUATION = "menstruation"
    SLEEP = "sleep"

    @property
    def wire_name(self) -> str:
        """The ``metricType`` string the backend expects."""
        return _WIRE_NAMES[self]

    @classmethod
    def from_wire_name(cls, name: str) -> "MetricKind":
        for kind, wire in _WIRE_NAMES.items():
            if wire == name:
                return kind
        raise ValueError(f"Unknown metric type: {name!r}")


_WIRE_NAMES: dict[MetricKind, str] = {
    MetricKind.STEPS: "stepsData",
    MetricKind.HEART_RATE: "heartRateData",
    MetricKind.RESTING_HEART_RATE: "restingHeartRateData",
    MetricKind.HRV: "hrvData",
    MetricKind.WRIST_TEMPERATURE: "bodyTemperatureData",
    MetricKind.EXERCISE_MINUTES: "exerciseMinutesData",
    MetricKind.MENSTRUATION: "menstruationData",
    MetricKind.SLEEP: "sleepData",
}


class SleepStage(str, enum.Enum):
    """Sleep analysis stages reported by the health store."""

    CORE = "core"
    DEEP = "deep"
    REM = "rem"
    UNSPECIFIED = "unspecified"
    AWAKE = "awake"
    IN_BED = "in_bed"

    @property
    def is_asleep(self) -> bool:
        return self in _ASLEEP_STAGES

    @classmethod
    def parse(cls, value: object) -> "SleepStage | None":
        """Map a source stage value (HealthKit name, integer code or slug) to a stage.

        Returns None for values that are not recognized.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, (int, float)):
            return _HK_STAGE_CODES.get(int(value))
        text = str(value).strip()
        if text in _HK_STAGE_NAMES:
            return _HK_STAGE_NAMES[text]
        try:
            return cls(text.lower())
        except ValueError:
            return None


_ASLEEP_STAGES = frozenset(
    {SleepStage.CORE, SleepStage.DEEP, SleepStage.REM, SleepStage.UNSPECIFIED}
)

# HKCategoryValueSleepAnalysis names as they appear in a Health export
_HK_STAGE_NAMES: dict[str, SleepStage] = {
    "HKCategoryValueSleepAnalysisInBed": SleepStage.IN_BED,
    "HKCategoryValueSleepAnalysisAsleep": SleepStage.UNSPECIFIED,
    "HKCategoryValueSleepAnalysisAsleepUnspecified": SleepStage.UNSPECIFIED,
    "HKCategoryValueSleepAnalysisAwake": SleepStage.AWAKE,
    "HKCategoryValueSleepAnalysisAsleepCore": SleepStage.CORE,
    "HKCategoryValueSleepAnalysisAsleepDeep": SleepStage.DEEP,
    "HKCategoryValueSleepAnalysisAsleepREM": SleepStage.REM,
}

# HKCategoryValueSleepAnalysis raw values
_HK_STAGE_CODES: dict[int, SleepStage] = {
    0: SleepStage.IN_BED,
    1: SleepStage.UNSPECIFIED,
    2: SleepStage.AWAKE,
    3: SleepStage.CORE,
    4: SleepStage.DEEP,
    5: SleepStage.REM,
}


# ---------------------------------------------------------------------------
# Source-level record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceRecord:
    """One sample exactly as a health data source returned it.

    Attributes:
        start: Timezone-aware start of the sample.
        end:   Timezone-aware end of the sample (equal to start for point samples).
        value: Numeric quantity, or a category string (sleep stage, flow level).
        unit:  Unit string as reported by the source (e.g. 'count/min'), if any.
    """

    start: datetime
    end: datetime
    value: float | str
    unit: str | None = None


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawSample:
    """A unit-normalized reading.

    Attributes:
        timestamp: Timezone-aware instant the reading was captured.
        value:     Value in the canonical unit for its metric kind.
    """

    timestamp: datetime
    value: float

    def local_day(self, tz: tzinfo) -> date:
        return self.timestamp.astimezone(tz).date()


@dataclass(frozen=True)
class SleepInterval:
    """A raw sleep-stage interval.  ``start`` must be strictly before ``end``."""

    start: datetime
    end: datetime
    stage: SleepStage

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"SleepInterval start {self.start.isoformat()} must precede "
                f"end {self.end.isoformat()}"
            )


@dataclass(frozen=True)
class SleepSession:
    """A maximal merged run of asleep-stage intervals."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class DailySleepRecord:
    """Canonical sleep record for one calendar day (the wake-up day).

    Attributes:
        date:        Local calendar day the night is attributed to.
        sleep_start: Start of the first qualifying session.
        wake_up:     End of the last session that ends before noon.
    """

    date: date
    sleep_start: datetime
    wake_up: datetime

    @property
    def duration(self) -> timedelta:
        return self.wake_up - self.sleep_start

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600.0


@dataclass(frozen=True)
class MetricBatch:
    """One upload unit: a single metric kind for a single local day.

    Quantity metrics carry ``readings``; the sleep batch carries ``sleep``
    instead.  ``to_payload`` renders the exact JSON body the backend expects.
    """

    metric: MetricKind
    day: date
    tz: tzinfo
    readings: tuple[RawSample, ...] = ()
    sleep: DailySleepRecord | None = None

    @classmethod
    def from_samples(
        cls, metric: MetricKind, day: date, tz: tzinfo, samples: Iterable[RawSample]
    ) -> "MetricBatch":
        ordered = tuple(sorted(samples, key=lambda s: s.timestamp))
        return cls(metric=metric, day=day, tz=tz, readings=ordered)

    @classmethod
    def from_sleep(cls, record: DailySleepRecord, tz: tzinfo) -> "MetricBatch":
        return cls(metric=MetricKind.SLEEP, day=record.date, tz=tz, sleep=record)

    @property
    def is_empty(self) -> bool:
        return not self.readings and self.sleep is None

    def __len__(self) -> int:
        if self.sleep is not None:
            return 1
        return len(self.readings)

    def data_entry(self) -> dict:
        """Render this batch's single ``data`` entry."""
        if self.sleep is not None:
            return {
                "date": self.day.isoformat(),
                "sleepStart": local_isoformat(self.sleep.sleep_start, self.tz),
                "wakeUp": local_isoformat(self.sleep.wake_up, self.tz),
            }
        return {
            "date": self.day.isoformat(),
            "values": [
                {"timestamp": local_isoformat(r.timestamp, self.tz), "value": r.value}
                for r in self.readings
            ],
        }

    def to_payload(self, user_id: str) -> dict:
        return {
            "userId": user_id,
            "metricType": self.metric.wire_name,
            "data": [self.data_entry()],
        }


def local_isoformat(value: datetime, tz: tzinfo) -> str:
    """ISO-8601 string carrying the local UTC offset (not normalized to UTC)."""
    return value.astimezone(tz).replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HealthDataError(Exception):
    """Base class for failures raised by a health data source."""


class AuthorizationDenied(HealthDataError):
    """Read access to a sample type has not been granted."""


class QueryFailed(HealthDataError):
    """The source failed to answer a query."""


class ExportDecodeError(HealthDataError, ValueError):
    """The source payload could not be decoded at all."""


# ---------------------------------------------------------------------------
# Abstract base source
# ---------------------------------------------------------------------------


class HealthDataSource(ABC):
    """Abstract base class for all device-local health data sources.

    Each source implements this interface to give the aggregator and sleep
    reconstructor a uniform, read-only query surface.

    Subclasses must implement:
        - request_authorization()
        - query()
    """

    #: Unique slug used by the source registry.
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Source"

    @abstractmethod
    async def request_authorization(self, sample_types: Iterable[str]) -> bool:
        """Ask for read access to the given sample types.

        Authorization is all-or-nothing per type.

        Args:
            sample_types: Source-specific type identifiers.

        Returns:
            True if every requested type is readable.
        """

    @abstractmethod
    async def query(
        self, sample_type: str, start: datetime, end: datetime
    ) -> list[SourceRecord]:
        """Return every sample of ``sample_type`` whose start lies in [start, end).

        Results are sorted by start ascending.

        Raises:
            AuthorizationDenied: If the type has not been authorized.
            QueryFailed:         If the source could not answer.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
