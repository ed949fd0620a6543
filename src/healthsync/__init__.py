"""Uflow health sync pipeline.

Reads biometric and activity samples from a device-local health data source,
rebuilds one sleep record per night, and uploads everything day by day to the
account service.

Subpackages:
    sources/ — Health data sources (Apple Health export, in-memory)
    sync/    — Day-sequenced driver, uploader, scheduler, deduplication

Core modules:
    base                — HealthDataSource ABC and canonical data models
    aggregator          — Query, unit-normalize and day-bucket samples
    sleep_reconstructor — Merge sleep-stage intervals into daily sleep records
    dashboard           — Latest values, trends and sleep summaries
    config_loader       — Load/validate/hot-reload sync_config.yaml
"""

from src.healthsync.base import (
    DailySleepRecord,
    HealthDataSource,
    MetricBatch,
    MetricKind,
    RawSample,
    SleepInterval,
    SleepStage,
    SourceRecord,
)
from src.healthsync.config_loader import SyncConfig, get_sync_config

__all__ = [
    "HealthDataSource",
    "SourceRecord",
    "RawSample",
    "SleepInterval",
    "SleepStage",
    "DailySleepRecord",
    "MetricBatch",
    "MetricKind",
    "SyncConfig",
    "get_sync_config",
]
