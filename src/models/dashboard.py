"""Pydantic models for dashboard and sleep responses."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from src.healthsync.base import DailySleepRecord
from src.healthsync.dashboard import MetricSummary, SleepSummary
from src.models.base import UflowBase


class TrendPoint(UflowBase):
    date: date
    value: float


class MetricSummaryRead(UflowBase):
    metric: str
    metric_type: str
    latest: float | None = None
    change: str
    trend: list[TrendPoint] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: MetricSummary) -> "MetricSummaryRead":
        return cls(
            metric=summary.metric.value,
            metric_type=summary.metric.wire_name,
            latest=summary.latest,
            change=summary.change,
            trend=[TrendPoint(date=d, value=v) for d, v in summary.trend],
        )


class SleepRecordRead(UflowBase):
    date: date
    sleep_start: datetime
    wake_up: datetime
    hours: float

    @classmethod
    def from_record(cls, record: DailySleepRecord) -> "SleepRecordRead":
        return cls(
            date=record.date,
            sleep_start=record.sleep_start,
            wake_up=record.wake_up,
            hours=round(record.hours, 2),
        )


class SleepSummaryRead(UflowBase):
    latest: SleepRecordRead | None = None
    latest_hours: float | None = None
    records: list[SleepRecordRead] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: SleepSummary) -> "SleepSummaryRead":
        return cls(
            latest=SleepRecordRead.from_record(summary.latest) if summary.latest else None,
            latest_hours=summary.latest_hours,
            records=[SleepRecordRead.from_record(r) for r in summary.records],
        )


class DashboardRead(UflowBase):
    metrics: list[MetricSummaryRead] = Field(default_factory=list)
    sleep: SleepSummaryRead
