"""Pydantic models for sync requests and reports."""

from __future__ import annotations

from datetime import date

from pydantic import AwareDatetime, Field, model_validator

from src.models.base import UflowBase


class SyncRequest(UflowBase):
    """Range to walk; both bounds default to the configured lookback window.

    Bounds must carry a UTC offset so days bucket in the configured timezone.
    """

    start: AwareDatetime | None = None
    end: AwareDatetime | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "SyncRequest":
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class MetricCountsRead(UflowBase):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class SyncReportRead(UflowBase):
    success: bool
    start_day: date
    end_day: date
    days_processed: int
    attempted: int
    succeeded: int
    failed: int
    counts: dict[str, MetricCountsRead] = Field(default_factory=dict)
    failures: list[str] = Field(default_factory=list)
    aborted: bool = False
    abort_reason: str | None = None
    unauthorized: list[str] = Field(default_factory=list)
