"""Sleep session reconstruction: turn raw stage intervals into one record per night.

The health store reports sleep as fragmented per-stage micro-intervals.  A
night is rebuilt in two steps:

1. ``merge_sessions`` folds consecutive asleep-stage intervals into sessions,
   closing a session only when an awake / in-bed interval is seen.
2. ``select_daily_record`` picks the first session starting between 20:00 and
   12:00 as the sleep start, and the end of the last session ending before
   12:00 as the wake-up.

Each day is queried over a fixed window, 20:00 the previous day to 12:00 the
day itself.  Window and hour rules are a fixed business rule for "one night".
Naps outside the window are invisible and a session ending after noon never
yields a wake-up.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable

from src.healthsync.base import (
    AuthorizationDenied,
    DailySleepRecord,
    HealthDataError,
    HealthDataSource,
    MetricKind,
    SleepInterval,
    SleepSession,
    SleepStage,
    SourceRecord,
)
from src.healthsync.config_loader import SyncConfig, get_sync_config

logger = logging.getLogger("uflow.healthsync.sleep_reconstructor")

# Fixed fetch window: 20:00 previous day → 12:00 current day (16 hours)
WINDOW_START_HOUR = 20
WINDOW_END_HOUR = 12


def fetch_window(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return the local (start, end) query window for the night ending on ``day``."""
    previous = day - timedelta(days=1)
    start = datetime.combine(previous, time(WINDOW_START_HOUR), tzinfo=tz)
    end = datetime.combine(day, time(WINDOW_END_HOUR), tzinfo=tz)
    return start, end


def _starts_in_night(hour: int) -> bool:
    """True for hours in [20:00, 24:00) ∪ [00:00, 12:00)."""
    return hour >= WINDOW_START_HOUR or hour < WINDOW_END_HOUR


def intervals_from_records(records: Iterable[SourceRecord]) -> list[SleepInterval]:
    """Convert source records into SleepIntervals.

    Records with an unknown stage or with ``start >= end`` are skipped.
    """
    intervals: list[SleepInterval] = []
    skipped = 0
    for record in records:
        stage = SleepStage.parse(record.value)
        if stage is None or record.start >= record.end:
            skipped += 1
            continue
        intervals.append(SleepInterval(start=record.start, end=record.end, stage=stage))
    if skipped:
        logger.debug("Skipped %d unusable sleep records", skipped)
    return intervals


def merge_sessions(intervals: Iterable[SleepInterval]) -> list[SleepSession]:
    """Merge asleep-stage intervals into maximal sessions.

    Algorithm:
        1. Sort intervals by start (then end).
        2. An asleep interval opens a session if none is open, and always
           extends the open session's end.
        3. A non-asleep interval closes the open session.
        4. A session still open at the end is emitted as well.

    Gaps between asleep intervals do not split a session; only an explicit
    awake / in-bed interval does.  The end only ever grows: an interval nested
    inside the open session never pulls the end back to its own, earlier end,
    unlike a plain "last interval wins" assignment.

    Args:
        intervals: Raw sleep intervals in any order.

    Returns:
        Sessions ordered by start.
    """
    sessions: list[SleepSession] = []
    open_start: datetime | None = None
    open_end: datetime | None = None

    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if interval.stage.is_asleep:
            if open_start is None:
                open_start = interval.start
                open_end = interval.end
            else:
                open_end = max(open_end, interval.end)
        elif open_start is not None:
            sessions.append(SleepSession(start=open_start, end=open_end))
            open_start = open_end = None

    if open_start is not None:
        sessions.append(SleepSession(start=open_start, end=open_end))

    return sessions


def select_daily_record(
    day: date, sessions: Iterable[SleepSession], tz: tzinfo
) -> DailySleepRecord | None:
    """Pick the canonical sleep start and wake-up for ``day``.

    The sleep start is the start of the first session whose local start hour
    is in [20, 24) ∪ [0, 12).  The wake-up is the end of the last session whose
    local end hour is before 12.  Both must exist or no record is produced.
    """
    sleep_start: datetime | None = None
    wake_up: datetime | None = None

    for session in sorted(sessions, key=lambda s: s.start):
        start_hour = session.start.astimezone(tz).hour
        end_hour = session.end.astimezone(tz).hour

        if sleep_start is None and _starts_in_night(start_hour):
            sleep_start = session.start
        if end_hour < WINDOW_END_HOUR:
            wake_up = session.end

    if sleep_start is None or wake_up is None:
        return None
    return DailySleepRecord(date=day, sleep_start=sleep_start, wake_up=wake_up)


def latest_with_fallback(
    records: Iterable[DailySleepRecord], day: date
) -> DailySleepRecord | None:
    """Return the record for ``day``, else the most recent earlier record."""
    best: DailySleepRecord | None = None
    for record in records:
        if record.date > day:
            continue
        if best is None or record.date > best.date:
            best = record
    return best


class SleepReconstructor:
    """Fetch and reconstruct daily sleep records from a health data source.

    Usage::

        reconstructor = SleepReconstructor(source, tz)
        record = await reconstructor.reconstruct_day(date(2024, 3, 4))
    """

    def __init__(
        self,
        source: HealthDataSource,
        tz: tzinfo,
        config: SyncConfig | None = None,
    ) -> None:
        self._source = source
        self._tz = tz
        sleep_cfg = (config or get_sync_config()).metrics.get(MetricKind.SLEEP)
        # None when sleep is not configured or disabled; every night is then empty
        self._sample_type = sleep_cfg.source_type if sleep_cfg and sleep_cfg.enabled else None

    async def fetch_intervals(self, day: date) -> list[SleepInterval]:
        """Query the fixed window for ``day``.  Fail-open: errors yield []."""
        if self._sample_type is None:
            return []
        start, end = fetch_window(day, self._tz)
        try:
            records = await self._source.query(self._sample_type, start, end)
        except AuthorizationDenied as exc:
            logger.info("No read access for sleep analysis: %s", exc)
            return []
        except HealthDataError as exc:
            logger.warning("Sleep query failed for %s: %s", day.isoformat(), exc)
            return []
        return intervals_from_records(records)

    async def reconstruct_day(self, day: date) -> DailySleepRecord | None:
        intervals = await self.fetch_intervals(day)
        if not intervals:
            logger.debug("No sleep intervals for %s", day.isoformat())
            return None
        sessions = merge_sessions(intervals)
        record = select_daily_record(day, sessions, self._tz)
        if record is None:
            logger.debug(
                "No qualifying sleep record for %s (%d sessions)", day.isoformat(), len(sessions)
            )
        return record

    async def recent_records(self, days: int, reference: datetime) -> list[DailySleepRecord]:
        """Records for the ``days`` local days ending on ``reference``'s day, oldest first."""
        last_day = reference.astimezone(self._tz).date()
        records: list[DailySleepRecord] = []
        for offset in range(days - 1, -1, -1):
            record = await self.reconstruct_day(last_day - timedelta(days=offset))
            if record is not None:
                records.append(record)
        return records
