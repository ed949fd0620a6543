"""Day-sequenced sync driver.

Walks a date range one local calendar day at a time.  Read access for every
tracked type is requested once before the first day.  For each day:

1. Fetch every tracked quantity metric and reconstruct the night's sleep,
   all concurrently.
2. Build one MetricBatch per metric that has data.
3. Upload the batches concurrently and wait until every upload has settled.

Day N+1 does not start until day N's uploads have all returned.  A failed
upload is logged and counted but never stops the walk; the run reports
success only if no upload failed.  Missing credentials stop the walk before
the first day, and an authentication rejection stops it after the current
day settles.  Nothing is rolled back: an abandoned day is walked again in
full on the next run.

Usage::

    driver = DaySequencedSyncDriver(source, uploader, tz)
    report = await driver.run(start, end)
    report.success      # True iff zero upload failures
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo

from src.healthsync.aggregator import SampleAggregator
from src.healthsync.base import HealthDataSource, MetricBatch, MetricKind
from src.healthsync.config_loader import SyncConfig, get_sync_config
from src.healthsync.sleep_reconstructor import SleepReconstructor
from src.healthsync.sync.dedup import UploadLedger, batch_key, payload_content_hash
from src.healthsync.sync.uploader import (
    AuthenticationError,
    HealthDataUploader,
    MissingCredentialsError,
    UploadError,
)

logger = logging.getLogger("uflow.healthsync.sync.driver")


@dataclass
class MetricCounts:
    """Upload counters for one metric kind across a run."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_json(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class UploadOutcome:
    """Result of uploading one batch.

    Attributes:
        batch:   The batch that was sent.
        ok:      True if the backend accepted it (or it was skipped as unchanged).
        skipped: True if the ledger showed the same content was already accepted.
        error:   Failure message.
        auth_rejected: True if the endpoint refused the credentials.
    """

    batch: MetricBatch
    ok: bool
    skipped: bool = False
    error: str | None = None
    auth_rejected: bool = False


@dataclass
class SyncReport:
    """Aggregate outcome of one range walk.

    Attributes:
        start_day:      First local day of the range.
        end_day:        Last local day of the range.
        days_processed: Days whose uploads fully settled.
        counts:         Per-metric upload counters.
        failures:       Human-readable failure log ('<day> <metric>: <error>').
        aborted:        True if the walk was cut short.
        abort_reason:   Why the walk was cut short.
        unauthorized:   Source types the user refused read access to.
        started_at:     UTC timestamp the run began.
        finished_at:    UTC timestamp the run ended.
    """

    start_day: date
    end_day: date
    days_processed: int = 0
    counts: dict[MetricKind, MetricCounts] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str | None = None
    unauthorized: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def attempted(self) -> int:
        return sum(c.attempted for c in self.counts.values())

    @property
    def succeeded(self) -> int:
        return sum(c.succeeded for c in self.counts.values())

    @property
    def failed(self) -> int:
        return sum(c.failed for c in self.counts.values())

    @property
    def success(self) -> bool:
        return not self.aborted and self.failed == 0

    def counts_for(self, metric: MetricKind) -> MetricCounts:
        return self.counts.setdefault(metric, MetricCounts())

    def record(self, outcome: UploadOutcome) -> None:
        counts = self.counts_for(outcome.batch.metric)
        if outcome.skipped:
            counts.skipped += 1
            return
        counts.attempted += 1
        if outcome.ok:
            counts.succeeded += 1
        else:
            counts.failed += 1
            self.failures.append(
                f"{outcome.batch.day.isoformat()} {outcome.batch.metric.wire_name}: {outcome.error}"
            )

    def abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason

    def to_json(self) -> dict:
        return {
            "success": self.success,
            "start_day": self.start_day.isoformat(),
            "end_day": self.end_day.isoformat(),
            "days_processed": self.days_processed,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "counts": {k.wire_name: c.to_json() for k, c in self.counts.items()},
            "failures": self.failures[-50:],  # keep last 50 failures
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "unauthorized": self.unauthorized,
        }


class DaySequencedSyncDriver:
    """Fetch, reconstruct and upload health data one day at a time."""

    def __init__(
        self,
        source: HealthDataSource,
        uploader: HealthDataUploader,
        tz: tzinfo,
        config: SyncConfig | None = None,
        ledger: UploadLedger | None = None,
    ) -> None:
        self._config = config or get_sync_config()
        self._source = source
        self._uploader = uploader
        self._tz = tz
        self._aggregator = SampleAggregator(source, tz, self._config)
        self._reconstructor = SleepReconstructor(source, tz, self._config)
        self._ledger = ledger if ledger is not None else UploadLedger()

    async def sync_latest(self, now: datetime | None = None) -> SyncReport:
        """Walk the configured lookback window ending today."""
        now = now or datetime.now(self._tz)
        start = now - timedelta(days=self._config.lookback_days - 1)
        return await self.run(start, now)

    async def run(self, start: datetime, end: datetime) -> SyncReport:
        """Walk every local day from ``start`` to ``end`` inclusive.

        Args:
            start: Any instant on the first day.
            end:   Any instant on the last day.

        Returns:
            SyncReport; ``success`` is True iff no upload failed.
        """
        first_day = start.astimezone(self._tz).date()
        last_day = end.astimezone(self._tz).date()
        report = SyncReport(start_day=first_day, end_day=last_day)

        try:
            user_id = self._uploader.ensure_credentials()
        except MissingCredentialsError as exc:
            logger.error("Health sync aborted before %s: %s", first_day, exc)
            report.abort(str(exc))
            report.finished_at = datetime.now(timezone.utc)
            return report

        report.unauthorized = await self.authorize()

        total_days = (last_day - first_day).days + 1
        logger.info(
            "Health sync starting: %s → %s (%d days)", first_day, last_day, max(total_days, 0)
        )

        current = first_day
        while current <= last_day:
            batches = await self.collect_day(current)
            outcomes = await self._upload_day(current, batches, user_id)
            for outcome in outcomes:
                report.record(outcome)
            report.days_processed += 1

            if any(o.auth_rejected for o in outcomes):
                logger.error(
                    "Health sync aborted after %s: endpoint rejected credentials", current
                )
                report.abort("Authentication rejected by the upload endpoint")
                break
            current += timedelta(days=1)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Health sync complete: %d days, %d/%d uploads succeeded, %d failed, success=%s",
            report.days_processed, report.succeeded, report.attempted,
            report.failed, report.success,
        )
        return report

    async def authorize(self) -> list[str]:
        """Request read access for every tracked type and return the refused ones.

        Refused types are not fatal: their queries come back empty.
        """
        types = [self._config.metric(k).source_type for k in self._config.tracked_metrics]
        if await self._source.request_authorization(types):
            return []
        refused = [t for t in types if not await self._source.request_authorization([t])]
        if refused:
            logger.warning("Read access not granted for %s", ", ".join(refused))
        return refused

    async def collect_day(self, day: date) -> list[MetricBatch]:
        """Fetch all tracked metrics for ``day`` and build the non-empty batches."""
        quantity_metrics = self._config.quantity_metrics
        fetch_all = asyncio.gather(
            *(self._aggregator.fetch_day(metric, day) for metric in quantity_metrics)
        )
        if MetricKind.SLEEP in self._config.tracked_metrics:
            fetches, sleep_record = await asyncio.gather(
                fetch_all, self._reconstructor.reconstruct_day(day)
            )
        else:
            fetches, sleep_record = await fetch_all, None

        batches = [
            MetricBatch.from_samples(fetch.metric, day, self._tz, fetch.samples)
            for fetch in fetches
            if fetch.samples
        ]
        if sleep_record is not None:
            batches.append(MetricBatch.from_sleep(sleep_record, self._tz))

        logger.debug(
            "Collected %d batches for %s: %s",
            len(batches), day, ", ".join(f"{b.metric.wire_name}={len(b)}" for b in batches),
        )
        return batches

    async def _upload_day(
        self, day: date, batches: list[MetricBatch], user_id: str
    ) -> list[UploadOutcome]:
        if not batches:
            logger.info("No health data to sync for %s", day)
            return []

        results = await asyncio.gather(
            *(self._upload_one(batch, user_id) for batch in batches),
            return_exceptions=True,
        )

        outcomes: list[UploadOutcome] = []
        for batch, result in zip(batches, results):
            if isinstance(result, Exception):
                logger.error(
                    "Unexpected error uploading %s for %s: %r", batch.metric.wire_name, day, result
                )
                outcomes.append(UploadOutcome(batch=batch, ok=False, error=repr(result)))
            else:
                outcomes.append(result)

        failed = [o.batch.metric.wire_name for o in outcomes if not o.ok]
        if failed:
            logger.warning("Sync for %s finished with failures: %s", day, ", ".join(failed))
        else:
            logger.info("Synced %d metric batches for %s", len(outcomes), day)
        return outcomes

    async def _upload_one(self, batch: MetricBatch, user_id: str) -> UploadOutcome:
        payload = batch.to_payload(user_id)
        key = batch_key(user_id, batch.metric.wire_name, batch.day)
        digest = payload_content_hash(payload)

        if self._ledger.is_current(key, digest):
            logger.debug("Skipping unchanged batch %s", key)
            return UploadOutcome(batch=batch, ok=True, skipped=True)

        try:
            await self._uploader.upload(payload, idempotency_key=key)
        except AuthenticationError as exc:
            logger.warning("Upload of %s rejected: %s", key, exc)
            return UploadOutcome(batch=batch, ok=False, error=str(exc), auth_rejected=True)
        except UploadError as exc:
            logger.warning("Upload of %s failed: %s", key, exc)
            return UploadOutcome(batch=batch, ok=False, error=str(exc))

        self._ledger.record(key, digest)
        return UploadOutcome(batch=batch, ok=True)
