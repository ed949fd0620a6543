"""In-memory health data source.

Holds records in a dict keyed by sample type.  Used for development runs
without a Health export and throughout the test-suite, where failures can be
injected per sample type to exercise the aggregator's fail-open paths.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from src.healthsync.base import (
    AuthorizationDenied,
    HealthDataSource,
    SourceRecord,
)

logger = logging.getLogger("uflow.healthsync.memory")


class InMemoryHealthSource(HealthDataSource):
    """Dictionary-backed source.

    Usage::

        source = InMemoryHealthSource()
        source.add("HKQuantityTypeIdentifierHeartRate", records)
        source.fail("HKQuantityTypeIdentifierStepCount", QueryFailed("boom"))
    """

    SOURCE_ID = "memory"
    DISPLAY_NAME = "In-memory store"

    def __init__(
        self,
        records: dict[str, list[SourceRecord]] | None = None,
        denied_types: Iterable[str] = (),
    ) -> None:
        self._records: dict[str, list[SourceRecord]] = {}
        self._denied = set(denied_types)
        self._failures: dict[str, Exception] = {}
        self.queries: list[tuple[str, datetime, datetime]] = []
        for sample_type, recs in (records or {}).items():
            self.add(sample_type, recs)

    def add(self, sample_type: str, records: Iterable[SourceRecord]) -> None:
        bucket = self._records.setdefault(sample_type, [])
        bucket.extend(records)
        bucket.sort(key=lambda r: r.start)

    def deny(self, sample_type: str) -> None:
        self._denied.add(sample_type)

    def fail(self, sample_type: str, exc: Exception) -> None:
        """Make every query for ``sample_type`` raise ``exc``."""
        logger.debug("Injected failure for %s: %r", sample_type, exc)
        self._failures[sample_type] = exc

    async def request_authorization(self, sample_types: Iterable[str]) -> bool:
        return not any(t in self._denied for t in sample_types)

    async def query(
        self, sample_type: str, start: datetime, end: datetime
    ) -> list[SourceRecord]:
        self.queries.append((sample_type, start, end))
        if sample_type in self._denied:
            raise AuthorizationDenied(f"Read access to {sample_type} not granted")
        if sample_type in self._failures:
            raise self._failures[sample_type]
        return [r for r in self._records.get(sample_type, []) if start <= r.start < end]
