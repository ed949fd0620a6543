"""Apple Health export source for Uflow.

The on-device health store is not reachable from Python, so the query
contract is served from the store's own export (``export.xml``, produced by
the Health app's "Export All Health Data").  The export holds every sample the
store had at export time, so the same predicate queries the app runs against
the live store can be answered from it:

- ``Record`` elements are indexed by their ``type`` attribute
- a query returns records whose start lies in ``[start, end)``, oldest first
- records that cannot be parsed are skipped with a warning

Authorization is all-or-nothing per sample type.  By default every type
present in the export is readable; pass ``authorized_types`` to mirror a
narrower grant.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable
from xml.etree import ElementTree as ET

from src.healthsync.base import (
    AuthorizationDenied,
    ExportDecodeError,
    HealthDataSource,
    QueryFailed,
    SourceRecord,
)

logger = logging.getLogger("uflow.healthsync.apple_health")

# Category types keep their value as a string (stage / flow level names)
_CATEGORY_PREFIX = "HKCategoryTypeIdentifier"

# Date formats found in Health exports, most common first
_EXPORT_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S %z",)


def parse_export_datetime(value: str | None) -> datetime | None:
    """Parse a Health export timestamp into a timezone-aware datetime.

    Handles the export's native ``2024-03-04 08:00:00 +0100`` form as well as
    ISO-8601 strings with an offset.  Naive or unparseable values return None.
    """
    if not value:
        return None
    for fmt in _EXPORT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo is not None else None


class AppleHealthExportSource(HealthDataSource):
    """Health data source backed by an Apple Health ``export.xml``.

    The document is parsed lazily on the first query (off the event loop) and
    kept in memory for the lifetime of the source.  A document that fails to decode
    is remembered as broken and every later query raises the same error.
    """

    SOURCE_ID = "apple_health"
    DISPLAY_NAME = "Apple Health"

    def __init__(
        self,
        path: str | Path | None = None,
        xml_bytes: bytes | None = None,
        authorized_types: Iterable[str] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            path:             Location of export.xml on disk.
            xml_bytes:        Export contents already in memory (takes precedence).
            authorized_types: Sample types the user granted; None grants all.
        """
        if path is None and xml_bytes is None:
            raise ValueError("AppleHealthExportSource needs a path or xml_bytes")
        self._path = Path(path) if path is not None else None
        self._xml_bytes = xml_bytes
        self._authorized = set(authorized_types) if authorized_types is not None else None
        self._index: dict[str, list[SourceRecord]] | None = None
        self._decode_error: str | None = None
        self._starts: dict[str, list[datetime]] = {}
        self._load_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # HealthDataSource interface
    # ------------------------------------------------------------------

    async def request_authorization(self, sample_types: Iterable[str]) -> bool:
        if self._authorized is None:
            return True
        missing = [t for t in sample_types if t not in self._authorized]
        if missing:
            logger.info("Apple Health: read access not granted for %s", missing)
            return False
        return True

    async def query(
        self, sample_type: str, start: datetime, end: datetime
    ) -> list[SourceRecord]:
        if self._authorized is not None and sample_type not in self._authorized:
            raise AuthorizationDenied(f"Read access to {sample_type} not granted")

        index = await self._ensure_loaded()
        records = index.get(sample_type, [])
        starts = self._starts.get(sample_type, [])
        lo = bisect.bisect_left(starts, start)
        hi = bisect.bisect_left(starts, end)
        return records[lo:hi]

    # ------------------------------------------------------------------
    # Export parsing
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> dict[str, list[SourceRecord]]:
        if self._index is not None:
            return self._index
        async with self._load_lock:
            # A document that failed to decode is not parsed again
            if self._decode_error is not None:
                raise ExportDecodeError(self._decode_error)
            if self._index is None:
                data = self._xml_bytes
                if data is None:
                    try:
                        data = await asyncio.to_thread(self._path.read_bytes)
                    except OSError as exc:
                        raise QueryFailed(f"Cannot read Health export {self._path}: {exc}") from exc
                try:
                    index = await asyncio.to_thread(self.parse_export, data)
                except ExportDecodeError as exc:
                    self._decode_error = str(exc)
                    raise
                self._starts = {t: [r.start for r in recs] for t, recs in index.items()}
                self._index = index
        return self._index

    def parse_export(self, xml_bytes: bytes) -> dict[str, list[SourceRecord]]:
        """Parse a full Apple Health XML export into per-type record lists.

        Args:
            xml_bytes: Contents of export.xml.

        Returns:
            Dict of sample type -> records sorted by start.

        Raises:
            ExportDecodeError: If the document is not valid XML.
        """
        try:
            root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise ExportDecodeError(f"Invalid Apple Health XML: {exc}") from exc

        index: dict[str, list[SourceRecord]] = {}
        skipped = 0

        for element in root.iter("Record"):
            record = self._parse_record(element)
            if record is None:
                skipped += 1
                continue
            index.setdefault(element.get("type", ""), []).append(record)

        for records in index.values():
            records.sort(key=lambda r: r.start)

        if skipped:
            logger.warning("Apple Health XML: skipped %d malformed records", skipped)
        logger.info(
            "Apple Health XML: indexed %d records across %d types",
            sum(len(r) for r in index.values()), len(index),
        )
        return index

    def _parse_record(self, element: ET.Element) -> SourceRecord | None:
        rec_type = element.get("type", "")
        start = parse_export_datetime(element.get("startDate"))
        end = parse_export_datetime(element.get("endDate")) or start
        raw_value = element.get("value")
        if not rec_type or start is None or raw_value is None:
            return None

        if rec_type.startswith(_CATEGORY_PREFIX):
            value: float | str = raw_value
        else:
            number = self._safe_float(raw_value)
            if number is None:
                return None
            value = number

        return SourceRecord(start=start, end=end, value=value, unit=element.get("unit"))
