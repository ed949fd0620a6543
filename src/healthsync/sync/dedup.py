"""Deduplication for health data uploads.

An interrupted background run leaves a day half uploaded, and the next run
walks that day again from scratch.  The backend's handling of re-submitted
batches is not documented, so two guards are applied on this side:

    - every upload carries an ``Idempotency-Key`` built from
      (userId, metricType, date), so a server that honours the header can
      upsert instead of duplicating
    - the in-process UploadLedger remembers the content hash of every batch
      the backend accepted, and identical batches are not sent again
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import date

logger = logging.getLogger("uflow.healthsync.sync.dedup")


def batch_key(user_id: str, metric_type: str, day: date) -> str:
    """Generate the dedup key for one metric batch.

    Args:
        user_id:     Account identifier.
        metric_type: Wire metric name (e.g. 'heartRateData').
        day:         Local calendar day of the batch.

    Returns:
        Colon-separated dedup key string.
    """
    return f"{user_id}:{metric_type}:{day.isoformat()}"


def payload_content_hash(payload: dict) -> str:
    """Compute a content hash for detecting identical payloads.

    Args:
        payload: The JSON body about to be uploaded.

    Returns:
        SHA-256 hex digest of the canonicalized JSON.
    """
    # Sort keys for deterministic serialization
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


class UploadLedger:
    """In-process record of batches the backend has accepted.

    Not a replacement for server-side dedup.  It only prevents resending an
    unchanged batch within one process lifetime (e.g. a foreground refresh
    right after a background run).

    Usage::

        ledger = UploadLedger()
        if not ledger.is_current(key, digest):
            await uploader.upload(payload)
            ledger.record(key, digest)
    """

    def __init__(self) -> None:
        self._accepted: dict[str, str] = {}

    def is_current(self, key: str, digest: str) -> bool:
        """Return True if this exact content was already accepted under ``key``."""
        return self._accepted.get(key) == digest

    def record(self, key: str, digest: str) -> None:
        self._accepted[key] = digest

    def forget(self, key: str) -> None:
        self._accepted.pop(key, None)

    def clear(self) -> None:
        """Reset the ledger."""
        self._accepted.clear()

    def __len__(self) -> int:
        return len(self._accepted)
