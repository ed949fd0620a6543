"""Health data sync infrastructure for Uflow.

Modules:
    driver    — Day-sequenced walk: fetch, reconstruct and upload one day at a time
    uploader  — HTTP client for the remote health data endpoint (retry, auth)
    scheduler — Launch / foreground / background sync triggers with a time budget
    dedup     — Idempotency keys and the in-process upload ledger
"""
