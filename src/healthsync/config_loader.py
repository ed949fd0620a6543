"""Load, validate, and hot-reload the Uflow sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit, no restart required.

Usage::

    from src.healthsync.config_loader import get_sync_config

    config = get_sync_config()
    hr = config.metric(MetricKind.HEART_RATE)
    hr.source_type                       # 'HKQuantityTypeIdentifierHeartRate'
    config.upload.max_attempts           # 3
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from src.healthsync.base import MetricKind

logger = logging.getLogger("uflow.healthsync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

_STATISTICS = ("sum", "average", "latest")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class MetricConfig:
    """How one metric kind is read from the health store."""

    kind: MetricKind
    source_type: str
    unit: str
    statistic: str
    enabled: bool = True


@dataclass
class UploadConfig:
    """Remote upload endpoint settings."""

    endpoint: str
    max_attempts: int
    retry_backoff_ms: int
    timeout_seconds: float


@dataclass
class ScheduleConfig:
    """Background refresh settings."""

    background_interval_minutes: int
    time_budget_seconds: float


@dataclass
class DashboardConfig:
    trend_days: int
    latest_fallback_days: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:       Config schema version string.
        metrics:       MetricKind -> MetricConfig.
        lookback_days: Days walked by a default sync, today included.
        upload:        Remote endpoint settings.
        schedule:      Background refresh settings.
        dashboard:     Dashboard summary settings.
    """

    version: str
    metrics: dict[MetricKind, MetricConfig]
    lookback_days: int
    upload: UploadConfig
    schedule: ScheduleConfig
    dashboard: DashboardConfig
    _raw: dict = field(default_factory=dict, repr=False)

    def metric(self, kind: MetricKind) -> MetricConfig:
        """Return the config for a metric kind.

        Raises:
            KeyError: If the kind is not configured.
        """
        return self.metrics[kind]

    @property
    def tracked_metrics(self) -> list[MetricKind]:
        """Enabled metric kinds in declaration order."""
        return [k for k, m in self.metrics.items() if m.enabled]

    @property
    def quantity_metrics(self) -> list[MetricKind]:
        """Enabled metric kinds read as plain samples (everything but sleep)."""
        return [k for k in self.tracked_metrics if k is not MetricKind.SLEEP]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Collects every problem before raising so one edit can fix them all.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Metrics ──
    metrics_raw = raw.get("metrics") or {}
    if not metrics_raw:
        errors.append("'metrics' section is missing or empty")

    metrics: dict[MetricKind, MetricConfig] = {}
    for name, cfg in metrics_raw.items():
        try:
            kind = MetricKind(name)
        except ValueError:
            errors.append(f"metrics.{name} is not a known metric kind")
            continue
        if not isinstance(cfg, dict):
            errors.append(f"metrics.{name} must be a mapping")
            continue
        source_type = cfg.get("source_type")
        if not source_type:
            errors.append(f"Missing required key 'source_type' in section 'metrics.{name}'")
            continue
        statistic = cfg.get("statistic", "average")
        if statistic not in _STATISTICS:
            errors.append(
                f"metrics.{name}.statistic must be one of {_STATISTICS}, got {statistic!r}"
            )
        metrics[kind] = MetricConfig(
            kind=kind,
            source_type=str(source_type),
            unit=str(cfg.get("unit", "")),
            statistic=statistic,
            enabled=bool(cfg.get("enabled", True)),
        )

    # ── Sync window ──
    sync_raw = raw.get("sync") or {}
    lookback_days = _positive_int(sync_raw, "lookback_days", 7, "sync", errors)

    # ── Upload ──
    up_raw = raw.get("upload") or {}
    upload = UploadConfig(
        endpoint=str(up_raw.get("endpoint", "healthdata/save")).strip("/"),
        max_attempts=_positive_int(up_raw, "max_attempts", 3, "upload", errors),
        retry_backoff_ms=int(_number(up_raw, "retry_backoff_ms", 500, "upload", errors, minimum=0)),
        timeout_seconds=_number(up_raw, "timeout_seconds", 30, "upload", errors),
    )

    # ── Schedule ──
    sch_raw = raw.get("schedule") or {}
    schedule = ScheduleConfig(
        background_interval_minutes=_positive_int(
            sch_raw, "background_interval_minutes", 15, "schedule", errors
        ),
        time_budget_seconds=_number(sch_raw, "time_budget_seconds", 25, "schedule", errors),
    )

    # ── Dashboard ──
    db_raw = raw.get("dashboard") or {}
    dashboard = DashboardConfig(
        trend_days=_positive_int(db_raw, "trend_days", 7, "dashboard", errors),
        latest_fallback_days=_positive_int(
            db_raw, "latest_fallback_days", 7, "dashboard", errors
        ),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        metrics=metrics,
        lookback_days=lookback_days,
        upload=upload,
        schedule=schedule,
        dashboard=dashboard,
        _raw=raw,
    )


def _positive_int(
    section: dict, key: str, default: int, name: str, errors: list[str]
) -> int:
    value = section.get(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(f"{name}.{key} must be an integer, got {value!r}")
        return default
    if number < 1:
        errors.append(f"{name}.{key} must be at least 1, got {number}")
    return number


def _number(
    section: dict,
    key: str,
    default: float,
    name: str,
    errors: list[str],
    minimum: float | None = None,
) -> float:
    """Read a numeric key; must be positive unless ``minimum`` is given."""
    value = section.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors.append(f"{name}.{key} must be a number, got {value!r}")
        return float(default)
    if minimum is None and number <= 0:
        errors.append(f"{name}.{key} must be positive, got {number:g}")
    elif minimum is not None and number < minimum:
        errors.append(f"{name}.{key} must be at least {minimum:g}, got {number:g}")
    return number


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
