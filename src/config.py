"""Application configuration loaded from environment variables."""

from datetime import timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Uflow Health Sync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Account service ---
    api_base_url: str = "http://localhost:8080/api"
    api_token: str | None = None  # bearer token from the login flow; never logged
    api_user_id: str | None = None
    http_timeout_seconds: float = 30.0

    # --- Health data ---
    timezone: str = "UTC"  # IANA name; day buckets and upload offsets use it
    health_source: str = "apple_health"  # apple_health | memory
    health_export_path: str = "export.xml"

    # --- Background sync ---
    background_sync_enabled: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def tz(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
