"""HTTP client for the remote health data endpoint.

Every metric batch is POSTed as JSON::

    {"userId": "...", "metricType": "heartRateData",
     "data": [{"date": "2024-03-04", "values": [{"timestamp": "...", "value": 62}]}]}

Any 2xx status is success.  Anything else becomes an ``UploadError`` whose
detail is the response body.  Transport errors and 5xx / 429 responses are
retried with linear backoff; a 401 is raised immediately as
``AuthenticationError`` because no later attempt can succeed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from src.healthsync.config_loader import UploadConfig, get_sync_config

logger = logging.getLogger("uflow.healthsync.sync.uploader")

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class UploadError(Exception):
    """An upload was rejected or never reached the endpoint.

    Attributes:
        status_code: HTTP status, or None for transport failures.
        detail:      Response body or transport error message.
    """

    def __init__(self, status_code: int | None, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        prefix = f"HTTP {status_code}" if status_code is not None else "transport error"
        super().__init__(f"{prefix}: {detail}")


class AuthenticationError(UploadError):
    """The endpoint rejected the account credentials."""


class MissingCredentialsError(Exception):
    """No account token or user id is available, so nothing can be uploaded."""


@dataclass(frozen=True)
class AccountCredentials:
    """Externally supplied account state; read-only for the whole process.

    Attributes:
        token:   Bearer token from the login flow.
        user_id: Account identifier echoed in every upload body.
    """

    token: str | None = None
    user_id: str | None = None

    @property
    def present(self) -> bool:
        return bool(self.token) and bool(self.user_id)


class HealthDataUploader:
    """POST metric batches to ``{base_url}/{endpoint}``.

    Usage::

        uploader = HealthDataUploader(settings.api_base_url, credentials)
        uploader.ensure_credentials()
        await uploader.upload(batch.to_payload(user_id), idempotency_key=key)
    """

    def __init__(
        self,
        base_url: str,
        credentials: AccountCredentials,
        config: UploadConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the uploader.

        Args:
            base_url:    API root, e.g. 'https://api.example.com/api'.
            credentials: Account token and user id.
            config:      Upload settings; defaults to sync_config.yaml.
            http_client: Optional pre-configured httpx client (for testing).
            sleep:       Backoff sleep, replaceable in tests.
        """
        self._config = config or get_sync_config().upload
        self._url = f"{base_url.rstrip('/')}/{self._config.endpoint}"
        self._credentials = credentials
        self._http_client = http_client
        self._sleep = sleep

    @property
    def url(self) -> str:
        return self._url

    def ensure_credentials(self) -> str:
        """Return the account user id.

        Raises:
            MissingCredentialsError: If the token or user id is missing.
        """
        if not self._credentials.token:
            raise MissingCredentialsError("No token found. User must be logged in.")
        if not self._credentials.user_id:
            raise MissingCredentialsError("No user id found for the current account.")
        return self._credentials.user_id

    async def upload(self, payload: dict, idempotency_key: str | None = None) -> None:
        """Upload one payload, retrying transient failures.

        Raises:
            MissingCredentialsError: If no credentials are configured.
            AuthenticationError:     On HTTP 401.
            UploadError:             On any other non-2xx status or transport
                                     failure once retries are exhausted.
        """
        self.ensure_credentials()
        headers = self._build_headers(idempotency_key)
        attempts = self._config.max_attempts
        metric_type = payload.get("metricType", "?")

        for attempt in range(1, attempts + 1):
            try:
                response = await self._post(payload, headers)
            except httpx.TransportError as exc:
                error = UploadError(None, str(exc) or type(exc).__name__)
            else:
                if 200 <= response.status_code < 300:
                    logger.debug("Uploaded %s (HTTP %d)", metric_type, response.status_code)
                    return
                detail = response.text or f"HTTP {response.status_code}"
                if response.status_code == 401:
                    raise AuthenticationError(401, detail)
                error = UploadError(response.status_code, detail)
                if response.status_code not in _RETRYABLE_STATUS:
                    raise error

            if attempt < attempts:
                delay = self._config.retry_backoff_ms * attempt / 1000.0
                logger.warning(
                    "Upload of %s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    metric_type, attempt, attempts, error, delay,
                )
                await self._sleep(delay)
            else:
                raise error

    def _build_headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._credentials.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _post(self, payload: dict, headers: dict[str, str]) -> httpx.Response:
        if self._http_client:
            return await self._http_client.post(self._url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            return await client.post(self._url, json=payload, headers=headers)
