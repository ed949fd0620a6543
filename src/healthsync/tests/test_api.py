"""Tests for the HTTP surface — health, sync and dashboard routes."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from src.dependencies import get_dashboard
from src.healthsync.dashboard import DashboardService
from src.healthsync.sources.memory import InMemoryHealthSource
from src.healthsync.sync.driver import DaySequencedSyncDriver
from src.healthsync.sync.uploader import AccountCredentials, HealthDataUploader
from src.healthsync.tests.conftest import (
    HEART_RATE,
    TEST_DATE,
    TEST_TOKEN,
    TEST_TZ,
    TEST_USER_ID,
    local,
    point,
)
from src.main import create_app


def _driver(source, sync_config, credentials: AccountCredentials) -> DaySequencedSyncDriver:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"saved": True})

    uploader = HealthDataUploader(
        "https://api.example.test/api",
        credentials,
        config=sync_config.upload,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return DaySequencedSyncDriver(source, uploader, TEST_TZ, sync_config)


@pytest.fixture
def source() -> InMemoryHealthSource:
    source = InMemoryHealthSource()
    source.add(HEART_RATE, [point(local(TEST_DATE, 8), 62, "count/min")])
    return source


@pytest.fixture
def client(source, sync_config) -> TestClient:
    app = create_app()
    app.state.source = source
    app.state.driver = _driver(
        source, sync_config, AccountCredentials(token=TEST_TOKEN, user_id=TEST_USER_ID)
    )
    return TestClient(app)


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] in ("healthy", "degraded")
    assert "version" in body


def test_sync_range(client: TestClient) -> None:
    response = client.post(
        "/api/v1/sync",
        json={
            "start": local(TEST_DATE, 0).isoformat(),
            "end": local(TEST_DATE, 23).isoformat(),
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["days_processed"] == 1
    assert body["counts"]["heartRateData"]["succeeded"] == 1


def test_sync_rejects_half_open_range(client: TestClient) -> None:
    response = client.post("/api/v1/sync", json={"start": local(TEST_DATE, 0).isoformat()})
    assert response.status_code == 422


def test_sync_rejects_naive_bounds(client: TestClient) -> None:
    response = client.post(
        "/api/v1/sync",
        json={"start": "2024-03-04T00:00:00", "end": "2024-03-05T00:00:00+00:00"},
    )
    assert response.status_code == 422


def test_sync_without_credentials_is_401(source, sync_config) -> None:
    app = create_app()
    app.state.source = source
    app.state.driver = _driver(source, sync_config, AccountCredentials())
    response = TestClient(app).post("/api/v1/sync")
    assert response.status_code == 401


def test_dashboard(client: TestClient) -> None:
    response = client.get("/api/v1/dashboard")
    assert response.status_code == 200
    body = response.json()
    assert {m["metric_type"] for m in body["metrics"]} >= {"stepsData", "heartRateData"}
    assert "sleep" in body


def test_dashboard_metric_by_wire_name(client: TestClient) -> None:
    response = client.get("/api/v1/dashboard/heartRateData")
    assert response.status_code == 200
    assert response.json()["metric"] == "heart_rate"


def test_dashboard_unknown_metric_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/dashboard/bloodPressure").status_code == 404


def test_dashboard_untracked_metric_is_404(source, steps_only_config) -> None:
    app = create_app()
    app.dependency_overrides[get_dashboard] = lambda: DashboardService(
        source, TEST_TZ, steps_only_config
    )
    client = TestClient(app)
    assert client.get("/api/v1/dashboard/heartRateData").status_code == 404
    assert client.get("/api/v1/dashboard/steps").status_code == 200
    assert client.get("/api/v1/sleep").json()["records"] == []


def test_sleep_days_bounds(client: TestClient) -> None:
    assert client.get("/api/v1/sleep", params={"days": 3}).status_code == 200
    assert client.get("/api/v1/sleep", params={"days": 0}).status_code == 422
