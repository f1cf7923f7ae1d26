"""Tests for Prometheus metrics middleware.

Counters in the global registry cannot be reset between tests, so every
assertion is on a DELTA: read before, act, read after.
"""

from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_endpoint_label_uses_route_template(client: TestClient, token: str) -> None:
    labels = {
        "method": "POST",
        "endpoint": "/v1/experts/{staff_id}/bookings",
        "status_code": "404",
    }
    before = _get_sample("http_requests_total", labels)

    body = {
        "start": "2026-11-02T09:00:00+00:00",
        "end": "2026-11-02T09:30:00+00:00",
        "attendee_email": "parent@home.test",
    }
    client.post(f"/v1/experts/{uuid4()}/bookings", json=body, headers=auth(token))

    assert _get_sample("http_requests_total", labels) - before == 1


def test_unknown_paths_share_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get(f"/nope/{uuid4()}")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_saga_outcomes_are_counted(client: TestClient, admin_token: str) -> None:
    before = _get_sample("provisioning_saga_runs_total", {"outcome": "succeeded"})
    client.post(
        "/v1/organizations",
        json={"name": "Lincoln High", "slug": "lincoln-high"},
        headers=auth(admin_token),
    )
    assert _get_sample("provisioning_saga_runs_total", {"outcome": "succeeded"}) - before == 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "provisioning_saga_runs_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
