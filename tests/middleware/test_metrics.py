"""Tests for the Prometheus metrics middleware.

NOTE ON TESTING PROMETHEUS METRICS:
Every test gets its own CollectorRegistry and MonitorMetrics (see
conftest.py), so samples start from zero and assertions can use exact
values instead of before/after deltas.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from http_monitor.core.config import Settings
from http_monitor.core.metrics import MetricsAlreadyInitializedError, MonitorMetrics
from http_monitor.middleware.metrics import MetricsMiddleware
from tests.conftest import USER_BODY, build_app, sample


def _labels(status: str, method: str, addr: str, is_error: str = "false", message: str = "") -> dict:
    return {
        "type": "http",
        "status": status,
        "method": method,
        "addr": addr,
        "isError": is_error,
        "errorMessage": message,
    }


def test_request_is_timed_and_sized_with_truncated_path(
    client: TestClient, registry: CollectorRegistry
) -> None:
    resp = client.get("/api/users/42")
    assert resp.status_code == 200
    assert len(resp.content) == 37

    labels = _labels("200", "GET", "/api/users")
    assert sample(registry, "request_seconds_count", labels) == 1
    assert sample(registry, "request_seconds_sum", labels) > 0
    assert sample(registry, "response_size_bytes_total", labels) == len(USER_BODY.encode())


def test_requests_sharing_a_truncated_path_share_a_series(
    client: TestClient, registry: CollectorRegistry
) -> None:
    for user_id in (1, 2, 3):
        client.get(f"/api/users/{user_id}")

    labels = _labels("200", "GET", "/api/users")
    assert sample(registry, "request_seconds_count", labels) == 3
    assert sample(registry, "response_size_bytes_total", labels) == 3 * 37


def test_empty_body_counts_zero_bytes(client: TestClient, registry: CollectorRegistry) -> None:
    client.post("/api/users")

    labels = _labels("201", "POST", "/api/users")
    assert sample(registry, "request_seconds_count", labels) == 1
    assert registry.get_sample_value("response_size_bytes_total", labels) == 0.0


def test_streaming_response_counts_every_chunk(
    client: TestClient, registry: CollectorRegistry
) -> None:
    resp = client.get("/api/stream")
    assert resp.content == b"abcdefghij"

    labels = _labels("200", "GET", "/api/stream")
    assert sample(registry, "response_size_bytes_total", labels) == 10


def test_error_status_is_flagged_with_sanitized_message(
    client: TestClient, registry: CollectorRegistry
) -> None:
    resp = client.get("/api/missing")
    assert resp.status_code == 404

    labels = _labels("404", "GET", "/api/missing", "true", "User 42 notfound try again")
    assert sample(registry, "request_seconds_count", labels) == 1
    assert sample(registry, "response_size_bytes_total", labels) == len(resp.content)


def test_handler_exception_is_recorded_and_propagated(
    client: TestClient, registry: CollectorRegistry
) -> None:
    with pytest.raises(RuntimeError, match="handler exploded"):
        client.get("/api/boom")

    labels = _labels("500", "GET", "/api/boom", "true")
    assert sample(registry, "request_seconds_count", labels) == 1
    assert registry.get_sample_value("response_size_bytes_total", labels) == 0.0


def test_excluded_path_is_not_instrumented(
    client: TestClient, registry: CollectorRegistry
) -> None:
    resp = client.get("/health/live")
    assert resp.text == "alive"

    for metric in registry.collect():
        for s in metric.samples:
            assert s.labels.get("addr") != "/health/live"


def test_context_prefix_is_stripped_before_exclusion_matching(
    monitor: MonitorMetrics, registry: CollectorRegistry
) -> None:
    settings = Settings(
        exclusions=("/health",),
        export_runtime_metrics=False,
    )
    with TestClient(build_app(settings, monitor), root_path="/app") as client:
        client.get("/health/live")
        client.get("/api/users/7")

    addrs = {
        s.labels["addr"]
        for metric in registry.collect()
        for s in metric.samples
        if s.name == "request_seconds_count"
    }
    assert not any("/health" in addr for addr in addrs)
    assert any(addr.endswith("/api/users/7") for addr in addrs)


def test_full_path_is_kept_when_depth_is_zero(
    monitor: MonitorMetrics, registry: CollectorRegistry
) -> None:
    settings = Settings(export_runtime_metrics=False)
    with TestClient(build_app(settings, monitor)) as client:
        client.get("/api/users/42")

    assert sample(registry, "request_seconds_count", _labels("200", "GET", "/api/users/42")) == 1


def test_error_message_is_empty_without_configured_attribute(
    monitor: MonitorMetrics, registry: CollectorRegistry
) -> None:
    settings = Settings(path_depth=2, export_runtime_metrics=False)
    with TestClient(build_app(settings, monitor)) as client:
        client.get("/api/missing")

    assert sample(registry, "request_seconds_count", _labels("404", "GET", "/api/missing", "true")) == 1


def test_scrape_requests_are_measured_unless_excluded(
    client: TestClient, registry: CollectorRegistry
) -> None:
    client.get("/metrics")
    client.get("/metrics")

    assert sample(registry, "request_seconds_count", _labels("200", "GET", "/metrics")) == 2


def test_middleware_initializes_metrics_once(monitor: MonitorMetrics, settings: Settings) -> None:
    inner = FastAPI()
    MetricsMiddleware(inner, settings=settings, metrics=monitor)
    assert monitor.is_initialized
    assert monitor.registry.get_sample_value("application_info", {"version": "1.2.3"}) == 1.0

    with pytest.raises(MetricsAlreadyInitializedError):
        MetricsMiddleware(inner, settings=settings, metrics=monitor)
