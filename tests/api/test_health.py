from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from http_monitor.api.health import create_health_router, dependency_states
from http_monitor.core.metrics import MonitorMetrics
from http_monitor.dependency.checker import DependencyState


def test_health_returns_ok_without_dependencies(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "initialized": True, "dependencies": {}}


def test_health_reports_published_dependency_states(
    client: TestClient, monitor: MonitorMetrics
) -> None:
    monitor.set_dependency_state("database", DependencyState.UP)
    monitor.set_dependency_state("cache", DependencyState.DOWN)

    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    # Degraded is still a 200; the verdict is in the body.
    assert data["status"] == "degraded"
    assert data["dependencies"] == {"database": "UP", "cache": "DOWN"}


def test_health_recovers_when_dependency_comes_back(
    client: TestClient, monitor: MonitorMetrics
) -> None:
    monitor.set_dependency_state("cache", DependencyState.DOWN)
    assert client.get("/health").json()["status"] == "degraded"

    monitor.set_dependency_state("cache", DependencyState.UP)
    assert client.get("/health").json()["status"] == "ok"


def test_health_before_init(monitor: MonitorMetrics) -> None:
    app = FastAPI()
    app.include_router(create_health_router(monitor))

    resp = TestClient(app).get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "initialized": False, "dependencies": {}}


def test_dependency_states_reads_registry(monitor: MonitorMetrics) -> None:
    monitor.init(collect_runtime_metrics=False)
    assert dependency_states(monitor) == {}

    monitor.set_dependency_state("queue", DependencyState.UP)
    assert dependency_states(monitor) == {"queue": DependencyState.UP}
