"""Health endpoint backed by the dependency checkers.

The checkers already run on their own schedule and publish into the
``dependency_up`` gauge.  Rather than probing every dependency again on
each call, /health reads the last published values back out of the
registry.  A slow database therefore cannot make /health slow, and
the endpoint reports exactly what Prometheus sees.

Returns 200 even when degraded: the ``status`` field carries the
verdict.  A 503 here would get the pod restarted by a liveness probe
for what may be a downstream outage.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from http_monitor.core.metrics import DEPENDENCY_UP_METRIC_NAME, MONITOR_METRICS, MonitorMetrics
from http_monitor.dependency.checker import DependencyState


class HealthResponse(BaseModel):
    status: str
    initialized: bool
    dependencies: dict[str, str]


def dependency_states(metrics: MonitorMetrics) -> dict[str, DependencyState]:
    """Last published state per dependency name."""
    states: dict[str, DependencyState] = {}
    for metric in metrics.registry.collect():
        for sample in metric.samples:
            if sample.name != DEPENDENCY_UP_METRIC_NAME:
                continue
            states[sample.labels["name"]] = DependencyState(int(sample.value))
    return states


def create_health_router(metrics: MonitorMetrics = MONITOR_METRICS) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        states = dependency_states(metrics)
        overall = "ok" if all(s is DependencyState.UP for s in states.values()) else "degraded"
        return HealthResponse(
            status=overall,
            initialized=metrics.is_initialized,
            dependencies={name: state.name for name, state in states.items()},
        )

    return router
