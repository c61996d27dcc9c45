from __future__ import annotations

import sys
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from http_monitor.api.health import create_health_router
from http_monitor.api.metrics_endpoint import create_metrics_router
from http_monitor.core.config import Settings
from http_monitor.core.metrics import MonitorMetrics
from http_monitor.dependency.executor import TimerExecutor
from http_monitor.middleware.metrics import MetricsMiddleware

# Ensure repo root is on sys.path so `import http_monitor` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# 37 ASCII bytes.
USER_BODY = "user 42: name=Ada, email=ada@exa.org\n"

ERROR_ATTRIBUTE = "error_info"


def build_app(settings: Settings, metrics: MonitorMetrics) -> FastAPI:
    """A small app with one route per behavior the middleware must handle."""
    app = FastAPI()
    app.add_middleware(MetricsMiddleware, settings=settings, metrics=metrics)
    app.include_router(create_metrics_router(metrics))
    app.include_router(create_health_router(metrics))

    @app.get("/api/users/{user_id}")
    async def get_user(user_id: int) -> PlainTextResponse:
        return PlainTextResponse(USER_BODY)

    @app.post("/api/users")
    async def create_user() -> PlainTextResponse:
        return PlainTextResponse("", status_code=201)

    @app.get("/api/missing")
    async def missing(request: Request) -> None:
        setattr(request.state, ERROR_ATTRIBUTE, 'User "<42>" not_found; try {again}!')
        raise HTTPException(status_code=404, detail="nope")

    @app.get("/api/boom")
    async def boom() -> None:
        raise RuntimeError("handler exploded")

    @app.get("/api/stream")
    async def stream() -> StreamingResponse:
        async def chunks() -> AsyncIterator[bytes]:
            for chunk in (b"abc", b"defgh", b"", b"ij"):
                yield chunk

        return StreamingResponse(chunks(), media_type="application/octet-stream")

    @app.get("/health/live")
    async def live() -> PlainTextResponse:
        return PlainTextResponse("alive")

    return app


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def monitor(registry: CollectorRegistry) -> Iterator[MonitorMetrics]:
    """A fresh, uninitialized MonitorMetrics on its own registry."""
    metrics = MonitorMetrics(registry=registry, executor=TimerExecutor(start_delay=0.0))
    yield metrics
    metrics.cancel_all_dependency_checkers()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        path_depth=2,
        exclusions=("/health/live",),
        export_runtime_metrics=False,
        application_version="1.2.3",
        error_message_attribute=ERROR_ATTRIBUTE,
    )


@pytest.fixture
def client(settings: Settings, monitor: MonitorMetrics) -> Iterator[TestClient]:
    with TestClient(build_app(settings, monitor)) as test_client:
        yield test_client


def sample(
    registry: CollectorRegistry, name: str, labels: dict[str, str] | None = None
) -> float:
    """Read a metric sample's current value; 0.0 when absent."""
    value = registry.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0
