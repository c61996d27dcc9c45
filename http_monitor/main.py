from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from http_monitor.api.health import create_health_router
from http_monitor.api.metrics_endpoint import create_metrics_router
from http_monitor.core.config import SETTINGS, Settings
from http_monitor.core.logging import setup_logging
from http_monitor.core.metrics import MONITOR_METRICS, MonitorMetrics
from http_monitor.middleware.metrics import MetricsMiddleware

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    metrics: MonitorMetrics | None = None,
) -> FastAPI:
    """Build an app with the metrics middleware, /metrics and /health.

    Applications embed the same pieces in their own FastAPI app:
    add MetricsMiddleware and include the two routers.
    """
    settings = settings if settings is not None else SETTINGS
    metrics = metrics if metrics is not None else MONITOR_METRICS

    # Configure logging before anything else runs.
    setup_logging(settings.log_level, json_format=settings.log_json)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        try:
            yield
        finally:
            # Stop the checker threads before the process exits.
            metrics.cancel_all_dependency_checkers()

    app = FastAPI(title="http-monitor", lifespan=lifespan)

    app.add_middleware(MetricsMiddleware, settings=settings, metrics=metrics)

    app.include_router(create_metrics_router(metrics))
    app.include_router(create_health_router(metrics))

    logger.info(
        "http-monitor app created  log_level=%s path_depth=%d exclusions=%s executor=%s",
        settings.log_level,
        settings.path_depth,
        ",".join(settings.exclusions) or "-",
        settings.executor,
    )
    return app


app = create_app()
