"""Prometheus metrics endpoint.

Prometheus calls this endpoint every N seconds to collect the current
metric values.  It returns plain text in Prometheus exposition format,
NOT JSON:

  # HELP request_seconds records in a histogram the number of http requests ...
  # TYPE request_seconds histogram
  request_seconds_bucket{type="http",status="200",method="GET",addr="/api/users",...,le="0.1"} 3.0

POST is accepted as well as GET; some scrapers and proxies send it.

SECURITY NOTE: restrict access to /metrics in production (network
policy, separate port).  Metric data reveals internal paths, request
rates and error patterns.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from http_monitor.core.metrics import MONITOR_METRICS, MonitorMetrics


def create_metrics_router(metrics: MonitorMetrics = MONITOR_METRICS) -> APIRouter:
    router = APIRouter(tags=["observability"])

    @router.api_route("/metrics", methods=["GET", "POST"], include_in_schema=False)
    async def scrape() -> Response:
        """Expose all registered metrics in text exposition format."""
        return Response(
            content=generate_latest(metrics.registry),
            media_type=CONTENT_TYPE_LATEST,
            status_code=200,
        )

    return router
