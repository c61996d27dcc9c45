"""Prometheus metrics middleware — instruments every HTTP request.

For each request, this middleware:
  1. Truncates the path to the configured depth (label cardinality)
  2. Skips excluded paths entirely (health probes, the scrape itself)
  3. Times the request and counts the response body bytes
  4. On completion: observes ``request_seconds`` and increments
     ``response_size_bytes`` with the same label set

WHY PURE ASGI (NOT BaseHTTPMiddleware)
----------------------------------------
BaseHTTPMiddleware hands ``dispatch()`` a Response object BEFORE its
body has been streamed.  Measuring there would record the time to the
first header and a byte count of zero for every streaming response.
Wrapping the raw ``send`` callable instead sees every body chunk as it
leaves, and ``finally`` runs only after the last one.

TRY THE HANDLER, ALWAYS REPORT
--------------------------------
Reporting happens in ``finally``.  If the handler raises, the request
is still recorded (status 500 unless a response had already started)
and the exception continues to the server unchanged.
"""

from __future__ import annotations

import logging
import time

from starlette.types import ASGIApp, Receive, Scope, Send

from http_monitor.core.config import SETTINGS, Settings
from http_monitor.core.errors import is_error
from http_monitor.core.logging import enable_debug
from http_monitor.core.metrics import MONITOR_METRICS, MonitorMetrics
from http_monitor.core.paths import is_excluded, truncate_path
from http_monitor.middleware.counting import CountingSend

logger = logging.getLogger(__name__)


class MetricsMiddleware:
    """Collect Prometheus metrics for every HTTP request.

    Construction is the filter's one-time setup: it calls
    ``metrics.init()``, so each MonitorMetrics instance can back exactly
    one MetricsMiddleware.
    """

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings | None = None,
        metrics: MonitorMetrics | None = None,
    ) -> None:
        self.app = app
        self.settings = settings if settings is not None else SETTINGS
        self.metrics = metrics if metrics is not None else MONITOR_METRICS

        enable_debug(self.settings.debug)
        self.metrics.init(
            collect_runtime_metrics=self.settings.export_runtime_metrics,
            version=self.settings.application_version,
            error_info_regex=self.settings.error_info_regex,
            buckets=self.settings.buckets,
        )
        logger.debug(
            "MetricsMiddleware ready  path_depth=%d exclusions=%s error_attribute=%s",
            self.settings.path_depth,
            list(self.settings.exclusions),
            self.settings.error_message_attribute,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        raw_path: str = scope.get("path", "/")

        if self.settings.has_exclusions and is_excluded(
            raw_path, scope.get("root_path", ""), self.settings.exclusions
        ):
            await self.app(scope, receive, send)
            return

        path = truncate_path(raw_path, self.settings.path_depth)
        # Share one state dict with the app so attributes a handler sets
        # on request.state are visible here afterwards.
        scope.setdefault("state", {})
        counting_send = CountingSend(send)

        try:
            await self.app(scope, receive, counting_send)
        finally:
            elapsed = time.monotonic() - start
            self._report(scope, path, counting_send, elapsed)

    def _report(
        self, scope: Scope, path: str, counting_send: CountingSend, elapsed: float
    ) -> None:
        # A handler that raised before starting its response becomes a 500.
        status_code = counting_send.status_code if counting_send.response_started else 500
        status = str(status_code)
        scheme: str = scope.get("scheme", "http")
        method: str = scope.get("method", "GET")
        error = is_error(status_code)
        error_message = self._error_message(scope)

        self.metrics.collect_time(
            scheme, status, method, path, error, error_message, elapsed
        )
        self.metrics.collect_size(
            scheme, status, method, path, error, error_message, counting_send.byte_count
        )

        logger.debug(
            "%s %s → %s (%.1fms, %d bytes)",
            method,
            path,
            status,
            elapsed * 1000,
            counting_send.byte_count,
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 1),
                "byte_count": counting_send.byte_count,
            },
        )

    def _error_message(self, scope: Scope) -> str:
        attribute = self.settings.error_message_attribute
        if not attribute:
            return ""
        raw = scope.get("state", {}).get(attribute)
        if raw is None:
            return ""
        return self.metrics.sanitize_error_message(
            str(raw), self.settings.error_info_max_size
        )
