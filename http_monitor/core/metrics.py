"""The metric instrument set and its one-shot lifecycle gate.

WHAT GETS MEASURED
--------------------
  request_seconds{type, status, method, addr, isError, errorMessage}
      HISTOGRAM — duration of every instrumented HTTP request.
  response_size_bytes{type, status, method, addr, isError, errorMessage}
      COUNTER — bytes written in response bodies.
  dependency_request_seconds{name, type, status, method, addr, isError, errorMessage}
      HISTOGRAM — duration of calls the application makes to its
      dependencies (reported by application code).
  dependency_up{name}
      GAUGE — 1 if the dependency's last health check was UP, else 0.
  application_info{version}
      GAUGE — always 1; the version lives in the label.  Joining on it
      in PromQL tells you which release produced a given series.

ONE-SHOT INITIALIZATION
-------------------------
Instruments are registered exactly once per process.  Label names are
fixed at registration time: if two code paths could register
``request_seconds`` with different label sets, one of them would fail
at runtime.  So ``init()`` is a one-way door — a second call raises
MetricsAlreadyInitializedError instead of quietly doing nothing.

Before ``init()`` every collect_* call is a no-op.  During startup,
traffic can reach the middleware before it has been set up; dropping
those few observations is better than failing the request.  Nothing
is buffered: an observation made before init is simply gone.

WHY A SINGLE REGISTRATION
---------------------------
All five instruments are wrapped in one collector and handed to the
registry in a single ``register()`` call.  A scrape that races with
``init()`` therefore sees either none of them or all of them, never a
half-registered surface.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Iterable, Sequence

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client.gc_collector import GCCollector
from prometheus_client.metrics_core import Metric
from prometheus_client.platform_collector import PlatformCollector
from prometheus_client.process_collector import ProcessCollector
from prometheus_client.registry import Collector

from http_monitor.core.config import SETTINGS
from http_monitor.core.errors import DEFAULT_ERROR_INFO_MAX_SIZE, DEFAULT_ERROR_INFO_REGEX, sanitize
from http_monitor.dependency.checker import DependencyChecker, DependencyState
from http_monitor.dependency.executor import (
    DependencyCheckerExecutor,
    TimerExecutor,
    create_executor,
)

logger = logging.getLogger(__name__)

REQUEST_SECONDS_METRIC_NAME = "request_seconds"
RESPONSE_SIZE_METRIC_NAME = "response_size_bytes"
DEPENDENCY_REQUEST_SECONDS_METRIC_NAME = "dependency_request_seconds"
DEPENDENCY_UP_METRIC_NAME = "dependency_up"
APPLICATION_INFO_METRIC_NAME = "application_info"

# Buckets tuned for web requests: fast (<100ms), normal (<300ms),
# slow (<1.5s), and "something is wrong" (<10.5s).
DEFAULT_BUCKETS = (0.1, 0.3, 1.5, 10.5)

REQUEST_LABELS = ("type", "status", "method", "addr", "isError", "errorMessage")
DEPENDENCY_LABELS = ("name",) + REQUEST_LABELS


class MetricsAlreadyInitializedError(RuntimeError):
    """Raised when ``MonitorMetrics.init`` is called a second time."""


class _InstrumentSet(Collector):
    """Exposes a fixed group of instruments as one registry entry."""

    def __init__(self, instruments: Sequence[Collector]) -> None:
        self._instruments = tuple(instruments)

    def collect(self) -> Iterable[Metric]:
        return itertools.chain.from_iterable(i.collect() for i in self._instruments)

    def describe(self) -> Iterable[Metric]:
        return itertools.chain.from_iterable(i.describe() for i in self._instruments)


def _flag(value: bool) -> str:
    return "true" if value else "false"


class MonitorMetrics:
    """Process-wide instrument bundle guarded by a one-shot init.

    Construct once at startup and hand the same instance to the
    middleware, the metrics endpoint and the dependency checkers.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        executor: DependencyCheckerExecutor | None = None,
    ) -> None:
        self.registry = registry if registry is not None else CollectorRegistry(auto_describe=True)
        self._executor = executor if executor is not None else TimerExecutor()
        self._init_lock = threading.Lock()
        # Event, not a bool: set() happens-before is_set() on every thread.
        self._initialized = threading.Event()
        self._error_info_regex: str = DEFAULT_ERROR_INFO_REGEX

        self.request_seconds: Histogram | None = None
        self.response_size: Counter | None = None
        self.dependency_request_seconds: Histogram | None = None
        self.dependency_up: Gauge | None = None
        self.application_info: Gauge | None = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized.is_set()

    @property
    def executor(self) -> DependencyCheckerExecutor:
        return self._executor

    def init(
        self,
        collect_runtime_metrics: bool = True,
        version: str = "unknown",
        error_info_regex: str | None = None,
        buckets: Sequence[float] | None = None,
    ) -> None:
        """Register every instrument.  Must be called exactly once."""
        with self._init_lock:
            if self._initialized.is_set():
                raise MetricsAlreadyInitializedError(
                    "MonitorMetrics has already been initialized; "
                    "init() must be executed only once"
                )
            if not buckets:
                buckets = DEFAULT_BUCKETS
            if error_info_regex:
                self._error_info_regex = error_info_regex

            request_seconds = Histogram(
                REQUEST_SECONDS_METRIC_NAME,
                "records in a histogram the number of http requests and their duration in seconds",
                REQUEST_LABELS,
                buckets=buckets,
                registry=None,
            )
            response_size = Counter(
                RESPONSE_SIZE_METRIC_NAME,
                "counts the size of each http response",
                REQUEST_LABELS,
                registry=None,
            )
            dependency_request_seconds = Histogram(
                DEPENDENCY_REQUEST_SECONDS_METRIC_NAME,
                "records in a histogram the number of requests of a dependency and their duration in seconds",
                DEPENDENCY_LABELS,
                buckets=buckets,
                registry=None,
            )
            dependency_up = Gauge(
                DEPENDENCY_UP_METRIC_NAME,
                "records if a dependency is up or down. 1 for up, 0 for down",
                ["name"],
                registry=None,
            )
            application_info = Gauge(
                APPLICATION_INFO_METRIC_NAME,
                "records static application info such as its version",
                ["version"],
                registry=None,
            )
            application_info.labels(version).set(1)

            self.registry.register(
                _InstrumentSet(
                    [
                        request_seconds,
                        response_size,
                        dependency_request_seconds,
                        dependency_up,
                        application_info,
                    ]
                )
            )
            if collect_runtime_metrics:
                ProcessCollector(registry=self.registry)
                PlatformCollector(registry=self.registry)
                GCCollector(registry=self.registry)

            self.request_seconds = request_seconds
            self.response_size = response_size
            self.dependency_request_seconds = dependency_request_seconds
            self.dependency_up = dependency_up
            self.application_info = application_info
            self._initialized.set()

        logger.info(
            "Metrics initialized  version=%s buckets=%s runtime_metrics=%s",
            version,
            list(buckets),
            "on" if collect_runtime_metrics else "off",
        )

    # ------------------------------------------------------------------
    # Collection entry points (no-ops before init)
    # ------------------------------------------------------------------

    def collect_time(
        self,
        type_: str,
        status: str,
        method: str,
        addr: str,
        is_error: bool,
        error_message: str,
        elapsed_seconds: float,
    ) -> None:
        if not self.is_initialized:
            return
        self.request_seconds.labels(  # type: ignore[union-attr]
            type_, status, method, addr, _flag(is_error), error_message
        ).observe(elapsed_seconds)

    def collect_size(
        self,
        type_: str,
        status: str,
        method: str,
        addr: str,
        is_error: bool,
        error_message: str,
        size: float,
    ) -> None:
        if not self.is_initialized:
            return
        self.response_size.labels(  # type: ignore[union-attr]
            type_, status, method, addr, _flag(is_error), error_message
        ).inc(size)

    def collect_dependency_time(
        self,
        name: str,
        type_: str,
        status: str,
        method: str,
        addr: str,
        is_error: bool,
        error_message: str,
        elapsed_seconds: float,
    ) -> None:
        if not self.is_initialized:
            return
        self.dependency_request_seconds.labels(  # type: ignore[union-attr]
            name, type_, status, method, addr, _flag(is_error), error_message
        ).observe(elapsed_seconds)

    def add_dependency_event(
        self,
        name: str,
        type_: str,
        status: str,
        method: str,
        addr: str,
        is_error: bool,
        error_message: str | None,
        elapsed_seconds: float,
    ) -> None:
        """Record one call to a dependency.

        Events with a non-positive duration come from a broken timer
        and are dropped rather than landing in the lowest bucket.
        """
        if elapsed_seconds <= 0:
            return
        self.collect_dependency_time(
            name,
            type_,
            status,
            method,
            addr,
            is_error,
            self.sanitize_error_message(error_message),
            elapsed_seconds,
        )

    def set_dependency_state(self, name: str, state: DependencyState) -> None:
        if not self.is_initialized:
            return
        self.dependency_up.labels(name).set(int(state))  # type: ignore[union-attr]

    def sanitize_error_message(
        self, raw: str | None, max_size: int = DEFAULT_ERROR_INFO_MAX_SIZE
    ) -> str:
        return sanitize(raw, self._error_info_regex, max_size)

    # ------------------------------------------------------------------
    # Dependency checkers
    # ------------------------------------------------------------------

    def add_dependency_checker(self, checker: DependencyChecker, period_seconds: float) -> None:
        """Run ``checker`` every ``period_seconds`` and publish its state."""
        self.executor.schedule(_CheckerTask(self, checker), period_seconds)

    def cancel_all_dependency_checkers(self) -> None:
        self._executor.cancel_tasks()


class _CheckerTask:
    """One scheduled run of a checker, publishing into ``dependency_up``."""

    def __init__(self, metrics: MonitorMetrics, checker: DependencyChecker) -> None:
        self._metrics = metrics
        self._checker = checker

    def __call__(self) -> None:
        if not self._metrics.is_initialized:
            # Too early: init() has not run yet.  Try again next period.
            return
        try:
            state = self._checker.run()
        except Exception:
            logger.exception("Dependency checker %r failed", self._checker.name)
            return
        self._metrics.set_dependency_state(self._checker.name, state)

    def __repr__(self) -> str:
        return f"<dependency check {self._checker.name!r}>"


# Shared by the middleware, the endpoints and any dependency checkers
# the application registers.
MONITOR_METRICS = MonitorMetrics(
    executor=create_executor(SETTINGS.executor, max_workers=SETTINGS.executor_workers)
)
