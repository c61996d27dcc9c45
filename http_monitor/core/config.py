from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from importlib import metadata
from typing import Literal

from http_monitor.core.errors import DEFAULT_ERROR_INFO_MAX_SIZE, DEFAULT_ERROR_INFO_REGEX

LogLevel = Literal["debug", "info", "warning", "error"]
ExecutorKind = Literal["timer", "pool"]

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"
_TRUTHY = ("1", "true", "yes", "on")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "")
    if not raw:
        return default
    return raw.lower() in _TRUTHY


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Everything the instrumentation filter and its app need at startup.

    Defaults match an unconfigured deployment: full-granularity paths,
    nothing excluded, runtime collectors on, default buckets.
    """

    log_level: LogLevel = "info"
    log_json: bool = False
    buckets: tuple[float, ...] = ()
    path_depth: int = 0
    exclusions: tuple[str, ...] = ()
    export_runtime_metrics: bool = True
    application_version: str = UNKNOWN_VERSION
    error_message_attribute: str | None = None
    error_info_regex: str = DEFAULT_ERROR_INFO_REGEX
    error_info_max_size: int = DEFAULT_ERROR_INFO_MAX_SIZE
    debug: bool = False
    executor: ExecutorKind = "timer"
    executor_workers: int = 5

    @property
    def has_exclusions(self) -> bool:
        return bool(self.exclusions)


def parse_buckets(raw: str | None) -> tuple[float, ...]:
    """Parse a comma-separated list of bucket boundaries.

    A non-numeric value aborts startup: a histogram with the wrong
    boundaries silently skews every latency percentile.
    """
    buckets = []
    for item in _split_csv(raw):
        try:
            buckets.append(float(item))
        except ValueError:
            raise ValueError(
                f"MONITOR_BUCKETS must be comma-separated numbers (got {item!r})"
            ) from None
    return tuple(buckets)


def parse_exclusions(raw: str | None) -> tuple[str, ...]:
    return tuple(_split_csv(raw))


def parse_path_depth(raw: str | None) -> int:
    """Parse the path depth, falling back to 0 (full path) on bad input."""
    if not raw:
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid MONITOR_PATH_DEPTH %r, using full path granularity", raw
        )
        return 0


def parse_max_size(raw: str | None) -> int:
    if not raw:
        return DEFAULT_ERROR_INFO_MAX_SIZE
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid MONITOR_ERROR_INFO_MAX_SIZE %r, using %d",
            raw,
            DEFAULT_ERROR_INFO_MAX_SIZE,
        )
        return DEFAULT_ERROR_INFO_MAX_SIZE


def resolve_application_version(explicit: str | None, distribution: str | None) -> str:
    """Pick the version label for ``application_info``.

    An explicit value wins.  Otherwise the installed version of the named
    distribution is used, and "unknown" when there is none.
    """
    if explicit:
        return explicit
    if not distribution:
        return UNKNOWN_VERSION
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        logger.debug("Distribution %r not installed, version unknown", distribution)
        return UNKNOWN_VERSION


def load_settings() -> Settings:
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    executor_raw = _getenv("MONITOR_EXECUTOR", "timer").lower()
    workers_raw = _getenv("MONITOR_EXECUTOR_WORKERS", "5")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if executor_raw not in ("timer", "pool"):
        logger.warning(
            "Unknown MONITOR_EXECUTOR %r, falling back to timer", executor_raw
        )
        executor_raw = "timer"

    try:
        executor_workers = int(workers_raw)
    except ValueError:
        raise ValueError(
            f"MONITOR_EXECUTOR_WORKERS must be an integer (got {workers_raw!r})"
        ) from None
    if executor_workers < 1:
        raise ValueError(
            f"MONITOR_EXECUTOR_WORKERS must be positive (got {executor_workers})"
        )

    version = resolve_application_version(
        _getenv("MONITOR_APPLICATION_VERSION", "") or None,
        _getenv("MONITOR_APPLICATION_NAME", "") or None,
    )

    return Settings(  # type: ignore[arg-type]
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        buckets=parse_buckets(_getenv("MONITOR_BUCKETS", "")),
        path_depth=parse_path_depth(_getenv("MONITOR_PATH_DEPTH", "")),
        exclusions=parse_exclusions(_getenv("MONITOR_EXCLUSIONS", "")),
        export_runtime_metrics=_getbool("MONITOR_EXPORT_RUNTIME_METRICS", True),
        application_version=version,
        error_message_attribute=_getenv("MONITOR_ERROR_MESSAGE", "") or None,
        error_info_regex=_getenv("MONITOR_ERROR_INFO_REGEX", "") or DEFAULT_ERROR_INFO_REGEX,
        error_info_max_size=parse_max_size(_getenv("MONITOR_ERROR_INFO_MAX_SIZE", "")),
        debug=_getbool("MONITOR_DEBUG", False),
        executor=executor_raw,
        executor_workers=executor_workers,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
