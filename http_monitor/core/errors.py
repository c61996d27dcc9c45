"""Error classification and label sanitization.

WHY SANITIZE LABEL VALUES
---------------------------
Every distinct label value creates a new time series in Prometheus.
An error message copied straight from an exception can carry user input
(ids, emails, SQL fragments), which means:

  - unbounded cardinality: one series per distinct message
  - label-breaking characters: quotes, newlines and braces end up in
    the exposition text
  - data leakage: whatever the user typed is now in the metric store

So before a free-text message becomes a label value it is stripped
down to a whitelist of characters and truncated to a fixed size.
The regex names the characters to REMOVE; the default removes all
but letters, digits, space, period and comma.

Python's ``re`` has no ``\\p{L}`` class.  ``\\w`` is Unicode-aware in
Python 3 and covers letters and digits of any script plus the
underscore, so the default pattern strips ``_`` explicitly.  It is an
approximation of "printable letters and digits", not an exact match
for any other regex dialect.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_ERROR_INFO_REGEX = r"[^\w .,]|_"
DEFAULT_ERROR_INFO_MAX_SIZE = 50


def is_error(status: int) -> bool:
    """Anything outside 2xx/3xx counts as an error (1xx included)."""
    return status < 200 or status >= 400


def sanitize(
    raw: str | None,
    regex: str | re.Pattern[str] | None = DEFAULT_ERROR_INFO_REGEX,
    max_size: int = DEFAULT_ERROR_INFO_MAX_SIZE,
) -> str:
    """Return a bounded, label-safe version of ``raw``.

    Never raises: a bad pattern or a non-string value yields "" so that
    sanitization can never break request handling.
    """
    if raw is None or max_size <= 0:
        return ""
    try:
        pattern = re.compile(regex if regex is not None else DEFAULT_ERROR_INFO_REGEX)
        cleaned = pattern.sub("", raw)
    except (re.error, TypeError) as exc:
        logger.debug("Error message sanitization failed: %s", exc)
        return ""
    return cleaned[:max_size]
