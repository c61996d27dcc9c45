"""Path label cardinality control.

Raw URL paths make terrible label values: ``/users/1``, ``/users/2``,
... each becomes its own time series.  Truncating to a fixed depth
folds ``/api/v1/users/123/orders/456`` into ``/api/v1/users`` (depth 3).
Exclusions drop paths such as health probes before they are measured.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


def truncate_path(path: str, depth: int) -> str:
    """Keep the first ``depth`` segments of ``path``; depth < 1 keeps all."""
    if depth < 1:
        return path
    if not path.startswith("/"):
        path = "/" + path

    # Position 0 is the leading slash; the (depth+1)-th slash ends the prefix.
    index = 0
    for _ in range(depth):
        index = path.find("/", index + 1)
        if index == -1:
            return path
    return path[:index]


def is_excluded(path: str, context_prefix: str, exclusions: Iterable[str]) -> bool:
    """True if ``path``, minus ``context_prefix``, starts with any exclusion."""
    if context_prefix and path.startswith(context_prefix):
        path = path[len(context_prefix):]
    for exclusion in exclusions:
        if path.startswith(exclusion):
            logger.debug("Path %r matches exclusion %r", path, exclusion)
            return True
    return False
