"""Dependency checkers — the health probes published as ``dependency_up``.

A checker answers one question about one external dependency (a
database, a downstream API, a queue): is it reachable right now?
The scheduler runs it periodically and the answer lands in the
``dependency_up{name="..."}`` gauge, 1 for UP and 0 for DOWN.

Checkers are owned by whoever registers them.  The scheduler only
keeps a reference and calls ``run()``; it never closes connections
or otherwise manages the checker's resources.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable


class DependencyState(enum.IntEnum):
    DOWN = 0
    UP = 1


class DependencyChecker(ABC):
    """Base class for dependency probes."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Value of the ``name`` label on ``dependency_up``."""

    @abstractmethod
    def run(self) -> DependencyState:
        """Perform the check.  May block on I/O; runs off the request path."""


class FunctionChecker(DependencyChecker):
    """Adapt a plain callable into a checker.

    The callable may return a ``DependencyState`` or a bool (True = UP).
    """

    def __init__(self, name: str, func: Callable[[], DependencyState | bool]) -> None:
        self._name = name
        self._func = func

    @property
    def name(self) -> str:
        return self._name

    def run(self) -> DependencyState:
        result = self._func()
        if isinstance(result, DependencyState):
            return result
        return DependencyState.UP if result else DependencyState.DOWN

    def __repr__(self) -> str:
        return f"FunctionChecker(name={self._name!r})"
