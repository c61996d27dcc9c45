"""Periodic executors for dependency checkers.

TWO STRATEGIES, ONE CONTRACT
------------------------------
Both executors expose ``schedule(task, period_seconds)`` and
``cancel_tasks()``.  They differ in where the task body runs:

  TimerExecutor — one daemon thread pops due tasks and runs them
    itself, one after another.  Cheap (a single thread) but a slow
    checker delays every other checker behind it.

  PoolExecutor — the same daemon thread only DISPATCHES due tasks to
    a bounded ThreadPoolExecutor.  Checkers run concurrently, up to
    ``max_workers`` at a time.

FIXED-RATE SCHEDULING
-----------------------
A task registered at t=0 with period 30s is due at t=10 (start
delay), 40, 70, 100, ...  Each next run is computed from the previous
SCHEDULED time, not from when the run finished, so a 5s check does
not drift the schedule by 5s per run.

A task is re-queued only after its current run finishes.  If a run
overruns its period, the next run starts late (immediately after)
rather than concurrently: the same checker never runs in parallel
with itself, even on the pool.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent import futures
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

START_DELAY_SECONDS = 10.0
SHUTDOWN_TIMEOUT_SECONDS = 10.0
DEFAULT_POOL_SIZE = 5

Task = Callable[[], None]


@dataclass(order=True)
class _Entry:
    next_run: float
    seq: int
    task: Task = field(compare=False)
    period: float = field(compare=False)


class DependencyCheckerExecutor(ABC):
    """Runs tasks repeatedly at a fixed rate until cancelled."""

    @abstractmethod
    def schedule(self, task: Task, period_seconds: float) -> None:
        ...

    @abstractmethod
    def cancel_tasks(self) -> None:
        """Stop future runs and release the executor's threads."""


class _DispatchingExecutor(DependencyCheckerExecutor):
    """Fixed-rate dispatch loop shared by both strategies.

    The queue is a heap ordered by next run time.  The dispatcher
    thread is started lazily on the first ``schedule()`` call so that
    constructing an executor at import time costs nothing.
    """

    _thread_name = "dependency-checker"

    def __init__(self, start_delay: float = START_DELAY_SECONDS) -> None:
        self._start_delay = start_delay
        self._queue: list[_Entry] = []
        self._cond = threading.Condition()
        self._seq = itertools.count()
        self._thread: threading.Thread | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def schedule(self, task: Task, period_seconds: float) -> None:
        if period_seconds <= 0:
            raise ValueError(f"period must be positive (got {period_seconds!r})")
        with self._cond:
            if self._cancelled:
                raise RuntimeError("cannot schedule new tasks after cancel_tasks()")
            entry = _Entry(
                next_run=time.monotonic() + self._start_delay,
                seq=next(self._seq),
                task=task,
                period=period_seconds,
            )
            heapq.heappush(self._queue, entry)
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._loop, name=self._thread_name, daemon=True
                )
                self._thread.start()
            self._cond.notify()
        logger.debug(
            "Scheduled %r every %.3fs (first run in %.3fs)",
            task,
            period_seconds,
            self._start_delay,
        )

    def _loop(self) -> None:
        while True:
            with self._cond:
                entry = self._next_due()
            if entry is None:
                return
            self._dispatch(entry)

    def _next_due(self) -> _Entry | None:
        # Caller holds self._cond.
        while not self._cancelled:
            if not self._queue:
                self._cond.wait()
                continue
            delay = self._queue[0].next_run - time.monotonic()
            if delay <= 0:
                return heapq.heappop(self._queue)
            self._cond.wait(delay)
        return None

    def _reschedule(self, entry: _Entry) -> None:
        with self._cond:
            if self._cancelled:
                return
            entry.next_run += entry.period
            heapq.heappush(self._queue, entry)
            self._cond.notify()

    @staticmethod
    def _run(entry: _Entry) -> None:
        try:
            entry.task()
        except Exception:
            logger.exception("Scheduled task %r failed", entry.task)

    @abstractmethod
    def _dispatch(self, entry: _Entry) -> None:
        ...


class TimerExecutor(_DispatchingExecutor):
    """Single background thread; tasks run serially."""

    def _dispatch(self, entry: _Entry) -> None:
        self._run(entry)
        self._reschedule(entry)

    def cancel_tasks(self) -> None:
        with self._cond:
            self._cancelled = True
            self._queue.clear()
            self._cond.notify_all()
        logger.debug("Timer executor cancelled")

    def __repr__(self) -> str:
        return f"TimerExecutor(pending={len(self._queue)})"


class PoolExecutor(_DispatchingExecutor):
    """Bounded worker pool; different tasks run concurrently."""

    _thread_name = "dependency-checker-dispatch"

    def __init__(
        self,
        max_workers: int = DEFAULT_POOL_SIZE,
        start_delay: float = START_DELAY_SECONDS,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(start_delay)
        self._max_workers = max_workers
        self._shutdown_timeout = shutdown_timeout
        self._pool = futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dependency-checker"
        )
        self._in_flight: set[futures.Future[None]] = set()

    def _dispatch(self, entry: _Entry) -> None:
        # Submitting under the lock: cancel_tasks() either sees this future
        # in _in_flight or this call sees the cancelled flag.
        with self._cond:
            if self._cancelled:
                return
            future = self._pool.submit(self._run, entry)
            self._in_flight.add(future)
        future.add_done_callback(lambda f: self._finished(f, entry))

    def _finished(self, future: futures.Future[None], entry: _Entry) -> None:
        with self._cond:
            self._in_flight.discard(future)
        self._reschedule(entry)

    def cancel_tasks(self) -> None:
        with self._cond:
            self._cancelled = True
            self._queue.clear()
            in_flight = list(self._in_flight)
            self._cond.notify_all()
        self._pool.shutdown(wait=False, cancel_futures=True)
        _, not_done = futures.wait(in_flight, timeout=self._shutdown_timeout)
        if not_done:
            logger.warning(
                "%d dependency check(s) still running after %.1fs shutdown wait",
                len(not_done),
                self._shutdown_timeout,
            )

    def __repr__(self) -> str:
        return f"PoolExecutor(max_workers={self._max_workers})"


def create_executor(
    kind: str = "timer",
    *,
    max_workers: int = DEFAULT_POOL_SIZE,
    start_delay: float = START_DELAY_SECONDS,
) -> DependencyCheckerExecutor:
    """Build the executor named by the ``executor`` setting."""
    if kind == "pool":
        return PoolExecutor(max_workers=max_workers, start_delay=start_delay)
    if kind != "timer":
        logger.warning("Unknown executor %r, using timer", kind)
    return TimerExecutor(start_delay=start_delay)
