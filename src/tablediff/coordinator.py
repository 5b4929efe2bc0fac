"""
Thread-affinity coordinator.

Some native drivers (the Access ODBC/ACE engine in particular) crash or
corrupt state when one database is touched from several threads, or when
calls arrive from arbitrary pool threads. The coordinator owns a small fixed
set of worker threads, each draining its own queue in order:
- A connection key is pinned round-robin to one worker on first use
- Every later call with that key runs on the same worker, sequentially
- Different keys (source vs target database) proceed in parallel
- The caller blocks until its call finishes; exceptions re-raise in the caller
"""

import itertools
import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from prometheus_client import Gauge

from utils.metrics import get_or_create_metric

logger = logging.getLogger(__name__)

T = TypeVar("T")

COORDINATOR_QUEUE_DEPTH = get_or_create_metric(
    lambda: Gauge(
        "tablediff_coordinator_queue_depth",
        "Calls waiting on a thread-affinity worker",
        ["worker"],
    ),
    "tablediff_coordinator_queue_depth",
)

_STOP = object()


class _Worker:
    """One dedicated thread consuming a FIFO of calls."""

    def __init__(self, name: str):
        self.name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._thread.start()

    @property
    def ident(self) -> int | None:
        return self._thread.ident

    def is_current(self) -> bool:
        return threading.get_ident() == self._thread.ident

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            COORDINATOR_QUEUE_DEPTH.labels(worker=self.name).set(self._queue.qsize())
            if item is _STOP:
                break
            future, func, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(func(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)

    def submit(self, func: Callable[..., T], *args, **kwargs) -> "Future[T]":
        future: Future = Future()
        self._queue.put((future, func, args, kwargs))
        COORDINATOR_QUEUE_DEPTH.labels(worker=self.name).set(self._queue.qsize())
        return future

    def run(self, func: Callable[..., T], *args, **kwargs) -> T:
        # Re-entrant calls from the worker itself would deadlock on the queue
        if self.is_current():
            return func(*args, **kwargs)
        return self.submit(func, *args, **kwargs).result()

    def stop(self, wait: bool = True) -> None:
        self._queue.put(_STOP)
        if wait and not self.is_current():
            self._thread.join()


class ThreadAffinityCoordinator:
    """
    Pins each connection key to one dedicated worker thread.

    A pin is kept for the coordinator's lifetime, since a driver connection
    opened on a worker must keep being used there. Keys are connection
    identities, so the map holds one small entry per distinct connection the
    process has touched.

    Args:
        worker_count: Number of worker threads (default: 2, one per side)
        name_prefix: Thread name prefix for diagnostics
    """

    def __init__(self, worker_count: int = 2, name_prefix: str = "tablediff-affinity"):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._workers = [_Worker(f"{name_prefix}-{i}") for i in range(worker_count)]
        self._assignments: dict[str, int] = {}
        self._next = itertools.count()
        self._lock = threading.Lock()
        self._closed = False

        logger.debug(f"ThreadAffinityCoordinator started with {worker_count} workers")

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def worker_index(self, key: str) -> int:
        """Worker assigned to a key, assigning the next one round-robin on first use."""
        if not key or not key.strip():
            return 0
        with self._lock:
            index = self._assignments.get(key)
            if index is None:
                index = next(self._next) % len(self._workers)
                self._assignments[key] = index
                logger.debug(f"Pinned '{key}' to worker {index}")
            return index

    def run(self, key: str, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``func`` on the worker pinned to ``key`` and return its result.

        Raises:
            RuntimeError: If the coordinator has been shut down
            Exception: Whatever ``func`` raised, re-raised in the caller
        """
        if self._closed:
            raise RuntimeError("ThreadAffinityCoordinator is shut down")
        worker = self._workers[self.worker_index(key)]
        return worker.run(func, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        """Stop all workers after they drain their queues."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for worker in self._workers:
            worker.stop(wait=wait)
        logger.debug("ThreadAffinityCoordinator shut down")

    def __enter__(self) -> "ThreadAffinityCoordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


_default_coordinator: ThreadAffinityCoordinator | None = None
_default_lock = threading.Lock()


def default_coordinator() -> ThreadAffinityCoordinator:
    """Process-wide coordinator shared by adapters that need thread affinity."""
    global _default_coordinator
    with _default_lock:
        if _default_coordinator is None:
            _default_coordinator = ThreadAffinityCoordinator()
        return _default_coordinator
