"""Fixed-delay periodic tasks on a bounded thread pool."""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from executor.core.logging import get_logger

logger = get_logger("scheduler")


@dataclass(slots=True)
class PeriodicTask:
    """``action`` runs, then the task waits ``interval`` seconds before the next run."""

    name: str
    interval: float
    action: Callable[[], object]
    initial_delay: float = 0.0


class PeriodicScheduler:
    """Runs each registered task in its own loop on a fixed-size pool.

    Delays are measured from the end of one run to the start of the next, so
    a run that overruns its interval postpones the following one instead of
    stacking up.
    """

    def __init__(self, *, max_workers: int = 4) -> None:
        self._max_workers = max_workers
        self._tasks: list[PeriodicTask] = []
        self._stop = threading.Event()
        self._pool: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._pool is not None

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks)

    def add(self, task: PeriodicTask) -> None:
        if task.interval <= 0:
            raise ValueError(f"interval must be positive: {task.name}")
        with self._lock:
            if self._pool is not None:
                raise RuntimeError("cannot add tasks to a running scheduler")
            self._tasks.append(task)

    def start(self) -> None:
        with self._lock:
            if self._pool is not None:
                return
            if len(self._tasks) > self._max_workers:
                raise ValueError(
                    f"{len(self._tasks)} tasks need at least as many workers (have {self._max_workers})"
                )
            self._stop.clear()
            self._pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="executor-scheduler")
            self._futures = [self._pool.submit(self._loop, task) for task in self._tasks]
        logger.info("Scheduler started: tasks=%s", ", ".join(task.name for task in self._tasks))

    def stop(self, *, wait: bool = True) -> None:
        with self._lock:
            pool = self._pool
            self._pool = None
            self._futures = []
        if pool is None:
            return
        self._stop.set()
        pool.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def run_once(self, name: str) -> object:
        for task in self._tasks:
            if task.name == name:
                return task.action()
        raise KeyError(name)

    def _loop(self, task: PeriodicTask) -> None:
        if task.initial_delay and self._stop.wait(task.initial_delay):
            return
        while not self._stop.is_set():
            try:
                task.action()
            except Exception:
                logger.exception("Periodic task failed: task=%s", task.name)
            if self._stop.wait(task.interval):
                return
