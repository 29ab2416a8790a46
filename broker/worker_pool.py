"""
Broker - Worker Pool.

============================================================
RESPONSIBILITY
============================================================
Default fixed-size pool of message-processing threads.

- Exactly N daemon threads named fqd-worker-<i>
- FIFO work queue shared by all workers
- stop() drains queued work and joins every thread
- Each worker attaches its own crash-reporter handle

============================================================
"""

import logging
import queue
import threading
from typing import Any, Callable, List, Optional

from core.exceptions import CrashReporterError, WorkerPoolError
from crash_reporting import attach_current_thread

from .base import WorkerPool


logger = logging.getLogger(__name__)

_STOP = object()


class ThreadWorkerPool(WorkerPool):
    """Thread-backed worker pool."""

    def __init__(self, name_prefix: str = "fqd-worker", join_timeout: Optional[float] = None):
        self._name_prefix = name_prefix
        self._join_timeout = join_timeout
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._processed = 0
        self._failed = 0

    @property
    def thread_count(self) -> int:
        return len(self._threads)

    @property
    def is_running(self) -> bool:
        return bool(self._threads)

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def failed(self) -> int:
        return self._failed

    def start(self, thread_count: int) -> None:
        if not isinstance(thread_count, int) or thread_count <= 0:
            raise WorkerPoolError(
                f"Worker thread count must be positive, got {thread_count!r}",
                thread_count=thread_count,
            )
        if self._threads:
            raise WorkerPoolError("Worker pool already started", thread_count=len(self._threads))

        for index in range(thread_count):
            thread = threading.Thread(
                target=self._run,
                name=f"{self._name_prefix}-{index}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as e:
                self.stop()
                raise WorkerPoolError(
                    f"Cannot start worker thread {index}: {e}",
                    thread_count=thread_count,
                    cause=e,
                ) from e
            self._threads.append(thread)

        logger.info(f"Worker pool started with {thread_count} thread(s)")

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue a unit of work."""
        if not self._threads:
            raise WorkerPoolError("Worker pool is not running")
        self._queue.put((fn, args))

    def stop(self) -> None:
        threads, self._threads = self._threads, []
        if not threads:
            return

        for _ in threads:
            self._queue.put(_STOP)
        for thread in threads:
            thread.join(self._join_timeout)
            if thread.is_alive():
                logger.warning(f"Worker {thread.name} did not stop in time")

        logger.info(
            f"Worker pool stopped | processed={self._processed} | failed={self._failed}"
        )

    def _run(self) -> None:
        name = threading.current_thread().name
        try:
            attach_current_thread()
        except CrashReporterError as e:
            logger.warning(f"{name}: running without crash reporter handle: {e}")

        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args = item
                try:
                    fn(*args)
                except Exception:
                    logger.exception(f"{name}: work item failed")
                    with self._lock:
                        self._failed += 1
                else:
                    with self._lock:
                        self._processed += 1
            finally:
                self._queue.task_done()


__all__ = ["ThreadWorkerPool"]
