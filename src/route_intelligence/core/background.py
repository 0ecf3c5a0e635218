"""Background processing for bookkeeping that must stay off the request path.

Two primitives live here:
- BackgroundDispatcher: a bounded task queue drained by a single consumer thread.
  When the queue is full the oldest pending task is dropped.
- PeriodicWorker: a daemon thread that runs a callback at a fixed interval until
  stopped, used for snapshots and experiment analysis.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .logger import get_logger

logger = get_logger("core.background")


@dataclass
class BackgroundTask:
    """A unit of deferred work."""

    func: Callable[..., Any]
    args: tuple[Any, ...] = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    name: str = field(default="")
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not callable(self.func):
            raise ValueError("Background task func must be callable")
        if not self.name:
            self.name = getattr(self.func, "__qualname__", repr(self.func))

    def run(self) -> Any:
        return self.func(*self.args, **self.kwargs)


class BackgroundDispatcher:
    """Bounded queue with a dedicated consumer thread.

    Producers never block: ``submit`` appends and returns. The consumer runs tasks
    sequentially; a failing task is logged and the consumer moves on. When the
    dispatcher is disabled or not started, tasks run inline in the caller's thread
    with the same error isolation.
    """

    def __init__(
        self,
        name: str = "engine",
        max_queue_size: int = 10000,
        enabled: bool = True,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            name: Name used for the consumer thread and log records
            max_queue_size: Pending tasks kept before the oldest are dropped
            enabled: When False every task runs inline
        """
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be positive")

        self.name = name
        self.max_queue_size = max_queue_size
        self.enabled = enabled

        self._queue: deque[BackgroundTask] = deque()
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None
        self._stopping = False
        self._in_flight = 0

        self._stats = {
            "total_submitted": 0,
            "total_processed": 0,
            "total_failed": 0,
            "total_dropped": 0,
            "total_inline": 0,
        }

        logger.debug(
            "BackgroundDispatcher %s initialized (max_queue_size=%d, enabled=%s)",
            name,
            max_queue_size,
            enabled,
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the consumer thread. Calling it twice is a no-op."""
        if not self.enabled or self.is_running:
            return

        with self._cond:
            self._stopping = False

        self._thread = threading.Thread(
            target=self._consume, daemon=True, name=f"BackgroundDispatcher-{self.name}"
        )
        self._thread.start()
        logger.info("Background dispatcher %s started", self.name)

    def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        """Queue a task for the consumer.

        Args:
            func: Callable to run
            *args: Positional arguments for the callable
            **kwargs: Keyword arguments for the callable

        Returns:
            True if the task was queued, False if it ran inline
        """
        task = BackgroundTask(func=func, args=args, kwargs=kwargs)

        with self._cond:
            self._stats["total_submitted"] += 1
            # once stop() begins the consumer may exit at any moment
            queued = self.is_running and not self._stopping
            if queued:
                if len(self._queue) >= self.max_queue_size:
                    dropped = self._queue.popleft()
                    self._stats["total_dropped"] += 1
                    logger.warning(
                        "Background queue %s full (%d), dropped oldest task %s",
                        self.name,
                        self.max_queue_size,
                        dropped.name,
                    )
                self._queue.append(task)
                self._cond.notify()
            else:
                self._stats["total_inline"] += 1

        if not queued:
            self._run_task(task)
        return queued

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued task has been processed.

        Args:
            timeout: Maximum seconds to wait (None waits forever)

        Returns:
            True if the queue drained within the timeout
        """
        if not self.is_running:
            return not self._queue

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._queue or self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Drain the queue and stop the consumer thread."""
        if self._thread is None:
            return

        with self._cond:
            self._stopping = True
            self._cond.notify_all()

        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning(
                "Background dispatcher %s did not stop within %.1fs (%d pending)",
                self.name,
                timeout,
                len(self._queue),
            )
        else:
            logger.info("Background dispatcher %s stopped", self.name)
        self._thread = None

    def clear(self) -> int:
        """Discard pending tasks.

        Returns:
            Number of tasks discarded
        """
        with self._cond:
            count = len(self._queue)
            self._queue.clear()
            self._cond.notify_all()
        if count:
            logger.warning("Background queue %s cleared: %d tasks removed", self.name, count)
        return count

    def get_stats(self) -> dict[str, Any]:
        """Get dispatcher statistics."""
        with self._cond:
            stats: dict[str, Any] = dict(self._stats)
            stats["current_size"] = len(self._queue)
        stats["running"] = self.is_running
        return stats

    def _consume(self) -> None:
        while True:
            with self._cond:
                while not self._queue and not self._stopping:
                    self._cond.wait()
                if not self._queue and self._stopping:
                    self._cond.notify_all()
                    return
                task = self._queue.popleft()
                self._in_flight += 1

            try:
                self._run_task(task)
            finally:
                with self._cond:
                    self._in_flight -= 1
                    if not self._queue and not self._in_flight:
                        self._cond.notify_all()

    def _run_task(self, task: BackgroundTask) -> None:
        try:
            task.run()
        except Exception as exc:
            with self._cond:
                self._stats["total_failed"] += 1
            logger.error("Background task %s failed: %s", task.name, exc, exc_info=True)
        else:
            with self._cond:
                self._stats["total_processed"] += 1

    def __len__(self) -> int:
        return len(self._queue)

    def __repr__(self) -> str:
        return (
            f"<BackgroundDispatcher name={self.name}, size={len(self._queue)}, "
            f"processed={self._stats['total_processed']}, "
            f"dropped={self._stats['total_dropped']}>"
        )


class PeriodicWorker:
    """Runs a callback every ``interval`` seconds on a daemon thread."""

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        logger.debug("Started periodic worker %s with interval %.1fs", self.name, self.interval)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.callback()
                self.runs += 1
            except Exception as e:
                logger.error("Periodic worker %s error: %s", self.name, e, exc_info=True)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug("Stopped periodic worker %s", self.name)
