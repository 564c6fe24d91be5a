"""
Off-thread work and delayed callbacks for asynchronous processors.

GenericExecutor runs units of work on a thread pool so that processors doing
I/O never block the thread driving a document through its pipeline.
Scheduler runs callbacks after a delay and hands back a cancellable handle.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Set

logger = logging.getLogger(__name__)


class ScheduledHandle:
    """
    Cancellable token for a delayed callback.

    Cancelling before the callback fires guarantees it never runs. Cancelling
    afterwards is a no-op.
    """

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._cancelled = False
        self._fired = False
        self._timer: Optional[threading.Timer] = None

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._fired = True
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled callback raised")

    def cancel(self) -> bool:
        """
        Cancel the callback.

        Returns:
            True if this call prevented the callback from running
        """
        with self._lock:
            if self._cancelled or self._fired:
                return False
            self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired


class Scheduler:
    """Runs callbacks after a delay on daemon timer threads."""

    def __init__(self):
        self._handles: Set[ScheduledHandle] = set()
        self._lock = threading.Lock()
        self._closed = False

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledHandle:
        """
        Run ``callback`` after ``delay`` seconds.

        Args:
            delay: Delay in seconds (negative values are treated as zero)
            callback: Zero-argument callable

        Returns:
            A handle that can cancel the callback before it fires
        """
        handle = ScheduledHandle(max(0.0, delay), callback)

        def run():
            with self._lock:
                self._handles.discard(handle)
            handle._fire()

        timer = threading.Timer(handle.delay, run)
        timer.daemon = True
        handle._timer = timer
        with self._lock:
            if self._closed:
                raise RuntimeError("scheduler is shut down")
            self._handles.add(handle)
        timer.start()
        return handle

    def shutdown(self) -> None:
        """Cancel every pending callback."""
        with self._lock:
            self._closed = True
            pending = list(self._handles)
            self._handles.clear()
        for handle in pending:
            handle.cancel()
        if pending:
            logger.info(f"Scheduler shut down, cancelled {len(pending)} pending callbacks")


class GenericExecutor:
    """Thread pool for work that must not run on the sequencing thread."""

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "ingest-generic"):
        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(max_workers=max_workers,
                                        thread_name_prefix=thread_name_prefix)
        logger.debug(f"Initialized GenericExecutor with {max_workers} workers")

    def submit(self, fn: Callable[[], None]) -> Future:
        future = self._pool.submit(fn)
        future.add_done_callback(_log_unhandled)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def _log_unhandled(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Unhandled error in generic executor task: {error!r}")
