"""
Per-role worker thread.

Each device role gets one worker thread that executes submitted jobs one at
a time, in submission order. Callers receive a Future and wait on it with a
timeout, so a blocked device call never blocks the caller beyond that bound.
"""

import logging
import threading
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from queue import Empty, Full, Queue
from typing import Any, Callable, Optional

from polyfield_core.errors import DeviceConnectionError, DeviceTimeoutError
from polyfield_core.metrics import get_metrics

logger = logging.getLogger(__name__)

# Bounded so a stalled device cannot accumulate unbounded work
MAX_PENDING_JOBS = 16


class DeviceWorker:
    """Sequential job runner for one device role."""

    def __init__(self, role: str, max_pending: int = MAX_PENDING_JOBS):
        self.role = role
        self._jobs: Queue = Queue(maxsize=max_pending)
        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"device-worker-{self.role}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Worker started for role '%s'", self.role)

    def stop(self, timeout_s: float = 2.0):
        """Stop accepting jobs; queued jobs that never ran are cancelled."""
        if not self._running:
            return
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None

        while True:
            try:
                future, _, _, _ = self._jobs.get_nowait()
            except Empty:
                break
            future.cancel()
        logger.debug("Worker stopped for role '%s'", self.role)

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Queue a job.

        Raises:
            DeviceConnectionError: Worker not running or its queue is full
        """
        if not self._running:
            raise DeviceConnectionError(f"Worker for '{self.role}' is not running", role=self.role)
        future: Future = Future()
        try:
            self._jobs.put_nowait((future, fn, args, kwargs))
        except Full as e:
            raise DeviceConnectionError(
                f"Worker for '{self.role}' has {self._jobs.qsize()} pending jobs", role=self.role
            ) from e
        return future

    def call(self, fn: Callable[..., Any], *args, timeout: float, **kwargs) -> Any:
        """
        Run `fn` on the worker and wait for its result.

        The job itself is not interrupted on timeout; its eventual result is
        discarded.

        Raises:
            DeviceTimeoutError: No result within `timeout` seconds
            DeviceConnectionError: Worker stopped before the job ran
            Exception: Whatever `fn` raised
        """
        future = self.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except DeviceTimeoutError:
            raise
        except FutureTimeoutError as e:
            logger.warning("Role '%s' job exceeded %.1fs", self.role, timeout)
            get_metrics().increment_failure('timeout')
            raise DeviceTimeoutError(
                f"Operation on '{self.role}' did not finish within {timeout:.1f}s",
                role=self.role,
                timeout_s=timeout,
            ) from e
        except CancelledError as e:
            logger.warning("Role '%s' job cancelled by disconnect", self.role)
            get_metrics().increment_failure('connection_failed')
            raise DeviceConnectionError(f"'{self.role}' disconnected", role=self.role) from e

    def _run_loop(self):
        while self._running:
            try:
                future, fn, args, kwargs = self._jobs.get(timeout=0.2)
            except Empty:
                continue

            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)
