from __future__ import annotations

from collections import deque
import logging
import threading
from typing import Callable, Generic, TypeVar

from mergetrain.observability import log_event


LOGGER = logging.getLogger("mergetrain.job_queue")

JobT = TypeVar("JobT")


class JobQueue(Generic[JobT]):
    """Runs jobs one at a time, in arrival order, on a dedicated worker thread.

    ``size`` counts pending plus running jobs. A job whose handler raises is
    logged and dropped; the next job still runs. Nothing is retried.
    """

    def __init__(self, name: str, handler: Callable[[JobT], None]) -> None:
        self._name = name
        self._handler = handler
        self._cond = threading.Condition()
        self._pending: deque[JobT] = deque()
        self._running = 0
        self._paused = False
        self._closed = False
        self._worker = threading.Thread(
            target=self._run_worker,
            name=f"mergetrain-queue-{name}",
            daemon=True,
        )
        self._worker.start()

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        with self._cond:
            return len(self._pending) + self._running

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def is_paused(self) -> bool:
        with self._cond:
            return self._paused

    def enqueue(self, job: JobT) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError(f"Job queue {self._name!r} is closed")
            self._pending.append(job)
            self._cond.notify_all()

    def pause(self) -> None:
        with self._cond:
            self._paused = True

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def drain(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or running; False on timeout.

        A paused queue holding pending jobs never drains.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and self._running == 0,
                timeout=timeout,
            )

    def close(self, timeout: float | None = None) -> None:
        with self._cond:
            self._closed = True
            dropped = len(self._pending)
            self._pending.clear()
            self._cond.notify_all()
        if dropped:
            log_event(LOGGER, "job_queue_closed", queue=self._name, dropped=dropped)
        if threading.current_thread() is not self._worker:
            self._worker.join(timeout=timeout)

    def _run_worker(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._closed or (self._pending and not self._paused))
                if self._closed:
                    return
                job = self._pending.popleft()
                self._running = 1
            try:
                self._handler(job)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "train_job_failed",
                    queue=self._name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            finally:
                with self._cond:
                    self._running = 0
                    self._cond.notify_all()
