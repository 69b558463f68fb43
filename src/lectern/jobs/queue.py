"""Bounded in-memory job queue drained by a fixed pool of worker threads.

Jobs are never persisted: anything still buffered when the queue stops is
dropped, and its Source stays ``pending`` until re-registered.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass

from lectern.errors import QueueFullError, QueueStoppedError
from lectern.log import get_logger

log = get_logger(__name__)

_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class Job:
    """One unit of ingestion work: process *source_id* for *bot_id*."""

    source_id: str
    bot_id: str
    url: str = ""


JobHandler = Callable[[Job, threading.Event], None]


class JobQueue:
    """FIFO buffer of Jobs consumed by *workers* daemon threads.

    Args:
        buffer_size: Maximum number of jobs waiting to be picked up.
        workers: Number of worker threads started by :meth:`start`.
    """

    def __init__(self, buffer_size: int = 100, workers: int = 3) -> None:
        if buffer_size < 1 or workers < 1:
            raise ValueError("buffer_size and workers must both be >= 1")
        self.buffer_size = buffer_size
        self.workers = workers
        self._jobs: queue.Queue[Job] = queue.Queue(maxsize=buffer_size)
        self._threads: list[threading.Thread] = []
        self._cancel = threading.Event()
        self._stopped = threading.Event()
        self._pending = 0
        self._idle = threading.Condition()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, job: Job) -> None:
        """Buffer *job* without blocking.

        Raises:
            QueueStoppedError: After :meth:`stop` was called or the cancel
                event was set.
            QueueFullError: When the buffer is at capacity.
        """
        with self._idle:
            if self._stopped.is_set() or self._cancel.is_set():
                raise QueueStoppedError("queue is stopped")
            try:
                self._jobs.put_nowait(job)
            except queue.Full:
                raise QueueFullError("queue is full") from None
            self._pending += 1

    def qsize(self) -> int:
        return self._jobs.qsize()

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self, handler: JobHandler, cancel: threading.Event | None = None) -> None:
        """Start the worker threads.

        Each worker pulls jobs and calls ``handler(job, cancel_event)``. A
        handler exception is logged and the worker moves on. Setting *cancel*
        (or calling :meth:`stop`) makes every worker exit after its current job;
        jobs still buffered at that point are dropped and new ones refused.
        """
        if self._threads:
            raise RuntimeError("JobQueue.start() called twice")
        if self._stopped.is_set():
            raise QueueStoppedError("queue is stopped")
        if cancel is not None:
            self._cancel = cancel
        for i in range(self.workers):
            thread = threading.Thread(
                target=self._work,
                args=(handler, i),
                name=f"lectern-worker-{i}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        log.info("started %d workers (buffer %d)", self.workers, self.buffer_size)

    def _work(self, handler: JobHandler, worker_id: int) -> None:
        while not self._cancel.is_set():
            try:
                job = self._jobs.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            ctx = {"ctx_source_id": job.source_id, "ctx_bot_id": job.bot_id}
            try:
                handler(job, self._cancel)
            except Exception:
                log.exception("worker %d: error processing job", worker_id, extra=ctx)
            else:
                log.info("worker %d: processed job", worker_id, extra=ctx)
            finally:
                self._job_done()
        self._drop_buffered()
        log.debug("worker %d stopping", worker_id)

    def _job_done(self) -> None:
        with self._idle:
            self._pending -= 1
            self._idle.notify_all()

    def _drop_buffered(self) -> None:
        # enqueue() checks cancel under the same lock, so nothing lands after this.
        with self._idle:
            while True:
                try:
                    job = self._jobs.get_nowait()
                except queue.Empty:
                    break
                log.warning(
                    "dropping queued job on shutdown",
                    extra={"ctx_source_id": job.source_id, "ctx_bot_id": job.bot_id},
                )
                self._pending -= 1
            self._idle.notify_all()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every enqueued job has been handled (or dropped).

        Returns:
            False if *timeout* elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def stop(self) -> None:
        """Refuse new jobs, signal cancellation, and join all workers.

        Jobs still buffered are dropped.
        """
        with self._idle:
            self._stopped.set()
        self._cancel.set()
        for thread in self._threads:
            thread.join()
        self._drop_buffered()
        log.info("all workers stopped")
