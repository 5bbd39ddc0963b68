"""
=============================================================================
THREAD POOL - One Worker per Connection
=============================================================================

Every accepted Connection becomes a Job. A worker runs the job start to
finish: read request → before interceptors → router → write response →
after interceptors, repeated for keep-alive.

    accept loop ──submit()──► [ Job | Job | Job ] ──get()──► worker-0
                                 queue.Queue        ├───────► worker-1
                                                    └───────► worker-N

=============================================================================
SIZING
=============================================================================

    queued jobs <= idle workers   nothing to do, an idle worker takes it
    queued jobs >  idle workers   one more worker, up to max_workers
    max_workers reached           the job waits in the queue

A live-reload tab keeps its worker for as long as the tab is open, so a
handful of tabs can occupy the whole minimum.

A job that waited longer than max_wait is not run. It goes to its
on_expired callback instead, which the server uses to answer 503.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class Job:
    """A connection waiting for a worker."""
    run: Callable[[Any], None]
    conn: Any
    max_wait: Optional[float] = None
    on_expired: Optional[Callable[[Any], None]] = None
    queued_at: float = field(default_factory=time.monotonic)

    @property
    def waited(self) -> float:
        return time.monotonic() - self.queued_at

    @property
    def expired(self) -> bool:
        return self.max_wait is not None and self.waited > self.max_wait


class ThreadPool:
    """
    Growable pool of daemon worker threads.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=64)
        pool.start()
        if not pool.submit(handle, conn, max_wait=30.0, on_expired=reject):
            reject(conn)          # backlog full
        ...
        pool.shutdown()
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 64, backlog: int = 256):
        self.min_workers = min_workers
        self.max_workers = max_workers

        self._jobs: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=backlog)
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._idle = 0
        self._running = False

    @property
    def size(self) -> int:
        """Number of worker threads."""
        with self._lock:
            return len(self._threads)

    @property
    def idle_workers(self) -> int:
        with self._lock:
            return self._idle

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start min_workers workers."""
        with self._lock:
            if self._running:
                return
            self._running = True
            for _ in range(self.min_workers):
                self._spawn()
        logger.debug(f"Thread pool started with {self.min_workers} workers")

    def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop every worker.

        Jobs already queued still run first (the queue is FIFO and the
        stop markers go in behind them). Workers still busy after
        `timeout` are left behind; they are daemons.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._idle = 0
            threads, self._threads = self._threads, []

        deadline = time.monotonic() + timeout
        for _ in threads:
            try:
                self._jobs.put(None, timeout=max(deadline - time.monotonic(), 0.01))
            except queue.Full:
                break

        for thread in threads:
            thread.join(timeout=max(deadline - time.monotonic(), 0.0))

        still_busy = sum(1 for t in threads if t.is_alive())
        if still_busy:
            logger.debug(f"{still_busy} workers still busy at shutdown")
        logger.debug("Thread pool stopped")

    # =========================================================================
    # JOBS
    # =========================================================================

    def submit(
        self,
        run: Callable[[Any], None],
        conn: Any,
        max_wait: Optional[float] = None,
        on_expired: Optional[Callable[[Any], None]] = None,
    ) -> bool:
        """
        Queue `run(conn)`.

        Returns:
            False if the backlog is full (the job was not queued).

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._running:
            raise RuntimeError("Thread pool is not running")

        try:
            self._jobs.put_nowait(Job(run, conn, max_wait=max_wait, on_expired=on_expired))
        except queue.Full:
            return False

        with self._lock:
            if self._jobs.qsize() > self._idle and len(self._threads) < self.max_workers:
                self._spawn()
                logger.debug(f"Thread pool grew to {len(self._threads)} workers")
        return True

    def _spawn(self) -> None:
        """Start one worker. Caller holds self._lock."""
        thread = threading.Thread(
            target=self._work,
            name=f"archaeopteryx-worker-{len(self._threads)}",
            daemon=True,
        )
        self._threads.append(thread)
        self._idle += 1
        thread.start()

    def _work(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                break

            with self._lock:
                self._idle -= 1
            try:
                self._run(job)
            finally:
                with self._lock:
                    self._idle += 1

    def _run(self, job: Job) -> None:
        """Run one job. Nothing a job raises may kill the worker."""
        try:
            if job.expired:
                logger.warning(f"Connection waited {job.waited:.1f}s for a worker, rejecting it")
                if job.on_expired is not None:
                    job.on_expired(job.conn)
                return
            job.run(job.conn)
        except Exception:
            logger.exception("Unhandled error in worker")
