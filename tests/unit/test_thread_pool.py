"""
Unit tests for the worker pool.
"""

import threading
import time

import pytest

from archaeopteryx.core.thread_pool import Job, ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(min_workers=2, max_workers=4)
    pool.start()
    yield pool
    pool.shutdown(timeout=2.0)


class TestThreadPool:
    """Tests for ThreadPool."""

    def test_runs_job(self, pool: ThreadPool):
        """Submitted jobs run with their connection."""
        done = threading.Event()
        seen = []

        def run(conn):
            seen.append(conn)
            done.set()

        assert pool.submit(run, "conn-1")
        assert done.wait(2.0)
        assert seen == ["conn-1"]

    def test_starts_minimum(self, pool: ThreadPool):
        """min_workers threads exist right after start()."""
        assert pool.size == 2

    def test_grows_past_held_workers(self, pool: ThreadPool):
        """Jobs that hold their worker (websocket tabs) do not starve new ones."""
        release = threading.Event()
        finished = threading.Event()

        for n in range(2):
            pool.submit(lambda conn: release.wait(5.0), f"tab-{n}")
        pool.submit(lambda conn: finished.set(), "page")

        assert finished.wait(2.0)
        assert 2 < pool.size <= 4
        release.set()

    def test_never_exceeds_maximum(self, pool: ThreadPool):
        """The pool stops growing at max_workers."""
        release = threading.Event()

        for n in range(10):
            pool.submit(lambda conn: release.wait(5.0), n)

        assert pool.size == 4
        release.set()

    def test_failing_job_keeps_worker(self, pool: ThreadPool):
        """A job that raises does not kill its worker."""
        done = threading.Event()

        def boom(conn):
            raise RuntimeError("boom")

        pool.submit(boom, None)
        pool.submit(boom, None)
        pool.submit(lambda conn: done.set(), None)

        assert done.wait(2.0)

    def test_expired_job_rejected(self):
        """A job that waited too long goes to on_expired instead of running."""
        pool = ThreadPool(min_workers=1, max_workers=1)
        pool.start()
        release = threading.Event()
        rejected = threading.Event()
        ran = []
        try:
            pool.submit(lambda conn: release.wait(5.0), "busy")
            pool.submit(ran.append, "late", max_wait=0.05, on_expired=lambda conn: rejected.set())
            time.sleep(0.2)
            release.set()

            assert rejected.wait(2.0)
            assert ran == []
        finally:
            pool.shutdown(timeout=2.0)

    def test_backlog_full(self):
        """submit() returns False once the backlog is full."""
        pool = ThreadPool(min_workers=1, max_workers=1, backlog=1)
        pool.start()
        release = threading.Event()
        started = threading.Event()

        def hold(conn):
            started.set()
            release.wait(5.0)

        try:
            pool.submit(hold, 1)
            assert started.wait(2.0)
            assert pool.submit(hold, 2) is True
            assert pool.submit(hold, 3) is False
        finally:
            release.set()
            pool.shutdown(timeout=2.0)

    def test_submit_when_stopped(self):
        """Submitting to a stopped pool is an error."""
        with pytest.raises(RuntimeError):
            ThreadPool().submit(print, None)


class TestJob:
    """Tests for Job expiry."""

    def test_no_limit_never_expires(self):
        assert not Job(print, None).expired

    def test_expiry(self):
        job = Job(print, None, max_wait=0.01)
        time.sleep(0.05)

        assert job.expired
