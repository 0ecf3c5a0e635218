"""Tests for the background dispatcher and periodic workers.

Tests cover:
- Inline execution when not started or disabled
- Queued execution and flushing
- Drop-oldest behaviour when the queue is full
- Error isolation
- Periodic worker lifecycle
"""

from __future__ import annotations

import threading
import time

import pytest

from route_intelligence.core.background import BackgroundDispatcher, PeriodicWorker

# ==============================================================================
# BackgroundDispatcher Tests
# ==============================================================================


class TestBackgroundDispatcherInline:
    """Tests for inline execution."""

    def test_runs_inline_when_not_started(self):
        """Test that tasks run immediately when no consumer is running."""
        dispatcher = BackgroundDispatcher(name="test")
        calls = []

        queued = dispatcher.submit(calls.append, 1)

        assert queued is False
        assert calls == [1]
        stats = dispatcher.get_stats()
        assert stats["total_inline"] == 1
        assert stats["total_processed"] == 1

    def test_disabled_dispatcher_never_starts(self):
        """Test that a disabled dispatcher keeps running tasks inline."""
        dispatcher = BackgroundDispatcher(name="test", enabled=False)
        dispatcher.start()

        assert dispatcher.is_running is False
        assert dispatcher.submit(lambda: None) is False

    def test_failing_inline_task_is_isolated(self):
        """Test that an inline task failure is counted but not raised."""
        dispatcher = BackgroundDispatcher(name="test")

        def fail():
            raise RuntimeError("bookkeeping failed")

        dispatcher.submit(fail)

        assert dispatcher.get_stats()["total_failed"] == 1

    def test_invalid_queue_size(self):
        """Test that a non-positive queue size is rejected."""
        with pytest.raises(ValueError):
            BackgroundDispatcher(max_queue_size=0)


class TestBackgroundDispatcherQueued:
    """Tests for queued execution on the consumer thread."""

    def test_submit_and_flush(self):
        """Test that queued tasks are processed by the consumer."""
        dispatcher = BackgroundDispatcher(name="test")
        dispatcher.start()
        results = []
        try:
            for i in range(20):
                assert dispatcher.submit(results.append, i) is True
            assert dispatcher.flush(timeout=5.0) is True
        finally:
            dispatcher.stop()

        assert results == list(range(20))
        assert dispatcher.get_stats()["total_processed"] == 20

    def test_kwargs_are_passed(self):
        """Test that keyword arguments reach the task."""
        dispatcher = BackgroundDispatcher(name="test")
        dispatcher.start()
        seen = {}
        try:
            dispatcher.submit(seen.update, backend="openai")
            dispatcher.flush(timeout=5.0)
        finally:
            dispatcher.stop()

        assert seen == {"backend": "openai"}

    def test_drops_oldest_when_full(self):
        """Test that the oldest pending task is dropped when the queue is full."""
        dispatcher = BackgroundDispatcher(name="test", max_queue_size=3)
        started = threading.Event()
        release = threading.Event()
        processed = []

        def block():
            started.set()
            release.wait(5.0)

        dispatcher.start()
        try:
            dispatcher.submit(block)
            assert started.wait(5.0)

            for i in range(4):
                dispatcher.submit(processed.append, i)

            assert len(dispatcher) == 3
            assert dispatcher.get_stats()["total_dropped"] == 1

            release.set()
            assert dispatcher.flush(timeout=5.0)
        finally:
            release.set()
            dispatcher.stop()

        assert processed == [1, 2, 3]

    def test_consumer_survives_failures(self):
        """Test that a failing task does not stop the consumer."""
        dispatcher = BackgroundDispatcher(name="test")
        results = []

        def fail():
            raise RuntimeError("boom")

        dispatcher.start()
        try:
            dispatcher.submit(fail)
            dispatcher.submit(results.append, "after")
            dispatcher.flush(timeout=5.0)
        finally:
            dispatcher.stop()

        stats = dispatcher.get_stats()
        assert stats["total_failed"] == 1
        assert results == ["after"]

    def test_stop_drains_queue(self):
        """Test that stop processes pending work before joining."""
        dispatcher = BackgroundDispatcher(name="test")
        results = []
        dispatcher.start()
        for i in range(50):
            dispatcher.submit(results.append, i)

        dispatcher.stop(timeout=5.0)

        assert dispatcher.is_running is False
        assert len(results) == 50

    def test_clear_discards_pending(self):
        """Test that clear removes pending tasks."""
        dispatcher = BackgroundDispatcher(name="test", max_queue_size=10)
        started = threading.Event()
        release = threading.Event()

        def block():
            started.set()
            release.wait(5.0)

        dispatcher.start()
        try:
            dispatcher.submit(block)
            assert started.wait(5.0)
            dispatcher.submit(lambda: None)
            dispatcher.submit(lambda: None)

            assert dispatcher.clear() == 2
            assert len(dispatcher) == 0
        finally:
            release.set()
            dispatcher.stop()

    def test_submit_while_stopping_runs_inline(self):
        """Test that a task submitted after stop() began is not queued and lost."""
        dispatcher = BackgroundDispatcher(name="test")
        dispatcher.start()
        calls = []

        with dispatcher._cond:
            dispatcher._stopping = True
        queued = dispatcher.submit(calls.append, "late")

        assert queued is False
        assert calls == ["late"]
        assert len(dispatcher) == 0
        assert dispatcher.get_stats()["total_inline"] == 1
        dispatcher.stop()

    def test_stats_are_consistent_under_concurrency(self):
        """Test that counters from many producers add up."""
        dispatcher = BackgroundDispatcher(name="test")
        dispatcher.start()
        processed = []

        def produce():
            for i in range(250):
                dispatcher.submit(processed.append, i)

        producers = [threading.Thread(target=produce) for _ in range(8)]
        for thread in producers:
            thread.start()
        for thread in producers:
            thread.join()
        dispatcher.stop()

        stats = dispatcher.get_stats()
        assert stats["total_submitted"] == 2000
        assert stats["total_processed"] == 2000
        assert len(processed) == 2000

    def test_repr(self):
        """Test the string representation."""
        dispatcher = BackgroundDispatcher(name="engine")
        assert "engine" in repr(dispatcher)


# ==============================================================================
# PeriodicWorker Tests
# ==============================================================================


class TestPeriodicWorker:
    """Tests for PeriodicWorker."""

    def test_runs_callback_periodically(self):
        """Test that the callback runs repeatedly until stopped."""
        ticks = threading.Event()
        count = []

        def callback():
            count.append(1)
            if len(count) >= 2:
                ticks.set()

        worker = PeriodicWorker("test-worker", 0.01, callback)
        worker.start()
        try:
            assert ticks.wait(5.0)
        finally:
            worker.stop()

        assert worker.is_running is False
        assert worker.runs >= 2

    def test_errors_do_not_stop_worker(self):
        """Test that a failing callback keeps the worker alive."""
        attempts = []
        done = threading.Event()

        def callback():
            attempts.append(1)
            if len(attempts) >= 3:
                done.set()
            raise RuntimeError("periodic failure")

        worker = PeriodicWorker("failing-worker", 0.01, callback)
        worker.start()
        try:
            assert done.wait(5.0)
        finally:
            worker.stop()

        assert len(attempts) >= 3
        assert worker.runs == 0

    def test_stop_without_start(self):
        """Test that stopping an unstarted worker is a no-op."""
        worker = PeriodicWorker("idle", 1.0, lambda: None)
        worker.stop()
        assert worker.is_running is False

    def test_invalid_interval(self):
        """Test that a non-positive interval is rejected."""
        with pytest.raises(ValueError):
            PeriodicWorker("bad", 0, lambda: None)

    def test_first_run_waits_for_interval(self):
        """Test that the callback is not run immediately on start."""
        calls = []
        worker = PeriodicWorker("slow", 10.0, lambda: calls.append(1))
        worker.start()
        time.sleep(0.05)
        worker.stop(timeout=1.0)

        assert calls == []
