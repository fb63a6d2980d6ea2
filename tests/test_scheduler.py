"""Tests for the thread-backed scheduler."""

import threading

from snippets.scheduler import ThreadScheduler


class TestThreadScheduler:
    def test_submit_runs_in_background(self):
        """Submitted work runs on another thread."""
        scheduler = ThreadScheduler()
        ran = threading.Event()
        caller = threading.current_thread()
        seen = []

        def work(value):
            seen.append((value, threading.current_thread() is caller))
            ran.set()

        scheduler.submit(work, 42)
        assert ran.wait(5)
        assert scheduler.drain(5)
        assert seen == [(42, False)]
        scheduler.close()

    def test_failure_is_logged_not_raised(self, caplog):
        """Exceptions in background work are logged."""
        scheduler = ThreadScheduler()

        def boom():
            raise RuntimeError("kaput")

        scheduler.submit(boom)
        assert scheduler.drain(5)
        assert "Background task boom failed" in caplog.text
        scheduler.close()

    def test_call_later(self):
        """Should fire a one-shot timer."""
        scheduler = ThreadScheduler()
        fired = threading.Event()
        scheduler.call_later(0.01, fired.set)
        assert fired.wait(5)
        scheduler.close()

    def test_close_cancels_timers(self):
        """Closing cancels timers that have not fired."""
        scheduler = ThreadScheduler()
        fired = threading.Event()
        scheduler.call_later(60, fired.set)
        assert scheduler.pending_timers == 1
        scheduler.close()
        assert scheduler.pending_timers == 0
        assert not fired.is_set()

    def test_nothing_runs_after_close(self):
        """A closed scheduler accepts no new work."""
        scheduler = ThreadScheduler()
        scheduler.close()
        ran = []
        scheduler.submit(ran.append, 1)
        scheduler.call_later(0, ran.append, 2)
        assert scheduler.drain(1)
        assert ran == []

    def test_every_runs_now_and_repeats(self):
        """Periodic work runs immediately and then repeats."""
        scheduler = ThreadScheduler()
        count = []
        twice = threading.Event()

        def tick():
            count.append(1)
            if len(count) >= 2:
                twice.set()

        scheduler.every(0.01, tick)
        assert twice.wait(5)
        scheduler.close()
