"""
Background execution for fire-and-forget work.

The job tracker never blocks a caller: agent hand-off runs on a worker
thread, timeouts are timers, and maintenance sweeps repeat on an interval.
Anything raised in the background is logged and swallowed here so a failing
task cannot take the process down; the next cycle retries.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _run_logged(fn: Callable, args: tuple) -> None:
    try:
        fn(*args)
    except Exception:
        logger.exception("Background task %s failed", getattr(fn, "__name__", fn))


class ThreadScheduler:
    """Runs callables on daemon threads and timers."""

    def __init__(self):
        self._timers: set[threading.Timer] = set()
        self._workers: set[threading.Thread] = set()
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def submit(self, fn: Callable, *args) -> None:
        """Run fn(*args) soon, on a background thread."""
        if self._stopped.is_set():
            return

        def work() -> None:
            try:
                _run_logged(fn, args)
            finally:
                with self._lock:
                    self._workers.discard(worker)

        worker = threading.Thread(target=work, daemon=True)
        with self._lock:
            self._workers.add(worker)
        worker.start()

    def call_later(self, delay: float, fn: Callable, *args) -> None:
        """Run fn(*args) once after delay seconds."""
        if self._stopped.is_set():
            return

        def fire() -> None:
            with self._lock:
                self._timers.discard(timer)
            _run_logged(fn, args)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()

    def every(self, interval: float, fn: Callable, *args, run_now: bool = True) -> None:
        """Run fn(*args) every interval seconds until close()."""
        if self._stopped.is_set():
            return

        def loop() -> None:
            if run_now:
                _run_logged(fn, args)
            while not self._stopped.wait(interval):
                _run_logged(fn, args)

        threading.Thread(target=loop, daemon=True, name=f"every-{interval}s").start()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted work to finish. False if some is still running."""
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)
        return not any(w.is_alive() for w in workers)

    @property
    def pending_timers(self) -> int:
        with self._lock:
            return len(self._timers)

    def close(self) -> None:
        """Cancel timers and stop periodic loops."""
        self._stopped.set()
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
