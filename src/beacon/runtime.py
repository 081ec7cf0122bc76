"""Timer threads and background tasks that share one engine lock."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Runs ``callback`` every ``interval`` while holding the engine lock."""

    def __init__(
        self,
        name: str,
        interval: timedelta,
        callback: Callable[[], None],
        lock: threading.RLock,
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._lock = lock
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"beacon-{name}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def _run(self) -> None:
        seconds = self.interval.total_seconds()
        # Sleep in an interruptible manner.
        while not self._stop_event.wait(seconds):
            with self._lock:
                if self._stop_event.is_set():
                    break
                try:
                    self._callback()
                except Exception:
                    logger.exception("Timer %s failed; continuing.", self.name)


class Scheduler:
    """Owns the engine lock and every timer started through it.

    Timer callbacks never overlap: each one runs to completion under
    :attr:`lock`. Code outside the timers (web handlers, the CLI) must take the
    same lock before touching engine state.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._timers: list[RepeatingTimer] = []
        self._tasks: list[threading.Thread] = []

    def every(
        self, name: str, interval: timedelta, callback: Callable[[], None]
    ) -> RepeatingTimer:
        timer = RepeatingTimer(name, interval, callback, self.lock)
        self._timers.append(timer)
        timer.start()
        logger.debug("Started timer %s every %.1fs", name, interval.total_seconds())
        return timer

    def spawn(
        self,
        name: str,
        work: Callable[[], Any],
        on_done: Optional[Callable[[Any], None]] = None,
    ) -> threading.Thread:
        """Run ``work`` without the lock, then hand its result to ``on_done`` under it."""

        def runner() -> None:
            try:
                result = work()
            except Exception:
                logger.exception("Background task %s failed.", name)
                return
            if on_done is None:
                return
            with self.lock:
                try:
                    on_done(result)
                except Exception:
                    logger.exception("Completion of background task %s failed.", name)

        thread = threading.Thread(target=runner, name=f"beacon-{name}", daemon=True)
        self._tasks = [task for task in self._tasks if task.is_alive()]
        self._tasks.append(thread)
        thread.start()
        return thread

    def stop(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
