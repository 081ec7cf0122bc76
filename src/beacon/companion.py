"""Constructs the engine components and runs them together."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from .activity import ActivityMonitor
from .coach import CoachClient
from .config import EngineSettings
from .events import EventBus, ReminderFired
from .probe import TimedProbe, WindowProbe, create_default_probe
from .projects import ProjectRegistry
from .reminders import ReminderEngine
from .runtime import Scheduler
from .store import DocumentStore

logger = logging.getLogger(__name__)


class Companion:
    """One engine instance: bus, store, registry, monitor and reminders.

    Components receive each other by reference here; nothing is a module
    global. :meth:`stop` releases every timer and flushes storage.
    """

    def __init__(
        self,
        db_path: Path,
        settings: Optional[EngineSettings] = None,
        probe: Optional[WindowProbe] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.scheduler = Scheduler()
        self.bus = EventBus()
        self.store = DocumentStore(db_path, flush_interval=self.settings.flush_interval)
        self.coach = CoachClient(self.store, timeout=self.settings.coach_timeout)
        self.registry = ProjectRegistry(
            self.bus, self.store, settings=self.settings, scheduler=self.scheduler
        )
        self.reminders = ReminderEngine(
            self.bus, self.store, settings=self.settings, scheduler=self.scheduler
        )
        self._probe = TimedProbe(probe or create_default_probe(), self.settings.probe_timeout)
        self.monitor = ActivityMonitor(
            self.bus,
            self.store,
            self._probe.observe,
            settings=self.settings,
            registry=self.registry,
            coach=self.coach,
            scheduler=self.scheduler,
        )
        self.bus.subscribe(ReminderFired, self._log_reminder)
        self._running = False

    @property
    def lock(self) -> threading.RLock:
        return self.scheduler.lock

    def start(self) -> None:
        with self.lock:
            if self._running:
                return
            self._running = True
            self.registry.start()
            self.reminders.start()
            self.monitor.start()
            self.scheduler.every("store-flush", self.settings.flush_interval, self.store.flush_if_needed)
        logger.info("Companion started; data in %s", self.store.db_path)

    def stop(self) -> None:
        if not self._running:
            return
        # Timers must be cancelled before taking the lock they run under.
        self.scheduler.stop()
        with self.lock:
            self._running = False
            self.monitor.stop()
            self.reminders.stop()
            self.registry.stop()
            self._probe.close()
            self.store.flush()
        logger.info("Companion stopped.")

    def close(self) -> None:
        self.stop()
        self._probe.close()
        self.store.close()

    def is_running(self) -> bool:
        return self._running

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run the engine until the provided event is set."""
        self.start()
        try:
            stop_event.wait()
        finally:
            self.close()

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self.run_until_stopped(stop_event)
        except KeyboardInterrupt:
            logger.info("Companion interrupted; shutting down.")

    @staticmethod
    def _log_reminder(event: ReminderFired) -> None:
        suffix = f" [{event.project_name}]" if event.project_name else ""
        logger.info("Reminder: %s%s", event.text, suffix)
