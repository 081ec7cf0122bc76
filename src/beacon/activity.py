"""Foreground-activity sampling, momentum, sessions and wellness timers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from .coach import CoachClient
from .config import EngineSettings
from .events import (
    ActivityIdle,
    ActivityPulse,
    ActivityResumed,
    CoachingMessage,
    EventBus,
    EyestrainDue,
    HydrationDue,
    MomentumChanged,
    PostureDue,
    SessionEnded,
    SessionStarted,
    StuckDetected,
    WellnessDue,
    WindowChanged,
)
from .models import BehaviorState, Session, StateSnapshot, WindowObservation
from .normalization import is_coding_process, normalize_process_name
from .projects import ProjectRegistry
from .runtime import RepeatingTimer, Scheduler
from .store import DocumentStore

logger = logging.getLogger(__name__)

MAX_MOMENTUM = 5
PULSES_PER_LEVEL = 4

WELLNESS_EVENTS: tuple[type[WellnessDue], ...] = (HydrationDue, EyestrainDue, PostureDue)

Observer = Callable[[datetime], Optional[WindowObservation]]
SnapshotSink = Callable[[StateSnapshot], None]


def _ms(delta: timedelta) -> int:
    return int(delta / timedelta(milliseconds=1))


@dataclass(slots=True)
class MomentumState:
    """Pulse timestamps in a rolling window and the level derived from them."""

    window: timedelta = timedelta(minutes=5)
    pulses: list[datetime] = field(default_factory=list)
    level: int = 0

    def add_pulse(self, now: datetime) -> bool:
        """Record a pulse; return ``True`` when the level changed."""
        self.pulses.append(now)
        cutoff = now - self.window
        self.pulses = [pulse for pulse in self.pulses if pulse > cutoff]
        return self._set_level(min(MAX_MOMENTUM, len(self.pulses) // PULSES_PER_LEVEL))

    def decay(self) -> bool:
        return self._set_level(max(0, self.level - 1))

    def reset(self) -> bool:
        self.pulses.clear()
        return self._set_level(0)

    def _set_level(self, level: int) -> bool:
        if level == self.level:
            return False
        self.level = level
        return True


@dataclass(slots=True)
class OpenSession:
    session: Session
    titles: set[str] = field(default_factory=set)


class ActivityMonitor:
    """Samples the foreground window and turns it into activity signals.

    Every tick observes the window, classifies it as coding or not, updates
    momentum, session and wellness state, publishes the resulting events and
    hands a :class:`StateSnapshot` to every registered sink.
    """

    def __init__(
        self,
        bus: EventBus,
        store: DocumentStore,
        observe: Observer,
        settings: Optional[EngineSettings] = None,
        registry: Optional[ProjectRegistry] = None,
        coach: Optional[CoachClient] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._bus = bus
        self._store = store
        self._observe = observe
        self.settings = settings or EngineSettings()
        self._registry = registry
        self._coach = coach
        self._scheduler = scheduler
        self._clock = clock

        self.momentum = MomentumState(window=self.settings.momentum_window)
        self._last_window: Optional[tuple[str, str]] = None
        self._same_window_since: Optional[datetime] = None
        self._stuck_reported = False
        self._last_active_at: Optional[datetime] = None
        self._open: Optional[OpenSession] = None

        started = clock()
        self._wellness_last: dict[str, datetime] = {
            event.category: started for event in WELLNESS_EVENTS
        }
        self._sinks: list[SnapshotSink] = []
        self.last_snapshot: Optional[StateSnapshot] = None
        self._poll_timer: Optional[RepeatingTimer] = None

    # Lifecycle

    def start(self) -> None:
        logger.info(
            "Starting activity monitor (poll every %.1fs).",
            self.settings.poll_interval.total_seconds(),
        )
        self.start_session()
        if self._scheduler is not None:
            self._poll_timer = self._scheduler.every(
                "activity-poll", self.settings.poll_interval, self.tick
            )

    def stop(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None
        self.end_session()
        logger.info("Activity monitor stopped.")

    def add_snapshot_sink(self, sink: SnapshotSink) -> None:
        self._sinks.append(sink)

    @property
    def current_session(self) -> Optional[Session]:
        return self._open.session if self._open else None

    # Polling

    def tick(self, now: Optional[datetime] = None) -> Optional[StateSnapshot]:
        now = now or self._clock()
        try:
            observation = self._observe(now)
        except Exception:
            logger.debug("Observation failed; skipping tick.", exc_info=True)
            return None
        if observation is None:
            return None

        process_name = normalize_process_name(observation.process_name)
        title = observation.title or ""
        is_coding = is_coding_process(process_name)

        try:
            self._handle_window(now, process_name, title, is_coding)
            if is_coding:
                self._on_coding_activity(now, process_name, title)
            else:
                self._check_idle(now)
            self._check_stuck(now, process_name, title, is_coding)
            self._check_wellness(now, is_coding)
        except Exception:
            logger.exception("Activity tick failed.")

        return self._emit_snapshot(now, process_name, title, is_coding)

    def _handle_window(self, now: datetime, process_name: str, title: str, is_coding: bool) -> None:
        window = (process_name, title)
        if window == self._last_window:
            return
        self._last_window = window
        self._same_window_since = now
        self._stuck_reported = False
        logger.debug("Window changed: process=%s title=%s", process_name, title)
        self._bus.publish(WindowChanged(process_name=process_name, title=title, is_coding=is_coding))
        if self._registry is not None:
            self._registry.on_window_signal(process_name, title, now)

    def _on_coding_activity(self, now: datetime, process_name: str, title: str) -> None:
        was_idle = (
            self._last_active_at is None
            or now - self._last_active_at > self.settings.session_gap
        )
        self._last_active_at = now

        if self.momentum.add_pulse(now):
            self._bus.publish(MomentumChanged(level=self.momentum.level))
        self._bus.publish(
            ActivityPulse(process_name=process_name, title=title, momentum=self.momentum.level)
        )

        if was_idle:
            self._bus.publish(ActivityResumed(process_name=process_name, title=title))
            if self._open is None:
                self.start_session(now)
            elif now - self._open.session.started_at > self.settings.session_gap * 2:
                self.end_session(now)
                self.start_session(now)

        if self._open is not None:
            session = self._open.session
            session.peak_momentum = max(session.peak_momentum, self.momentum.level)
            if title:
                self._open.titles.add(title)

    def _check_idle(self, now: datetime) -> None:
        if self._last_active_at is None:
            return
        idle = now - self._last_active_at
        if idle <= self.settings.idle_threshold:
            return

        self._bus.publish(ActivityIdle(idle_ms=_ms(idle)))
        if self.momentum.decay():
            self._bus.publish(MomentumChanged(level=self.momentum.level))
        if idle > self.settings.session_gap and self._open is not None:
            self.end_session(now)

    def _check_stuck(self, now: datetime, process_name: str, title: str, is_coding: bool) -> None:
        if not is_coding or self._same_window_since is None or self._stuck_reported:
            return
        same_window = now - self._same_window_since
        if same_window > self.settings.stuck_threshold and self.momentum.level <= 1:
            self._stuck_reported = True
            if self._open is not None:
                self._open.session.stuck_count += 1
            self._bus.publish(
                StuckDetected(duration_ms=_ms(same_window), process_name=process_name, title=title)
            )

    def _check_wellness(self, now: datetime, is_coding: bool) -> None:
        if not is_coding:
            return
        settings = self._store.get_settings()
        for event_type in WELLNESS_EVENTS:
            category = event_type.category
            if not settings.get(f"{category}Enabled"):
                continue
            minutes = settings.get(f"{category}IntervalMinutes")
            if not minutes:
                continue
            if now - self._wellness_last[category] > timedelta(minutes=minutes):
                self._wellness_last[category] = now
                self._bus.publish(event_type())

    def _emit_snapshot(
        self, now: datetime, process_name: str, title: str, is_coding: bool
    ) -> StateSnapshot:
        elapsed = _ms(now - self._open.session.started_at) if self._open else 0
        snapshot = StateSnapshot(
            state=BehaviorState.from_momentum(self.momentum.level, is_coding),
            momentum=self.momentum.level,
            process_name=process_name,
            title=title,
            is_coding=is_coding,
            session_elapsed_ms=elapsed,
        )
        self.last_snapshot = snapshot
        for sink in list(self._sinks):
            try:
                sink(snapshot)
            except Exception:
                logger.exception("Snapshot sink failed.")
        return snapshot

    # Sessions

    def start_session(self, now: Optional[datetime] = None) -> Session:
        now = now or self._clock()
        session = Session(id=uuid.uuid4().hex, started_at=now)
        self._open = OpenSession(session=session)
        self._store.update_streak(now.date())
        logger.info("Session started at %s", now.strftime("%H:%M:%S"))
        self._bus.publish(SessionStarted(session_id=session.id, started_at=now))
        return session

    def end_session(self, now: Optional[datetime] = None) -> Optional[Session]:
        """Close the open session; return it if it was long enough to keep."""
        if self._open is None:
            return None
        now = now or self._clock()
        open_session, self._open = self._open, None
        session = open_session.session
        session.ended_at = now
        session.duration_ms = _ms(now - session.started_at)
        session.files_edited = len(open_session.titles)

        kept: Optional[Session] = None
        if session.duration_ms > _ms(self.settings.min_session):
            try:
                self._persist_session(session)
                kept = session
            except Exception:
                logger.exception("Failed to persist session %s.", session.id)
        else:
            logger.debug("Discarding %dms session.", session.duration_ms)

        if self.momentum.reset():
            self._bus.publish(MomentumChanged(level=0))
        return kept

    def _persist_session(self, session: Session) -> None:
        project_id = self._registry.active_project_id if self._registry else None
        session.project_id = project_id
        self._store.add_session(session)

        if project_id and self._registry is not None:
            project = self._registry.add_time_to_project(project_id, session.duration_ms, session.ended_at)
            if project and project.language != "Unknown":
                self._store.add_skill_time(project.language, session.duration_ms)

        logger.info("Session ended after %.1f minutes.", session.duration_ms / 60_000)
        self._bus.publish(SessionEnded(session=session))
        self._request_summary(session)

    def _request_summary(self, session: Session) -> None:
        if self._coach is None or self._scheduler is None:
            return
        if not self._store.get_setting("claudeSessionSummaries"):
            return
        if session.duration_ms <= _ms(self.settings.summary_min_duration):
            return
        if not self._coach.is_enabled():
            return

        def publish_summary(text: Optional[str]) -> None:
            if text:
                self._bus.publish(CoachingMessage(text=text, kind="session_summary"))

        coach = self._coach
        self._scheduler.spawn(
            "session-summary", lambda: coach.summarize_session(session), publish_summary
        )
