"""Tests for the activity monitor: momentum, sessions, stuck and wellness."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from beacon.activity import ActivityMonitor, MomentumState
from beacon.events import (
    ActivityIdle,
    ActivityPulse,
    ActivityResumed,
    CoachingMessage,
    EyestrainDue,
    HydrationDue,
    MomentumChanged,
    SessionEnded,
    SessionStarted,
    StuckDetected,
    WindowChanged,
)
from beacon.models import BehaviorState
from beacon.projects import ProjectRegistry
from beacon.runtime import Scheduler

from .conftest import Recorder


@pytest.fixture
def registry(bus, store, clock):
    return ProjectRegistry(bus, store, clock=clock, remote_lookup=lambda path: None)


@pytest.fixture
def monitor(bus, store, observer, clock, registry):
    return ActivityMonitor(bus, store, observer, registry=registry, clock=clock)


def test_momentum_levels_follow_pulse_count(bus, monitor, clock) -> None:
    recorder = Recorder(bus, MomentumChanged, ActivityPulse)

    for _ in range(16):
        monitor.tick(clock.now)
        clock.advance(seconds=2)

    assert monitor.momentum.level == 4
    assert [event.level for event in recorder.of(MomentumChanged)] == [1, 2, 3, 4]
    assert len(recorder.of(ActivityPulse)) == 16

    monitor.tick(clock.now)
    assert monitor.momentum.level == 4
    assert len(recorder.of(MomentumChanged)) == 4


def test_pulses_outside_window_are_dropped(clock) -> None:
    momentum = MomentumState(window=timedelta(minutes=5))
    for _ in range(8):
        momentum.add_pulse(clock.now)
    assert momentum.level == 2

    momentum.add_pulse(clock.advance(minutes=6))

    assert momentum.pulses == [clock.now]
    assert momentum.level == 0


def test_momentum_is_capped_at_five(clock) -> None:
    momentum = MomentumState()
    for _ in range(40):
        momentum.add_pulse(clock.advance(seconds=1))

    assert momentum.level == 5


def test_session_at_minimum_length_is_discarded(bus, store, monitor, clock) -> None:
    recorder = Recorder(bus, SessionEnded)
    monitor.start_session(clock.now)

    assert monitor.end_session(clock.now + timedelta(milliseconds=60_000)) is None
    assert store.get_sessions() == []
    assert recorder.events == []


def test_session_just_over_minimum_is_persisted(bus, store, monitor, clock) -> None:
    recorder = Recorder(bus, SessionEnded)
    monitor.start_session(clock.now)

    session = monitor.end_session(clock.now + timedelta(milliseconds=60_001))

    assert session is not None
    assert session.duration_ms == 60_001
    assert [s.id for s in store.get_sessions()] == [session.id]
    assert recorder.events == [SessionEnded(session=session)]


def test_idle_ends_session_and_credits_active_project(
    bus, store, monitor, registry, observer, clock
) -> None:
    project = registry.add_project("beacon")
    recorder = Recorder(bus, ActivityIdle, SessionStarted, SessionEnded, MomentumChanged)
    observer.show("Code.exe", "main.py - beacon - Visual Studio Code")

    for _ in range(60):
        monitor.tick(clock.now)
        clock.advance(seconds=2)
    assert registry.active_project_id == project.id

    observer.show("chrome.exe", "Docs - Google Chrome")
    clock.advance(minutes=11)
    monitor.tick(clock.now)

    assert monitor.current_session is None
    idle = recorder.of(ActivityIdle)
    assert len(idle) == 1
    assert idle[0].idle_ms > 10 * 60_000

    [ended] = recorder.of(SessionEnded)
    assert ended.session.project_id == project.id
    assert ended.session.files_edited == 1
    assert ended.session.peak_momentum == 5
    assert store.get_project(project.id).total_time_ms == ended.session.duration_ms
    assert recorder.of(MomentumChanged)[-1].level == 0


def test_short_idle_decays_momentum_without_ending_session(bus, monitor, observer, clock) -> None:
    for _ in range(12):
        monitor.tick(clock.now)
        clock.advance(seconds=2)
    assert monitor.momentum.level == 3

    observer.show("slack", "general")
    clock.advance(minutes=6)
    monitor.tick(clock.now)

    assert monitor.momentum.level == 2
    assert monitor.current_session is not None


def test_resuming_after_gap_reports_resume(bus, monitor, observer, clock) -> None:
    recorder = Recorder(bus, ActivityResumed, SessionStarted)
    monitor.tick(clock.now)
    observer.show("chrome", "news")
    clock.advance(minutes=12)
    monitor.tick(clock.now)

    observer.show("code", "main.py - beacon")
    clock.advance(minutes=1)
    monitor.tick(clock.now)

    assert len(recorder.of(ActivityResumed)) == 2
    assert len(recorder.of(SessionStarted)) == 2
    assert monitor.current_session.started_at == clock.now


def test_stale_session_is_replaced_on_resume(store, monitor, clock) -> None:
    started = clock.now
    monitor.tick(clock.now)

    clock.advance(minutes=25)
    monitor.tick(clock.now)

    [persisted] = store.get_sessions()
    assert persisted.started_at == started
    assert persisted.duration_ms == 25 * 60_000
    assert monitor.current_session.started_at == clock.now


def test_stuck_is_reported_once_per_window(bus, monitor, clock) -> None:
    recorder = Recorder(bus, StuckDetected)
    monitor.tick(clock.now)

    clock.advance(minutes=16)
    monitor.tick(clock.now)
    clock.advance(minutes=1)
    monitor.tick(clock.now)

    [stuck] = recorder.events
    assert stuck.duration_ms == 16 * 60_000
    assert stuck.process_name == "code"
    assert monitor.current_session.stuck_count == 1


def test_high_momentum_is_never_stuck(bus, monitor, clock) -> None:
    recorder = Recorder(bus, StuckDetected)
    for _ in range(500):
        monitor.tick(clock.now)
        clock.advance(seconds=2)

    assert recorder.events == []


def test_wellness_fires_after_interval_while_coding(bus, store, monitor, clock) -> None:
    recorder = Recorder(bus, HydrationDue, EyestrainDue)
    monitor.tick(clock.now)

    clock.advance(minutes=21)
    monitor.tick(clock.now)
    clock.advance(seconds=2)
    monitor.tick(clock.now)

    assert recorder.events == [EyestrainDue()]

    store.merge_settings({"hydrationEnabled": False})
    clock.advance(minutes=10)
    monitor.tick(clock.now)

    assert HydrationDue() not in recorder.events


def test_wellness_waits_while_not_coding(bus, monitor, observer, clock) -> None:
    recorder = Recorder(bus, EyestrainDue)
    observer.show("chrome", "video")
    clock.advance(minutes=25)
    monitor.tick(clock.now)

    assert recorder.events == []


def test_window_change_is_published_once(bus, monitor, observer, clock) -> None:
    recorder = Recorder(bus, WindowChanged)
    monitor.tick(clock.now)
    monitor.tick(clock.advance(seconds=2))
    observer.show("firefox", "search")
    monitor.tick(clock.advance(seconds=2))

    assert recorder.events == [
        WindowChanged(process_name="code", title="main.py - beacon", is_coding=True),
        WindowChanged(process_name="firefox", title="search", is_coding=False),
    ]


def test_snapshot_is_sent_to_sinks(monitor, observer, clock) -> None:
    snapshots = []
    monitor.add_snapshot_sink(snapshots.append)
    monitor.start_session(clock.now)

    monitor.tick(clock.advance(seconds=30))
    observer.show("spotify", "music")
    monitor.tick(clock.advance(seconds=2))

    assert [s.state for s in snapshots] == [BehaviorState.IDLE, BehaviorState.IDLE]
    assert snapshots[0].is_coding is True
    assert snapshots[0].session_elapsed_ms == 30_000
    assert snapshots[1].process_name == "spotify"
    assert monitor.last_snapshot is snapshots[1]


def test_failed_observation_skips_tick(bus, monitor, observer, clock) -> None:
    recorder = Recorder(bus, WindowChanged, ActivityPulse)
    observer.fail = True

    assert monitor.tick(clock.now) is None
    assert recorder.events == []


def test_raising_observer_skips_tick(bus, store, clock) -> None:
    def broken(now):
        raise RuntimeError("probe crashed")

    monitor = ActivityMonitor(bus, store, broken, clock=clock)

    assert monitor.tick(clock.now) is None


class StubCoach:
    def __init__(self, text):
        self.text = text

    def is_enabled(self) -> bool:
        return True

    def summarize_session(self, session):
        return self.text


def test_long_session_requests_a_summary(bus, store, observer, clock) -> None:
    scheduler = Scheduler()
    received = threading.Event()
    messages = []

    def on_message(event: CoachingMessage) -> None:
        messages.append(event)
        received.set()

    bus.subscribe(CoachingMessage, on_message)
    monitor = ActivityMonitor(
        bus, store, observer, coach=StubCoach("Solid hour."), scheduler=scheduler, clock=clock
    )
    monitor.start_session(clock.now)
    monitor.end_session(clock.now + timedelta(minutes=11))

    assert received.wait(timeout=5)
    assert messages == [CoachingMessage(text="Solid hour.", kind="session_summary")]


class RecordingScheduler:
    def __init__(self):
        self.spawned = []

    def spawn(self, name, work, on_done=None):
        self.spawned.append(name)


def test_short_session_skips_summary(bus, store, observer, clock) -> None:
    scheduler = RecordingScheduler()
    monitor = ActivityMonitor(
        bus, store, observer, coach=StubCoach("unused"), scheduler=scheduler, clock=clock
    )

    monitor.start_session(clock.now)
    monitor.end_session(clock.now + timedelta(minutes=5))

    assert scheduler.spawned == []
    assert len(store.get_sessions()) == 1


def test_summaries_can_be_switched_off(bus, store, observer, clock) -> None:
    scheduler = RecordingScheduler()
    store.merge_settings({"claudeSessionSummaries": False})
    monitor = ActivityMonitor(
        bus, store, observer, coach=StubCoach("unused"), scheduler=scheduler, clock=clock
    )

    monitor.start_session(clock.now)
    monitor.end_session(clock.now + timedelta(minutes=30))

    assert scheduler.spawned == []
