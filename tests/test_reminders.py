"""Tests for reminder scheduling, firing and briefing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from beacon.events import (
    ProjectSwitched,
    ReminderCompleted,
    ReminderCreated,
    ReminderDeleted,
    ReminderFired,
)
from beacon.models import ReminderStatus, ReminderType
from beacon.reminders import ReminderEngine, describe_schedule, parse_daily_time

from .conftest import Recorder


@pytest.fixture
def engine(bus, store, clock):
    engine = ReminderEngine(bus, store, clock=clock)
    engine.start()
    yield engine
    engine.stop()


def switch_to(bus, project_id: str, name: str = "beacon") -> None:
    bus.publish(ProjectSwitched(project_id=project_id, project_name=name, previous_id=None))


def test_parse_daily_time() -> None:
    assert parse_daily_time("07:05") == (7, 5)
    assert parse_daily_time(" 23:59 ") == (23, 59)
    for bad in ("24:00", "7pm", "12:60", ""):
        with pytest.raises(ValueError):
            parse_daily_time(bad)


def test_interval_reminder_fires_at_exact_interval(bus, engine, clock) -> None:
    recorder = Recorder(bus, ReminderFired)
    reminder = engine.add_reminder("Stretch", ReminderType.RECURRING, interval_ms=3_600_000)
    start = clock.now

    assert engine.check_due(start + timedelta(milliseconds=3_599_999)) == []
    [fired] = engine.check_due(start + timedelta(milliseconds=3_600_000))

    assert fired.id == reminder.id
    assert fired.fired_count == 1
    assert recorder.events == [
        ReminderFired(id=reminder.id, type="recurring", text="Stretch", project_name=None)
    ]
    assert engine.check_due(start + timedelta(minutes=90)) == []
    assert len(engine.check_due(start + timedelta(hours=2))) == 1


def test_one_shot_fires_once_and_completes(bus, store, engine, clock) -> None:
    recorder = Recorder(bus, ReminderFired, ReminderCompleted)
    reminder = engine.add_reminder(
        "Call back", ReminderType.ONE_SHOT, fire_at=clock.now + timedelta(minutes=30)
    )

    assert engine.check_due(clock.now + timedelta(minutes=29)) == []
    assert len(engine.check_due(clock.now + timedelta(minutes=31))) == 1
    assert engine.check_due(clock.now + timedelta(hours=5)) == []

    stored = store.get_reminder(reminder.id)
    assert stored.status is ReminderStatus.COMPLETED
    assert stored.fired_count == 1
    assert [type(event) for event in recorder.events] == [ReminderFired, ReminderCompleted]


def test_daily_reminder_fires_once_per_day(engine, clock) -> None:
    engine.add_reminder("Standup", ReminderType.RECURRING, recurring_time="17:30")
    today = clock.now.replace(hour=0, minute=0)

    assert engine.check_due(today.replace(hour=17, minute=29)) == []
    assert len(engine.check_due(today.replace(hour=17, minute=30))) == 1
    assert engine.check_due(today.replace(hour=23, minute=0)) == []

    tomorrow = today + timedelta(days=1)
    assert engine.check_due(tomorrow.replace(hour=8)) == []
    assert len(engine.check_due(tomorrow.replace(hour=17, minute=31))) == 1


def test_interval_wins_over_daily_time(store, engine, clock) -> None:
    reminder = engine.add_reminder(
        "Water", ReminderType.RECURRING, interval_ms=600_000, recurring_time="23:00"
    )

    assert len(engine.check_due(clock.now + timedelta(minutes=10))) == 1
    assert store.get_reminder(reminder.id).fired_count == 1


def test_project_context_fires_once_per_lifetime(bus, store, engine, clock) -> None:
    recorder = Recorder(bus, ReminderFired)
    reminder = engine.add_reminder(
        "Update the changelog",
        ReminderType.PROJECT_CONTEXT,
        project_id="p1",
        project_name="beacon",
    )

    switch_to(bus, "p2", "other")
    switch_to(bus, "p1")
    switch_to(bus, "p1")

    assert recorder.events == [
        ReminderFired(
            id=reminder.id, type="project-context", text="Update the changelog", project_name="beacon"
        )
    ]
    assert store.get_reminder(reminder.id).fired_for_session == engine.session_token

    engine.stop()
    restarted = ReminderEngine(bus, store, clock=clock)
    restarted.start()
    try:
        switch_to(bus, "p1")
    finally:
        restarted.stop()

    assert len(recorder.events) == 2
    assert store.get_reminder(reminder.id).status is ReminderStatus.ACTIVE


def test_project_context_is_ignored_by_timer(engine, clock) -> None:
    engine.add_reminder("Later", ReminderType.PROJECT_CONTEXT, project_id="p1")

    assert engine.check_due(clock.now + timedelta(days=30)) == []


def test_validation_errors(engine) -> None:
    with pytest.raises(ValueError):
        engine.add_reminder("x", ReminderType.ONE_SHOT)
    with pytest.raises(ValueError):
        engine.add_reminder("x", ReminderType.RECURRING)
    with pytest.raises(ValueError):
        engine.add_reminder("x", ReminderType.RECURRING, interval_ms=0)
    with pytest.raises(ValueError):
        engine.add_reminder("x", ReminderType.RECURRING, recurring_time="25:00")
    with pytest.raises(ValueError):
        engine.add_reminder("x", ReminderType.PROJECT_CONTEXT)
    with pytest.raises(ValueError):
        engine.add_reminder("x", "weekly")
    assert engine.get_reminders() == []


def test_blank_text_gets_a_default(bus, engine, clock) -> None:
    recorder = Recorder(bus, ReminderCreated)

    reminder = engine.add_reminder("   ", "one-shot", fire_at=clock.now)

    assert reminder.text == "Reminder"
    assert reminder.type is ReminderType.ONE_SHOT
    assert recorder.events == [ReminderCreated(reminder=reminder)]


def test_delete_and_complete(bus, engine, clock) -> None:
    recorder = Recorder(bus, ReminderDeleted, ReminderCompleted)
    first = engine.add_reminder("a", ReminderType.RECURRING, interval_ms=60_000)
    second = engine.add_reminder("b", ReminderType.RECURRING, interval_ms=60_000)

    engine.delete_reminder(first.id)
    engine.complete_reminder(second.id)

    assert [r.id for r in engine.get_reminders()] == [second.id]
    assert engine.get_active_reminders() == []
    assert engine.check_due(clock.now + timedelta(hours=1)) == []
    assert engine.complete_reminder(second.id) is None
    assert engine.delete_reminder("missing") is None
    assert [type(event) for event in recorder.events] == [ReminderDeleted, ReminderCompleted]


def test_briefing_describes_each_schedule(engine) -> None:
    engine.add_reminder("Demo", "one-shot", fire_at=datetime(2026, 3, 2, 17, 0))
    engine.add_reminder("Walk", "recurring", interval_ms=7_200_000)
    engine.add_reminder("Eyes", "recurring", interval_ms=5_400_000)
    engine.add_reminder("Water", "recurring", interval_ms=900_000)
    engine.add_reminder("Plan", "recurring", recurring_time="08:15")
    engine.add_reminder("Tests", "project-context", project_id="p1", project_name="beacon")
    gone = engine.add_reminder("Gone", "recurring", interval_ms=60_000)
    engine.delete_reminder(gone.id)

    schedules = [item.schedule for item in engine.get_pending_for_briefing()]

    assert schedules == [
        "At 2026-03-02 17:00",
        "Every 2h",
        "Every 1.5h",
        "Every 15m",
        "Daily at 08:15",
        'When "beacon" opens',
    ]


def test_describe_schedule_falls_back_to_project_id(engine) -> None:
    reminder = engine.add_reminder("x", "project-context", project_id="p9")

    assert describe_schedule(reminder) == 'When "p9" opens'


def test_aware_fire_at_is_stored_as_local_time(engine, clock) -> None:
    fire_at = datetime(2020, 1, 1, tzinfo=timezone.utc)

    reminder = engine.add_reminder("Renew", ReminderType.ONE_SHOT, fire_at=fire_at)

    assert reminder.fire_at.tzinfo is None
    assert reminder.fire_at == fire_at.astimezone().replace(tzinfo=None)
    assert [r.id for r in engine.check_due(clock.now)] == [reminder.id]


def test_failing_reminder_does_not_block_others(monkeypatch, store, engine, clock) -> None:
    failing = engine.add_reminder("Failing", ReminderType.ONE_SHOT, fire_at=clock.now)
    healthy = engine.add_reminder("Healthy", ReminderType.RECURRING, interval_ms=1_000)
    save = store.save_reminder

    def flaky_save(reminder):
        if reminder.id == failing.id:
            raise RuntimeError("disk full")
        return save(reminder)

    monkeypatch.setattr(store, "save_reminder", flaky_save)

    fired = engine.check_due(clock.now + timedelta(hours=1))

    assert [r.id for r in fired] == [healthy.id]
