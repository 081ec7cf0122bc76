"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from beacon.events import EventBus
from beacon.models import WindowObservation
from beacon.store import DocumentStore


class FakeClock:
    """Manually advanced replacement for ``datetime.now``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedObserver:
    """Returns whatever window the test last put in front of the user."""

    def __init__(self, process_name: str = "code", title: str = "main.py - beacon") -> None:
        self.process_name = process_name
        self.title = title
        self.fail = False

    def show(self, process_name: str, title: str) -> None:
        self.process_name = process_name
        self.title = title

    def __call__(self, now: datetime) -> Optional[WindowObservation]:
        if self.fail:
            return None
        return WindowObservation(process_name=self.process_name, title=self.title, captured_at=now)


class Recorder:
    """Collects every event of the given types published on a bus."""

    def __init__(self, bus: EventBus, *event_types: type) -> None:
        self.events: list = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type: type) -> list:
        return [event for event in self.events if type(event) is event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(tmp_path):
    store = DocumentStore(tmp_path / "beacon.sqlite3")
    yield store
    store.close()


@pytest.fixture
def observer() -> ScriptedObserver:
    return ScriptedObserver()
