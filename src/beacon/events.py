"""In-process publish/subscribe bus and the events it carries."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, ClassVar, Optional, TypeVar

from .models import Project, Reminder, Session

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 200


@dataclass(frozen=True, slots=True)
class Event:
    """Base class for every message published on the bus."""

    name: ClassVar[str] = "event"


# Activity


@dataclass(frozen=True, slots=True)
class WindowChanged(Event):
    name: ClassVar[str] = "activity:window-changed"

    process_name: str
    title: str
    is_coding: bool


@dataclass(frozen=True, slots=True)
class ActivityPulse(Event):
    name: ClassVar[str] = "activity:pulse"

    process_name: str
    title: str
    momentum: int


@dataclass(frozen=True, slots=True)
class MomentumChanged(Event):
    name: ClassVar[str] = "activity:momentum-changed"

    level: int


@dataclass(frozen=True, slots=True)
class ActivityIdle(Event):
    name: ClassVar[str] = "activity:idle"

    idle_ms: int


@dataclass(frozen=True, slots=True)
class ActivityResumed(Event):
    name: ClassVar[str] = "activity:resumed"

    process_name: str
    title: str


@dataclass(frozen=True, slots=True)
class StuckDetected(Event):
    name: ClassVar[str] = "activity:stuck-detected"

    duration_ms: int
    process_name: str
    title: str


# Sessions


@dataclass(frozen=True, slots=True)
class SessionStarted(Event):
    name: ClassVar[str] = "session:start"

    session_id: str
    started_at: datetime


@dataclass(frozen=True, slots=True)
class SessionEnded(Event):
    name: ClassVar[str] = "session:end"

    session: Session


# Wellness


@dataclass(frozen=True, slots=True)
class WellnessDue(Event):
    category: ClassVar[str] = ""


@dataclass(frozen=True, slots=True)
class HydrationDue(WellnessDue):
    name: ClassVar[str] = "wellness:hydration"
    category: ClassVar[str] = "hydration"


@dataclass(frozen=True, slots=True)
class EyestrainDue(WellnessDue):
    name: ClassVar[str] = "wellness:eyestrain"
    category: ClassVar[str] = "eyestrain"


@dataclass(frozen=True, slots=True)
class PostureDue(WellnessDue):
    name: ClassVar[str] = "wellness:posture"
    category: ClassVar[str] = "posture"


# Projects


@dataclass(frozen=True, slots=True)
class ProjectDetected(Event):
    name: ClassVar[str] = "project:detected"

    project: Project


@dataclass(frozen=True, slots=True)
class ProjectSwitched(Event):
    name: ClassVar[str] = "project:switched"

    project_id: str
    project_name: str
    previous_id: Optional[str]


@dataclass(frozen=True, slots=True)
class ProjectAdded(Event):
    name: ClassVar[str] = "project:added"

    project: Project


@dataclass(frozen=True, slots=True)
class ProjectParked(Event):
    name: ClassVar[str] = "project:parked"

    project: Project


# Reminders


@dataclass(frozen=True, slots=True)
class ReminderCreated(Event):
    name: ClassVar[str] = "reminder:created"

    reminder: Reminder


@dataclass(frozen=True, slots=True)
class ReminderFired(Event):
    name: ClassVar[str] = "reminder:fired"

    id: str
    type: str
    text: str
    project_name: Optional[str]


@dataclass(frozen=True, slots=True)
class ReminderCompleted(Event):
    name: ClassVar[str] = "reminder:completed"

    reminder: Reminder


@dataclass(frozen=True, slots=True)
class ReminderDeleted(Event):
    name: ClassVar[str] = "reminder:deleted"

    reminder: Reminder


# Coaching


@dataclass(frozen=True, slots=True)
class CoachingMessage(Event):
    name: ClassVar[str] = "coach:response"

    text: str
    kind: str = "session_summary"


E = TypeVar("E", bound=Event)


@dataclass(frozen=True, slots=True)
class EventRecord:
    event: str
    data: Event
    timestamp: datetime = field(default_factory=datetime.now)


class EventBus:
    """Synchronous pub/sub hub keyed by event class.

    Handlers run in subscription order on the publishing thread. A failing
    handler is logged and skipped; it never reaches the publisher. Handlers
    may publish further events, which are delivered before the outer
    ``publish`` call returns.
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._handlers: dict[type[Event], list[Callable[[Event], None]]] = {}
        self._history: deque[EventRecord] = deque(maxlen=history_limit)
        self._lock = threading.RLock()

    def subscribe(
        self, event_type: type[E], handler: Callable[[E], None]
    ) -> Callable[[], None]:
        """Register ``handler`` and return a function that removes it.

        A handler is registered at most once per event type: subscribing it
        again is a no-op, and any of the returned functions removes the single
        registration.
        """
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def subscribe_once(
        self, event_type: type[E], handler: Callable[[E], None]
    ) -> Callable[[], None]:
        def wrapper(event: E) -> None:
            try:
                handler(event)
            finally:
                self.unsubscribe(event_type, wrapper)

        return self.subscribe(event_type, wrapper)

    def unsubscribe(self, event_type: type[Event], handler: Callable) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Event) -> None:
        with self._lock:
            self._history.append(EventRecord(event=event.name, data=event))
            handlers = list(self._handlers.get(type(event), ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for %s failed.", event.name)

    def history(self, event_type: Optional[type[Event]] = None) -> list[EventRecord]:
        with self._lock:
            if event_type is None:
                return list(self._history)
            return [record for record in self._history if type(record.data) is event_type]

    def subscriber_count(self, event_type: type[Event]) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, ()))
