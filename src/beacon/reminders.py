"""Scheduling and firing of one-shot, recurring and project-context reminders."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import EngineSettings
from .events import (
    EventBus,
    ProjectSwitched,
    ReminderCompleted,
    ReminderCreated,
    ReminderDeleted,
    ReminderFired,
)
from .models import BriefingItem, Reminder, ReminderStatus, ReminderType, to_local_naive
from .runtime import RepeatingTimer, Scheduler
from .store import DocumentStore

logger = logging.getLogger(__name__)

_DAILY_TIME = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_daily_time(value: str) -> tuple[int, int]:
    """Parse an ``HH:MM`` local time."""
    match = _DAILY_TIME.match(value.strip())
    if not match:
        raise ValueError(f"Invalid daily time {value!r}; expected HH:MM")
    return int(match.group(1)), int(match.group(2))


class ReminderEngine:
    """Checks reminders on a timer and on project switches."""

    def __init__(
        self,
        bus: EventBus,
        store: DocumentStore,
        settings: Optional[EngineSettings] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._bus = bus
        self._store = store
        self.settings = settings or EngineSettings()
        self._scheduler = scheduler
        self._clock = clock
        # Identifies this process lifetime for project-context reminders.
        self.session_token = uuid.uuid4().hex
        self._check_timer: Optional[RepeatingTimer] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        self._unsubscribe = self._bus.subscribe(ProjectSwitched, self._on_project_switched)
        if self._scheduler is not None:
            self._check_timer = self._scheduler.every(
                "reminder-check", self.settings.reminder_check_interval, self.check_due
            )

    def stop(self) -> None:
        if self._check_timer is not None:
            self._check_timer.cancel()
            self._check_timer = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Records

    def get_reminders(self) -> list[Reminder]:
        return [r for r in self._store.get_reminders() if r.status != ReminderStatus.DELETED]

    def get_active_reminders(self) -> list[Reminder]:
        return [r for r in self._store.get_reminders() if r.status == ReminderStatus.ACTIVE]

    def add_reminder(
        self,
        text: str,
        type: ReminderType | str = ReminderType.ONE_SHOT,
        *,
        fire_at: Optional[datetime] = None,
        interval_ms: Optional[int] = None,
        recurring_time: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> Reminder:
        reminder_type = ReminderType(type)
        if fire_at is not None:
            fire_at = to_local_naive(fire_at)
        if reminder_type is ReminderType.ONE_SHOT and fire_at is None:
            raise ValueError("One-shot reminders need fire_at")
        if reminder_type is ReminderType.RECURRING:
            if recurring_time is not None:
                parse_daily_time(recurring_time)
            elif not interval_ms or interval_ms <= 0:
                raise ValueError("Recurring reminders need interval_ms or recurring_time")
        if reminder_type is ReminderType.PROJECT_CONTEXT and not project_id:
            raise ValueError("Project-context reminders need project_id")

        reminder = Reminder(
            type=reminder_type,
            text=text.strip() or "Reminder",
            created_at=self._clock(),
            fire_at=fire_at,
            interval_ms=interval_ms,
            recurring_time=recurring_time.strip() if recurring_time else None,
            project_id=project_id,
            project_name=project_name,
        )
        self._store.add_reminder(reminder)
        self._bus.publish(ReminderCreated(reminder=reminder))
        return reminder

    def delete_reminder(self, reminder_id: str) -> Optional[Reminder]:
        reminder = self._store.get_reminder(reminder_id)
        if reminder is None:
            return None
        reminder.status = ReminderStatus.DELETED
        self._store.save_reminder(reminder)
        self._bus.publish(ReminderDeleted(reminder=reminder))
        return reminder

    def complete_reminder(self, reminder_id: str) -> Optional[Reminder]:
        reminder = self._store.get_reminder(reminder_id)
        if reminder is None or reminder.status != ReminderStatus.ACTIVE:
            return None
        reminder.status = ReminderStatus.COMPLETED
        self._store.save_reminder(reminder)
        self._bus.publish(ReminderCompleted(reminder=reminder))
        return reminder

    # Checks

    def check_due(self, now: Optional[datetime] = None) -> list[Reminder]:
        """Fire every time-based reminder that is due at ``now``."""
        now = to_local_naive(now or self._clock())
        fired: list[Reminder] = []
        for reminder in self.get_active_reminders():
            try:
                if self._check_one(reminder, now):
                    fired.append(reminder)
            except Exception:
                logger.exception("Checking reminder %s failed.", reminder.id)
        return fired

    def _check_one(self, reminder: Reminder, now: datetime) -> bool:
        if reminder.type is ReminderType.ONE_SHOT:
            if not reminder.fire_at or now < reminder.fire_at:
                return False
            self._fire(reminder)
            reminder.status = ReminderStatus.COMPLETED
            reminder.last_fired_at = now
            reminder.fired_count += 1
            self._store.save_reminder(reminder)
            self._bus.publish(ReminderCompleted(reminder=reminder))
            return True
        if reminder.type is ReminderType.RECURRING and self._recurring_due(reminder, now):
            self._fire(reminder)
            reminder.last_fired_at = now
            reminder.fired_count += 1
            self._store.save_reminder(reminder)
            return True
        return False

    @staticmethod
    def _recurring_due(reminder: Reminder, now: datetime) -> bool:
        if reminder.interval_ms:
            last_fired = reminder.last_fired_at or reminder.created_at
            return now - last_fired >= timedelta(milliseconds=reminder.interval_ms)
        if reminder.recurring_time:
            try:
                hour, minute = parse_daily_time(reminder.recurring_time)
            except ValueError:
                logger.warning("Reminder %s has a bad daily time %r", reminder.id, reminder.recurring_time)
                return False
            target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
            last_day = reminder.last_fired_at.date() if reminder.last_fired_at else None
            return now >= target and last_day != now.date()
        return False

    def _on_project_switched(self, event: ProjectSwitched) -> None:
        now = self._clock()
        for reminder in self.get_active_reminders():
            if reminder.type is not ReminderType.PROJECT_CONTEXT:
                continue
            if reminder.project_id != event.project_id:
                continue
            if reminder.fired_for_session == self.session_token:
                continue
            self._fire(reminder)
            reminder.last_fired_at = now
            reminder.fired_for_session = self.session_token
            reminder.fired_count += 1
            self._store.save_reminder(reminder)

    def _fire(self, reminder: Reminder) -> None:
        logger.info("Reminder fired: %s", reminder.text)
        self._bus.publish(
            ReminderFired(
                id=reminder.id or "",
                type=reminder.type.value,
                text=reminder.text,
                project_name=reminder.project_name,
            )
        )

    # Briefing

    def get_pending_for_briefing(self) -> list[BriefingItem]:
        items = []
        for reminder in self.get_active_reminders():
            items.append(
                BriefingItem(
                    id=reminder.id,
                    type=reminder.type,
                    text=reminder.text,
                    schedule=describe_schedule(reminder),
                )
            )
        return items


def describe_schedule(reminder: Reminder) -> str:
    if reminder.type is ReminderType.ONE_SHOT and reminder.fire_at:
        return f"At {reminder.fire_at:%Y-%m-%d %H:%M}"
    if reminder.type is ReminderType.RECURRING and reminder.interval_ms:
        hours = reminder.interval_ms / 3_600_000
        if hours >= 1:
            return f"Every {hours:g}h"
        return f"Every {round(reminder.interval_ms / 60_000)}m"
    if reminder.type is ReminderType.RECURRING and reminder.recurring_time:
        return f"Daily at {reminder.recurring_time}"
    if reminder.type is ReminderType.PROJECT_CONTEXT:
        return f'When "{reminder.project_name or reminder.project_id}" opens'
    return ""
