"""Section-scoped document store backed by SQLite.

All reads and writes hit an in-memory cache. Changed sections are marked
dirty and written to disk by :meth:`DocumentStore.flush_if_needed`, which the
companion calls on a short timer, or by :meth:`DocumentStore.flush` on
shutdown.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from .config import DEFAULT_SETTINGS
from .db import (
    data_version,
    immediate_transaction,
    load_sections,
    open_database,
    upsert_sections,
)
from .models import Project, Reminder, Session

logger = logging.getLogger(__name__)

MAX_SESSIONS = 500

SECTION_DEFAULTS: dict[str, Any] = {
    "settings": {},
    "projects": {},
    "sessions": [],
    "goals": {},
    "reminders": [],
    "skills": {},
    "streak": {"current": 0, "longest": 0, "lastDate": None},
}


def new_id() -> str:
    return uuid.uuid4().hex


class DocumentStore:
    """In-memory cache of named sections with debounced SQLite writes."""

    def __init__(
        self,
        db_path: Path | str,
        flush_interval: timedelta = timedelta(seconds=2),
    ) -> None:
        self.db_path = db_path
        self.flush_interval = flush_interval
        self._conn = open_database(db_path, check_same_thread=False)
        self._lock = threading.RLock()
        self._dirty: set[str] = set()
        self._touched_settings: set[str] = set()
        self._last_flush_time = datetime.now()

        stored = load_sections(self._conn)
        self._cache: dict[str, Any] = copy.deepcopy(SECTION_DEFAULTS)
        self._cache.update(stored)
        self._cache["settings"] = {**DEFAULT_SETTINGS, **stored.get("settings", {})}
        self._data_version = data_version(self._conn)

    # Section access

    def get(self, section: str, key: Optional[str] = None) -> Any:
        with self._lock:
            data = self._cache.get(section)
            if key is None:
                return copy.deepcopy(data)
            return copy.deepcopy(data.get(key)) if isinstance(data, dict) else None

    def set(self, section: str, key: str, value: Any) -> None:
        with self._lock:
            data = self._cache.setdefault(section, {})
            data[key] = value
            self._mark_locked(section, (key,))

    def merge(self, section: str, partial: dict[str, Any]) -> None:
        with self._lock:
            current = self._cache.get(section) or {}
            self._cache[section] = {**current, **partial}
            self._mark_locked(section, partial)

    def _mark_locked(self, section: str, keys) -> None:
        self._dirty.add(section)
        if section == "settings":
            self._touched_settings.update(keys)

    # Settings

    def get_setting(self, key: str) -> Any:
        return self.get("settings", key)

    def get_settings(self) -> dict[str, Any]:
        return self.get("settings")

    def merge_settings(self, partial: dict[str, Any]) -> None:
        self.merge("settings", partial)

    # Projects

    def get_projects(self) -> dict[str, Project]:
        with self._lock:
            return {
                project_id: Project.from_record(record)
                for project_id, record in self._cache["projects"].items()
            }

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            record = self._cache["projects"].get(project_id)
            return Project.from_record(record) if record else None

    def find_project_by_path(self, root_path: str) -> Optional[Project]:
        for project in self.get_projects().values():
            if project.root_path == root_path:
                return project
        return None

    def save_project(self, project: Project) -> Project:
        with self._lock:
            if not project.id:
                project.id = new_id()
            self._cache["projects"][project.id] = project.to_record()
            self._dirty.add("projects")
        return project

    # Sessions

    def add_session(self, session: Session) -> Session:
        with self._lock:
            sessions = self._cache["sessions"]
            sessions.append(session.to_record())
            if len(sessions) > MAX_SESSIONS:
                del sessions[: len(sessions) - MAX_SESSIONS]
            self._dirty.add("sessions")
        return session

    def get_sessions(self) -> list[Session]:
        with self._lock:
            return [Session.from_record(record) for record in self._cache["sessions"]]

    def get_sessions_for_project(
        self, project_id: str, limit: Optional[int] = 20
    ) -> list[Session]:
        sessions = [s for s in self.get_sessions() if s.project_id == project_id]
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return sessions[:limit]

    def get_recent_sessions(self, limit: int = 10) -> list[Session]:
        sessions = sorted(self.get_sessions(), key=lambda s: s.started_at, reverse=True)
        return sessions[:limit]

    # Goals

    def get_goals(self, project_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._cache["goals"].get(project_id, []))

    def add_goal(
        self, project_id: str, title: str, due_date: Optional[datetime] = None
    ) -> dict[str, Any]:
        goal = {
            "id": new_id(),
            "title": title,
            "dueDate": due_date.isoformat() if due_date else None,
            "createdAt": datetime.now().isoformat(),
            "completed": False,
        }
        with self._lock:
            self._cache["goals"].setdefault(project_id, []).append(goal)
            self._dirty.add("goals")
        return dict(goal)

    def complete_goal(self, project_id: str, goal_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            for goal in self._cache["goals"].get(project_id, []):
                if goal["id"] == goal_id:
                    goal["completed"] = True
                    goal["completedAt"] = datetime.now().isoformat()
                    self._dirty.add("goals")
                    return dict(goal)
        return None

    # Reminders

    def get_reminders(self) -> list[Reminder]:
        with self._lock:
            return [Reminder.from_record(record) for record in self._cache["reminders"]]

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        for reminder in self.get_reminders():
            if reminder.id == reminder_id:
                return reminder
        return None

    def add_reminder(self, reminder: Reminder) -> Reminder:
        with self._lock:
            if not reminder.id:
                reminder.id = new_id()
            self._cache["reminders"].append(reminder.to_record())
            self._dirty.add("reminders")
        return reminder

    def save_reminder(self, reminder: Reminder) -> Reminder:
        """Replace the stored record that shares ``reminder.id``."""
        with self._lock:
            records = self._cache["reminders"]
            for index, record in enumerate(records):
                if record["id"] == reminder.id:
                    records[index] = reminder.to_record()
                    self._dirty.add("reminders")
                    return reminder
        raise ValueError(f"No reminder found for id={reminder.id}")

    # Skills

    def add_skill_time(self, language: str, duration_ms: int) -> None:
        with self._lock:
            skill = self._cache["skills"].setdefault(language, {"totalMs": 0, "sessions": 0})
            skill["totalMs"] += duration_ms
            skill["sessions"] += 1
            self._dirty.add("skills")

    def get_skills(self) -> dict[str, Any]:
        return self.get("skills")

    # Streak

    def update_streak(self, today: Optional[date] = None) -> dict[str, Any]:
        """Advance the consecutive-day counter for ``today``."""
        today = today or date.today()
        with self._lock:
            streak = self._cache["streak"]
            if streak.get("lastDate") == today.isoformat():
                return dict(streak)
            yesterday = (today - timedelta(days=1)).isoformat()
            if streak.get("lastDate") == yesterday:
                streak["current"] = streak.get("current", 0) + 1
            else:
                streak["current"] = 1
            streak["longest"] = max(streak.get("longest", 0), streak["current"])
            streak["lastDate"] = today.isoformat()
            self._dirty.add("streak")
            return dict(streak)

    # Persistence

    def flush_if_needed(self) -> None:
        """Write dirty sections and pick up other writers, at most once per interval."""
        with self._lock:
            if datetime.now() - self._last_flush_time >= self.flush_interval:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self._dirty and data_version(self._conn) == self._data_version:
            return
        with immediate_transaction(self._conn):
            version = data_version(self._conn)
            if version != self._data_version:
                self._absorb_locked(load_sections(self._conn))
            sections = [(name, self._cache[name]) for name in sorted(self._dirty)]
            upsert_sections(self._conn, sections)
        self._data_version = version
        if sections:
            logger.debug("Flushed sections: %s", ", ".join(name for name, _ in sections))
        self._dirty.clear()
        self._touched_settings.clear()
        self._last_flush_time = datetime.now()

    def _absorb_locked(self, stored: dict[str, Any]) -> None:
        """Fold sections written by another process (such as the CLI) into the cache.

        Clean sections are replaced by the stored copy. Dirty sections keep
        local changes and gain any records whose id is unknown locally; for
        settings only the keys changed here override the stored values.
        """
        logger.debug("Database changed externally; merging sections.")
        for name, body in stored.items():
            if name == "settings":
                local = {key: self._cache["settings"][key] for key in self._touched_settings}
                self._cache["settings"] = {**DEFAULT_SETTINGS, **body, **local}
            elif name not in self._dirty:
                self._cache[name] = body
            elif name == "projects":
                for project_id, record in body.items():
                    self._cache["projects"].setdefault(project_id, record)
            elif name == "goals":
                for project_id, goals in body.items():
                    _extend_unknown(self._cache["goals"].setdefault(project_id, []), goals)
            elif name in ("reminders", "sessions"):
                _extend_unknown(self._cache[name], body)
                if name == "sessions":
                    sessions = self._cache["sessions"]
                    sessions.sort(key=lambda record: record.get("startedAt") or "")
                    del sessions[: max(0, len(sessions) - MAX_SESSIONS)]

    def close(self) -> None:
        try:
            self.flush()
        finally:
            self._conn.close()


def _extend_unknown(records: list[dict[str, Any]], incoming: list[dict[str, Any]]) -> None:
    known = {record.get("id") for record in records}
    records.extend(record for record in incoming if record.get("id") not in known)
