"""Domain records for sessions, projects, reminders and engine state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _load_time(value: Optional[str]) -> Optional[datetime]:
    return to_local_naive(datetime.fromisoformat(value)) if value else None


class BehaviorState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    FOCUSED = "focused"
    CODING = "coding"
    EXCITED = "excited"
    FIRE = "fire"

    @classmethod
    def from_momentum(cls, level: int, is_coding: bool) -> "BehaviorState":
        if not is_coding:
            return cls.IDLE
        ladder = (cls.IDLE, cls.THINKING, cls.FOCUSED, cls.CODING, cls.EXCITED, cls.FIRE)
        return ladder[max(0, min(level, len(ladder) - 1))]


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PARKED = "parked"


class ReminderType(str, Enum):
    ONE_SHOT = "one-shot"
    RECURRING = "recurring"
    PROJECT_CONTEXT = "project-context"


class ReminderStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DELETED = "deleted"


@dataclass(slots=True)
class WindowObservation:
    """A single foreground-window sample; never persisted."""

    process_name: str
    title: str
    captured_at: datetime


@dataclass(slots=True)
class Session:
    """A contiguous span of coding activity bounded by idle gaps."""

    id: str
    started_at: datetime
    project_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    duration_ms: int = 0
    files_edited: int = 0
    peak_momentum: int = 0
    stuck_count: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "startedAt": _dump_time(self.started_at),
            "endedAt": _dump_time(self.ended_at),
            "durationMs": self.duration_ms,
            "filesEdited": self.files_edited,
            "peakMomentum": self.peak_momentum,
            "stuckCount": self.stuck_count,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Session":
        return cls(
            id=record["id"],
            project_id=record.get("projectId"),
            started_at=_load_time(record["startedAt"]),  # type: ignore[arg-type]
            ended_at=_load_time(record.get("endedAt")),
            duration_ms=int(record.get("durationMs") or 0),
            files_edited=int(record.get("filesEdited") or 0),
            peak_momentum=int(record.get("peakMomentum") or 0),
            stuck_count=int(record.get("stuckCount") or 0),
        )


@dataclass(slots=True)
class Project:
    """A tracked project, discovered on disk or added by hand."""

    name: str
    root_path: Optional[str] = None
    id: Optional[str] = None
    language: str = "Unknown"
    git_remote: Optional[str] = None
    is_git: bool = False
    status: ProjectStatus = ProjectStatus.ACTIVE
    total_time_ms: int = 0
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    notes: str = ""
    tags: list[str] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rootPath": self.root_path,
            "language": self.language,
            "gitRemote": self.git_remote,
            "isGit": self.is_git,
            "status": self.status.value,
            "totalTimeMs": self.total_time_ms,
            "lastActiveAt": _dump_time(self.last_active_at),
            "createdAt": _dump_time(self.created_at),
            "updatedAt": _dump_time(self.updated_at),
            "notes": self.notes,
            "tags": list(self.tags),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Project":
        return cls(
            id=record.get("id"),
            name=record["name"],
            root_path=record.get("rootPath"),
            language=record.get("language") or "Unknown",
            git_remote=record.get("gitRemote"),
            is_git=bool(record.get("isGit")),
            status=ProjectStatus(record.get("status") or ProjectStatus.ACTIVE.value),
            total_time_ms=int(record.get("totalTimeMs") or 0),
            last_active_at=_load_time(record.get("lastActiveAt")),
            created_at=_load_time(record.get("createdAt")),
            updated_at=_load_time(record.get("updatedAt")),
            notes=record.get("notes") or "",
            tags=list(record.get("tags") or []),
        )


@dataclass(slots=True)
class Reminder:
    """A one-shot, recurring or project-context reminder.

    Which scheduling field matters depends on ``type``: ``fire_at`` for
    one-shot reminders, ``interval_ms`` or ``recurring_time`` ("HH:MM") for
    recurring ones and ``project_id`` for project-context reminders.
    """

    type: ReminderType
    text: str
    created_at: datetime
    id: Optional[str] = None
    status: ReminderStatus = ReminderStatus.ACTIVE
    fire_at: Optional[datetime] = None
    interval_ms: Optional[int] = None
    recurring_time: Optional[str] = None
    last_fired_at: Optional[datetime] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    fired_for_session: Optional[str] = None
    fired_count: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "text": self.text,
            "status": self.status.value,
            "createdAt": _dump_time(self.created_at),
            "fireAt": _dump_time(self.fire_at),
            "intervalMs": self.interval_ms,
            "recurringTime": self.recurring_time,
            "lastFiredAt": _dump_time(self.last_fired_at),
            "projectId": self.project_id,
            "projectName": self.project_name,
            "firedForSession": self.fired_for_session,
            "firedCount": self.fired_count,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Reminder":
        return cls(
            id=record.get("id"),
            type=ReminderType(record["type"]),
            text=record.get("text") or "",
            status=ReminderStatus(record.get("status") or ReminderStatus.ACTIVE.value),
            created_at=_load_time(record["createdAt"]),  # type: ignore[arg-type]
            fire_at=_load_time(record.get("fireAt")),
            interval_ms=record.get("intervalMs"),
            recurring_time=record.get("recurringTime"),
            last_fired_at=_load_time(record.get("lastFiredAt")),
            project_id=record.get("projectId"),
            project_name=record.get("projectName"),
            fired_for_session=record.get("firedForSession"),
            fired_count=int(record.get("firedCount") or 0),
        )


@dataclass(slots=True)
class StateSnapshot:
    state: BehaviorState
    momentum: int
    process_name: str
    title: str
    is_coding: bool
    session_elapsed_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "momentum": self.momentum,
            "process_name": self.process_name,
            "title": self.title,
            "is_coding": self.is_coding,
            "session_elapsed_ms": self.session_elapsed_ms,
        }


@dataclass(slots=True)
class ProjectStats:
    project: Project
    session_count: int
    total_time_ms: int
    goals_count: int
    completed_goals_count: int
    last_session: Optional[Session]
    days_since_active: Optional[int]


@dataclass(slots=True)
class BriefingItem:
    id: Optional[str]
    type: ReminderType
    text: str
    schedule: str
