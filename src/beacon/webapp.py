"""FastAPI application that exposes the companion's state over a local API."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .companion import Companion
from .config import EngineSettings
from .events import EventRecord
from .models import Project, ProjectStats, Reminder, ReminderType
from .paths import get_db_path
from .projects import DuplicateProjectError

logger = logging.getLogger(__name__)


class CompanionRunner:
    """Manage the companion engine alongside the web server."""

    def __init__(self, companion: Companion) -> None:
        self.companion = companion
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self.companion.is_running():
                return
            self.companion.start()
            logger.info("Companion engine started.")

    def stop(self) -> None:
        with self._lock:
            if not self.companion.is_running():
                return
            self.companion.stop()
            logger.info("Companion engine stopped.")

    def is_running(self) -> bool:
        return self.companion.is_running()


class ProjectPayload(BaseModel):
    name: str
    root_path: Optional[str] = None
    language: Optional[str] = None
    notes: str = ""
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class ReminderPayload(BaseModel):
    text: str
    type: ReminderType = ReminderType.ONE_SHOT
    fire_at: Optional[datetime] = None
    interval_ms: Optional[int] = Field(default=None, gt=0)
    recurring_time: Optional[str] = None
    project_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[EngineSettings] = None,
    companion: Optional[Companion] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    engine = companion or Companion(
        db_path=Path(db_path or get_db_path()),
        settings=settings or EngineSettings(),
    )
    runner = CompanionRunner(engine)

    app = FastAPI(title="Beacon", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.companion = engine
    app.state.companion_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            snapshot = companion.monitor.last_snapshot
            session = companion.monitor.current_session
            active = companion.registry.get_active_project()
        return {
            "engine_running": request.app.state.companion_runner.is_running(),
            "database_path": str(companion.store.db_path),
            "snapshot": snapshot.to_dict() if snapshot else None,
            "session_id": session.id if session else None,
            "active_project": _project_payload(active) if active else None,
        }

    @app.get("/api/projects")
    def list_projects(request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            projects = list(companion.store.get_projects().values())
            active_id = companion.registry.active_project_id
        return {
            "active_project_id": active_id,
            "projects": [_project_payload(project) for project in projects],
        }

    @app.post("/api/projects")
    def add_project(payload: ProjectPayload, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            try:
                project = companion.registry.add_project(
                    payload.name,
                    root_path=payload.root_path,
                    language=payload.language,
                    notes=payload.notes,
                    tags=payload.tags,
                )
            except DuplicateProjectError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"project": _project_payload(project)}

    @app.post("/api/projects/{project_id}/park")
    def park_project(project_id: str, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            project = companion.registry.park_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return {"project": _project_payload(project)}

    @app.get("/api/projects/{project_id}/stats")
    def project_stats(project_id: str, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            stats = companion.registry.get_project_stats(project_id)
        if stats is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return _stats_payload(stats)

    @app.get("/api/reminders")
    def list_reminders(request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            reminders = companion.reminders.get_reminders()
        return {"reminders": [_reminder_payload(reminder) for reminder in reminders]}

    @app.post("/api/reminders")
    def create_reminder(payload: ReminderPayload, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            project_name: Optional[str] = None
            if payload.project_id:
                project = companion.store.get_project(payload.project_id)
                if project is None:
                    raise HTTPException(status_code=404, detail="Project not found")
                project_name = project.name
            try:
                reminder = companion.reminders.add_reminder(
                    payload.text,
                    payload.type,
                    fire_at=payload.fire_at,
                    interval_ms=payload.interval_ms,
                    recurring_time=payload.recurring_time,
                    project_id=payload.project_id,
                    project_name=project_name,
                )
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"reminder": _reminder_payload(reminder)}

    @app.delete("/api/reminders/{reminder_id}")
    def delete_reminder(reminder_id: str, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            reminder = companion.reminders.delete_reminder(reminder_id)
        if reminder is None:
            raise HTTPException(status_code=404, detail="Reminder not found")
        return {"reminder": _reminder_payload(reminder)}

    @app.post("/api/reminders/{reminder_id}/complete")
    def complete_reminder(reminder_id: str, request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            reminder = companion.reminders.complete_reminder(reminder_id)
        if reminder is None:
            raise HTTPException(status_code=404, detail="Active reminder not found")
        return {"reminder": _reminder_payload(reminder)}

    @app.get("/api/sessions")
    def recent_sessions(
        request: Request,
        limit: int = Query(default=10, ge=1, le=500, description="Newest sessions to return."),
    ) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            sessions = companion.store.get_recent_sessions(limit=limit)
        return {"sessions": [session.to_record() for session in sessions]}

    @app.get("/api/skills")
    def skills(request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            return {"skills": companion.store.get_skills()}

    @app.get("/api/briefing")
    def briefing(request: Request) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        with companion.lock:
            items = companion.reminders.get_pending_for_briefing()
        return {
            "reminders": [
                {"id": item.id, "type": item.type.value, "text": item.text, "schedule": item.schedule}
                for item in items
            ]
        }

    @app.get("/api/events")
    def events(
        request: Request,
        name: Optional[str] = Query(
            default=None,
            description="Only return events with this name, e.g. activity:momentum-changed.",
        ),
    ) -> Dict[str, Any]:
        companion: Companion = request.app.state.companion
        records = companion.bus.history()
        if name:
            records = [record for record in records if record.event == name]
        return {"events": [_event_payload(record) for record in records]}

    return app


def _project_payload(project: Project) -> Dict[str, Any]:
    return project.to_record()


def _reminder_payload(reminder: Reminder) -> Dict[str, Any]:
    return reminder.to_record()


def _stats_payload(stats: ProjectStats) -> Dict[str, Any]:
    return {
        "project": _project_payload(stats.project),
        "session_count": stats.session_count,
        "total_time_ms": stats.total_time_ms,
        "goals_count": stats.goals_count,
        "completed_goals_count": stats.completed_goals_count,
        "last_session": stats.last_session.to_record() if stats.last_session else None,
        "days_since_active": stats.days_since_active,
    }


def _event_payload(record: EventRecord) -> Dict[str, Any]:
    return {
        "event": record.event,
        "timestamp": record.timestamp.isoformat(),
        "data": repr(record.data),
    }
