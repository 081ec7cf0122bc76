"""Configuration models and defaults for the companion engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any


@dataclass(slots=True)
class EngineSettings:
    """Runtime timing configuration shared by the engine components."""

    poll_interval: timedelta = timedelta(seconds=2)
    idle_threshold: timedelta = timedelta(minutes=5)
    session_gap: timedelta = timedelta(minutes=10)
    stuck_threshold: timedelta = timedelta(minutes=15)
    momentum_window: timedelta = timedelta(minutes=5)
    min_session: timedelta = timedelta(seconds=60)
    summary_min_duration: timedelta = timedelta(minutes=10)
    probe_timeout: timedelta = timedelta(seconds=3)
    coach_timeout: timedelta = timedelta(seconds=15)
    reminder_check_interval: timedelta = timedelta(seconds=15)
    rescan_interval: timedelta = timedelta(minutes=10)
    flush_interval: timedelta = timedelta(seconds=2)
    scan_depth: int = 2

    @classmethod
    def from_intervals(
        cls,
        poll_seconds: float,
        idle_minutes: float,
        session_gap_minutes: float | None = None,
        reminder_seconds: float | None = None,
    ) -> "EngineSettings":
        session_gap = (
            session_gap_minutes
            if session_gap_minutes is not None
            else max(idle_minutes * 2, 10.0)
        )
        reminder = reminder_seconds if reminder_seconds is not None else 15.0
        return cls(
            poll_interval=timedelta(seconds=poll_seconds),
            idle_threshold=timedelta(minutes=idle_minutes),
            session_gap=timedelta(minutes=session_gap),
            reminder_check_interval=timedelta(seconds=reminder),
        )


# Defaults for the user-editable ``settings`` storage section.
DEFAULT_SETTINGS: dict[str, Any] = {
    # Wellness
    "hydrationEnabled": True,
    "hydrationIntervalMinutes": 30,
    "eyestrainEnabled": True,
    "eyestrainIntervalMinutes": 20,
    "postureEnabled": True,
    "postureIntervalMinutes": 45,
    # Coaching
    "claudeEnabled": False,
    "claudeApiKey": "",
    "claudeModel": "claude-sonnet-4-6",
    "claudeSessionSummaries": True,
    # Scanning
    "scanRoots": [],
    "autoDetectProjects": True,
    # Notifications
    "notificationsEnabled": True,
}
