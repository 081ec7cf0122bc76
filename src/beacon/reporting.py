"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from typing import Iterable

from .models import BriefingItem, ProjectStats


def print_project_stats(stats: Iterable[ProjectStats]) -> None:
    rows = sorted(stats, key=lambda item: item.total_time_ms, reverse=True)
    if not rows:
        print("No projects tracked yet.")
        return

    print(f"  {'Project':<28} {'Language':<12} {'Status':<8} {'Time':>9} {'Sessions':>9}  Last active")
    print("-" * 86)
    for item in rows:
        project = item.project
        last_active = (
            "today"
            if item.days_since_active == 0
            else f"{item.days_since_active}d ago"
            if item.days_since_active is not None
            else "never"
        )
        print(
            f"  {project.name[:28]:<28} {project.language[:12]:<12} "
            f"{project.status.value:<8} {format_duration(item.total_time_ms / 1000):>9} "
            f"{item.session_count:>9}  {last_active}"
        )


def print_briefing(items: Iterable[BriefingItem]) -> None:
    items = list(items)
    if not items:
        print("No pending reminders.")
        return
    print("Pending reminders:")
    for item in items:
        print(f"  [{item.type.value:<15}] {item.text[:40]:<40} {item.schedule}")


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
