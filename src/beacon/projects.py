"""Project discovery, active-project resolution and per-project statistics."""

from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import EngineSettings
from .events import EventBus, ProjectAdded, ProjectDetected, ProjectParked, ProjectSwitched
from .models import Project, ProjectStats, ProjectStatus
from .normalization import is_coding_process
from .runtime import RepeatingTimer, Scheduler
from .store import DocumentStore

logger = logging.getLogger(__name__)

PROJECT_MARKERS: tuple[str, ...] = (
    ".git",
    "package.json",
    "Cargo.toml",
    "pyproject.toml",
    "go.mod",
    "Makefile",
    "CMakeLists.txt",
    "pom.xml",
    "build.gradle",
    "composer.json",
    "Gemfile",
    "*.sln",
    "*.csproj",
)

SKIP_DIRS: frozenset[str] = frozenset(
    {
        "node_modules",
        "target",
        "dist",
        "build",
        ".git",
        ".svn",
        "__pycache__",
        ".venv",
        "venv",
        ".cargo",
        ".gradle",
        "vendor",
        "obj",
        "bin",
        ".vs",
        ".idea",
        ".vscode",
    }
)

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".jsx": "JavaScript",
    ".tsx": "TypeScript",
    ".py": "Python",
    ".rs": "Rust",
    ".go": "Go",
    ".java": "Java",
    ".cs": "C#",
    ".cpp": "C++",
    ".c": "C",
    ".rb": "Ruby",
    ".php": "PHP",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".dart": "Dart",
    ".r": "R",
    ".lua": "Lua",
    ".sh": "Shell",
    ".ps1": "PowerShell",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".vue": "Vue",
    ".svelte": "Svelte",
}

# Manifest files that settle the language outright, checked in order.
_DEFINITIVE_MARKERS: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("Rust", lambda name: name == "Cargo.toml"),
    ("Go", lambda name: name == "go.mod"),
    ("Python", lambda name: name in ("pyproject.toml", "setup.py")),
    ("C#", lambda name: name.endswith((".sln", ".csproj"))),
    ("Java", lambda name: name in ("pom.xml", "build.gradle")),
)

GIT_TIMEOUT_SECONDS = 3.0


class DuplicateProjectError(ValueError):
    """A project is already registered at the given root path."""


def is_project_marker(name: str) -> bool:
    for marker in PROJECT_MARKERS:
        if marker.startswith("*"):
            if name.endswith(marker[1:]):
                return True
        elif name == marker:
            return True
    return False


def should_skip_dir(name: str) -> bool:
    return name in SKIP_DIRS or name.startswith(".")


def detect_language(names: Iterable[str]) -> str:
    """Infer a project's primary language from the names in its root."""
    names = list(names)
    for language, matches in _DEFINITIVE_MARKERS:
        if any(matches(name) for name in names):
            return language

    counts: dict[str, int] = {}
    for name in names:
        language = LANGUAGE_BY_EXTENSION.get(os.path.splitext(name)[1].lower())
        if language:
            counts[language] = counts.get(language, 0) + 1
    if not counts:
        return "Unknown"
    # max() keeps the first language seen on ties.
    return max(counts.items(), key=lambda item: item[1])[0]


def get_git_remote(directory: str) -> Optional[str]:
    """Return the ``origin`` URL for a repository, or ``None``."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=directory,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


class ProjectRegistry:
    """Tracks known projects and which one the user is working on."""

    def __init__(
        self,
        bus: EventBus,
        store: DocumentStore,
        settings: Optional[EngineSettings] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
        remote_lookup: Callable[[str], Optional[str]] = get_git_remote,
    ) -> None:
        self._bus = bus
        self._store = store
        self.settings = settings or EngineSettings()
        self._scheduler = scheduler
        self._clock = clock
        self._remote_lookup = remote_lookup
        self._active_project_id: Optional[str] = None
        self._roots: list[str] = []
        self._rescan_timer: Optional[RepeatingTimer] = None

    # Lifecycle

    def start(self) -> None:
        roots = self._configured_roots()
        if roots and self._store.get_setting("autoDetectProjects"):
            self.scan_roots(roots)
        if self._scheduler is not None:
            self._rescan_timer = self._scheduler.every(
                "project-rescan", self.settings.rescan_interval, self._rescan
            )

    def stop(self) -> None:
        if self._rescan_timer is not None:
            self._rescan_timer.cancel()
            self._rescan_timer = None

    # Active project

    @property
    def active_project_id(self) -> Optional[str]:
        return self._active_project_id

    def get_active_project(self) -> Optional[Project]:
        if not self._active_project_id:
            return None
        return self._store.get_project(self._active_project_id)

    def on_window_signal(
        self, process_name: str, title: str, now: Optional[datetime] = None
    ) -> None:
        """Update the active project from a foreground-window change."""
        if not is_coding_process(process_name):
            return
        project = self.identify_project_from_title(title)
        if project and project.id:
            self._set_active_project(project.id, now or self._clock())

    def identify_project_from_title(self, title: str) -> Optional[Project]:
        """Return the first project whose name or folder appears in ``title``.

        Matching is a plain case-insensitive substring test in storage order,
        so a short project name can claim a window that belongs to a longer one.
        """
        if not title:
            return None
        lowered = title.lower()
        for project in self._store.get_projects().values():
            if project.name and project.name.lower() in lowered:
                return project
            if project.root_path:
                basename = os.path.basename(os.path.normpath(project.root_path)).lower()
                if basename and basename in lowered:
                    return project
        return None

    def _set_active_project(self, project_id: str, now: datetime) -> None:
        if self._active_project_id == project_id:
            return
        project = self._store.get_project(project_id)
        if project is None:
            return
        previous = self._active_project_id
        self._active_project_id = project_id
        project.last_active_at = now
        project.updated_at = now
        self._store.save_project(project)
        logger.info("Active project: %s", project.name)
        self._bus.publish(
            ProjectSwitched(project_id=project_id, project_name=project.name, previous_id=previous)
        )

    # Scanning

    def _configured_roots(self) -> list[str]:
        return list(self._store.get_setting("scanRoots") or [])

    def _rescan(self) -> None:
        roots = self._configured_roots() or self._roots
        if roots:
            self.scan_roots(roots)

    def scan_roots(self, roots: Iterable[str | Path]) -> list[Project]:
        """Walk each root and register every project found."""
        self._roots = [str(root) for root in roots]
        found: list[Project] = []
        for root in self._roots:
            path = os.path.abspath(os.path.expanduser(root))
            if not os.path.isdir(path):
                logger.warning("Skipping scan root %s: not a directory", root)
                continue
            self._scan_directory(path, 0, self.settings.scan_depth, found)
        logger.debug("Scan finished; %d projects seen.", len(found))
        return found

    def _scan_directory(
        self, directory: str, depth: int, max_depth: int, found: list[Project]
    ) -> None:
        if depth > max_depth:
            return
        try:
            with os.scandir(directory) as iterator:
                entries = list(iterator)
        except OSError as exc:
            logger.debug("Cannot read %s: %s", directory, exc)
            return

        if any(is_project_marker(entry.name) for entry in entries):
            found.append(self._register(directory, [entry.name for entry in entries]))
            return

        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if is_dir and not should_skip_dir(entry.name):
                self._scan_directory(entry.path, depth + 1, max_depth, found)

    def register_or_update(self, directory: str | Path) -> Project:
        """Register the project rooted at ``directory``, or refresh it if known."""
        path = os.path.abspath(os.path.expanduser(str(directory)))
        return self._register(path, os.listdir(path))

    def _register(self, directory: str, names: list[str]) -> Project:
        now = self._clock()
        language = detect_language(names)
        is_git = ".git" in names
        git_remote = self._remote_lookup(directory) if is_git else None

        existing = self._store.find_project_by_path(directory)
        if existing:
            existing.language = language
            existing.git_remote = git_remote
            existing.is_git = is_git
            existing.updated_at = now
            return self._store.save_project(existing)

        project = Project(
            name=os.path.basename(directory),
            root_path=directory,
            language=language,
            git_remote=git_remote,
            is_git=is_git,
            created_at=now,
            updated_at=now,
        )
        self._store.save_project(project)
        logger.info("Discovered %s (%s) at %s", project.name, language, directory)
        self._bus.publish(ProjectDetected(project=project))
        return project

    # Manual management

    def add_project(
        self,
        name: str,
        root_path: Optional[str] = None,
        language: Optional[str] = None,
        notes: str = "",
        tags: Optional[list[str]] = None,
    ) -> Project:
        name = name.strip()
        if not name:
            raise ValueError("Project name is required")
        if root_path:
            root_path = os.path.abspath(os.path.expanduser(root_path))
            if self._store.find_project_by_path(root_path):
                raise DuplicateProjectError(f"A project is already registered at {root_path}")

        now = self._clock()
        project = Project(
            name=name,
            root_path=root_path,
            language=language or "Unknown",
            status=ProjectStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            notes=notes,
            tags=list(tags or []),
        )
        self._store.save_project(project)
        self._bus.publish(ProjectAdded(project=project))
        return project

    def park_project(self, project_id: str) -> Optional[Project]:
        project = self._store.get_project(project_id)
        if project is None:
            return None
        project.status = ProjectStatus.PARKED
        project.updated_at = self._clock()
        self._store.save_project(project)
        self._bus.publish(ProjectParked(project=project))
        return project

    def add_time_to_project(
        self, project_id: str, duration_ms: int, now: Optional[datetime] = None
    ) -> Optional[Project]:
        project = self._store.get_project(project_id)
        if project is None:
            return None
        now = now or self._clock()
        project.total_time_ms += duration_ms
        project.last_active_at = now
        project.updated_at = now
        return self._store.save_project(project)

    # Statistics

    def get_project_stats(
        self, project_id: str, now: Optional[datetime] = None
    ) -> Optional[ProjectStats]:
        project = self._store.get_project(project_id)
        if project is None:
            return None
        now = now or self._clock()
        sessions = self._store.get_sessions_for_project(project_id, limit=None)
        goals = self._store.get_goals(project_id)
        days_since_active = (
            (now - project.last_active_at).days if project.last_active_at else None
        )
        return ProjectStats(
            project=project,
            session_count=len(sessions),
            total_time_ms=project.total_time_ms,
            goals_count=len(goals),
            completed_goals_count=sum(1 for goal in goals if goal.get("completed")),
            last_session=sessions[0] if sessions else None,
            days_since_active=days_since_active,
        )

    def get_all_project_stats(self, now: Optional[datetime] = None) -> list[ProjectStats]:
        stats = (self.get_project_stats(pid, now) for pid in self._store.get_projects())
        return [item for item in stats if item is not None]
