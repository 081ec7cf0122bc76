"""Utilities to normalize process names and classify coding tools."""

from __future__ import annotations

from typing import Optional

# Editors, IDEs, terminals and VCS clients, keyed by lower-case process name
# without any executable suffix.
CODING_PROCESSES: frozenset[str] = frozenset(
    {
        "code",
        "code - insiders",
        "cursor",
        "windsurf",
        "idea64",
        "webstorm64",
        "pycharm64",
        "clion64",
        "rider64",
        "devenv",
        "sublime_text",
        "notepad++",
        "atom",
        "lapce",
        "helix",
        "zed",
        "vim",
        "nvim",
        "emacs",
        "windowsterminal",
        "wt",
        "powershell",
        "pwsh",
        "cmd",
        "bash",
        "wsl",
        "ubuntu",
        "gitbash",
        "git-bash",
        "gitextensions",
        "sourcetree",
        "gitkraken",
        "fork",
    }
)

_EXECUTABLE_SUFFIXES = (".exe",)


def normalize_process_name(process_name: Optional[str]) -> str:
    """Lower-case a process name and drop a trailing executable suffix."""
    if not process_name:
        return ""
    normalized = process_name.strip().lower()
    for suffix in _EXECUTABLE_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break
    return normalized


def is_coding_process(process_name: Optional[str]) -> bool:
    return normalize_process_name(process_name) in CODING_PROCESSES
