"""Session coaching through the Anthropic Messages API."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, Optional

import requests

from .models import Session
from .store import DocumentStore

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-6"
MAX_TOKENS = 1024

SYSTEM_PROMPT = """You are Beacon, a desktop coding companion and project assistant.
You run in the background, tracking the user's coding projects, sessions and goals.

Your personality:
- Direct, encouraging and honest
- Brief by default (1-3 sentences) unless asked for detail
- You gently point out neglected projects and open goals

Always respond in plain text. Keep responses concise."""


class CoachClient:
    """Turns finished sessions into short natural-language debriefs.

    Every failure (no key, network error, unexpected payload) resolves to
    ``None`` so callers never need to guard against exceptions.
    """

    def __init__(
        self,
        store: DocumentStore,
        timeout: timedelta = timedelta(seconds=15),
        session: Optional[requests.Session] = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._http = session or requests.Session()

    def _api_key(self) -> str:
        return self._store.get_setting("claudeApiKey") or os.getenv("ANTHROPIC_API_KEY", "")

    def is_enabled(self) -> bool:
        return bool(self._store.get_setting("claudeEnabled")) and bool(self._api_key())

    def summarize_session(self, session: Session) -> Optional[str]:
        if not self.is_enabled():
            return None
        return self._query(self.build_session_prompt(session))

    def build_session_prompt(self, session: Session) -> str:
        project = self._store.get_project(session.project_id) if session.project_id else None
        goals = self._store.get_goals(project.id) if project and project.id else []
        open_goals = [goal for goal in goals if not goal.get("completed")]
        hours = session.duration_ms / 3_600_000

        lines = [
            "Session just ended:",
            f"- Project: {project.name if project else 'an unnamed project'}"
            f" ({project.language if project else 'Unknown'})",
            f"- Duration: {hours:.1f}h",
            f"- Files edited: {session.files_edited}",
            f"- Peak momentum: {session.peak_momentum}/5",
            f"- Stuck events: {session.stuck_count}",
            f"- Open goals: {len(open_goals)}",
        ]
        if open_goals:
            lines.append(f'- Next goal: "{open_goals[0].get("title", "")}"')
        lines.append("")
        lines.append(
            "Give me a brief session debrief (2-3 sentences max). Note what was "
            "accomplished, any concerns, and what to tackle next."
        )
        return "\n".join(lines)

    def _query(self, prompt: str) -> Optional[str]:
        api_key = self._api_key()
        if not api_key:
            return None
        payload: dict[str, Any] = {
            "model": self._store.get_setting("claudeModel") or DEFAULT_MODEL,
            "max_tokens": MAX_TOKENS,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": API_VERSION,
        }
        try:
            response = self._http.post(
                API_URL,
                json=payload,
                headers=headers,
                timeout=self._timeout.total_seconds(),
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as exc:
            logger.warning("Coaching request failed: %s", exc)
            return None
        except ValueError:
            logger.warning("Coaching response was not valid JSON.")
            return None

        content = body.get("content") if isinstance(body, dict) else None
        if not content or not isinstance(content[0], dict) or "text" not in content[0]:
            logger.warning("Unexpected coaching response format.")
            return None
        return content[0]["text"]
