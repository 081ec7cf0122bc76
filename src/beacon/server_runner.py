"""Serve the local status API with an engine behind it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .companion import Companion
from .config import EngineSettings
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    db_path: Optional[Path] = None,
    settings: Optional[EngineSettings] = None,
    log_level: str = "info",
) -> None:
    """Block serving the API; the engine starts and stops with the server."""
    companion = Companion(
        db_path=db_path or get_db_path(),
        settings=settings or EngineSettings(),
    )
    app = create_app(companion=companion)
    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    logger.info("Serving Beacon API on http://%s:%d", host, port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=log_level)
    finally:
        companion.close()
