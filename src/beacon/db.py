"""SQLite persistence for named JSON document sections."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"


def open_database(path: Path | str, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        str(path),
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path | str, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sections (
            name TEXT PRIMARY KEY,
            body TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )


def load_sections(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return every stored section decoded from JSON."""
    sections: dict[str, Any] = {}
    for row in conn.execute("SELECT name, body FROM sections"):
        sections[row["name"]] = json.loads(row["body"])
    return sections


def data_version(conn: sqlite3.Connection) -> int:
    """Return a counter that changes when another connection commits."""
    return conn.execute("PRAGMA data_version").fetchone()[0]


@contextmanager
def immediate_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Hold the write lock for the block, so reads inside it stay current."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def upsert_sections(
    conn: sqlite3.Connection, sections: Iterable[tuple[str, Any]]
) -> None:
    now = datetime.now().strftime(DATETIME_FMT)
    rows = [
        (name, json.dumps(body, ensure_ascii=False), now) for name, body in sections
    ]
    if not rows:
        return
    conn.executemany(
        """
        INSERT INTO sections (name, body, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            body = excluded.body,
            updated_at = excluded.updated_at
        """,
        rows,
    )
