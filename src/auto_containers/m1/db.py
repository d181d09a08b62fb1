from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1


def connect(db_path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    cur = conn.execute("SELECT value FROM meta WHERE key='schema_version'")
    row = cur.fetchone()
    if row is None:
        version = 0
        conn.execute(
            "INSERT INTO meta(key, value) VALUES('schema_version', ?)",
            ("0",),
        )
        conn.commit()
    else:
        try:
            version = int(row["value"])
        except (TypeError, ValueError):
            version = 0

    # v1: key-value settings (JSON-encoded values)
    if version < 1:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        version = 1

    conn.execute(
        "UPDATE meta SET value=? WHERE key='schema_version'",
        (str(version),),
    )
    conn.commit()
