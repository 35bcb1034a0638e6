from __future__ import annotations

import asyncio
import json
import os
import sqlite3
import sys
from datetime import datetime
from typing import Any

from .settings import settings

SETTINGS_KEY = "proxy_config"


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount that did not exist
    yet ends up as one), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "pcc.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_id TEXT,
              upstream_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, service_id: str | None = None, upstream_id: str | None = None) -> None:
    # Diagnostics must never take down a save/reload path.
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, service_id, upstream_id, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), service_id, upstream_id, message),
            )
    except sqlite3.Error as e:
        print(f"[{level.upper()}] {message} (event log unavailable: {e})", file=sys.stderr)


def latest_events(limit: int = 100, level: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if level:
            rows = conn.execute(
                "SELECT * FROM events WHERE level=? ORDER BY id DESC LIMIT ?", (level.upper(), limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def read_settings(key: str = SETTINGS_KEY) -> dict[str, Any] | None:
    with connect() as conn:
        row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    if not row:
        return None
    try:
        data = json.loads(row["value"])
    except ValueError as e:
        log_event("ERROR", f"Stored settings are not valid JSON: {e}")
        return None
    if not isinstance(data, dict):
        log_event("ERROR", f"Stored settings have unexpected type {type(data).__name__}")
        return None
    return data


def write_settings(value: dict[str, Any], key: str = SETTINGS_KEY) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              value=excluded.value,
              updated_at=excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), utc_now()),
        )


class SettingsStore:
    """Durable storage collaborator backed by the sqlite settings table."""

    def __init__(self, key: str = SETTINGS_KEY):
        self.key = key

    async def load_settings(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(read_settings, self.key)

    async def save_settings(self, cfg: Any) -> None:
        payload = cfg.to_payload() if hasattr(cfg, "to_payload") else dict(cfg)
        await asyncio.to_thread(write_settings, payload, self.key)
