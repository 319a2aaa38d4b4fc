"""SQLite connection and schema for the local account and valuation store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    uid TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    username TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS valuations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    stock_name TEXT NOT NULL,
    current_price REAL NOT NULL,
    timestamp REAL NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_valuations_owner
    ON valuations (user_id, timestamp DESC);
"""


def connect(db_path: Path) -> sqlite3.Connection:
    """Open a read-write connection, creating the file and schema if needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    return conn
