"""SQLite helpers for Reelscope run history."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .config import DATA_DIR, ensure_dirs

DB_PATH = DATA_DIR / "reelscope.db"


def init_db() -> None:
    ensure_dirs()
    with sqlite3.connect(DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                asset_id TEXT NOT NULL,
                filename TEXT,
                created_at TEXT NOT NULL,
                finished_at TEXT,
                status TEXT NOT NULL,
                compressed INTEGER,
                source_bytes INTEGER,
                payload_bytes INTEGER,
                segments INTEGER,
                insights INTEGER,
                structured INTEGER,
                md_path TEXT,
                json_path TEXT,
                error TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_runs_created_at
            ON runs (created_at DESC)
            """
        )


@contextmanager
def _connect():
    ensure_dirs()
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def insert_run(run: Dict[str, Any]) -> None:
    columns = ", ".join(run.keys())
    placeholders = ", ".join([":" + key for key in run.keys()])
    query = f"INSERT INTO runs ({columns}) VALUES ({placeholders})"
    with _connect() as conn:
        conn.execute(query, run)


def update_run(run_id: str, **fields: Any) -> None:
    if not fields:
        return
    assignments = ", ".join([f"{key} = :{key}" for key in fields.keys()])
    params = dict(fields)
    params["id"] = run_id
    query = f"UPDATE runs SET {assignments} WHERE id = :id"
    with _connect() as conn:
        conn.execute(query, params)


def get_run(run_id: str) -> Optional[Dict[str, Any]]:
    with _connect() as conn:
        cursor = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
        row = cursor.fetchone()
    return dict(row) if row else None


def list_runs(limit: int = 50, offset: int = 0, asset_id: Optional[str] = None) -> List[Dict[str, Any]]:
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    columns = "id, asset_id, filename, created_at, finished_at, status, compressed, segments, error"
    with _connect() as conn:
        if asset_id:
            cursor = conn.execute(
                f"SELECT {columns} FROM runs WHERE asset_id = ? ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (asset_id, limit, offset),
            )
        else:
            cursor = conn.execute(
                f"SELECT {columns} FROM runs ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        rows = cursor.fetchall()
    return [dict(row) for row in rows]


__all__ = ["DB_PATH", "init_db", "insert_run", "update_run", "get_run", "list_runs"]
