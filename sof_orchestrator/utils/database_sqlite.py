"""
SQLite backend for the event journal.

Writes share one connection guarded by a lock; the notifier may write from its
journal thread while the API reads on its own pool. Reads open a short-lived
connection each and come back empty when the file is locked or unreadable.
"""

import logging
import os
import sqlite3
import threading
from contextlib import closing
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

# Project root, wherever the process is started from.
DB_PATH = os.environ.get("SOF_SQLITE_PATH") or str(Path(__file__).resolve().parents[2] / "sof_orchestrator.db")

__all__ = [
    "DB_PATH",
    "close_write_conn",
    "fetch_events_after",
    "get_events",
    "init_db",
    "log_event",
    "ping",
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS event_stream (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    level TEXT NOT NULL,
    season_id INTEGER,
    step TEXT,
    tx_id TEXT,
    message TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_stream_season ON event_stream (season_id, id);
"""

_EVENT_COLUMNS = "id, timestamp, level, season_id, step, tx_id, message"

_writer_lock = threading.Lock()
_writer: sqlite3.Connection | None = None


def _write(sql: str, params: tuple = ()) -> None:
    global _writer
    with _writer_lock:
        if _writer is None:
            _writer = sqlite3.connect(DB_PATH, timeout=30, check_same_thread=False)
            _writer.executescript("PRAGMA journal_mode=WAL; PRAGMA synchronous=NORMAL; PRAGMA busy_timeout=10000;")
            logger.info(f"Journal writer opened on {DB_PATH}")
        with _writer:
            if params:
                _writer.execute(sql, params)
            else:
                _writer.executescript(sql)


def _reader() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def close_write_conn() -> None:
    """Close the journal writer; the next write reopens it."""
    global _writer
    with _writer_lock:
        if _writer is not None:
            _writer.close()
            _writer = None
            logger.info("Journal writer closed")


def init_db() -> None:
    _write(_SCHEMA)


def log_event(
    level: str,
    message: str,
    season_id: int | None = None,
    step: str | None = None,
    tx_id: str | None = None,
) -> None:
    _write(
        "INSERT INTO event_stream (level, season_id, step, tx_id, message) VALUES (?, ?, ?, ?, ?)",
        (level, season_id, step, tx_id, message),
    )


def ping() -> None:
    with closing(_reader()) as conn:
        conn.execute("SELECT 1").fetchone()


def get_events(limit: int = 200, season_id: int | None = None) -> pd.DataFrame:
    where, params = ("", (int(limit),)) if season_id is None else ("WHERE season_id = ? ", (int(season_id), int(limit)))
    try:
        with closing(_reader()) as conn:
            return pd.read_sql_query(
                f"SELECT {_EVENT_COLUMNS} FROM event_stream {where}ORDER BY id DESC LIMIT ?", conn, params=params
            )
    except sqlite3.Error as e:
        logger.warning(f"Journal read failed (get_events): {e}")
        return pd.DataFrame()


def fetch_events_after(last_id: int, limit: int = 500) -> list[tuple]:
    try:
        with closing(_reader()) as conn:
            return conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM event_stream WHERE id > ? ORDER BY id ASC LIMIT ?",
                (int(last_id), int(limit)),
            ).fetchall()
    except sqlite3.Error as e:
        logger.warning(f"Journal read failed (fetch_events_after): {e}")
        return []
