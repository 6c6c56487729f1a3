"""
PostgreSQL backend for the event journal.

Same function surface as the SQLite backend; connections come from the pool in
`sof_orchestrator.db.postgres.pool`.
"""

from __future__ import annotations

import logging

import pandas as pd
import psycopg2

from sof_orchestrator.db.postgres.pool import DATABASE_URL, _pg_read_conn, _pg_write_conn

logger = logging.getLogger(__name__)

# A DSN here; the health endpoint strips credentials before showing it.
DB_PATH = DATABASE_URL

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
    id BIGSERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
    level TEXT NOT NULL,
    season_id BIGINT,
    step TEXT,
    tx_id TEXT,
    message TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_stream_season ON event_stream (season_id, id);
"""

_EVENT_COLUMNS = "id, timestamp, level, season_id, step, tx_id, message"


def init_db() -> None:
    with _pg_write_conn() as conn, conn.cursor() as cur:
        cur.execute(_SCHEMA)


def close_write_conn() -> None:
    """Writers hand their connection back to the pool after each event."""


def log_event(
    level: str,
    message: str,
    season_id: int | None = None,
    step: str | None = None,
    tx_id: str | None = None,
) -> None:
    with _pg_write_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "INSERT INTO event_stream (level, season_id, step, tx_id, message) VALUES (%s, %s, %s, %s, %s)",
            (level, season_id, step, tx_id, message),
        )


def ping() -> None:
    with _pg_read_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT 1")
        cur.fetchone()


def get_events(limit: int = 200, season_id: int | None = None) -> pd.DataFrame:
    where, params = ("", (int(limit),)) if season_id is None else ("WHERE season_id = %s ", (int(season_id), int(limit)))
    try:
        with _pg_read_conn() as conn:
            return pd.read_sql_query(
                f"SELECT {_EVENT_COLUMNS} FROM event_stream {where}ORDER BY id DESC LIMIT %s", conn, params=params
            )
    except (psycopg2.Error, RuntimeError) as e:
        logger.warning(f"Journal read failed (get_events): {e}")
        return pd.DataFrame()


def fetch_events_after(last_id: int, limit: int = 500) -> list[tuple]:
    try:
        with _pg_read_conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"SELECT {_EVENT_COLUMNS} FROM event_stream WHERE id > %s ORDER BY id ASC LIMIT %s",
                (int(last_id), int(limit)),
            )
            return cur.fetchall()
    except (psycopg2.Error, RuntimeError) as e:
        logger.warning(f"Journal read failed (fetch_events_after): {e}")
        return []
