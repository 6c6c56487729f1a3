"""
Database backend selector for the event journal.

- If `SOF_DATABASE_URL` (or `DATABASE_URL`) starts with `postgres://` or `postgresql://`,
  the PostgreSQL backend is used.
- Otherwise the SQLite backend is used.

Both backends export the same functions.
"""

from __future__ import annotations

import os


def _use_postgres() -> bool:
    url = (os.environ.get("SOF_DATABASE_URL") or os.environ.get("DATABASE_URL") or "").strip()
    return url.startswith("postgres://") or url.startswith("postgresql://")


if _use_postgres():
    from .database_postgres import *  # noqa: F401,F403
else:
    from .database_sqlite import *  # noqa: F401,F403
