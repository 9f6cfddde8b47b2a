# habitpods/db.py
from __future__ import annotations
import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

# ──────────────────────────────────────────────────────────────────────────────
# DATABASE URL
# ──────────────────────────────────────────────────────────────────────────────

# Prefer env var; fall back to config.py (which also reads .env).
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    from .config import settings
    DATABASE_URL = settings.DATABASE_URL

# ──────────────────────────────────────────────────────────────────────────────
# SQLAlchemy engine/session
# ──────────────────────────────────────────────────────────────────────────────
_is_sqlite = DATABASE_URL.startswith("sqlite")
_connect_args = {"check_same_thread": False} if _is_sqlite else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):
        # local/test databases: enforce FKs, wait instead of failing on a busy writer
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA busy_timeout=5000")
        cur.close()


def init_db() -> None:
    """
    One-shot initializer to call at process startup: create all tables.
    Safe to call on every start.
    """
    # Import here to avoid circular import at module import time
    from .models import Base

    Base.metadata.create_all(bind=engine)
