"""
Engine, session factory and declarative base.

PostgreSQL is the production target. SQLite is accepted for local runs and
tests; an in-memory SQLite URL shares a single connection so every session
sees the same schema.
"""

from __future__ import annotations

from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from consultdesk.core.config import settings

POSTGRES_STATEMENT_TIMEOUT_MS = 15000


def engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": 5,
        "max_overflow": 10,
        # Requests fail after 5s rather than queue behind an exhausted pool
        "pool_timeout": 5,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "connect_args": {
            "connect_timeout": 5,
            "options": f"-c statement_timeout={POSTGRES_STATEMENT_TIMEOUT_MS}",
        },
    }


engine: Engine = create_engine(
    settings.database_url, echo=settings.database_echo, **engine_options(settings.database_url)
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session: committed after the handler returns, rolled back if it raises."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
