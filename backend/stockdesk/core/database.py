"""
database.py — Database Session & Connection Management

Purpose:
- Create and provide access to the Postgres database behind the app (Supabase).
- Manage SQLAlchemy Engine + Session lifecycle.
- Expose a FastAPI dependency `get_db()` that yields a session per-request.

Key Characteristics:
- Synchronous SQLAlchemy engine.
- No Alembic migrations — schema is expected to already exist in Supabase.
- Session is opened at the start of a request and closed after the response.

This module does NOT:
- Define ORM models (see stockdesk/models/*).
- Perform any queries or business logic.
"""

from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stockdesk.core.config import settings

# -----------------------------------------------------------------------------
# SQLAlchemy Engine
# -----------------------------------------------------------------------------


def normalize_db_url(db_url: str) -> str:
    """
    Point plain `postgresql://` URLs at the psycopg (v3) driver.

    Example:
        normalize_db_url("postgresql://u:p@host/db") → "postgresql+psycopg://u:p@host/db"
    """
    if db_url.startswith("postgresql://") and "+" not in db_url.split("://")[0]:
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def build_engine(db_url: str) -> Engine:
    return create_engine(
        normalize_db_url(db_url),
        pool_pre_ping=True  # Ensures connections are valid before use
    )


# Only create engine if SUPABASE_DB_URL is provided (allows endpoints that
# don't need DB to work, e.g. /valuation/calculate)
db_url = settings.SUPABASE_DB_URL

engine: Optional[Engine]
if not db_url or not db_url.strip():
    engine = None
    SessionLocal = None
else:
    engine = build_engine(db_url)
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine
    )

# -----------------------------------------------------------------------------
# FastAPI Dependency
# -----------------------------------------------------------------------------

def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: yields a database session for the duration of the request.

    Usage in API endpoint:
        def endpoint(db: Session = Depends(get_db)):
            ...

    Raises:
        RuntimeError: If database is not configured (SUPABASE_DB_URL is empty)
    """
    if SessionLocal is None:
        raise RuntimeError(
            "Database is not configured. Please set SUPABASE_DB_URL environment variable. "
            "Valuation calculation works without a database, but watchlist endpoints "
            "will fail until SUPABASE_DB_URL is set."
        )

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
