"""
Shared pytest fixtures: in-memory SQLite database, repository and API client.
"""

import os

# Settings are read at import time; keep tests independent of a local .env
os.environ["SUPABASE_DB_URL"] = ""
os.environ["SUPABASE_JWT_SECRET"] = "test-secret"
os.environ["LLM_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockdesk.core.database import get_db
from stockdesk.core.security import get_current_user_id
from stockdesk.main import app
from stockdesk.models import Base
from stockdesk.services.research.stock_repository import StockRepository

USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db_session) -> StockRepository:
    return StockRepository(db_session, USER_ID)


@pytest.fixture
def other_repo(db_session) -> StockRepository:
    return StockRepository(db_session, OTHER_USER_ID)


@pytest.fixture
def client(session_factory):
    """TestClient with the database and the signed-in user overridden."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
