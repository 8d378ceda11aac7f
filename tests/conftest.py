"""Shared pytest fixtures for EventBoard."""

from __future__ import annotations

import dataclasses
import sys
from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventboard import database
from eventboard.api import create_app
from eventboard.config import settings
from eventboard.models import Base
from eventboard.store import MemoryStore, SqlStore

# Thursday noon; every API test runs against this wall clock.
NOW = datetime(2025, 5, 22, 12, 0)


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.make_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    session_factory = database.make_session_factory(engine)
    database.engine = engine
    database.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(params=["sql", "memory"])
def store(request):
    """Run the test once against each store backend."""

    if request.param == "sql":
        return SqlStore(database.SessionLocal)
    return MemoryStore()


@pytest.fixture()
def app_settings():
    return dataclasses.replace(
        settings,
        session_secret="test-secret",
        enable_scheduler=False,
        oauth_client_id="",
        oauth_client_secret="",
        cors_origins="",
    )


@pytest.fixture()
def app(store, app_settings):
    return create_app(
        store=store,
        app_settings=app_settings,
        oauth_providers={},
        clock=lambda: NOW,
    )


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
