"""
Pytest configuration for the arcade card ledger.

Provides fixtures for:
- A throwaway file-backed SQLite database per test
- Ledger and registry instances bound to it
- A FastAPI test client wired to the same store
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from database import Base, make_engine, make_session_factory
from ledger import Ledger
from registry import CardRegistry
from settings import Settings, get_settings


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """
    Engine on a fresh database file. A file (not :memory:) lets each thread
    use its own connection, which the concurrency tests rely on.
    """
    engine = make_engine(f"sqlite:///{tmp_path / 'arcade.db'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return make_session_factory(engine)


@pytest.fixture
def ledger(session_factory: sessionmaker) -> Ledger:
    return Ledger(session_factory, history_limit=200)


@pytest.fixture
def registry(session_factory: sessionmaker) -> CardRegistry:
    return CardRegistry(session_factory)


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings with test-specific overrides; the .env file is ignored.
    """
    return Settings(
        _env_file=None,
        allow_reset=True,
        seed_demo_card=False,
        enforce_catalog_prices=False,
        log_level="DEBUG",
    )


@pytest.fixture
def client(
    ledger: Ledger,
    registry: CardRegistry,
    session_factory: sessionmaker,
    test_settings: Settings,
) -> Generator[TestClient, None, None]:
    """
    Test client with every store dependency pointed at the test database.

    The client is not used as a context manager, so the app lifespan (schema
    creation and demo seeding on the configured DATABASE_URL) does not run.
    """
    from main import app
    from routers import admin, cards

    app.dependency_overrides[cards.get_ledger] = lambda: ledger
    app.dependency_overrides[cards.get_registry] = lambda: registry
    app.dependency_overrides[admin.get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
