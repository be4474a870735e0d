"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of pixeltrack.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from pixeltrack.database.models import Base  # noqa: E402
from pixeltrack.database.seed import seed_default_settings  # noqa: E402


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


def run_async(coro):
    """Run an async coroutine in a new event loop (no pytest-asyncio)."""
    loop = asyncio.get_event_loop_policy().new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all PixelTrack tables and seeded settings.

    StaticPool shares the single in-memory database with worker threads
    started by ``run_db``.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for concurrent fan-out.

    Every aggregation in a fan-out runs on its own thread with its own
    session, so each needs its own connection.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pixels.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_token(
    sub: str = "U-ADMIN",
    *,
    is_admin: bool = True,
    pixel_delta: int = 0,
    email: str | None = None,
) -> str:
    """Create a session JWT.  Usable as a factory from any test module."""
    import jwt

    from pixeltrack.api.deps import JWT_ALGORITHM, JWT_SECRET

    claims = {"sub": sub, "is_admin": is_admin, "pixel_delta": pixel_delta}
    if email:
        claims["email"] = email
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token():
    return make_token()


@pytest.fixture
def client(file_engine):
    """TestClient wired to the file-backed engine."""
    from fastapi.testclient import TestClient

    from pixeltrack.api.deps import get_config, get_engine
    from pixeltrack.api.main import app
    from pixeltrack.config import PixelConfig

    app.dependency_overrides[get_engine] = lambda: file_engine
    app.dependency_overrides[get_config] = lambda: PixelConfig(
        organization_name="Test Org", dashboard_port=8000,
    )
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
