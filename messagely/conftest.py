"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file under tmp_path, so nothing leaks between
tests. The module-level app in messagely.main still reads the environment on
import, hence the defaults set below.
"""

import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

TEST_SECRET_KEY = "messagely-test-secret-key-0123456789abcdef"

os.environ.setdefault("SECRET_KEY", TEST_SECRET_KEY)
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from messagely.config import Settings, get_settings  # noqa: E402
get_settings.cache_clear()

from messagely.main import create_app  # noqa: E402
from messagely.security import PasswordHasher, TokenIssuer  # noqa: E402
from messagely.storage import build_engine, build_session_factory, init_db  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a fresh database file."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'messagely.db'}",
        SECRET_KEY=TEST_SECRET_KEY,
        BCRYPT_WORK_FACTOR=4,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def client(settings):
    """Test client for an app with its own empty database."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def hasher() -> PasswordHasher:
    # bcrypt's minimum cost keeps the suite fast
    return PasswordHasher(work_factor=4)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(secret_key=TEST_SECRET_KEY)


@pytest_asyncio.fixture
async def db(settings):
    """Async session on a freshly created schema."""
    engine = build_engine(settings.DATABASE_URL)
    await init_db(engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()
