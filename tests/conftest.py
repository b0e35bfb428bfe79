"""Pytest configuration and fixtures."""

import os

import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["TOKEN_STORE_SECRET"] = "test-token-store-secret-0123456789"
os.environ.pop("ADMIN_API_TOKEN", None)

from calmirror.config import Settings, get_settings  # noqa: E402
from calmirror.database import close_database, connect_database  # noqa: E402

from fake_provider import NOW, FakeCalendarProvider  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached per process; start every test from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=":memory:",
        token_store_dir=str(tmp_path / "tokens"),
        token_store_secret="test-token-store-secret-0123456789",
        google_client_id="client-id",
        google_client_secret="client-secret",
        subscription_timeout_seconds=5,
        backfill_past_days=30,
        backfill_future_days=365,
    )


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    db = await connect_database(":memory:")
    yield db
    await close_database(db)


@pytest.fixture
def provider():
    return FakeCalendarProvider()


@pytest.fixture
def engine_factory(test_db, provider, settings):
    """Build engines pinned to a fixed clock."""
    from calmirror.sync.engine import ReconciliationEngine

    def _make(settings_override=None):
        return ReconciliationEngine(
            test_db,
            provider,
            settings=settings_override or settings,
            now=lambda: NOW,
        )

    return _make

