from __future__ import annotations

import os
import tempfile

# Settings are read at import time; point them at a throwaway SQLite file first.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="closer-claus-tests-")
_TEST_DB_PATH = os.path.join(_TEST_DB_DIR, "test.db")
os.environ["DATABASE_URL_ASYNC"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ["DATABASE_URL_SYNC"] = f"sqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ.pop("STRIPE_API_KEY", None)

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.api.deps.services import get_notification_dispatcher, get_payment_provider, get_payout_config
from app.core.config import PayoutConfig
from app.db.session import get_db
from app.services.notifications import NotificationDispatcher

# Ensure Base + models are registered before create_all
from app.db.base import Base  # noqa: F401
import app.models  # noqa: F401

from factories import FakePaymentProvider


# ---------------------------------------------------------
# Engine + schema lifecycle
# ---------------------------------------------------------
@pytest_asyncio.fixture(scope="session")
async def engine():
    engine = create_async_engine(
        os.environ["DATABASE_URL_ASYNC"],
        future=True,
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    # WAL: notification writes (own session) must not block on readers.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="session")
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


# ---------------------------------------------------------
# 🔑 AUTOUSE: clean DB before every test
# ---------------------------------------------------------
@pytest_asyncio.fixture(autouse=True)
async def _clean_tables(engine):
    """
    Ensure each test starts with a clean DB state.
    Deletes child tables first (reverse dependency order).
    """
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())

    yield


# ---------------------------------------------------------
# DB session for setup / service calls / assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture()
def dispatcher(sessionmaker) -> NotificationDispatcher:
    return NotificationDispatcher(sessionmaker, max_attempts=3, retry_delay_seconds=0)


@pytest.fixture()
def payout_config() -> PayoutConfig:
    return PayoutConfig()


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, provider, dispatcher, payout_config):
    from app.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_payment_provider] = lambda: provider
    fastapi_app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    fastapi_app.dependency_overrides[get_payout_config] = lambda: payout_config
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac


