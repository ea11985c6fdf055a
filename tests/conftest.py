"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from idres.config import get_settings
from idres.db.base import Base
from idres.identity.credentials import reset_keys
from idres.identity.engine import ReconciliationEngine
from idres.identity.sql_store import SqlIdentityStore
from idres.identity.store import InMemoryIdentityStore
from tests.helpers import FakeClock, StaticIssuer


def _configure_test_settings() -> None:
    """Point settings at the in-memory store and a shared-secret JWT."""
    os.environ["IDRES_STORE_BACKEND"] = "memory"
    os.environ["IDRES_JWT_ALGORITHM"] = "HS256"
    os.environ["IDRES_JWT_SECRET"] = "test-secret-not-for-production-use-0123456789"
    os.environ["IDRES_LOG_FORMAT"] = "console"
    get_settings.cache_clear()
    reset_keys()


_configure_test_settings()


@pytest.fixture
def store() -> InMemoryIdentityStore:
    """Fresh in-memory identity store for each test."""
    return InMemoryIdentityStore()


@pytest.fixture
def issuer() -> StaticIssuer:
    return StaticIssuer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(store: InMemoryIdentityStore, issuer: StaticIssuer, clock: FakeClock) -> ReconciliationEngine:
    """Reconciliation engine over the in-memory store."""
    return ReconciliationEngine(store, issuer, clock=clock)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite-backed session factory with the accounts schema created."""
    db_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    await db_engine.dispose()


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlIdentityStore:
    return SqlIdentityStore(session_factory)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client with the full app lifecycle on the in-memory store."""
    _configure_test_settings()
    from idres.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
