"""
Pytest configuration and fixtures for Selo tests.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import JSON
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# IMPORTANT: Patch PostgreSQL types for SQLite compatibility
# Must be done before importing any models
import sqlalchemy.dialects.postgresql as pg_dialect
from sqlalchemy.types import TypeDecorator, CHAR
import uuid as uuid_module

# Custom UUID type that works with SQLite
class SQLiteUUID(TypeDecorator):
    """SQLite-compatible UUID type."""
    impl = CHAR(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid_module.UUID(value)
        return value

pg_dialect.JSONB = JSON
pg_dialect.UUID = SQLiteUUID

from selo.config import settings
from selo.core.deps import Caller
from selo.database import get_db
from selo.models.audit import AuditStatus, SiteAudit
from selo.models.base import Base
from selo.services.fetcher import FetchResult
from tests.fixtures.principals import ORG_ID, USER_ID

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_audit(db_session: AsyncSession):
    """Factory that persists a SiteAudit. `age` backdates updated_at."""

    async def factory(
        url: str = "https://example.com",
        status: AuditStatus = AuditStatus.PENDING,
        organization_id: uuid.UUID | None = ORG_ID,
        age: timedelta | None = None,
        **fields,
    ) -> SiteAudit:
        now = datetime.now(timezone.utc)
        if age is not None:
            fields.setdefault("updated_at", now - age)
            fields.setdefault("created_at", now - age)
        audit = SiteAudit(
            url=url,
            status=status,
            organization_id=organization_id,
            created_by=USER_ID,
            **fields,
        )
        db_session.add(audit)
        await db_session.commit()
        return audit

    return factory


# ============================================================================
# FastAPI App Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def app(db_session: AsyncSession) -> FastAPI:
    """Create test FastAPI application."""
    from selo.main import app as main_app

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db

    yield main_app

    main_app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def caller() -> Caller:
    return Caller(user_id=USER_ID, organization_id=ORG_ID)


@pytest.fixture
def auth_headers() -> dict:
    """Create authentication headers for a user in ORG_ID."""
    from selo.core.security import create_access_token

    token = create_access_token(data={"sub": str(USER_ID), "org": str(ORG_ID)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def no_org_headers() -> dict:
    """Authentication headers for a user without an organization."""
    from selo.core.security import create_access_token

    token = create_access_token(data={"sub": str(USER_ID)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cron_secret(monkeypatch) -> str:
    """Configure a scheduler secret for the duration of a test."""
    secret = "test-cron-secret"
    monkeypatch.setattr(settings, "CRON_SECRET", secret)
    return secret


# ============================================================================
# Fetch Fixtures
# ============================================================================

class StaticFetcher:
    """Fetcher stand-in serving canned HTML and recording requested URLs."""

    def __init__(self, pages: dict[str, str], default: str = "<html><body></body></html>"):
        self.pages = pages
        self.default = default
        self.requested: list[str] = []

    async def fetch(self, url: str, force_relaxed_ssl: bool = False) -> FetchResult:
        self.requested.append(url)
        return FetchResult(
            url=url,
            final_url=url,
            status_code=200,
            html=self.pages.get(url, self.default),
            content_type="text/html",
        )


@pytest.fixture
def static_fetcher():
    return StaticFetcher
