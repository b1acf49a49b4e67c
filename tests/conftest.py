from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from src.api.deps import get_certificate_client, get_db_session, get_retry_scheduler
from src.api.main import app
from src.core.auth import create_access_token
from src.core.config import Settings
from src.infrastructure.db.base import Base

from tests.utils import FakeCertificateClient, FakeRetryScheduler, seed_questions

# Enough for one 44-question step per level pair with the default settings
API_QUESTIONS_PER_LEVEL = 24


def _create_engine(path: Path) -> AsyncEngine:
    # NullPool: every session opens its connection on the loop that uses it
    return create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )


@pytest.fixture()
def settings() -> Settings:
    """Small steps so service tests need only a handful of questions."""
    return Settings(
        questions_per_step=4,
        step_count=3,
        time_per_question_seconds=60,
        step_grace_seconds=120,
        certificate_max_attempts=3,
        certificate_retry_base_seconds=30,
    )


@pytest.fixture()
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    engine = _create_engine(tmp_path / "service.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Provide a database session for tests that need direct DB access."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def certificate_client() -> FakeCertificateClient:
    return FakeCertificateClient()


@pytest.fixture()
def retry_scheduler() -> FakeRetryScheduler:
    return FakeRetryScheduler()


@pytest.fixture()
def test_client(
    tmp_path: Path,
    certificate_client: FakeCertificateClient,
    retry_scheduler: FakeRetryScheduler,
) -> Iterator[TestClient]:
    engine = _create_engine(tmp_path / "api.db")
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async def _init_db() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            await seed_questions(session, per_level=API_QUESTIONS_PER_LEVEL)

    asyncio.run(_init_db())

    async def override_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_certificate_client] = lambda: certificate_client
    app.dependency_overrides[get_retry_scheduler] = lambda: retry_scheduler
    with TestClient(app) as client:
        client.engine = engine  # type: ignore
        client.session_factory = session_factory  # type: ignore
        yield client
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


@pytest.fixture()
def admin_token() -> str:
    """Generate admin JWT token for testing."""
    return create_access_token("admin-user", roles=["admin"])


@pytest.fixture()
def student_token() -> str:
    """Generate student JWT token for testing."""
    return create_access_token("student-user", roles=["student"])


@pytest.fixture()
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    certificate_client: FakeCertificateClient,
    retry_scheduler: FakeRetryScheduler,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client sharing the database of the ``db`` fixture."""
    async with session_factory() as session:
        await seed_questions(session, per_level=API_QUESTIONS_PER_LEVEL)

    async def override_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_certificate_client] = lambda: certificate_client
    app.dependency_overrides[get_retry_scheduler] = lambda: retry_scheduler
    transport = ASGITransport(app=app)  # type: ignore
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
