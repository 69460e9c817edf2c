# backend/tests/conftest.py
import os

# Point the application engine at SQLite before any app module builds it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.main import app
from app.models.course import Course
from app.models.forum import ForumTopic
from app.models.user import User, UserRole
from app.modules.forum.policy import Viewer


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, User]:
    """Two students, a tutor and an admin."""
    async with session_factory() as session:
        accounts = {
            "ana": User(username="ana", email="ana@example.com", role=UserRole.STUDENT),
            "bruno": User(username="bruno", email="bruno@example.com", role=UserRole.STUDENT),
            "tiago": User(username="tiago", email="tiago@example.com", role=UserRole.TUTOR),
            "carla": User(username="carla", email="carla@example.com", role=UserRole.ADMIN),
        }
        session.add_all(accounts.values())
        await session.commit()
    return accounts


@pytest.fixture
def viewers(users) -> dict[str, Viewer]:
    return {name: Viewer(id=user.id, role=user.role) for name, user in users.items()}


@pytest_asyncio.fixture
async def course(session_factory, users) -> Course:
    async with session_factory() as session:
        course = Course(
            title="Cálculo I",
            description="Limites e derivadas",
            category="Matemática",
            author_id=users["tiago"].id,
        )
        session.add(course)
        await session.commit()
    return course


@pytest_asyncio.fixture
async def topic(session_factory, users) -> ForumTopic:
    """A topic written by ana."""
    async with session_factory() as session:
        topic = ForumTopic(
            author_id=users["ana"].id,
            title="Dúvida sobre limites",
            slug="duvida-sobre-limites",
            content="Como resolvo limites laterais?",
            tags=["calculo"],
        )
        session.add(topic)
        await session.commit()
    return topic


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, sharing the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
