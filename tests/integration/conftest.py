"""Pytest fixtures for integration tests.

Provides async database fixtures for exercising the query layer, the
SQLAlchemy store and the assembled workflow services against SQLite.
While production runs on PostgreSQL, these tests use a file-backed SQLite
database so that concurrent sessions get their own connections and the
compare-and-swap update is genuinely contended.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from reviewflow.config import ReviewflowConfig
from reviewflow.container import WorkflowServices, build_services
from reviewflow.database.models.base import Base
from reviewflow.database.models.entity import Stage
from reviewflow.database.store import SqlAlchemyStore
from reviewflow.workflow.ports import EntitySnapshot


class RecordingNotifications:
    """NotificationPort that keeps every phase transition it is sent."""

    def __init__(self) -> None:
        self.calls: list[tuple[EntitySnapshot, Stage, Stage]] = []

    async def phase_transition(
        self, entity: EntitySnapshot, old_stage: Stage, new_stage: Stage
    ) -> None:
        self.calls.append((entity, old_stage, new_stage))


class RecordingAudit:
    """AuditPort that keeps every event it is sent."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def record(
        self,
        event_type: str,
        entity_type: str | None,
        entity_id: UUID | None,
        actor_id: UUID | None,
        metadata: dict[str, Any],
    ) -> None:
        self.events.append(
            {
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor_id": actor_id,
                "metadata": metadata,
            }
        )

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["event_type"] == event_type]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'reviewflow.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite async engine with the schema in place.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = create_async_engine(database_url, echo=False)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging test data directly through the query layer."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyStore:
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest_asyncio.fixture
async def services(
    session_factory: async_sessionmaker[AsyncSession],
    notifications: RecordingNotifications,
    audit: RecordingAudit,
) -> AsyncGenerator[WorkflowServices, None]:
    """Workflow services over the test database with recording ports."""
    built = build_services(
        ReviewflowConfig(),
        session_factory,
        notifications=notifications,
        audit=audit,
    )
    yield built
    await built.close()
