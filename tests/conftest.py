"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from taxdraft.app.db.models import Base, Case, Document, DocumentChunk, Question, Round


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Async session for a test."""
    async with session_factory() as session:
        yield session


@dataclass
class SeededCase:
    """Ids of a seeded case: one round-1 question, one round-2 question, two documents."""

    case_id: uuid.UUID
    round1_id: uuid.UUID
    round2_id: uuid.UUID
    question1_id: uuid.UUID
    question2_id: uuid.UUID
    document_a_id: uuid.UUID
    document_b_id: uuid.UUID


async def seed_case(
    session: AsyncSession,
    *,
    custom_instruction: str | None = None,
    question1_response: str | None = "Les loyers sont déclarés en revenus fonciers.",
) -> SeededCase:
    """Create a case with two rounds, one question each, and two documents."""
    case = Case(id=uuid.uuid4(), name="Contrôle SARL Dupont", custom_instruction=custom_instruction)
    round1 = Round(id=uuid.uuid4(), case_id=case.id, round_number=1)
    round2 = Round(id=uuid.uuid4(), case_id=case.id, round_number=2)
    question1 = Question(
        id=uuid.uuid4(),
        round_id=round1.id,
        question_number=1,
        question_text="Comment les loyers perçus ont-ils été déclarés ?",
        response_text=question1_response,
    )
    question2 = Question(
        id=uuid.uuid4(),
        round_id=round2.id,
        question_number=1,
        question_text="Justifiez la déduction des charges de copropriété.",
        response_text=None,
    )
    document_a = Document(
        id=uuid.uuid4(), case_id=case.id, filename="bail.pdf", doc_type="support"
    )
    document_b = Document(
        id=uuid.uuid4(), case_id=case.id, filename="demande.pdf", doc_type="question_dr"
    )

    session.add(case)
    await session.flush()
    session.add_all([round1, round2, document_a, document_b])
    await session.flush()
    session.add_all([question1, question2])
    await session.commit()

    return SeededCase(
        case_id=case.id,
        round1_id=round1.id,
        round2_id=round2.id,
        question1_id=question1.id,
        question2_id=question2.id,
        document_a_id=document_a.id,
        document_b_id=document_b.id,
    )


@pytest_asyncio.fixture
async def seeded(session: AsyncSession) -> SeededCase:
    """A seeded case (see seed_case)."""
    return await seed_case(session)


@pytest.fixture
def make_case(session: AsyncSession) -> Callable[..., Awaitable[SeededCase]]:
    """Seed a case with custom options (see seed_case)."""

    async def _make(**kwargs: Any) -> SeededCase:
        return await seed_case(session, **kwargs)

    return _make


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def add_chunks(session: AsyncSession) -> Callable[..., Awaitable[list[DocumentChunk]]]:
    """Insert chunks with the given contents for a document, in order."""

    async def _add(
        case_id: uuid.UUID, document_id: uuid.UUID, contents: list[str]
    ) -> list[DocumentChunk]:
        rows = []
        offset = 0
        for content in contents:
            rows.append(
                DocumentChunk(
                    id=uuid.uuid4(),
                    case_id=case_id,
                    document_id=document_id,
                    content=content,
                    start_offset=offset,
                    end_offset=offset + len(content),
                    created_at=datetime.now(UTC),
                )
            )
            offset += len(content)
        session.add_all(rows)
        await session.commit()
        return rows

    return _add
