"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from backend.app.config import Settings
from backend.app.db.engine import create_session_factory
from backend.app.db.models import Base
from backend.app.db.models import Document as DocumentDB
from backend.app.db.models import DocumentChunk as DocumentChunkDB
from backend.app.models.documents import DocumentStatus


@pytest.fixture
def settings() -> Settings:
    """Settings with fast batches for tests."""
    return Settings(
        database_url="sqlite+aiosqlite:///unused.db",
        embedding_batch_delay_ms=0,
        embedding_max_backoff_ms=0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Request-style session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_document(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Insert a document (optionally with chunks) directly."""

    created = 0

    async def _make(
        *,
        owner_id: uuid.UUID,
        title: str = "Manual.pdf",
        status: DocumentStatus = DocumentStatus.PENDING,
        chunks: Sequence[str] = (),
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        nonlocal created
        created += 1
        # Spread created_at so ordering by creation is deterministic
        now = datetime.now(UTC) + timedelta(seconds=created)
        document = DocumentDB(
            owner_id=owner_id,
            title=title,
            storage_key=f"uploads/{uuid.uuid4().hex}-{title}",
            status=status.value,
            metadata_=metadata or {"mime_type": "text/plain"},
            created_at=now,
            updated_at=now,
        )
        async with session_factory() as session:
            session.add(document)
            await session.flush()
            offset = 0
            for index, text in enumerate(chunks):
                session.add(
                    DocumentChunkDB(
                        document_id=document.document_id,
                        chunk_index=index,
                        text=text,
                        start_index=offset,
                        end_index=offset + len(text),
                        embedding=[1.0, 0.0],
                        metadata_={
                            "startIndex": offset,
                            "endIndex": offset + len(text),
                            "chunkIndex": index,
                        },
                        created_at=now,
                    )
                )
                offset += len(text)
            await session.commit()
            return document.document_id

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

    # Ensure it's a postgres URL
    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    # Convert to async driver if needed
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup: drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
