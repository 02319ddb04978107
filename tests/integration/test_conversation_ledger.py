"""Integration tests for chat sessions and messages."""

import asyncio
import uuid
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.chat.ledger import (
    append_message,
    create_session,
    delete_session,
    derive_title,
    get_session_detail,
    list_sessions,
    rename_session,
)
from backend.app.config import Settings
from backend.app.db.models import ChatMessage as ChatMessageDB
from backend.app.errors import SessionNotFoundError
from backend.app.models.chat import ChatMessageView, MessageRole, SourceAttribution


def test_derive_title_truncates_long_messages() -> None:
    """Test title derivation from the first user message."""
    assert derive_title("How do I reset it?") == "How do I reset it?"
    assert derive_title("x" * 60) == "x" * 50 + "..."
    assert derive_title("  reset\n the   breaker ") == "reset the breaker"


@pytest.mark.asyncio
async def test_first_user_message_titles_new_session(
    session: AsyncSession, settings: Settings
) -> None:
    """Test the first-message title scenario."""
    owner_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)
    assert created.title == "New Chat"
    assert created.messages == []

    await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.USER,
        content="How do I reset the breaker?",
        settings=settings,
    )
    await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.USER,
        content="And what about the fuse?",
        settings=settings,
    )

    detail = await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    assert detail.title == "How do I reset the breaker?"
    assert [m.sequence for m in detail.messages] == [1, 2]
    assert [m.content for m in detail.messages] == [
        "How do I reset the breaker?",
        "And what about the fuse?",
    ]


@pytest.mark.asyncio
async def test_assistant_message_does_not_title_session(
    session: AsyncSession, settings: Settings
) -> None:
    """Test that only a USER message derives the title."""
    owner_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)

    await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.ASSISTANT,
        content="Hello! Ask me about your documents.",
        settings=settings,
    )
    await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.USER,
        content="What torque for the wheel nuts?",
        settings=settings,
    )

    detail = await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    assert detail.title == "What torque for the wheel nuts?"


@pytest.mark.asyncio
async def test_explicit_and_renamed_titles_are_kept(
    session: AsyncSession, settings: Settings
) -> None:
    """Test that a user-chosen title is never overwritten."""
    owner_id = uuid.uuid4()
    titled = await create_session(
        session, owner_id=owner_id, title="Pump questions", settings=settings
    )
    renamed = await create_session(session, owner_id=owner_id, settings=settings)
    summary = await rename_session(
        session, session_id=renamed.session_id, owner_id=owner_id, title="Boiler"
    )
    assert summary.title == "Boiler"
    assert summary.message_count == 0

    for chat in (titled, renamed):
        await append_message(
            session,
            session_id=chat.session_id,
            owner_id=owner_id,
            role=MessageRole.USER,
            content="What is the service interval?",
            settings=settings,
        )

    titles = {
        s.session_id: s.title for s in await list_sessions(session, owner_id=owner_id)
    }
    assert titles[titled.session_id] == "Pump questions"
    assert titles[renamed.session_id] == "Boiler"


@pytest.mark.asyncio
async def test_sessions_listed_by_recent_activity(
    session: AsyncSession, settings: Settings
) -> None:
    """Test ordering, counts and last-message previews in listings."""
    owner_id = uuid.uuid4()
    older = await create_session(session, owner_id=owner_id, settings=settings)
    newer = await create_session(session, owner_id=owner_id, settings=settings)

    listed = await list_sessions(session, owner_id=owner_id)
    assert [s.session_id for s in listed] == [newer.session_id, older.session_id]
    assert listed[0].message_count == 0
    assert listed[0].last_message is None

    long_reply = "y" * 150
    await append_message(
        session,
        session_id=older.session_id,
        owner_id=owner_id,
        role=MessageRole.USER,
        content="Where is the drain plug?",
        settings=settings,
    )
    await append_message(
        session,
        session_id=older.session_id,
        owner_id=owner_id,
        role=MessageRole.ASSISTANT,
        content=long_reply,
        settings=settings,
    )

    listed = await list_sessions(session, owner_id=owner_id)
    assert [s.session_id for s in listed] == [older.session_id, newer.session_id]
    assert listed[0].message_count == 2
    assert listed[0].last_message == "y" * 100
    assert listed[0].last_message_at is not None


@pytest.mark.asyncio
async def test_sessions_are_owner_scoped(session: AsyncSession, settings: Settings) -> None:
    """Test that another user's session behaves as missing."""
    owner_id = uuid.uuid4()
    intruder_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)

    assert await list_sessions(session, owner_id=intruder_id) == []

    with pytest.raises(SessionNotFoundError):
        await get_session_detail(session, session_id=created.session_id, owner_id=intruder_id)
    with pytest.raises(SessionNotFoundError):
        await append_message(
            session,
            session_id=created.session_id,
            owner_id=intruder_id,
            role=MessageRole.USER,
            content="hi",
            settings=settings,
        )
    with pytest.raises(SessionNotFoundError):
        await rename_session(
            session, session_id=created.session_id, owner_id=intruder_id, title="mine"
        )
    with pytest.raises(SessionNotFoundError):
        await delete_session(session, session_id=created.session_id, owner_id=intruder_id)

    detail = await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    assert detail.title == "New Chat"


@pytest.mark.asyncio
async def test_assistant_sources_round_trip(session: AsyncSession, settings: Settings) -> None:
    """Test that stored sources come back with the same fields."""
    owner_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)
    source = SourceAttribution(
        chunk_id=uuid.uuid4(),
        document_id=uuid.uuid4(),
        document_title="Manual.pdf",
        chunk_text="The widget requires calibration every 90 days.",
        similarity=0.12,
    )

    message = await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.ASSISTANT,
        content="Every 90 days.",
        sources=[source],
        settings=settings,
    )
    assert message.sources == [source]

    stored = await session.scalar(
        select(ChatMessageDB.sources).where(ChatMessageDB.message_id == message.message_id)
    )
    assert stored[0]["documentTitle"] == "Manual.pdf"
    assert stored[0]["chunkId"] == str(source.chunk_id)

    detail = await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    assert detail.messages[0].sources == [source]


@pytest.mark.asyncio
async def test_delete_removes_session_and_messages(
    session: AsyncSession, settings: Settings
) -> None:
    """Test that deletion removes the whole conversation."""
    owner_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)
    await append_message(
        session,
        session_id=created.session_id,
        owner_id=owner_id,
        role=MessageRole.USER,
        content="Where is the fuse box?",
        settings=settings,
    )

    await delete_session(session, session_id=created.session_id, owner_id=owner_id)

    with pytest.raises(SessionNotFoundError):
        await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    remaining = await session.scalar(
        select(func.count())
        .select_from(ChatMessageDB)
        .where(ChatMessageDB.session_id == created.session_id)
    )
    assert remaining == 0


@pytest.mark.asyncio
async def test_concurrent_appends_get_distinct_sequences(
    session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> None:
    """Test that two turns racing into one session both land in order."""
    owner_id = uuid.uuid4()
    created = await create_session(session, owner_id=owner_id, settings=settings)

    async def _append(content: str) -> ChatMessageView:
        async with session_factory() as own_session:
            return await append_message(
                own_session,
                session_id=created.session_id,
                owner_id=owner_id,
                role=MessageRole.USER,
                content=content,
                settings=settings,
            )

    results = await asyncio.gather(_append("first question"), _append("second question"))

    assert sorted(m.sequence for m in results) == [1, 2]
    detail = await get_session_detail(session, session_id=created.session_id, owner_id=owner_id)
    assert [m.sequence for m in detail.messages] == [1, 2]
    assert {m.content for m in detail.messages} == {"first question", "second question"}


@pytest.mark.asyncio
async def test_unknown_role_rejected_by_store(session: AsyncSession, settings: Settings) -> None:
    """Test that the message table only accepts USER and ASSISTANT turns."""
    created = await create_session(session, owner_id=uuid.uuid4(), settings=settings)
    session.add(
        ChatMessageDB(
            session_id=created.session_id,
            sequence=1,
            role="SYSTEM",
            content="You are a helpful assistant.",
            created_at=datetime.now(UTC),
        )
    )

    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()
