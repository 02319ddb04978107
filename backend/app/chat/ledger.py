"""Conversation ledger - owner-scoped chat sessions with append-only messages.

Every operation filters by owner; a session owned by someone else is
reported exactly like a missing one.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import Settings, get_settings
from backend.app.db.models import ChatMessage as ChatMessageDB
from backend.app.db.models import ChatSession as ChatSessionDB
from backend.app.errors import SessionNotFoundError
from backend.app.models.chat import (
    ChatMessageView,
    ChatSessionDetail,
    ChatSessionSummary,
    MessageRole,
    SourceAttribution,
)

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100
MAX_APPEND_ATTEMPTS = 5


def derive_title(content: str, max_chars: int = 50) -> str:
    """Session title from a first message: a prefix, ellipsised when cut."""
    content = " ".join(content.split())
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "..."


def _to_message_view(message: ChatMessageDB) -> ChatMessageView:
    return ChatMessageView(
        message_id=message.message_id,
        session_id=message.session_id,
        sequence=message.sequence,
        role=MessageRole(message.role),
        content=message.content,
        sources=(
            [SourceAttribution.model_validate(s) for s in message.sources]
            if message.sources is not None
            else None
        ),
        created_at=message.created_at,
    )


async def _get_owned_session(
    session: AsyncSession, session_id: UUID, owner_id: UUID
) -> ChatSessionDB:
    result = await session.execute(
        select(ChatSessionDB).where(
            ChatSessionDB.session_id == session_id,
            ChatSessionDB.owner_id == owner_id,
        )
    )
    chat_session = result.scalar_one_or_none()
    if chat_session is None:
        raise SessionNotFoundError(session_id)
    return chat_session


async def _load_messages(session: AsyncSession, session_id: UUID) -> list[ChatMessageDB]:
    result = await session.execute(
        select(ChatMessageDB)
        .where(ChatMessageDB.session_id == session_id)
        .order_by(ChatMessageDB.sequence)
    )
    return list(result.scalars().all())


async def create_session(
    session: AsyncSession,
    *,
    owner_id: UUID,
    title: str | None = None,
    settings: Settings | None = None,
) -> ChatSessionDetail:
    """Create an empty session, titled with the default unless given."""
    settings = settings or get_settings()
    now = datetime.now(UTC)

    chat_session = ChatSessionDB(
        owner_id=owner_id,
        title=title or settings.default_session_title,
        created_at=now,
        updated_at=now,
    )
    session.add(chat_session)
    await session.commit()

    logger.info(f"Created chat session {chat_session.session_id} for user {owner_id}")

    return ChatSessionDetail(
        session_id=chat_session.session_id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
        messages=[],
    )


async def append_message(
    session: AsyncSession,
    *,
    session_id: UUID,
    owner_id: UUID,
    role: MessageRole,
    content: str,
    sources: Sequence[SourceAttribution] | None = None,
    settings: Settings | None = None,
) -> ChatMessageView:
    """Append one turn and bump the session's last-activity timestamp.

    The first USER message on a session still carrying the default title
    renames the session after that message. Concurrent appends to one
    session race on the (session_id, sequence) unique constraint; the loser
    rolls back and takes the next sequence.

    Raises:
        SessionNotFoundError: Unknown session or not owned by owner_id
        IntegrityError: Sequence still contended after MAX_APPEND_ATTEMPTS
    """
    settings = settings or get_settings()

    attempt = 0
    while True:
        attempt += 1
        chat_session = await _get_owned_session(session, session_id, owner_id)

        result = await session.execute(
            select(
                func.coalesce(func.max(ChatMessageDB.sequence), 0),
                func.coalesce(
                    func.sum(case((ChatMessageDB.role == MessageRole.USER.value, 1), else_=0)), 0
                ),
            ).where(ChatMessageDB.session_id == session_id)
        )
        last_sequence, user_messages = result.one()

        now = datetime.now(UTC)
        message = ChatMessageDB(
            session_id=session_id,
            sequence=int(last_sequence) + 1,
            role=role.value,
            content=content,
            sources=(
                [s.model_dump(mode="json", by_alias=True) for s in sources]
                if sources is not None
                else None
            ),
            created_at=now,
        )
        session.add(message)

        if (
            role == MessageRole.USER
            and user_messages == 0
            and chat_session.title == settings.default_session_title
        ):
            chat_session.title = derive_title(content, settings.session_title_max_chars)
            logger.info(f"Derived title for session {session_id}: {chat_session.title!r}")

        chat_session.updated_at = now

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt == MAX_APPEND_ATTEMPTS:
                raise
            logger.warning(
                f"Sequence {message.sequence} taken in session {session_id}; "
                f"retrying (attempt {attempt})"
            )
            continue

        return _to_message_view(message)


async def list_sessions(session: AsyncSession, *, owner_id: UUID) -> list[ChatSessionSummary]:
    """Owner's sessions, most recently active first, with last-message previews."""
    counts = (
        select(
            ChatMessageDB.session_id,
            func.count().label("message_count"),
            func.max(ChatMessageDB.sequence).label("last_sequence"),
        )
        .group_by(ChatMessageDB.session_id)
        .subquery()
    )
    result = await session.execute(
        select(
            ChatSessionDB,
            func.coalesce(counts.c.message_count, 0),
            ChatMessageDB,
        )
        .outerjoin(counts, counts.c.session_id == ChatSessionDB.session_id)
        .outerjoin(
            ChatMessageDB,
            (ChatMessageDB.session_id == ChatSessionDB.session_id)
            & (ChatMessageDB.sequence == counts.c.last_sequence),
        )
        .where(ChatSessionDB.owner_id == owner_id)
        .order_by(ChatSessionDB.updated_at.desc(), ChatSessionDB.created_at.desc())
    )

    summaries: list[ChatSessionSummary] = []
    for chat_session, message_count, last in result.all():
        summaries.append(
            ChatSessionSummary(
                session_id=chat_session.session_id,
                title=chat_session.title,
                created_at=chat_session.created_at,
                updated_at=chat_session.updated_at,
                message_count=int(message_count),
                last_message=last.content[:PREVIEW_CHARS] if last is not None else None,
                last_message_at=last.created_at if last is not None else None,
            )
        )
    return summaries


async def get_session_detail(
    session: AsyncSession, *, session_id: UUID, owner_id: UUID
) -> ChatSessionDetail:
    """Session with its full message history in append order."""
    chat_session = await _get_owned_session(session, session_id, owner_id)
    messages = await _load_messages(session, session_id)

    return ChatSessionDetail(
        session_id=chat_session.session_id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
        messages=[_to_message_view(m) for m in messages],
    )


async def rename_session(
    session: AsyncSession, *, session_id: UUID, owner_id: UUID, title: str
) -> ChatSessionSummary:
    """Set a user-chosen title."""
    chat_session = await _get_owned_session(session, session_id, owner_id)
    chat_session.title = title
    await session.commit()

    messages = await _load_messages(session, session_id)
    last = messages[-1] if messages else None
    return ChatSessionSummary(
        session_id=chat_session.session_id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
        message_count=len(messages),
        last_message=last.content[:PREVIEW_CHARS] if last is not None else None,
        last_message_at=last.created_at if last is not None else None,
    )


async def delete_session(session: AsyncSession, *, session_id: UUID, owner_id: UUID) -> None:
    """Delete a session and its messages."""
    await _get_owned_session(session, session_id, owner_id)

    await session.execute(delete(ChatMessageDB).where(ChatMessageDB.session_id == session_id))
    await session.execute(delete(ChatSessionDB).where(ChatSessionDB.session_id == session_id))
    await session.commit()

    logger.info(f"Deleted chat session {session_id} for user {owner_id}")
