"""Chat session endpoints - create/list/get/rename/delete and append-message."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_app_settings
from backend.app.api.errors import http_error
from backend.app.chat import ledger
from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.engine import get_session
from backend.app.errors import DocQAError
from backend.app.models.chat import (
    ChatMessageView,
    ChatSessionDetail,
    ChatSessionSummary,
    MessageRole,
    SourceAttribution,
)

router = APIRouter(prefix="/chat/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    """Request body for POST /chat/sessions."""

    title: str | None = Field(None, min_length=1, max_length=100)


class RenameSessionRequest(BaseModel):
    """Request body for PATCH /chat/sessions/{id}."""

    title: str = Field(..., min_length=1, max_length=100)


class AppendMessageRequest(BaseModel):
    """Request body for POST /chat/sessions/{id}/messages."""

    role: MessageRole
    content: str = Field(..., min_length=1)
    sources: list[SourceAttribution] | None = None


class SessionListResponse(BaseModel):
    """Response for GET /chat/sessions."""

    sessions: list[ChatSessionSummary]


@router.post("", response_model=ChatSessionDetail, status_code=status.HTTP_201_CREATED)
async def create_chat_session(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    request: CreateSessionRequest | None = None,
) -> ChatSessionDetail:
    """Create an empty chat session."""
    return await ledger.create_session(
        session,
        owner_id=ctx.user_id,
        title=request.title if request else None,
        settings=settings,
    )


@router.get("", response_model=SessionListResponse)
async def list_chat_sessions(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SessionListResponse:
    """List the caller's sessions, most recently active first."""
    sessions = await ledger.list_sessions(session, owner_id=ctx.user_id)
    return SessionListResponse(sessions=sessions)


@router.get("/{session_id}", response_model=ChatSessionDetail)
async def get_chat_session(
    session_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ChatSessionDetail:
    """Get a session with its messages."""
    try:
        return await ledger.get_session_detail(
            session, session_id=session_id, owner_id=ctx.user_id
        )
    except DocQAError as e:
        raise http_error(e) from e


@router.patch("/{session_id}", response_model=ChatSessionSummary)
async def rename_chat_session(
    session_id: UUID,
    request: RenameSessionRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ChatSessionSummary:
    """Rename a session."""
    try:
        return await ledger.rename_session(
            session, session_id=session_id, owner_id=ctx.user_id, title=request.title
        )
    except DocQAError as e:
        raise http_error(e) from e


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_session(
    session_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Delete a session and its messages."""
    try:
        await ledger.delete_session(session, session_id=session_id, owner_id=ctx.user_id)
    except DocQAError as e:
        raise http_error(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{session_id}/messages",
    response_model=ChatMessageView,
    status_code=status.HTTP_201_CREATED,
)
async def append_chat_message(
    session_id: UUID,
    request: AppendMessageRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> ChatMessageView:
    """Append a message to a session."""
    try:
        return await ledger.append_message(
            session,
            session_id=session_id,
            owner_id=ctx.user_id,
            role=request.role,
            content=request.content,
            sources=request.sources,
            settings=settings,
        )
    except DocQAError as e:
        raise http_error(e) from e
