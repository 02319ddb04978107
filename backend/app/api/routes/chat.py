"""Question answering endpoints - POST /chat/query, POST /chat/sessions/{id}/ask."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_app_settings, get_llm
from backend.app.api.errors import http_error
from backend.app.chat.answer import answer_question
from backend.app.chat.ledger import append_message
from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.engine import get_session
from backend.app.errors import DocQAError
from backend.app.llm.client import LLMClient
from backend.app.models.chat import AnswerResult, ChatMessageView, MessageRole

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger(__name__)


class QueryRequest(BaseModel):
    """Request body for POST /chat/query."""

    question: str = Field(..., min_length=1, max_length=2000)
    document_ids: list[UUID] | None = Field(
        None, description="Restrict the search to these documents"
    )


class AskResponse(BaseModel):
    """Response for POST /chat/sessions/{id}/ask."""

    user_message: ChatMessageView
    assistant_message: ChatMessageView
    result: AnswerResult


@router.post("/query", response_model=AnswerResult)
async def query_documents(
    request: QueryRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    llm: Annotated[LLMClient, Depends(get_llm)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AnswerResult:
    """Answer a question from the caller's processed documents.

    Raises:
        HTTPException: 503 if the store is unavailable, 502 if generation failed
    """
    logger.info(f"[POST /chat/query] user_id={ctx.user_id}")

    try:
        return await answer_question(
            question=request.question,
            owner_id=ctx.user_id,
            session=session,
            answerer=llm,
            document_ids=request.document_ids,
            settings=settings,
        )
    except DocQAError as e:
        raise http_error(e) from e


@router.post("/sessions/{session_id}/ask", response_model=AskResponse)
async def ask_in_session(
    session_id: UUID,
    request: QueryRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
    llm: Annotated[LLMClient, Depends(get_llm)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AskResponse:
    """Record the question, answer it and record the answer with its sources.

    If answering fails the USER turn stays recorded and no ASSISTANT turn is
    written.
    """
    try:
        user_message = await append_message(
            session,
            session_id=session_id,
            owner_id=ctx.user_id,
            role=MessageRole.USER,
            content=request.question,
            settings=settings,
        )
        result = await answer_question(
            question=request.question,
            owner_id=ctx.user_id,
            session=session,
            answerer=llm,
            document_ids=request.document_ids,
            settings=settings,
        )
        assistant_message = await append_message(
            session,
            session_id=session_id,
            owner_id=ctx.user_id,
            role=MessageRole.ASSISTANT,
            content=result.answer,
            sources=result.sources,
            settings=settings,
        )
    except DocQAError as e:
        raise http_error(e) from e

    return AskResponse(
        user_message=user_message,
        assistant_message=assistant_message,
        result=result,
    )
