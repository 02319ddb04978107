"""Chat and answer domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"


class SourceAttribution(BaseModel):
    """Provenance of one chunk used in an answer.

    Serialized with camelCase keys; this is the stable shape stored on
    assistant messages and returned by the query endpoint.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chunk_id: UUID
    document_id: UUID
    document_title: str
    chunk_text: str  # excerpt, hard-truncated
    similarity: float = Field(..., ge=0)


class AnswerResult(BaseModel):
    """Grounded answer with its sources."""

    answer: str
    sources: list[SourceAttribution]
    question: str


class ChatMessageView(BaseModel):
    """Message as returned to the owner."""

    message_id: UUID
    session_id: UUID
    sequence: int
    role: MessageRole
    content: str
    sources: list[SourceAttribution] | None = None
    created_at: datetime


class ChatSessionSummary(BaseModel):
    """Session row as shown in listings."""

    session_id: UUID
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message: str | None = None
    last_message_at: datetime | None = None


class ChatSessionDetail(BaseModel):
    """Session with its full, ordered message history."""

    session_id: UUID
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[ChatMessageView]
