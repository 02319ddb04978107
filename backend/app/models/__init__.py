"""Models package - re-exports for convenience."""

from backend.app.models.chat import (
    AnswerResult,
    ChatMessageView,
    ChatSessionDetail,
    ChatSessionSummary,
    MessageRole,
    SourceAttribution,
)
from backend.app.models.documents import (
    DocumentChunk,
    DocumentStatus,
    DocumentStatusView,
    DocumentSummary,
    ExtractedText,
    SubmitAck,
    UserDocument,
)

__all__ = [
    # Documents
    "DocumentStatus",
    "UserDocument",
    "DocumentSummary",
    "DocumentStatusView",
    "DocumentChunk",
    "SubmitAck",
    "ExtractedText",
    # Chat
    "MessageRole",
    "SourceAttribution",
    "AnswerResult",
    "ChatMessageView",
    "ChatSessionSummary",
    "ChatSessionDetail",
]
