"""Document domain models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentStatus(str, Enum):
    """Ingestion status of a document."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UserDocument(BaseModel):
    """User document metadata."""

    document_id: UUID
    owner_id: UUID
    title: str
    storage_key: str
    status: DocumentStatus
    processing_error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class DocumentSummary(BaseModel):
    """Document row as shown in listings."""

    document_id: UUID
    title: str
    status: DocumentStatus
    is_processed: bool
    chunk_count: int
    processing_error: str | None = None
    created_at: datetime


class DocumentStatusView(BaseModel):
    """Status polling payload."""

    document_id: UUID
    title: str
    status: DocumentStatus
    is_processed: bool
    chunk_count: int  # lower bound on progress while PROCESSING
    processing_error: str | None = None
    created_at: datetime


class DocumentChunk(BaseModel):
    """Stored document chunk."""

    chunk_id: UUID
    document_id: UUID
    chunk_index: int  # 0-based
    text: str
    start_index: int
    end_index: int


class SubmitAck(BaseModel):
    """Acknowledgment returned when an ingestion run is accepted."""

    document_id: UUID
    status: DocumentStatus
    message: str = "Document processing started"


class ExtractedText(BaseModel):
    """Result of text extraction with structural hints."""

    text: str
    page_count: int | None = None
    has_tables: bool = False
    has_images: bool = False
    sections: list[str] = Field(default_factory=list)

    def hints(self) -> dict[str, Any]:
        """Structural hints merged into the document metadata bag."""
        return {
            "page_count": self.page_count,
            "has_tables": self.has_tables,
            "has_images": self.has_images,
            "sections": self.sections,
        }
