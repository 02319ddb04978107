"""Exception taxonomy shared by ingestion, retrieval and chat.

Every error carries a short, user-displayable message. Routes map the
classes to HTTP status codes; pipeline code stores ``str(error)`` on the
document when a run fails.
"""

from uuid import UUID


class DocQAError(Exception):
    """Base class for all service errors."""

    pass


# Precondition errors (rejected before any pipeline work starts)
class DocumentNotFoundError(DocQAError):
    """Document does not exist or is not owned by the caller."""

    def __init__(self, document_id: UUID) -> None:
        super().__init__("Document not found or access denied")
        self.document_id = document_id


class AlreadyProcessedError(DocQAError):
    """Document already reached COMPLETED."""

    def __init__(self, document_id: UUID) -> None:
        super().__init__("Document already processed successfully")
        self.document_id = document_id


class InProgressError(DocQAError):
    """Document is currently being processed."""

    def __init__(self, document_id: UUID) -> None:
        super().__init__("Document is currently being processed")
        self.document_id = document_id


class InvalidTransitionError(DocQAError):
    """Requested status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class InvalidUploadError(DocQAError):
    """Upload intent rejected (type or size)."""

    pass


# Pipeline errors (terminal for a run, stored on the document)
class PipelineStageError(DocQAError):
    """Failure inside one ingestion stage, qualified with stage context."""

    stage = "processing"

    def __init__(self, reason: str, *, document_id: UUID | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.document_id = document_id

    def stored_message(self) -> str:
        """Message persisted as the document's processing error."""
        return f"{self.stage.capitalize()} failed: {self.reason}"


class BlobFetchError(PipelineStageError):
    """Bytes could not be fetched from the blob store."""

    stage = "fetch"


class ExtractionError(PipelineStageError):
    """Text extraction failed or produced no usable text."""

    stage = "extraction"


class ChunkingError(PipelineStageError):
    """Extracted text produced no chunks."""

    stage = "chunking"


class EmbeddingError(PipelineStageError):
    """A single embedding call failed."""

    stage = "embedding"


class NoChunksEmbeddedError(EmbeddingError):
    """Every chunk of the run failed to embed."""

    def __init__(self, failed: int, *, document_id: UUID | None = None) -> None:
        super().__init__(
            f"all {failed} chunks failed to embed - check embedding provider credentials",
            document_id=document_id,
        )
        self.failed = failed


# Retrieval / answering
class StoreUnavailableError(DocQAError):
    """Persistent store could not be queried."""

    def __init__(self, message: str = "Document store is unavailable") -> None:
        super().__init__(message)


class AnswerGenerationError(DocQAError):
    """Answer generation collaborator failed or timed out."""

    def __init__(self, message: str = "Failed to generate an answer. Please try again.") -> None:
        super().__init__(message)


# Conversation ledger
class SessionNotFoundError(DocQAError):
    """Session does not exist or is not owned by the caller."""

    def __init__(self, session_id: UUID) -> None:
        super().__init__("Session not found")
        self.session_id = session_id
