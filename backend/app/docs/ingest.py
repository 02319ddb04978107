"""Document ingestion - upload intent, state machine and pipeline.

A document moves PENDING -> PROCESSING -> COMPLETED | FAILED. ``submit``
validates preconditions, claims the document with a conditional status
update and hands the run to the dispatcher; the run itself fetches bytes,
extracts text, chunks it, embeds and stores chunks, and records the final
status.
"""

import asyncio
import logging
import re
import time
import uuid
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.adapters.blob_store import BlobNotFoundError, BlobStore
from backend.app.adapters.extraction import TextExtractor
from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.db.documents import (
    claim_for_processing,
    count_chunks,
    create_document,
    finish_processing,
    get_document,
    get_owned_document,
    list_documents_with_counts,
    merge_metadata,
)
from backend.app.db.models import Document as DocumentDB
from backend.app.docs.chunker import TextChunk, chunk_text
from backend.app.docs.dispatcher import IngestionDispatcher
from backend.app.docs.embedding import EmbeddingOrchestrator
from backend.app.docs.state import sources_for
from backend.app.errors import (
    AlreadyProcessedError,
    BlobFetchError,
    ChunkingError,
    DocumentNotFoundError,
    ExtractionError,
    InProgressError,
    InvalidUploadError,
    PipelineStageError,
)
from backend.app.llm.client import EmbeddingClient
from backend.app.models.documents import (
    DocumentStatus,
    DocumentStatusView,
    DocumentSummary,
    ExtractedText,
    SubmitAck,
    UserDocument,
)
from backend.app.utils.logging import StructuredIngestionLogger
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted before completion"


def to_user_document(document: DocumentDB) -> UserDocument:
    """Convert ORM row to domain model."""
    return UserDocument(
        document_id=document.document_id,
        owner_id=document.owner_id,
        title=document.title,
        storage_key=document.storage_key,
        status=DocumentStatus(document.status),
        processing_error=document.processing_error,
        metadata=document.metadata_ or {},
        created_at=document.created_at,
    )


def build_storage_key(file_name: str, now: datetime | None = None) -> str:
    """Build a unique blob key ``uploads/<millis>-<rand>-<sanitized name>``."""
    now = now or datetime.now(UTC)
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", file_name)
    return f"uploads/{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}-{sanitized}"


async def create_upload_intent(
    *,
    ctx: RequestContext,
    file_name: str,
    mime_type: str,
    size_bytes: int,
    extracted_text: str | None = None,
    settings: Settings,
    session: AsyncSession,
) -> UserDocument:
    """Validate an upload and create its PENDING document row.

    The row exists before any bytes reach the blob store.

    Raises:
        InvalidUploadError: If the type is not allowed or the file is too large
    """
    if mime_type not in settings.allowed_mime_types:
        raise InvalidUploadError(
            "File type not supported. Only PDF, TXT, Markdown and DOCX files are allowed."
        )

    if size_bytes > settings.max_upload_bytes:
        max_mb = settings.max_upload_bytes // (1024 * 1024)
        raise InvalidUploadError(f"File too large. Maximum size is {max_mb}MB.")

    metadata: dict[str, Any] = {
        "original_name": file_name,
        "mime_type": mime_type,
        "size_bytes": size_bytes,
    }
    if extracted_text:
        metadata["extracted_text"] = extracted_text

    document = await create_document(
        session,
        owner_id=ctx.user_id,
        title=file_name,
        storage_key=build_storage_key(file_name),
        metadata=metadata,
    )
    logger.info(f"Created document {document.document_id} for user {ctx.user_id}")
    return to_user_document(document)


async def store_document_content(
    document_id: UUID,
    data: bytes,
    *,
    ctx: RequestContext,
    blob_store: BlobStore,
    settings: Settings,
    session: AsyncSession,
) -> str:
    """Put uploaded bytes into the blob store under the document's key.

    Returns:
        URL of the stored blob
    """
    document = await get_owned_document(session, document_id, owner_id=ctx.user_id)
    if document is None:
        raise DocumentNotFoundError(document_id)

    status = DocumentStatus(document.status)
    if status == DocumentStatus.COMPLETED:
        raise AlreadyProcessedError(document_id)
    if status == DocumentStatus.PROCESSING:
        raise InProgressError(document_id)

    if len(data) > settings.max_upload_bytes:
        max_mb = settings.max_upload_bytes // (1024 * 1024)
        raise InvalidUploadError(f"File too large. Maximum size is {max_mb}MB.")

    return await blob_store.put(document.storage_key, data)


class IngestionService:
    """Drives documents through the ingestion state machine."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        extractor: TextExtractor,
        embedder: EmbeddingClient,
        dispatcher: IngestionDispatcher,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._blob_store = blob_store
        self._extractor = extractor
        self._dispatcher = dispatcher
        self._settings = settings
        self._log = StructuredIngestionLogger()
        self.orchestrator = EmbeddingOrchestrator(
            embedder,
            session_factory,
            batch_size=settings.embedding_batch_size,
            batch_delay_ms=settings.embedding_batch_delay_ms,
            max_backoff_ms=settings.embedding_max_backoff_ms,
            timeout_s=settings.embedding_timeout_s,
            max_input_chars=settings.embedding_input_max_chars,
        )

    # Submission (synchronous part of the trigger)

    async def submit(
        self,
        document_id: UUID,
        *,
        ctx: RequestContext,
        session: AsyncSession,
        recover: bool = False,
    ) -> SubmitAck:
        """Start ingestion for a document and return once PROCESSING is committed.

        Args:
            document_id: Document to ingest
            ctx: Caller identity (must own the document)
            session: Request-scoped session
            recover: Treat a PROCESSING document with no live run in this
                process (e.g. abandoned by a restart) as FAILED and retry it

        Raises:
            DocumentNotFoundError: Unknown document or not owned by caller
            AlreadyProcessedError: Document is COMPLETED
            InProgressError: Document is PROCESSING (and not recoverable)
        """
        document = await get_owned_document(session, document_id, owner_id=ctx.user_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        status = DocumentStatus(document.status)
        if status == DocumentStatus.COMPLETED:
            raise AlreadyProcessedError(document_id)

        if status == DocumentStatus.PROCESSING:
            if not recover or self._dispatcher.is_active(document_id):
                raise InProgressError(document_id)
            # Abandoned run: record it as failed, then retry from FAILED
            await finish_processing(
                session,
                document_id,
                status=DocumentStatus.FAILED,
                error=INTERRUPTED_MESSAGE,
            )
            logger.warning(f"Recovering abandoned ingestion run for document {document_id}")

        claimed = await claim_for_processing(
            session,
            document_id,
            owner_id=ctx.user_id,
            from_statuses=sources_for(DocumentStatus.PROCESSING),
        )
        if not claimed:
            # Lost a race with another submission; report what won
            current = await get_owned_document(session, document_id, owner_id=ctx.user_id)
            if current is not None and current.status == DocumentStatus.COMPLETED.value:
                raise AlreadyProcessedError(document_id)
            raise InProgressError(document_id)

        logger.info(f"Starting async processing for document {document_id}")
        self._dispatcher.dispatch(document_id, lambda: self.run(document_id))

        return SubmitAck(document_id=document_id, status=DocumentStatus.PROCESSING)

    # Pipeline (runs detached from the caller)

    async def run(self, document_id: UUID) -> None:
        """Execute the pipeline for a claimed document and record the outcome.

        Pipeline errors mark the document FAILED with a stage-qualified
        message. Chunks stored before the failure are left in place. No
        session is held open while chunks are embedded.
        """
        run_start = time.perf_counter()
        stage = "fetch"
        stage_start = run_start
        try:
            async with self._session_factory() as session:
                document = await get_document(session, document_id)
                if document is None:
                    logger.warning(f"Document {document_id} vanished before processing")
                    return

                stage = "extraction"
                extracted = await self._obtain_text(session, document)

            stage, stage_start = "chunking", time.perf_counter()
            chunks = self._chunk(document_id, extracted.text)

            stage, stage_start = "embedding", time.perf_counter()
            outcome = await self.orchestrator.embed_and_store(document_id, chunks)
            self._stage_done(
                document_id,
                "embedding",
                stage_start,
                succeeded=outcome.succeeded,
                failed=outcome.failed,
            )

            stage, stage_start = "completion", time.perf_counter()
            note = f"{outcome.failed} chunks failed to process" if outcome.failed else None
            async with self._session_factory() as session:
                await finish_processing(
                    session, document_id, status=DocumentStatus.COMPLETED, error=note
                )

        except PipelineStageError as e:
            await self._fail(document_id, e.stored_message())
            self._stage_failed(document_id, e.stage, stage_start, error_reason=e.reason)
            return
        except Exception as e:
            logger.exception(f"Unexpected error processing document {document_id} ({stage})")
            await self._fail(
                document_id, f"{stage.capitalize()} failed: unexpected {type(e).__name__}"
            )
            self._stage_failed(
                document_id, stage, stage_start, error_reason=f"unexpected {type(e).__name__}"
            )
            return

        metrics.inc_run("completed")
        self._log.log_stage(
            document_id,
            "run",
            "success",
            (time.perf_counter() - run_start) * 1000,
            succeeded=outcome.succeeded,
            failed=outcome.failed,
        )

    async def _obtain_text(self, session: AsyncSession, document: DocumentDB) -> ExtractedText:
        """Fetch and extract text, or use text extracted client-side."""
        document_id = document.document_id
        metadata = document.metadata_ or {}

        pre_extracted = metadata.get("extracted_text")
        if pre_extracted and pre_extracted.strip():
            logger.info(f"Using pre-extracted text for document {document_id}")
            return ExtractedText(text=pre_extracted)

        start = time.perf_counter()
        try:
            data = await self._blob_store.get(document.storage_key)
        except BlobNotFoundError as e:
            raise BlobFetchError(
                "uploaded file not found in storage", document_id=document_id
            ) from e
        except Exception as e:
            raise BlobFetchError("could not read uploaded file", document_id=document_id) from e
        self._stage_done(document_id, "fetch", start, bytes=len(data))

        start = time.perf_counter()
        mime_type = metadata.get("mime_type", "application/octet-stream")
        try:
            extracted = await asyncio.wait_for(
                self._extractor.extract(data, mime_type),
                timeout=self._settings.extraction_timeout_s,
            )
        except TimeoutError as e:
            raise ExtractionError("text extraction timed out", document_id=document_id) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(
                f"failed to extract text ({type(e).__name__})", document_id=document_id
            ) from e

        if not extracted.text or not extracted.text.strip():
            raise ExtractionError(
                "no text content extracted from document", document_id=document_id
            )

        await merge_metadata(session, document_id, extracted.hints())
        self._stage_done(document_id, "extraction", start, chars=len(extracted.text))
        return extracted

    def _chunk(self, document_id: UUID, text: str) -> list[TextChunk]:
        start = time.perf_counter()
        chunks = chunk_text(
            text,
            max_tokens=self._settings.chunk_max_tokens,
            overlap_tokens=self._settings.chunk_overlap_tokens,
        )
        if not chunks:
            raise ChunkingError("no chunks created from document text", document_id=document_id)
        self._stage_done(document_id, "chunking", start, chunks=len(chunks))
        return chunks

    def _stage_done(self, document_id: UUID, stage: str, start: float, **details: Any) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        metrics.record_stage(stage, "success", latency_ms)
        self._log.log_stage(document_id, stage, "success", latency_ms, **details)

    def _stage_failed(self, document_id: UUID, stage: str, start: float, **details: Any) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        metrics.record_stage(stage, "failed", latency_ms)
        self._log.log_stage(document_id, stage, "failed", latency_ms, **details)

    async def _fail(self, document_id: UUID, message: str) -> None:
        """Record FAILED using a fresh session (the run's session may be unusable)."""
        metrics.inc_run("failed")
        async with self._session_factory() as session:
            updated = await finish_processing(
                session, document_id, status=DocumentStatus.FAILED, error=message
            )
        if not updated:
            logger.warning(f"Document {document_id} was not PROCESSING when marking FAILED")

    # Status queries

    async def get_status(
        self, document_id: UUID, *, ctx: RequestContext, session: AsyncSession
    ) -> DocumentStatusView:
        """Status, chunk count and error for polling clients."""
        document = await get_owned_document(session, document_id, owner_id=ctx.user_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        status = DocumentStatus(document.status)
        return DocumentStatusView(
            document_id=document.document_id,
            title=document.title,
            status=status,
            is_processed=status == DocumentStatus.COMPLETED,
            chunk_count=await count_chunks(session, document_id),
            processing_error=document.processing_error,
            created_at=document.created_at,
        )

    async def list_documents(
        self, *, ctx: RequestContext, session: AsyncSession
    ) -> list[DocumentSummary]:
        """Owner's documents, newest first."""
        rows = await list_documents_with_counts(session, owner_id=ctx.user_id)
        return [
            DocumentSummary(
                document_id=document.document_id,
                title=document.title,
                status=DocumentStatus(document.status),
                is_processed=document.status == DocumentStatus.COMPLETED.value,
                chunk_count=chunk_count,
                processing_error=document.processing_error,
                created_at=document.created_at,
            )
            for document, chunk_count in rows
        ]
