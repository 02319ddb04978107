"""Helper functions for Document and DocumentChunk database operations.

Status changes are conditional single-row UPDATEs whose WHERE clause carries
the allowed source statuses, so racing writers are serialized by the store.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import Document as DocumentDB
from backend.app.db.models import DocumentChunk as DocumentChunkDB
from backend.app.docs.chunker import TextChunk
from backend.app.docs.state import sources_for
from backend.app.models.documents import DocumentStatus


async def create_document(
    session: AsyncSession,
    *,
    owner_id: UUID,
    title: str,
    storage_key: str,
    metadata: dict[str, Any],
) -> DocumentDB:
    """Create a PENDING document row at upload-intent time."""
    now = datetime.now(UTC)
    document = DocumentDB(
        owner_id=owner_id,
        title=title,
        storage_key=storage_key,
        status=DocumentStatus.PENDING.value,
        processing_error=None,
        metadata_=metadata,
        created_at=now,
        updated_at=now,
    )
    session.add(document)
    await session.commit()
    return document


async def get_document(session: AsyncSession, document_id: UUID) -> DocumentDB | None:
    """Get document by ID without ownership filtering (pipeline use only)."""
    result = await session.execute(
        select(DocumentDB)
        .where(DocumentDB.document_id == document_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_owned_document(
    session: AsyncSession, document_id: UUID, *, owner_id: UUID
) -> DocumentDB | None:
    """Get document by ID if owned by owner_id."""
    result = await session.execute(
        select(DocumentDB)
        .where(
            DocumentDB.document_id == document_id,
            DocumentDB.owner_id == owner_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_for_processing(
    session: AsyncSession,
    document_id: UUID,
    *,
    owner_id: UUID,
    from_statuses: Sequence[DocumentStatus],
) -> bool:
    """Atomically move a document to PROCESSING and clear its chunk set.

    The status UPDATE and the chunk DELETE commit in one transaction, so a
    retried document never mixes chunks from a previous run with the new one.

    Returns:
        True if this caller won the claim, False if the status precondition failed
    """
    result = await session.execute(
        update(DocumentDB)
        .where(
            DocumentDB.document_id == document_id,
            DocumentDB.owner_id == owner_id,
            DocumentDB.status.in_([s.value for s in from_statuses]),
        )
        .values(
            status=DocumentStatus.PROCESSING.value,
            processing_error=None,
            updated_at=datetime.now(UTC),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        await session.rollback()
        return False

    await session.execute(
        delete(DocumentChunkDB).where(DocumentChunkDB.document_id == document_id)
    )
    await session.commit()
    return True


async def finish_processing(
    session: AsyncSession,
    document_id: UUID,
    *,
    status: DocumentStatus,
    error: str | None,
) -> bool:
    """Move a PROCESSING document to COMPLETED or FAILED.

    Returns:
        True if the row was updated, False if it was not in a valid source status
    """
    result = await session.execute(
        update(DocumentDB)
        .where(
            DocumentDB.document_id == document_id,
            DocumentDB.status.in_([s.value for s in sources_for(status)]),
        )
        .values(status=status.value, processing_error=error, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def merge_metadata(
    session: AsyncSession, document_id: UUID, updates: dict[str, Any]
) -> None:
    """Merge keys into the document's metadata bag."""
    document = await get_document(session, document_id)
    if document is None:
        return
    document.metadata_ = {**(document.metadata_ or {}), **updates}
    await session.commit()


async def add_chunks(
    session: AsyncSession,
    document_id: UUID,
    embedded: Sequence[tuple[TextChunk, list[float]]],
) -> None:
    """Persist embedded chunks for a document in one transaction."""
    now = datetime.now(UTC)
    session.add_all(
        [
            DocumentChunkDB(
                document_id=document_id,
                chunk_index=chunk.chunk_index,
                text=chunk.text,
                start_index=chunk.start_index,
                end_index=chunk.end_index,
                embedding=vector,
                metadata_=chunk.metadata(),
                created_at=now,
            )
            for chunk, vector in embedded
        ]
    )
    await session.commit()


async def count_chunks(session: AsyncSession, document_id: UUID) -> int:
    """Number of chunks stored for a document."""
    result = await session.execute(
        select(func.count())
        .select_from(DocumentChunkDB)
        .where(DocumentChunkDB.document_id == document_id)
    )
    return int(result.scalar_one())


async def list_documents_with_counts(
    session: AsyncSession, *, owner_id: UUID
) -> list[tuple[DocumentDB, int]]:
    """List owner's documents (newest first) with their chunk counts."""
    chunk_counts = (
        select(DocumentChunkDB.document_id, func.count().label("chunk_count"))
        .group_by(DocumentChunkDB.document_id)
        .subquery()
    )
    result = await session.execute(
        select(DocumentDB, func.coalesce(chunk_counts.c.chunk_count, 0))
        .outerjoin(chunk_counts, chunk_counts.c.document_id == DocumentDB.document_id)
        .where(DocumentDB.owner_id == owner_id)
        .order_by(DocumentDB.created_at.desc(), DocumentDB.document_id)
    )
    return [(document, int(count)) for document, count in result.all()]
