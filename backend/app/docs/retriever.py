"""Document retriever - lexical chunk scoring over an owner's completed documents."""

import logging
from collections.abc import Sequence
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import Document as DocumentDB
from backend.app.db.models import DocumentChunk as DocumentChunkDB
from backend.app.errors import StoreUnavailableError
from backend.app.models.documents import DocumentChunk, DocumentStatus
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3
PHRASE_BONUS = 10.0
TOKEN_WEIGHT = 2.0
SHORT_CHUNK_CHARS = 50
SHORT_CHUNK_PENALTY = 0.5


class ChunkMatch(BaseModel):
    """Document chunk with relevance score."""

    chunk: DocumentChunk
    document_title: str
    score: float
    similarity: float


def tokenize_question(question: str) -> list[str]:
    """Lowercase, split on whitespace, keep tokens longer than two chars.

    Duplicates are dropped so a repeated question word is not counted twice.
    """
    tokens: list[str] = []
    for token in question.lower().split():
        if len(token) >= MIN_TOKEN_LENGTH and token not in tokens:
            tokens.append(token)
    return tokens


def score_chunk(text: str, phrase: str, tokens: Sequence[str]) -> float:
    """Score one chunk against a question.

    +10 if the chunk contains the whole question, plus 2 per occurrence of
    each token (repeats count), halved for chunks under 50 characters.
    """
    text_lower = text.lower()
    score = 0.0

    if phrase and phrase in text_lower:
        score += PHRASE_BONUS

    for token in tokens:
        score += TOKEN_WEIGHT * text_lower.count(token)

    if len(text) < SHORT_CHUNK_CHARS:
        score *= SHORT_CHUNK_PENALTY

    return score


def normalize_score(score: float, cap: float = 0.95) -> float:
    """Map an unbounded additive score onto a capped display similarity."""
    return min(score / 100, cap)


async def search_chunks(
    *,
    question: str,
    owner_id: UUID,
    limit: int = 5,
    session: AsyncSession,
    document_ids: Sequence[UUID] | None = None,
    candidate_multiplier: int = 4,
    similarity_cap: float = 0.95,
) -> list[ChunkMatch]:
    """Search an owner's COMPLETED documents for chunks relevant to a question.

    Scoring strategy:
    - Candidates: chunks containing the full question or any token (case-insensitive),
      fetched up to ``limit * candidate_multiplier`` rows in stable order
    - Score each candidate with ``score_chunk``
    - Filter out chunks with score <= 0
    - Stable sort by score descending (ties keep fetch order)
    - Apply limit

    Args:
        question: Natural-language question
        owner_id: Only this owner's documents are searched
        limit: Maximum number of results to return
        session: Async database session
        document_ids: Optional subset of documents to search
        candidate_multiplier: Superset factor for the candidate fetch
        similarity_cap: Upper bound of the exposed similarity

    Returns:
        List of ChunkMatch sorted by relevance (descending score)

    Raises:
        StoreUnavailableError: If the store could not be queried
    """
    phrase = question.strip().lower()
    tokens = tokenize_question(question)

    if not phrase:
        return []

    patterns = [phrase, *tokens]

    # Ownership and COMPLETED status enforced at DB level
    stmt = (
        select(DocumentChunkDB, DocumentDB.title)
        .join(DocumentDB, DocumentChunkDB.document_id == DocumentDB.document_id)
        .where(
            DocumentDB.owner_id == owner_id,
            DocumentDB.status == DocumentStatus.COMPLETED.value,
            or_(*(DocumentChunkDB.text.icontains(p, autoescape=True) for p in patterns)),
        )
        .order_by(
            DocumentDB.created_at,
            DocumentChunkDB.document_id,
            DocumentChunkDB.chunk_index,
        )
        .limit(limit * candidate_multiplier)
    )
    if document_ids is not None:
        stmt = stmt.where(DocumentChunkDB.document_id.in_(list(document_ids)))

    try:
        result = await session.execute(stmt)
        rows = list(result.all())
    except SQLAlchemyError as e:
        logger.error(f"Chunk search failed for owner {owner_id}: {type(e).__name__}")
        raise StoreUnavailableError() from e

    scored: list[tuple[DocumentChunkDB, str, float]] = []
    for db_chunk, title in rows:
        score = score_chunk(db_chunk.text, phrase, tokens)
        if score > 0:
            scored.append((db_chunk, title, score))

    # list.sort is stable, so equal scores keep retrieval order
    scored.sort(key=lambda x: -x[2])
    scored = scored[:limit]

    matches = [
        ChunkMatch(
            chunk=DocumentChunk(
                chunk_id=db_chunk.chunk_id,
                document_id=db_chunk.document_id,
                chunk_index=db_chunk.chunk_index,
                text=db_chunk.text,
                start_index=db_chunk.start_index,
                end_index=db_chunk.end_index,
            ),
            document_title=title,
            score=score,
            similarity=normalize_score(score, similarity_cap),
        )
        for db_chunk, title, score in scored
    ]

    metrics.observe_results(len(matches))
    return matches
