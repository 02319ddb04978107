"""Answer assembler - grounded answers from an owner's top-ranked chunks."""

import asyncio
import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import Settings, get_settings
from backend.app.docs.retriever import ChunkMatch, search_chunks
from backend.app.errors import AnswerGenerationError
from backend.app.llm.client import AnswerClient
from backend.app.models.chat import AnswerResult, SourceAttribution

logger = logging.getLogger(__name__)

NO_MATCH_ANSWER = (
    "I couldn't find any relevant information in your documents to answer this question."
)


def excerpt(text: str, max_chars: int = 200) -> str:
    """Hard-truncate text for display, marking the cut with an ellipsis."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def build_context(
    matches: Sequence[ChunkMatch], max_chars: int = 12000
) -> tuple[str, list[ChunkMatch]]:
    """Format ranked chunks into one labelled context block.

    Blocks keep rank order and are numbered from 1. The first block is always
    included (truncated if it alone exceeds max_chars); later blocks that do
    not fit are dropped.

    Returns:
        (context, matches actually included)
    """
    blocks: list[str] = []
    used: list[ChunkMatch] = []
    total = 0

    for n, match in enumerate(matches, start=1):
        block = f"Source {n} (from {match.document_title}):\n{match.chunk.text}"
        separator = 2 if blocks else 0

        if blocks and total + separator + len(block) > max_chars:
            break
        if not blocks and len(block) > max_chars:
            block = block[:max_chars]

        blocks.append(block)
        used.append(match)
        total += separator + len(block)

    return "\n\n".join(blocks), used


async def answer_question(
    *,
    question: str,
    owner_id: UUID,
    session: AsyncSession,
    answerer: AnswerClient,
    document_ids: Sequence[UUID] | None = None,
    settings: Settings | None = None,
) -> AnswerResult:
    """Answer a question from the owner's documents with source attributions.

    Args:
        question: Natural-language question
        owner_id: Only this owner's COMPLETED documents are consulted
        session: Async database session
        answerer: Answer-generation collaborator
        document_ids: Optional subset of documents to consult
        settings: Limits and timeouts (defaults to global settings)

    Returns:
        AnswerResult; with no matches, a fixed message and no sources

    Raises:
        StoreUnavailableError: If retrieval could not query the store
        AnswerGenerationError: If generation failed or timed out
    """
    settings = settings or get_settings()

    matches = await search_chunks(
        question=question,
        owner_id=owner_id,
        limit=settings.retrieval_limit,
        session=session,
        document_ids=document_ids,
        candidate_multiplier=settings.retrieval_candidate_multiplier,
        similarity_cap=settings.similarity_cap,
    )

    if not matches:
        logger.info(f"No relevant chunks for owner {owner_id}; returning fixed answer")
        return AnswerResult(answer=NO_MATCH_ANSWER, sources=[], question=question)

    context, used = build_context(matches, settings.context_max_chars)

    try:
        answer = await asyncio.wait_for(
            answerer.complete(question, context),
            timeout=settings.answer_timeout_s,
        )
    except TimeoutError as e:
        logger.error(f"Answer generation timed out after {settings.answer_timeout_s}s")
        raise AnswerGenerationError() from e
    except Exception as e:
        logger.error(f"Answer generation failed: {type(e).__name__}: {e}")
        raise AnswerGenerationError() from e

    sources = [
        SourceAttribution(
            chunk_id=match.chunk.chunk_id,
            document_id=match.chunk.document_id,
            document_title=match.document_title,
            chunk_text=excerpt(match.chunk.text, settings.excerpt_max_chars),
            similarity=match.similarity,
        )
        for match in used
    ]

    logger.info(f"Answered question for owner {owner_id} with {len(sources)} sources")
    return AnswerResult(answer=answer, sources=sources, question=question)
