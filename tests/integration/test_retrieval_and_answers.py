"""Integration tests for chunk retrieval and answer assembly."""

import asyncio
import uuid
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.chat.answer import NO_MATCH_ANSWER, answer_question, build_context
from backend.app.config import Settings
from backend.app.docs.retriever import ChunkMatch, search_chunks
from backend.app.errors import AnswerGenerationError, StoreUnavailableError
from backend.app.models.documents import DocumentChunk, DocumentStatus
from tests.fakes import FakeAnswerer

CALIBRATION = "The widget requires calibration every 90 days."
GOGGLES = "Safety goggles are mandatory."


@pytest.mark.asyncio
async def test_calibration_question_ranks_matching_chunk(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test the calibration scenario end to end through the store."""
    owner_id = uuid.uuid4()
    await make_document(
        owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[CALIBRATION, GOGGLES]
    )

    matches = await search_chunks(
        question="calibration schedule", owner_id=owner_id, session=session
    )

    assert [m.chunk.text for m in matches] == [CALIBRATION]
    assert matches[0].score == 1.0
    assert matches[0].similarity == 0.01
    assert matches[0].document_title == "Manual.pdf"


@pytest.mark.asyncio
async def test_search_excludes_other_owners_and_unfinished_documents(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test owner and COMPLETED-status isolation for any query."""
    owner_id = uuid.uuid4()
    text = "Bleed the brake lines after replacing the master cylinder."
    own = await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[text])
    await make_document(owner_id=uuid.uuid4(), status=DocumentStatus.COMPLETED, chunks=[text])
    for status in (DocumentStatus.PENDING, DocumentStatus.PROCESSING, DocumentStatus.FAILED):
        await make_document(owner_id=owner_id, status=status, chunks=[text])

    for question in ("brake lines", "master cylinder", text, "bleed"):
        matches = await search_chunks(question=question, owner_id=owner_id, session=session)
        assert {m.chunk.document_id for m in matches} == {own}


@pytest.mark.asyncio
async def test_ties_keep_retrieval_order_and_limit_applies(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test stable ranking for equal scores and truncation to limit."""
    owner_id = uuid.uuid4()
    texts = [f"Section {i}: inspect the gearbox seals for leaks before each shift." for i in range(4)]
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=texts)

    matches = await search_chunks(
        question="gearbox seals", owner_id=owner_id, limit=3, session=session
    )

    assert [m.chunk.chunk_index for m in matches] == [0, 1, 2]


@pytest.mark.asyncio
async def test_higher_score_outranks_earlier_chunk(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test that ranking is by descending score."""
    owner_id = uuid.uuid4()
    weak = "The coolant reservoir is located behind the front grille of the unit."
    strong = "Coolant level: check the coolant daily and top up coolant with the approved mix."
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[weak, strong])

    matches = await search_chunks(question="coolant", owner_id=owner_id, session=session)

    assert [m.chunk.text for m in matches] == [strong, weak]
    assert matches[0].score > matches[1].score


@pytest.mark.asyncio
async def test_document_filter_restricts_search(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test restricting a search to selected documents."""
    owner_id = uuid.uuid4()
    first = await make_document(
        owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[CALIBRATION]
    )
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[CALIBRATION])

    matches = await search_chunks(
        question="calibration", owner_id=owner_id, session=session, document_ids=[first]
    )

    assert {m.chunk.document_id for m in matches} == {first}


@pytest.mark.asyncio
async def test_like_wildcards_in_question_are_literal(
    session: AsyncSession, make_document: Callable[..., Any]
) -> None:
    """Test that % and _ in a question do not match everything."""
    owner_id = uuid.uuid4()
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[GOGGLES])

    matches = await search_chunks(question="100% ___", owner_id=owner_id, session=session)

    assert matches == []


@pytest.mark.asyncio
async def test_store_failure_is_explicit(session: AsyncSession) -> None:
    """Test that a broken store raises instead of returning no matches."""
    with patch.object(
        session,
        "execute",
        AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("disk I/O error"))),
    ):
        with pytest.raises(StoreUnavailableError):
            await search_chunks(question="anything", owner_id=uuid.uuid4(), session=session)


# Answer assembly


@pytest.mark.asyncio
async def test_no_match_returns_fixed_message_without_generation(
    session: AsyncSession, settings: Settings
) -> None:
    """Test the no-match scenario never calls the answer collaborator."""
    answerer = FakeAnswerer()

    result = await answer_question(
        question="What is the warranty period?",
        owner_id=uuid.uuid4(),
        session=session,
        answerer=answerer,
        settings=settings,
    )

    assert result.answer == NO_MATCH_ANSWER
    assert result.sources == []
    assert result.question == "What is the warranty period?"
    assert answerer.calls == []


@pytest.mark.asyncio
async def test_answer_carries_sources_and_labelled_context(
    session: AsyncSession, settings: Settings, make_document: Callable[..., Any]
) -> None:
    """Test context formatting and source attribution."""
    owner_id = uuid.uuid4()
    long_text = "Calibration procedure: " + "adjust the zero offset, " * 20
    document_id = await make_document(
        owner_id=owner_id,
        title="Widget Manual.pdf",
        status=DocumentStatus.COMPLETED,
        chunks=[CALIBRATION, long_text],
    )
    answerer = FakeAnswerer(answer="Every 90 days [Source 1].")

    result = await answer_question(
        question="calibration",
        owner_id=owner_id,
        session=session,
        answerer=answerer,
        settings=settings,
    )

    assert result.answer == "Every 90 days [Source 1]."
    question, context = answerer.calls[0]
    assert question == "calibration"
    assert context.startswith("Source 1 (from Widget Manual.pdf):\n")
    assert "\n\nSource 2 (from Widget Manual.pdf):\n" in context

    assert len(result.sources) == 2
    assert {s.document_id for s in result.sources} == {document_id}
    long_source = next(s for s in result.sources if s.chunk_text.startswith("Calibration procedure"))
    assert len(long_source.chunk_text) == 203
    assert long_source.chunk_text.endswith("...")
    assert all(0 <= s.similarity <= 0.95 for s in result.sources)

    serialized = result.model_dump(by_alias=True)["sources"][0]
    assert set(serialized) == {"chunkId", "documentId", "documentTitle", "chunkText", "similarity"}


@pytest.mark.asyncio
async def test_generation_failure_is_generic(
    session: AsyncSession, settings: Settings, make_document: Callable[..., Any]
) -> None:
    """Test that collaborator errors surface as a generic failure."""
    owner_id = uuid.uuid4()
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[CALIBRATION])
    answerer = FakeAnswerer(error=RuntimeError("upstream 500: secret stack trace"))

    with pytest.raises(AnswerGenerationError) as exc_info:
        await answer_question(
            question="calibration",
            owner_id=owner_id,
            session=session,
            answerer=answerer,
            settings=settings,
        )

    assert str(exc_info.value) == "Failed to generate an answer. Please try again."


@pytest.mark.asyncio
async def test_generation_timeout_is_generic_failure(
    session: AsyncSession, settings: Settings, make_document: Callable[..., Any]
) -> None:
    """Test that a slow collaborator is cut off at the answer timeout."""
    owner_id = uuid.uuid4()
    await make_document(owner_id=owner_id, status=DocumentStatus.COMPLETED, chunks=[CALIBRATION])

    class SlowAnswerer:
        async def complete(self, question: str, context: str) -> str:
            await asyncio.sleep(5)
            return "too late"

    with pytest.raises(AnswerGenerationError):
        await answer_question(
            question="calibration",
            owner_id=owner_id,
            session=session,
            answerer=SlowAnswerer(),
            settings=settings.model_copy(update={"answer_timeout_s": 0.05}),
        )


def _match(index: int, text: str) -> ChunkMatch:
    return ChunkMatch(
        chunk=DocumentChunk(
            chunk_id=uuid.uuid4(),
            document_id=uuid.uuid4(),
            chunk_index=index,
            text=text,
            start_index=0,
            end_index=len(text),
        ),
        document_title="doc.txt",
        score=1.0,
        similarity=0.01,
    )


def test_context_bounded_and_first_block_always_kept() -> None:
    """Test the context limit drops trailing blocks but never the first."""
    matches = [_match(0, "a" * 50), _match(1, "b" * 50)]

    context, used = build_context(matches, max_chars=40)

    assert used == matches[:1]
    assert len(context) == 40
    assert context.startswith("Source 1 (from doc.txt):\n")
