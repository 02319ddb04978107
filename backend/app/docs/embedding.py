"""Embedding orchestrator - batched, fault-isolated embedding and persistence.

Chunks are embedded in fixed-size batches. Calls within a batch run
concurrently, each with its own timeout; one failing call never cancels its
siblings or later batches. A chunk is persisted only after its embedding
succeeded. Batches run sequentially with a delay that doubles after a batch
with failures (capped) and resets after a clean batch.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.documents import add_chunks
from backend.app.docs.chunker import TextChunk
from backend.app.errors import NoChunksEmbeddedError
from backend.app.llm.client import EmbeddingClient
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingOutcome:
    """Per-run embedding tally."""

    succeeded: int
    failed: int


class EmbeddingOrchestrator:
    """Embeds chunks with bounded concurrency and persists the successes."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_size: int = 5,
        batch_delay_ms: int = 100,
        max_backoff_ms: int = 2000,
        timeout_s: float = 20.0,
        max_input_chars: int = 8000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize orchestrator.

        Args:
            embedder: Embedding collaborator
            session_factory: Factory for sessions used to persist chunks
            batch_size: Chunks per batch; caps simultaneous embedding calls
            batch_delay_ms: Base delay between batches
            max_backoff_ms: Upper bound for the delay after failing batches
            timeout_s: Timeout for a single embedding call
            max_input_chars: Embedding input is truncated to this length
            sleep: Awaitable sleep (injectable for tests)
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self._embedder = embedder
        self._session_factory = session_factory
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self.max_backoff_ms = max_backoff_ms
        self.timeout_s = timeout_s
        self.max_input_chars = max_input_chars
        self._sleep = sleep

    async def _embed_one(self, document_id: UUID, chunk: TextChunk) -> list[float] | None:
        """Embed a single chunk; failures are logged and reported as None."""
        try:
            vector = await asyncio.wait_for(
                self._embedder.embed(chunk.text[: self.max_input_chars]),
                timeout=self.timeout_s,
            )
        except TimeoutError:
            logger.warning(
                f"Embedding timed out for chunk {chunk.chunk_index} of document {document_id}"
            )
            metrics.inc_embedding("timeout")
            return None
        except Exception as e:
            logger.warning(
                f"Embedding failed for chunk {chunk.chunk_index} of document {document_id}: {e}"
            )
            metrics.inc_embedding("error")
            return None

        if not vector:
            logger.warning(
                f"Empty embedding for chunk {chunk.chunk_index} of document {document_id}"
            )
            metrics.inc_embedding("empty")
            return None

        metrics.inc_embedding("success")
        return [float(v) for v in vector]

    def _next_delay_ms(self, current_ms: int, batch_failed: int) -> int:
        if batch_failed == 0:
            return self.batch_delay_ms
        return min(max(current_ms * 2, self.batch_delay_ms), self.max_backoff_ms)

    async def embed_and_store(
        self, document_id: UUID, chunks: Sequence[TextChunk]
    ) -> EmbeddingOutcome:
        """Embed and persist chunks batch by batch.

        Args:
            document_id: Owning document
            chunks: Chunker output, in order

        Returns:
            EmbeddingOutcome with succeeded/failed counts

        Raises:
            NoChunksEmbeddedError: If chunks were given and none succeeded
        """
        batches = [
            chunks[i : i + self.batch_size] for i in range(0, len(chunks), self.batch_size)
        ]
        succeeded = 0
        failed = 0
        delay_ms = self.batch_delay_ms

        for batch_number, batch in enumerate(batches, start=1):
            start = time.perf_counter()
            vectors = await asyncio.gather(
                *(self._embed_one(document_id, chunk) for chunk in batch)
            )

            embedded = [
                (chunk, vector)
                for chunk, vector in zip(batch, vectors, strict=True)
                if vector is not None
            ]
            if embedded:
                async with self._session_factory() as session:
                    await add_chunks(session, document_id, embedded)

            batch_failed = len(batch) - len(embedded)
            succeeded += len(embedded)
            failed += batch_failed

            logger.info(
                f"Document {document_id}: batch {batch_number}/{len(batches)} "
                f"embedded {len(embedded)}/{len(batch)} chunks "
                f"in {(time.perf_counter() - start) * 1000:.0f}ms"
            )

            if batch_number < len(batches):
                delay_ms = self._next_delay_ms(delay_ms, batch_failed)
                await self._sleep(delay_ms / 1000)

        if chunks and succeeded == 0:
            raise NoChunksEmbeddedError(failed, document_id=document_id)

        return EmbeddingOutcome(succeeded=succeeded, failed=failed)
