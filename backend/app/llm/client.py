"""LLM client for embeddings and grounded answers with OpenAI integration.

Security: Reads API key from settings/environment only, never hardcoded.
Provides a deterministic stub when no key is present for testing.
"""

import hashlib
import logging
import math
from typing import Protocol

from openai import AsyncOpenAI

from backend.app.config import Settings, get_settings

logger = logging.getLogger(__name__)

STUB_EMBEDDING_DIM = 64

SYSTEM_PROMPT = """You are a helpful assistant for technicians working from technical manuals.
Answer the question using ONLY the provided context from the user's documents.

CRITICAL CONSTRAINTS:
- Do NOT use outside knowledge or invent procedures, values or part names that are not in the
  context.
- If the context does not contain the answer, say clearly that you cannot answer from the
  provided documents.
- Reference the source labels (e.g. "Source 1") when you use information from them.
- Be clear, accurate and concise."""


class EmbeddingClient(Protocol):
    """Protocol for embedding generator implementations."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for text (fixed dimensionality)."""
        ...


class AnswerClient(Protocol):
    """Protocol for answer generator implementations."""

    async def complete(self, question: str, context: str) -> str:
        """Answer question from context only.

        Args:
            question: User's question
            context: Labelled context block assembled from top-ranked chunks

        Returns:
            Answer text
        """
        ...


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    def __init__(self, dim: int = STUB_EMBEDDING_DIM) -> None:
        self.dim = dim

    async def embed(self, text: str) -> list[float]:
        """Hash-based unit vector; same text always yields the same vector."""
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        raw = [(digest[i % len(digest)] - 127.5) / 127.5 for i in range(self.dim)]
        norm = math.sqrt(sum(v * v for v in raw)) or 1.0
        return [v / norm for v in raw]

    async def complete(self, question: str, context: str) -> str:
        """Generate deterministic stub answer."""
        num_sources = context.count("Source ")
        return (
            f"Based on {num_sources} source(s) from your documents, here is what they say "
            f'about "{question}".\n\n'
            f"*This is a stub response generated without LLM synthesis.*"
        )


class OpenAIClient:
    """OpenAI-backed client for embeddings and answer synthesis."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        max_input_chars: int = 8000,
        timeout_s: float = 60.0,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Chat model used for answers
            embedding_model: Embedding model name
            max_input_chars: Embedding input is capped at this many characters
            timeout_s: Per-request HTTP timeout
        """
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
        self.model = model
        self.embedding_model = embedding_model
        self.max_input_chars = max_input_chars

    async def embed(self, text: str) -> list[float]:
        """Generate embedding using OpenAI API."""
        response = await self.client.embeddings.create(
            model=self.embedding_model,
            input=text[: self.max_input_chars],
        )
        return list(response.data[0].embedding)

    async def complete(self, question: str, context: str) -> str:
        """Generate answer using OpenAI API.

        Raises:
            OpenAIError: On API failures (callers decide how to surface them)
            ValueError: If the model returned an empty answer
        """
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Context:\n{context}\n\nQuestion: {question}",
                },
            ],
            temperature=0.1,
            max_tokens=1000,
        )

        answer = response.choices[0].message.content or ""

        # Validation: Check for empty response
        if not answer.strip():
            raise ValueError("OpenAI returned an empty answer")

        # Validation: Check for unreasonably long response
        if len(answer) > 10000:
            logger.warning(
                f"OpenAI response unexpectedly large ({len(answer)} chars), truncating to 10000"
            )
            answer = answer[:10000] + "\n\n[Truncated]"

        return answer


class LLMClient(EmbeddingClient, AnswerClient, Protocol):
    """Client providing both embeddings and answers."""

    pass


def get_llm_client(settings: Settings | None = None) -> LLMClient:
    """Factory function to get appropriate LLM client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    settings = settings or get_settings()
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for embeddings and answers")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            embedding_model=settings.openai_embedding_model,
            max_input_chars=settings.embedding_input_max_chars,
            timeout_s=max(settings.embedding_timeout_s, settings.answer_timeout_s),
        )
    else:
        logger.warning("No OpenAI API key configured, using deterministic stub client")
        return DeterministicStubClient(dim=STUB_EMBEDDING_DIM)
