"""Tests for LLM client.

All tests are deterministic and do not make real network calls.
"""

import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from backend.app.config import Settings
from backend.app.llm.client import (
    SYSTEM_PROMPT,
    DeterministicStubClient,
    OpenAIClient,
    get_llm_client,
)


@pytest.mark.asyncio
async def test_stub_embedding_is_deterministic_unit_vector() -> None:
    """Test that the stub embeds the same text to the same unit vector."""
    client = DeterministicStubClient(dim=16)

    first = await client.embed("hydraulic pressure")
    second = await client.embed("hydraulic pressure")
    other = await client.embed("coolant level")

    assert first == second
    assert first != other
    assert len(first) == 16
    assert math.isclose(sum(v * v for v in first), 1.0, rel_tol=1e-9)


@pytest.mark.asyncio
async def test_stub_answer_counts_sources() -> None:
    """Test the stub answer mentions how many sources it saw."""
    client = DeterministicStubClient()
    context = "Source 1 (from a.pdf):\nfoo\n\nSource 2 (from b.pdf):\nbar"

    answer = await client.complete("What is foo?", context)

    assert answer.startswith("Based on 2 source(s)")
    assert '"What is foo?"' in answer


def test_factory_returns_stub_without_api_key() -> None:
    """Test that no key configured means the deterministic stub."""
    client = get_llm_client(Settings(openai_api_key=None))

    assert isinstance(client, DeterministicStubClient)


def test_factory_returns_openai_with_api_key() -> None:
    """Test that a configured key selects the OpenAI client."""
    client = get_llm_client(Settings(openai_api_key="sk-test", openai_model="gpt-test"))

    assert isinstance(client, OpenAIClient)
    assert client.model == "gpt-test"


@pytest.mark.asyncio
async def test_openai_client_sends_context_and_system_prompt() -> None:
    """Test that OpenAIClient calls API with the grounding prompt (mocked)."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = "Calibrate every 90 days [Source 1]."

    mock_openai_client = AsyncMock()
    mock_openai_client.chat.completions.create = AsyncMock(return_value=mock_response)

    client = OpenAIClient(api_key="test_key")
    client.client = mock_openai_client

    answer = await client.complete("How often?", "Source 1 (from m.pdf):\nEvery 90 days.")

    mock_openai_client.chat.completions.create.assert_called_once()
    messages = mock_openai_client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert "Every 90 days." in messages[1]["content"]
    assert "How often?" in messages[1]["content"]
    assert answer == "Calibrate every 90 days [Source 1]."


@pytest.mark.asyncio
async def test_openai_client_rejects_empty_answer() -> None:
    """Test that an empty completion is an error, not an answer."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = "   "

    mock_openai_client = AsyncMock()
    mock_openai_client.chat.completions.create = AsyncMock(return_value=mock_response)

    client = OpenAIClient(api_key="test_key")
    client.client = mock_openai_client

    with pytest.raises(ValueError):
        await client.complete("q", "Source 1 (from m.pdf):\nx")


@pytest.mark.asyncio
async def test_openai_client_truncates_input_for_embeddings() -> None:
    """Test that embedding input is capped before the API call."""
    mock_response = MagicMock()
    mock_response.data = [MagicMock(embedding=[0.1, 0.2])]

    mock_openai_client = AsyncMock()
    mock_openai_client.embeddings.create = AsyncMock(return_value=mock_response)

    client = OpenAIClient(api_key="test_key", max_input_chars=5)
    client.client = mock_openai_client

    vector = await client.embed("abcdefghij")

    assert vector == [0.1, 0.2]
    assert mock_openai_client.embeddings.create.call_args.kwargs["input"] == "abcde"
