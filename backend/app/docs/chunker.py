"""Document chunker - deterministic overlapping text windows."""

from dataclasses import dataclass
from typing import Any

# Token count is approximated as characters / 4
CHARS_PER_TOKEN = 4

# Characters after which a window may be cut
BOUNDARY_CHARS = (".", "!", "?", "\n")


@dataclass(frozen=True)
class TextChunk:
    """One fragment of a document's text with its source offsets."""

    text: str
    start_index: int
    end_index: int
    chunk_index: int

    def metadata(self) -> dict[str, Any]:
        """Persisted metadata bag (stable camelCase shape)."""
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "chunkIndex": self.chunk_index,
        }


def chunk_text(
    text: str,
    *,
    max_tokens: int = 800,
    overlap_tokens: int = 100,
) -> list[TextChunk]:
    """Split text into overlapping, bounded-size fragments.

    Pure function with no I/O or randomness: the same text and parameters
    always yield the same boundaries.

    Args:
        text: Extracted document text
        max_tokens: Window size in approximate tokens (default 800)
        overlap_tokens: Context carried into the next window (default 100)

    Returns:
        Ordered list of TextChunk where:
        - chunk_index is 0-based and strictly increasing
        - text == source[start_index:end_index] (stripped of edge whitespace)
        - start_index is non-decreasing across chunks
        - no chunk is empty or whitespace-only

    Strategy:
        1. Walk the text in windows of max_tokens * 4 characters
        2. Unless the window reaches the end of the text, look backward inside
           it for the last sentence terminator or newline; cut just after it
           when it lies past the window midpoint, else cut at the raw boundary
        3. Start the next window overlap_tokens * 4 characters before the cut,
           always strictly after the previous start
        4. Stop once a window reaches the end of the text

    Raises:
        ValueError: If max_tokens <= 0 or overlap_tokens < 0
    """
    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got {max_tokens}")
    if overlap_tokens < 0:
        raise ValueError(f"overlap_tokens must be >= 0, got {overlap_tokens}")

    max_chars = max_tokens * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    text_len = len(text)

    chunks: list[TextChunk] = []
    start = 0

    while start < text_len:
        end = min(start + max_chars, text_len)

        # Prefer a sentence/line boundary in the second half of the window
        if end < text_len:
            window = text[start:end]
            cut = max(window.rfind(char) for char in BOUNDARY_CHARS)
            if cut > max_chars // 2:
                end = start + cut + 1

        piece = text[start:end]
        stripped = piece.strip()
        if stripped:
            fragment_start = start + (len(piece) - len(piece.lstrip()))
            chunks.append(
                TextChunk(
                    text=stripped,
                    start_index=fragment_start,
                    end_index=fragment_start + len(stripped),
                    chunk_index=len(chunks),
                )
            )

        if end >= text_len:
            break

        # Overlap, clamped so the walk always advances
        start = max(end - overlap_chars, start + 1)

    return chunks
