"""Fixed-window character chunking for documentation pages.

Each document is split left to right into windows of ``chunk_size`` characters;
the window start advances by ``chunk_size - chunk_overlap`` so consecutive
chunks share exactly ``chunk_overlap`` characters (the last chunk may be
shorter). Splitting ignores sentence boundaries.

Chunk ids are a pure function of the document path and the chunk ordinal:
  sanitize("content/docs/Deploying.mdx-0") -> "content_docs_Deploying_mdx-0"
so re-ingesting an unchanged corpus overwrites the same entries.
"""

import logging
import re

from errors import ConfigurationError
from schemas.chunk import Chunk

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

# Anything outside this charset is replaced with "_" in chunk ids
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def sanitize_id(raw: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", raw)


def make_chunk_id(source_path: str, ordinal: int) -> str:
    """Deterministic chunk id for (document, ordinal)."""
    return sanitize_id(f"{source_path}-{ordinal}")


def validate_chunk_params(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ConfigurationError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ConfigurationError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size}); "
            "the window would never advance"
        )


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping fixed-size windows.

    Args:
        text: The text to split.
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Characters shared by consecutive chunks.

    Returns:
        Chunk texts in document order. Empty input yields an empty list;
        input no longer than ``chunk_size`` yields one chunk.

    Raises:
        ConfigurationError: If ``chunk_overlap >= chunk_size``.
    """
    validate_chunk_params(chunk_size, chunk_overlap)

    step = chunk_size - chunk_overlap
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunks.append(text[start:end])
        if end == len(text):
            break
        start += step
    return chunks


# ---------------------------------------------------------------------------
# Document chunker
# ---------------------------------------------------------------------------

class Chunker:
    """Turns a document's text into identified Chunk models."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        validate_chunk_params(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk_document(self, source_path: str, text: str) -> list[Chunk]:
        """Chunk a single document. ``source_path`` must already be '/'-separated."""
        texts = split_text(text, self.chunk_size, self.chunk_overlap)
        return [
            Chunk(
                id=make_chunk_id(source_path, i),
                text=chunk_text,
                source_path=source_path,
                ordinal=i,
            )
            for i, chunk_text in enumerate(texts)
        ]
