"""Retrieval layer: query embedding, top-k similarity search, context assembly."""

import logging
from typing import Optional

from errors import DataError
from schemas.chunk import Match
from webapp.rag.prompts import CONTEXT_SEPARATOR

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


class Retriever:
    """Wraps the shared VectorStore + Embedder handles for the query path."""

    def __init__(self, store, embedder, top_k: int = DEFAULT_TOP_K):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k

    def embed_query(self, text: str) -> list[float]:
        return self.embedder.embed_single(text)

    def search_vector(self, vector: list[float], top_k: Optional[int] = None) -> list[Match]:
        """Top-k matches for a query vector, most similar first."""
        matches = self.store.query(vector, top_k or self.top_k, include_metadata=True)
        logger.debug("Retrieved %d matches: %s", len(matches), [(m.id, round(m.score, 3)) for m in matches])
        return matches

    def search(self, query: str, top_k: Optional[int] = None) -> list[Match]:
        """Simple single-query search (used by the CLI)."""
        return self.search_vector(self.embed_query(query), top_k)


def build_context(matches: list[Match]) -> str:
    """Join chunk texts in match order with a visible separator.

    Raises:
        DataError: If a match carries no ``text`` metadata.
    """
    texts = []
    for match in matches:
        text = match.metadata.get("text")
        if not isinstance(text, str):
            raise DataError(f"Index entry '{match.id}' has no text metadata")
        texts.append(text)
    return CONTEXT_SEPARATOR.join(texts)
