"""Sentence-embedding generator backed by a local sentence-transformers model.

Uses all-MiniLM-L6-v2 (384 dimensions, mean pooling) with L2 normalization so
cosine similarity in the vector store is meaningful.

The model is loaded lazily, once per process, and shared by every caller
(ingestion batches and concurrent chat requests alike).
"""

import logging
import threading
import time
from typing import Callable, Optional

from errors import DimensionMismatchError, ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_DIMENSIONS = 384
ENCODE_BATCH_SIZE = 32


def _load_sentence_transformer(model_name: str, device: Optional[str]):
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name, device=device)


class Embedder:
    """Generate normalized embeddings with a pretrained sentence-embedding model."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        device: Optional[str] = None,
        loader: Optional[Callable[[str, Optional[str]], object]] = None,
    ):
        self.model_name = model
        self.dimensions = dimensions
        self.device = device
        self._loader = loader or _load_sentence_transformer
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        """Load the model on first use. Safe to call from several threads."""
        if self._model is None:
            with self._lock:
                if self._model is None:
                    t0 = time.perf_counter()
                    try:
                        self._model = self._loader(self.model_name, self.device)
                    except Exception as e:
                        raise ExternalServiceError(
                            f"Failed to load embedding model {self.model_name}: {e}"
                        ) from e
                    logger.info(
                        "Loaded embedding model %s in %.1fs",
                        self.model_name, time.perf_counter() - t0,
                    )
        return self._model

    def embed(self, texts: list[str], show_progress: bool = True) -> list[list[float]]:
        """Embed a list of texts.

        Args:
            texts: List of text strings to embed.
            show_progress: Whether to log throughput.

        Returns:
            List of embedding vectors, vector i for text i.

        Raises:
            ExternalServiceError: If the model fails to load or encode.
            DimensionMismatchError: If the model's output width differs from
                the configured dimension.
        """
        if not texts:
            return []

        model = self._get_model()
        t0 = time.perf_counter()
        try:
            # mean pooling is part of the model's pooling module
            vectors = model.encode(
                texts,
                batch_size=ENCODE_BATCH_SIZE,
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise ExternalServiceError(f"Embedding failed: {e}") from e

        embeddings = [vector.tolist() for vector in vectors]
        for embedding in embeddings:
            if len(embedding) != self.dimensions:
                raise DimensionMismatchError(self.dimensions, len(embedding))

        if show_progress:
            elapsed = time.perf_counter() - t0
            logger.info(
                "Embedded %d texts (%d dimensions each) in %.2fs (%.1f texts/sec)",
                len(embeddings), self.dimensions, elapsed,
                len(embeddings) / max(elapsed, 0.001),
            )
        return embeddings

    def embed_single(self, text: str) -> list[float]:
        """Embed a single text string (convenience method for queries)."""
        return self.embed([text], show_progress=False)[0]
