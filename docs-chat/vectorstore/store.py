"""ChromaDB-backed vector store client.

Wraps a remote Chroma server (``chromadb.HttpClient``) with the operations the
ingestion job and chat service need: ensure the collection exists and is ready,
upsert entries keyed by chunk id, and run top-k similarity queries.

Collections are created with cosine distance; ``score = 1 - distance`` so
higher scores mean more similar. The configured embedding dimension is
recorded in the collection metadata and checked on every write and query.
"""

import logging
import threading
from typing import Optional

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocsChatError,
    ExternalServiceError,
    IndexNotReadyError,
)
from schemas.chunk import Match, StoreEntry

logger = logging.getLogger(__name__)

DEFAULT_METRIC = "cosine"
DEFAULT_READY_TIMEOUT = 120.0
MAX_ATTEMPTS = 3

# Errors a retry cannot fix
_PERMANENT_ERRORS = (DocsChatError, PermissionError, ValueError, TypeError)

# HTTP statuses that mean the credential is wrong, not that the server is busy
_REJECTED_STATUS = (401, 403)


def _status_code(error: Exception) -> Optional[int]:
    """HTTP status carried by a Chroma (``ChromaError.code()``) or httpx error, if any."""
    code = getattr(error, "code", None)
    if callable(code):
        try:
            code = code()
        except TypeError:
            code = None
    if not isinstance(code, int):
        code = getattr(getattr(error, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


def _is_rejection(error: Exception) -> bool:
    return isinstance(error, (PermissionError, TypeError)) or _status_code(error) in _REJECTED_STATUS


def _is_permanent(error: Exception) -> bool:
    return isinstance(error, _PERMANENT_ERRORS) or _is_rejection(error)


def _collection_names(collections) -> list[str]:
    """Chroma returns names in some versions and Collection objects in others."""
    return [c if isinstance(c, str) else c.name for c in collections]


class VectorStore:
    """Upsert/query wrapper over a single Chroma collection."""

    def __init__(
        self,
        collection_name: str,
        dimension: int,
        metric: str = DEFAULT_METRIC,
        client=None,
        host: str = "localhost",
        port: int = 8000,
        ssl: bool = False,
        api_key: Optional[str] = None,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        ready_wait=None,
        retry_wait=None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        if client is None:
            import chromadb

            headers = {"x-chroma-token": api_key} if api_key else None
            client = chromadb.HttpClient(host=host, port=port, ssl=ssl, headers=headers)
        self.client = client
        self.collection_name = collection_name
        self.dimension = dimension
        self.metric = metric
        self.ready_timeout = ready_timeout
        self.ready_wait = ready_wait or wait_exponential(multiplier=0.5, min=0.5, max=10)
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.max_attempts = max_attempts
        self._collection = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "VectorStore":
        return cls(
            collection_name=settings.collection,
            dimension=settings.embedding_dim,
            metric=settings.metric,
            host=settings.chroma_host,
            port=settings.chroma_port,
            ssl=settings.chroma_ssl,
            api_key=settings.chroma_api_key,
            ready_timeout=settings.index_ready_timeout,
        )

    # ------------------------------------------------------------------
    # Remote calls with retry
    # ------------------------------------------------------------------

    def _call(self, operation: str, fn, *args, **kwargs):
        """Invoke a Chroma call, retrying transient failures with backoff."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(lambda e: not _is_permanent(e)),
            before_sleep=lambda retry_state: logger.warning(
                "Vector store %s retry %d after error: %s",
                operation,
                retry_state.attempt_number,
                retry_state.outcome.exception() if retry_state.outcome else "unknown",
            ),
            reraise=True,
        )
        try:
            return retrying(fn, *args, **kwargs)
        except DocsChatError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"Vector store {operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def list_indexes(self) -> list[str]:
        return _collection_names(self._call("list", self.client.list_collections))

    def ensure_index(self) -> None:
        """Create the collection if absent, then wait until it answers."""
        if self.collection_name in self.list_indexes():
            collection = self._call("get", self.client.get_collection, self.collection_name)
            self._check_index_dimension(collection)
            logger.info("Collection '%s' already exists", self.collection_name)
        else:
            logger.info(
                "Creating collection '%s' (dimension=%d, metric=%s)...",
                self.collection_name, self.dimension, self.metric,
            )
            self._call(
                "create",
                self.client.create_collection,
                name=self.collection_name,
                metadata={"hnsw:space": self.metric, "dimension": self.dimension},
            )
        self.wait_until_ready()

    def _check_index_dimension(self, collection) -> None:
        recorded = (collection.metadata or {}).get("dimension")
        if recorded is not None and int(recorded) != self.dimension:
            raise DimensionMismatchError(self.dimension, int(recorded))

    def _probe(self):
        """One readiness check. Only "missing or still starting" failures are retryable."""
        try:
            collection = self.client.get_collection(self.collection_name)
            collection.count()
        except DocsChatError:
            raise
        except Exception as e:
            if _is_rejection(e):
                raise ExternalServiceError(
                    f"Vector store rejected access to collection '{self.collection_name}': {e}"
                ) from e
            raise IndexNotReadyError(f"Collection '{self.collection_name}' not ready: {e}") from e
        return collection

    def wait_until_ready(self) -> None:
        """Poll with exponential backoff until the collection answers.

        Raises:
            IndexNotReadyError: If it is still not ready after ``ready_timeout`` seconds.
        """
        retrying = Retrying(
            stop=stop_after_delay(self.ready_timeout),
            wait=self.ready_wait,
            retry=retry_if_exception_type(IndexNotReadyError),
            before_sleep=lambda retry_state: logger.info(
                "Waiting for collection '%s' (attempt %d)...",
                self.collection_name, retry_state.attempt_number,
            ),
        )
        try:
            collection = retrying(self._probe)
        except RetryError as e:
            raise IndexNotReadyError(
                f"Collection '{self.collection_name}' not ready after {self.ready_timeout:g}s"
            ) from e
        with self._lock:
            self._collection = collection
        logger.info("Collection '%s' is ready", self.collection_name)

    @property
    def collection(self):
        if self._collection is None:
            with self._lock:
                if self._collection is None:
                    self._collection = self._call("get", self.client.get_collection, self.collection_name)
        return self._collection

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector))

    def upsert(self, entries: list[StoreEntry]) -> int:
        """Insert or overwrite entries keyed by id. Returns the number written."""
        if not entries:
            return 0
        for entry in entries:
            self._check_dimension(entry.vector)

        self._call(
            "upsert",
            self.collection.upsert,
            ids=[e.id for e in entries],
            embeddings=[e.vector for e in entries],
            documents=[e.metadata.text for e in entries],
            metadatas=[e.metadata.model_dump() for e in entries],
        )
        return len(entries)

    def query(
        self,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Match]:
        """Return at most ``top_k`` matches ordered by descending score."""
        if top_k <= 0:
            raise ConfigurationError(f"top_k must be positive, got {top_k}")
        self._check_dimension(vector)

        include = ["distances", "metadatas"] if include_metadata else ["distances"]
        results = self._call(
            "query",
            self.collection.query,
            query_embeddings=[vector],
            n_results=top_k,
            include=include,
        )

        matches: list[Match] = []
        if results and results.get("ids") and results["ids"][0]:
            ids = results["ids"][0]
            distances = results["distances"][0]
            metadatas = (results.get("metadatas") or [[None] * len(ids)])[0]
            for chunk_id, distance, meta in zip(ids, distances, metadatas):
                matches.append(Match(
                    id=chunk_id,
                    score=1.0 - distance,
                    metadata=dict(meta or {}) if include_metadata else {},
                ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def count(self) -> int:
        return self._call("count", self.collection.count)

    def get_stats(self) -> dict:
        return {"collection": self.collection_name, "count": self.count(), "dimension": self.dimension}
