"""
Shared test fixtures and in-memory service doubles.

Provides: fake embedding model, fake Chroma client/collection, fake completion
source, and a sample documentation corpus on disk.
Dependencies: pytest, pytest-asyncio
System role: Test infrastructure and fixture management
"""

import hashlib
import math
from pathlib import Path

import pytest
from tenacity import wait_none

from schemas.chunk import Match
from vectorstore.store import VectorStore
from webapp.rag.llm import CompletionStream

DIM = 8


def fake_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic unit vector derived from the text hash."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = [digest[i] - 127.5 for i in range(dim)]
    norm = math.sqrt(sum(x * x for x in raw)) or 1.0
    return [x / norm for x in raw]


class FakeEmbedder:
    def __init__(self, dim: int = DIM, fail_on_call: int = 0):
        self.dimensions = dim
        self.calls: list[list[str]] = []
        self.fail_on_call = fail_on_call

    def embed(self, texts, show_progress=True):
        self.calls.append(list(texts))
        if self.fail_on_call and len(self.calls) == self.fail_on_call:
            from errors import ExternalServiceError
            raise ExternalServiceError("embedding runtime crashed")
        return [fake_vector(t, self.dimensions) for t in texts]

    def embed_single(self, text):
        return self.embed([text], show_progress=False)[0]


class FakeCollection:
    def __init__(self, name: str, metadata: dict = None):
        self.name = name
        self.metadata = metadata or {}
        self.records: dict[str, dict] = {}
        self.upsert_calls = 0

    def upsert(self, ids, embeddings, documents=None, metadatas=None):
        self.upsert_calls += 1
        for i, chunk_id in enumerate(ids):
            self.records[chunk_id] = {
                "embedding": list(embeddings[i]),
                "document": documents[i] if documents else None,
                "metadata": dict(metadatas[i]) if metadatas else {},
            }

    def count(self):
        return len(self.records)

    def query(self, query_embeddings, n_results, include=None):
        vector = query_embeddings[0]
        scored = []
        for chunk_id, record in self.records.items():
            dot = sum(a * b for a, b in zip(vector, record["embedding"]))
            scored.append((1.0 - dot, chunk_id, record))
        scored.sort(key=lambda item: item[0])
        scored = scored[:n_results]
        return {
            "ids": [[s[1] for s in scored]],
            "distances": [[s[0] for s in scored]],
            "metadatas": [[s[2]["metadata"] for s in scored]],
        }


class FakeChromaClient:
    def __init__(self, not_ready_probes: int = 0, get_error: Exception = None):
        self.collections: dict[str, FakeCollection] = {}
        self.not_ready_probes = not_ready_probes
        self.get_error = get_error
        self.get_calls = 0
        self.created: list[tuple[str, dict]] = []

    def list_collections(self):
        return list(self.collections.values())

    def create_collection(self, name, metadata=None):
        self.created.append((name, metadata))
        self.collections[name] = FakeCollection(name, metadata)
        return self.collections[name]

    def get_collection(self, name):
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        if self.not_ready_probes > 0:
            self.not_ready_probes -= 1
            raise RuntimeError("collection still initializing")
        if name not in self.collections:
            raise ValueError(f"Collection {name} does not exist.")
        return self.collections[name]


class FakeUpstream:
    """Stands in for an SDK AsyncStream: async-iterable with close()."""

    def __init__(self, fragments, fail_after: int = None):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.pulls = 0
        self.closed = False

    def __aiter__(self):
        return self._generate()

    async def _generate(self):
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise ConnectionError("upstream connection reset")
            self.pulls += 1
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise ConnectionError("upstream connection reset")

    async def close(self):
        self.closed = True


class FakeLLM:
    def __init__(self, fragments=("Hello", " world"), fail_after=None, open_error=None):
        self.fragments = fragments
        self.fail_after = fail_after
        self.open_error = open_error
        self.requests: list[list[dict]] = []
        self.upstreams: list[FakeUpstream] = []

    async def open_stream(self, messages):
        self.requests.append(messages)
        if self.open_error is not None:
            raise self.open_error
        upstream = FakeUpstream(self.fragments, fail_after=self.fail_after)
        self.upstreams.append(upstream)
        return CompletionStream(upstream, lambda fragment: fragment)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def chroma_client() -> FakeChromaClient:
    return FakeChromaClient()


@pytest.fixture
def store(chroma_client: FakeChromaClient) -> VectorStore:
    """VectorStore over the fake client with no backoff sleeps."""
    return VectorStore(
        collection_name="test-index",
        dimension=DIM,
        client=chroma_client,
        ready_timeout=5.0,
        ready_wait=wait_none(),
        retry_wait=wait_none(),
    )


@pytest.fixture
def docs_tree(tmp_path: Path) -> Path:
    """A small content/docs corpus under tmp_path; returns tmp_path (the source base)."""
    docs = tmp_path / "content" / "docs"
    (docs / "guides" / "advanced").mkdir(parents=True)
    (docs / "Deploying.mdx").write_text("Deploy with `npm run deploy`. " * 10, encoding="utf-8")
    (docs / "index.md").write_text("Welcome to the docs.", encoding="utf-8")
    (docs / "guides" / "Setup.md").write_text("Install the CLI, then configure it. " * 5, encoding="utf-8")
    (docs / "guides" / "advanced" / "Tuning.mdx").write_text("Tune the cache size.", encoding="utf-8")
    (docs / "guides" / "notes.txt").write_text("not a doc", encoding="utf-8")
    return tmp_path


def make_match(chunk_id: str, score: float, source: str, text: str = "chunk text") -> Match:
    return Match(id=chunk_id, score=score, metadata={"text": text, "source": source})
