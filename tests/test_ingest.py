"""
Test suite for corpus discovery and the ingestion orchestrator.

System role: Verification of vectorstore.corpus and vectorstore.ingest
"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from config import Settings
from errors import ConfigurationError, ExternalServiceError
from tests.conftest import FakeChromaClient, FakeEmbedder
from vectorstore.chunker import Chunker
from vectorstore.corpus import list_documents, read_document, source_path_for
from vectorstore.ingest import ingest_command, ingest_corpus, load_chunks, upsert_in_batches
from vectorstore.store import VectorStore


class TestCorpusWalker:
    """Recursive, filtered, deterministic document listing."""

    def test_lists_nested_markdown_files_in_path_order(self, docs_tree: Path) -> None:
        # Act
        files = list_documents(docs_tree / "content" / "docs")

        # Assert
        relative = [source_path_for(f, docs_tree) for f in files]
        assert relative == [
            "content/docs/Deploying.mdx",
            "content/docs/guides/Setup.md",
            "content/docs/guides/advanced/Tuning.mdx",
            "content/docs/index.md",
        ]

    def test_missing_root_is_a_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            list_documents(tmp_path / "nope")

    def test_undecodable_document_raises_data_error(self, tmp_path: Path) -> None:
        from errors import DataError

        bad = tmp_path / "bad.md"
        bad.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(DataError):
            read_document(bad)


class TestLoadChunks:
    """Per-document isolation while building the global chunk list."""

    def test_unreadable_document_is_skipped_not_fatal(self, docs_tree: Path) -> None:
        # Arrange
        (docs_tree / "content" / "docs" / "Broken.md").write_bytes(b"\xff\xfe\xfa")
        chunker = Chunker(chunk_size=100, chunk_overlap=20)

        # Act
        chunks, stats = load_chunks(docs_tree / "content" / "docs", chunker, base=docs_tree)

        # Assert
        assert stats["documents_found"] == 5
        assert stats["documents_skipped"] == 1
        assert chunks
        assert all(c.source_path != "content/docs/Broken.md" for c in chunks)

    def test_documents_whose_ids_collide_are_skipped(self, tmp_path: Path) -> None:
        # Arrange: "a/b.md" and "a_b.md" sanitize to the same ids
        docs = tmp_path / "docs"
        (docs / "a").mkdir(parents=True)
        (docs / "a" / "b.md").write_text("first document", encoding="utf-8")
        (docs / "a_b.md").write_text("second document", encoding="utf-8")

        # Act
        chunks, stats = load_chunks(docs, Chunker(chunk_size=100, chunk_overlap=10), base=tmp_path)

        # Assert
        assert stats["documents_skipped"] == 1
        assert len({c.id for c in chunks}) == len(chunks)

    def test_empty_documents_produce_no_chunks(self, tmp_path: Path) -> None:
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "empty.md").write_text("", encoding="utf-8")

        chunks, stats = load_chunks(docs, Chunker(), base=tmp_path)

        assert chunks == []
        assert stats["documents_empty"] == 1


class TestIngestCorpus:
    """Batching, idempotence and failure semantics of the full run."""

    def test_ingests_all_chunks_in_batches(
        self, docs_tree: Path, store: VectorStore, fake_embedder: FakeEmbedder
    ) -> None:
        # Arrange
        chunker = Chunker(chunk_size=100, chunk_overlap=20)

        # Act
        stats = ingest_corpus(
            docs_tree / "content" / "docs", chunker, fake_embedder, store,
            base=docs_tree, batch_size=3,
        )

        # Assert
        assert stats["chunks_stored"] == stats["chunks_created"]
        assert store.count() == stats["chunks_created"]
        assert stats["batches"] == (stats["chunks_created"] + 2) // 3
        assert all(len(call) <= 3 for call in fake_embedder.calls)

    def test_entries_keep_id_to_vector_alignment(
        self, docs_tree: Path, store: VectorStore, chroma_client: FakeChromaClient, fake_embedder: FakeEmbedder
    ) -> None:
        from tests.conftest import fake_vector

        ingest_corpus(
            docs_tree / "content" / "docs", Chunker(chunk_size=50, chunk_overlap=10),
            fake_embedder, store, base=docs_tree, batch_size=4,
        )

        records = chroma_client.collections["test-index"].records
        for record in records.values():
            assert record["embedding"] == fake_vector(record["metadata"]["text"])

    def test_reingesting_unchanged_corpus_does_not_duplicate(
        self, docs_tree: Path, store: VectorStore, fake_embedder: FakeEmbedder
    ) -> None:
        root = docs_tree / "content" / "docs"
        chunker = Chunker(chunk_size=100, chunk_overlap=20)

        first = ingest_corpus(root, chunker, fake_embedder, store, base=docs_tree)
        second = ingest_corpus(root, chunker, fake_embedder, store, base=docs_tree)

        assert first["chunks_created"] == second["chunks_created"]
        assert store.count() == first["chunks_created"]

    def test_failing_batch_aborts_remaining_batches(
        self, docs_tree: Path, store: VectorStore, chroma_client: FakeChromaClient
    ) -> None:
        # Arrange
        embedder = FakeEmbedder(fail_on_call=2)

        # Act
        with pytest.raises(ExternalServiceError):
            ingest_corpus(
                docs_tree / "content" / "docs", Chunker(chunk_size=30, chunk_overlap=5),
                embedder, store, base=docs_tree, batch_size=2,
            )

        # Assert
        assert len(embedder.calls) == 2
        assert chroma_client.collections["test-index"].upsert_calls == 1

    def test_rejects_non_positive_batch_size(self, store: VectorStore, fake_embedder: FakeEmbedder) -> None:
        with pytest.raises(ConfigurationError):
            upsert_in_batches([], fake_embedder, store, batch_size=0)


class TestIngestCommand:
    """CLI exit behavior."""

    def test_missing_credential_exits_before_any_work(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        # Arrange
        monkeypatch.delenv("CHROMA_API_KEY", raising=False)
        monkeypatch.setattr(Settings, "from_env", classmethod(lambda cls, env_file=None: cls()))
        monkeypatch.setattr(
            VectorStore, "from_settings",
            classmethod(lambda cls, settings: pytest.fail("store must not be built")),
        )
        args = SimpleNamespace(root=tmp_path, batch_size=None, chunk_size=None, chunk_overlap=None)

        # Act
        code = ingest_command(args)

        # Assert
        assert code == 1
