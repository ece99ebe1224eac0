"""Full ingestion pipeline: walk docs → chunk → embed → upsert into ChromaDB.

Usage (standalone):
  python -m vectorstore.ingest
  python -m vectorstore.ingest --root content/docs --batch-size 10

Or via the main pipeline:
  python pipeline.py ingest

Chunk ids are deterministic and upserts overwrite, so re-running after a
failure always converges on the correct index contents.
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from config import Settings, configure_logging
from errors import ConfigurationError, DataError, DocsChatError
from schemas.chunk import Chunk, StoreEntry
from vectorstore.chunker import Chunker
from vectorstore.corpus import list_documents, read_document, source_path_for
from vectorstore.embedder import Embedder
from vectorstore.store import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


# ---------------------------------------------------------------------------
# Document loading
# ---------------------------------------------------------------------------

def load_chunks(
    root: Path,
    chunker: Chunker,
    base: Optional[Path] = None,
) -> tuple[list[Chunk], dict]:
    """Read and chunk every document under ``root``.

    Unreadable documents, and documents whose chunk ids would collide with an
    earlier document's, are logged and skipped.

    Returns:
        (chunks in document order, stats dict)
    """
    base = Path.cwd() if base is None else base
    files = list_documents(root)

    chunks: list[Chunk] = []
    owners: dict[str, str] = {}
    skipped = 0
    empty = 0

    for path in files:
        source = source_path_for(path, base)
        try:
            text = read_document(path)
            doc_chunks = chunker.chunk_document(source, text)
            for chunk in doc_chunks:
                owner = owners.get(chunk.id)
                if owner is not None and owner != source:
                    raise DataError(f"Chunk id '{chunk.id}' of {source} collides with {owner}")
        except DataError as e:
            skipped += 1
            logger.warning("Skipping document %s: %s", source, e)
            continue

        if not doc_chunks:
            empty += 1
            logger.debug("  [chunk] %s is empty", source)
            continue
        for chunk in doc_chunks:
            owners[chunk.id] = source
        chunks.extend(doc_chunks)
        logger.debug("  [chunk] %s → %d chunks", source, len(doc_chunks))

    stats = {
        "documents_found": len(files),
        "documents_skipped": skipped,
        "documents_empty": empty,
    }
    return chunks, stats


# ---------------------------------------------------------------------------
# Main ingestion logic
# ---------------------------------------------------------------------------

def upsert_in_batches(
    chunks: list[Chunk],
    embedder: Embedder,
    store: VectorStore,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> tuple[int, int]:
    """Embed and upsert chunks one batch at a time.

    The first failing batch aborts the run; its exception propagates.

    Returns:
        (chunks stored, batches completed)
    """
    if batch_size <= 0:
        raise ConfigurationError(f"batch_size must be positive, got {batch_size}")

    total_batches = (len(chunks) + batch_size - 1) // batch_size
    stored = 0
    for batch_idx in range(total_batches):
        batch = chunks[batch_idx * batch_size:(batch_idx + 1) * batch_size]
        try:
            vectors = embedder.embed([c.text for c in batch], show_progress=False)
            if len(vectors) != len(batch):
                raise DataError(f"Embedder returned {len(vectors)} vectors for {len(batch)} texts")
            entries = [StoreEntry.from_chunk(c, v) for c, v in zip(batch, vectors)]
            stored += store.upsert(entries)
        except DocsChatError as e:
            logger.error(
                "Batch %d/%d failed, aborting remaining batches (re-running is safe): %s",
                batch_idx + 1, total_batches, e,
            )
            raise
        logger.info("Upserted batch %d/%d", batch_idx + 1, total_batches)
    return stored, total_batches


def ingest_corpus(
    root: Path,
    chunker: Chunker,
    embedder: Embedder,
    store: VectorStore,
    base: Optional[Path] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict:
    """Ingest every document under ``root`` into the vector store.

    Returns a stats dict: {documents_found, documents_skipped, documents_empty,
    chunks_created, chunks_stored, batches, timings}.
    """
    pipeline_start = time.perf_counter()

    # 1. Make sure the index exists and answers
    logger.info("STEP 1/4: Ensuring collection '%s'...", store.collection_name)
    t0 = time.perf_counter()
    store.ensure_index()
    index_elapsed = time.perf_counter() - t0
    logger.info("STEP 1/4 done in %.1fs", index_elapsed)

    # 2. Read + chunk
    logger.info("STEP 2/4: Reading and chunking documents under %s...", root)
    t0 = time.perf_counter()
    chunks, stats = load_chunks(root, chunker, base=base)
    chunk_elapsed = time.perf_counter() - t0
    logger.info(
        "STEP 2/4 done: %d documents (%d skipped) → %d chunks in %.1fs",
        stats["documents_found"], stats["documents_skipped"], len(chunks), chunk_elapsed,
    )

    if not chunks:
        logger.warning("No chunks to ingest under %s", root)
        stats.update({"chunks_created": 0, "chunks_stored": 0, "batches": 0})
        return stats

    # 3 + 4. Embed and upsert, batch by batch
    logger.info("STEP 3-4/4: Embedding and upserting %d chunks (batch size %d)...", len(chunks), batch_size)
    t0 = time.perf_counter()
    stored, batches = upsert_in_batches(chunks, embedder, store, batch_size=batch_size)
    upsert_elapsed = time.perf_counter() - t0
    logger.info("STEP 3-4/4 done: %d chunks stored in %.1fs", stored, upsert_elapsed)

    total_elapsed = time.perf_counter() - pipeline_start
    stats.update({
        "chunks_created": len(chunks),
        "chunks_stored": stored,
        "batches": batches,
        "timings": {
            "index_s": round(index_elapsed, 1),
            "chunk_s": round(chunk_elapsed, 1),
            "embed_upsert_s": round(upsert_elapsed, 1),
            "total_s": round(total_elapsed, 1),
        },
    })
    logger.info("Ingestion complete in %.1fs: %s", total_elapsed, stats)
    return stats


def run_ingestion(
    settings: Settings,
    root: Optional[Path] = None,
    batch_size: Optional[int] = None,
    chunk_size: Optional[int] = None,
    chunk_overlap: Optional[int] = None,
) -> dict:
    """Build the service handles from settings and run the ingestion job."""
    settings.require("chroma_api_key")

    chunker = Chunker(
        chunk_size=chunk_size if chunk_size is not None else settings.chunk_size,
        chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
    )
    embedder = Embedder(model=settings.embedding_model, dimensions=settings.embedding_dim)
    store = VectorStore.from_settings(settings)

    stats = ingest_corpus(
        root=root or settings.content_root,
        chunker=chunker,
        embedder=embedder,
        store=store,
        base=settings.source_base,
        batch_size=batch_size if batch_size is not None else settings.batch_size,
    )
    _print_summary(stats, store)
    return stats


def _print_summary(stats: dict, store: VectorStore):
    """Print a summary of the ingestion results."""
    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    print(f"  Documents found:    {stats['documents_found']}")
    print(f"  Documents skipped:  {stats['documents_skipped']}")
    print(f"  Documents empty:    {stats['documents_empty']}")
    print(f"  Chunks created:     {stats['chunks_created']}")
    print(f"  Chunks stored:      {stats['chunks_stored']}")
    timings = stats.get("timings", {})
    if timings:
        print(f"  Timings:  index={timings['index_s']}s  chunk={timings['chunk_s']}s  "
              f"embed+upsert={timings['embed_upsert_s']}s  total={timings['total_s']}s")
    print(f"\n  Collection '{store.collection_name}': {store.count()} vectors")
    print("=" * 70)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def add_ingest_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--root", type=Path, default=None, help="Docs directory (default: DOCS_CHAT_CONTENT_ROOT)")
    parser.add_argument("--batch-size", type=int, default=None, help="Chunks per embed/upsert batch")
    parser.add_argument("--chunk-size", type=int, default=None, help="Characters per chunk")
    parser.add_argument("--chunk-overlap", type=int, default=None, help="Characters shared by consecutive chunks")


def ingest_command(args) -> int:
    """Run ingestion for parsed CLI args. Returns a process exit code."""
    try:
        settings = Settings.from_env()
        run_ingestion(
            settings,
            root=args.root,
            batch_size=args.batch_size,
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
        )
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except DocsChatError as e:
        logger.error("Ingestion aborted: %s", e)
        return 2
    return 0


def main():
    configure_logging()

    parser = argparse.ArgumentParser(description="Index the documentation corpus into the vector store")
    add_ingest_arguments(parser)
    args = parser.parse_args()
    sys.exit(ingest_command(args))


if __name__ == "__main__":
    main()
