#!/usr/bin/env python3
"""Main entry point for documentation Q&A: indexing, inspection and serving.

Usage:
  python pipeline.py ingest                              # Chunk + embed + upsert content/docs
  python pipeline.py ingest --root content/docs --batch-size 20
  python pipeline.py vector-status                       # Collection stats
  python pipeline.py vector-query "How do I deploy?"     # Test retrieval + references

  python pipeline.py serve --port 8501                   # Launch the chat endpoint
"""

import argparse
import logging
import sys

from config import Settings, configure_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# INGEST
# ---------------------------------------------------------------------------

def cmd_ingest(args) -> int:
    """Index the documentation corpus."""
    from vectorstore.ingest import ingest_command

    return ingest_command(args)


# ---------------------------------------------------------------------------
# VECTOR STORE
# ---------------------------------------------------------------------------

def cmd_vector_status(args) -> int:
    """Show vector store statistics."""
    from vectorstore.store import VectorStore

    store = VectorStore.from_settings(Settings.from_env())
    stats = store.get_stats()

    print("\n" + "=" * 70)
    print("VECTOR STORE STATUS")
    print("=" * 70)
    print(f"\n  Collection: {stats['collection']}")
    print(f"    Vectors stored: {stats['count']}")
    print(f"    Dimension:      {stats['dimension']}")
    print("\n" + "=" * 70)
    return 0


def cmd_vector_query(args) -> int:
    """Run a test query against the vector store."""
    from vectorstore.embedder import Embedder
    from vectorstore.store import VectorStore
    from webapp.rag.citations import build_citations, format_references
    from webapp.rag.retriever import Retriever

    settings = Settings.from_env()
    retriever = Retriever(
        VectorStore.from_settings(settings),
        Embedder(model=settings.embedding_model, dimensions=settings.embedding_dim),
        top_k=settings.top_k,
    )
    matches = retriever.search(args.query, top_k=args.top_k)

    print(f"\nQuery: \"{args.query}\"")
    print(f"Results: {len(matches)}")
    print("-" * 50)

    for i, match in enumerate(matches):
        print(f"\n[{i+1}] Score: {match.score:.4f} | {match.id}")
        print(f"    Source: {match.metadata.get('source', '?')}")
        # Show first 200 chars of the chunk
        preview = str(match.metadata.get("text", ""))[:200].replace("\n", " ")
        print(f"    Text: {preview}...")

    print(format_references(build_citations(matches, settings.source_prefix)))
    return 0


# ---------------------------------------------------------------------------
# SERVE
# ---------------------------------------------------------------------------

def cmd_serve(args) -> int:
    """Launch the chat web application."""
    import uvicorn

    logger.info("=" * 60)
    logger.info("LAUNCHING DOCS CHAT")
    logger.info("  POST http://localhost:%d/chat", args.port)
    logger.info("=" * 60)

    uvicorn.run(
        "webapp.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
    return 0


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    from vectorstore.ingest import add_ingest_arguments

    parser = argparse.ArgumentParser(
        description="Documentation Q&A pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline command")

    # Ingest
    ingest_parser = subparsers.add_parser(
        "ingest", help="Chunk, embed, and upsert the docs into the vector store"
    )
    add_ingest_arguments(ingest_parser)

    # Serve
    serve_parser = subparsers.add_parser("serve", help="Launch the chat endpoint")
    serve_parser.add_argument(
        "--port", type=int, default=8501, help="Port (default: 8501)"
    )
    serve_parser.add_argument(
        "--host", default="0.0.0.0", help="Host (default: 0.0.0.0)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Auto-reload on code changes"
    )

    # Vector status
    subparsers.add_parser("vector-status", help="Show vector store statistics")

    # Vector query (test)
    vq_parser = subparsers.add_parser("vector-query", help="Test query against vector store")
    vq_parser.add_argument("query", help="Query text")
    vq_parser.add_argument("--top-k", type=int, default=None, help="Number of results (default: DOCS_CHAT_TOP_K)")

    return parser


def main():
    configure_logging()
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "ingest": cmd_ingest,
        "vector-status": cmd_vector_status,
        "vector-query": cmd_vector_query,
        "serve": cmd_serve,
    }

    try:
        sys.exit(commands[args.command](args))
    except Exception as e:
        logger.exception("Pipeline error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
