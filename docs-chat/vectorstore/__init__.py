"""Vector store module for the documentation Q&A pipeline.

Provides fixed-window chunking, local sentence-transformers embeddings,
and ChromaDB storage keyed by deterministic chunk ids.
"""
