"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from markdown, text and PDF files
- Document chunking with overlap
- JSON snapshot persistence of chunks and embeddings
- Cosine similarity retrieval over the in-memory index
"""
