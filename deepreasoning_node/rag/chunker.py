"""Text chunking with overlap for the RAG pipeline.

Implements character-based chunking over whitespace-normalized text to avoid
tokenizer dependencies. Window size and overlap are tunables; the overlap must
stay below the window size or the scan would never advance.
"""
import re
from typing import List
from dataclasses import dataclass
import structlog

from deepreasoning_node import config

logger = structlog.get_logger()

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


def normalize_text(raw: str) -> str:
    """Normalize line endings, collapse whitespace runs and trim."""
    return _WHITESPACE_RUN.sub(" ", raw.replace("\r\n", "\n")).strip()


class TextChunker:
    """Fixed-window character chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)

        Raises:
            ValueError: If the size is not positive or the overlap is not
                within ``[0, chunk_size)``
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")

        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be non-negative and less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Raw extracted text

        Returns:
            List of TextChunk objects; offsets refer to the normalized text
        """
        cleaned = normalize_text(text or "")
        if not cleaned:
            return []

        text_length = len(cleaned)
        chunks: List[TextChunk] = []
        start = 0

        while start < text_length:
            end = min(text_length, start + self.chunk_size)
            content = cleaned[start:end].strip()

            if content:
                chunks.append(
                    TextChunk(
                        content=content,
                        char_start=start,
                        char_end=end,
                        chunk_index=len(chunks),
                    )
                )

            if end == text_length:
                break

            start = max(0, end - self.chunk_overlap)

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
