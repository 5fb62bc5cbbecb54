"""Data models for indexed chunks and the persisted vector cache.

Field aliases keep the on-disk JSON compatible with existing ``storage.json``
files (``filePath``, ``mtimeMs``, ``knowledgeBasePath`` ...).
"""
from dataclasses import dataclass, field
from typing import List
from pydantic import BaseModel, ConfigDict, Field


class _Persisted(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class VectorChunk(_Persisted):
    """A retrievable slice of one source file with its embedding."""

    id: str
    file_path: str = Field(alias="filePath")
    file_name: str = Field(alias="fileName")
    chunk_index: int = Field(alias="chunkIndex", ge=0)
    content: str
    embedding: List[float]
    mtime_ms: float = Field(alias="mtimeMs")


class PersistedFileEntry(_Persisted):
    """Cached state of one source file, the unit of cache hit/miss."""

    file_path: str = Field(alias="filePath")
    mtime_ms: float = Field(alias="mtimeMs")
    size: int
    chunks: List[VectorChunk]


class PersistedVectorStore(_Persisted):
    """Snapshot of the whole index, written after each warm-up."""

    knowledge_base_path: str = Field(alias="knowledgeBasePath")
    built_at: str = Field(alias="builtAt")
    files: List[PersistedFileEntry]


@dataclass(frozen=True)
class ScoredChunk:
    """A chunk with its cosine similarity to a query."""

    chunk: VectorChunk
    score: float


@dataclass
class WarmUpStats:
    """Counters reported by a warm-up pass."""

    files_seen: int = 0
    files_reused: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    chunks_total: int = 0
    embeddings_generated: int = 0
    failed_paths: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "files_seen": self.files_seen,
            "files_reused": self.files_reused,
            "files_indexed": self.files_indexed,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "chunks_total": self.chunks_total,
            "embeddings_generated": self.embeddings_generated,
        }
