"""Knowledge base index over a directory of documents.

Orchestrates:
- File discovery under the knowledge base root
- Cache diffing by (path, mtime, size) against the previous snapshot
- Text extraction, chunking and embedding of new or changed files
- Exact cosine-similarity search over the in-memory chunk set

The in-memory chunk tuple is only ever replaced by one assignment at the end
of a warm-up, so concurrent queries see either the old or the new index.
Warm-up runs once at startup; there is no background re-indexing.

Change detection compares modification time and size only. Two edits that
keep the size and land within the timestamp resolution are not detected.
"""
import asyncio
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple
import structlog

from deepreasoning_node import config
from deepreasoning_node.errors import KnowledgeBaseNotFoundError
from deepreasoning_node.rag.cache_store import VectorCacheStore
from deepreasoning_node.rag.chunker import TextChunker
from deepreasoning_node.rag.extractor import TextExtractor
from deepreasoning_node.rag.models import (
    PersistedFileEntry,
    PersistedVectorStore,
    ScoredChunk,
    VectorChunk,
    WarmUpStats,
)
from deepreasoning_node.rag.similarity import cosine_similarity

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, Path], None]


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class KnowledgeBaseIndex:
    """Incrementally rebuilt similarity index over the knowledge base root."""

    def __init__(
        self,
        root_dir: Path,
        embedder: Embedder,
        cache_store: Optional[VectorCacheStore] = None,
        chunker: Optional[TextChunker] = None,
        extractor: Optional[TextExtractor] = None,
        max_concurrency: int = None,
        allowed_extensions=None,
    ):
        """Initialize the index.

        Args:
            root_dir: Directory to index recursively
            embedder: Object exposing ``async embed(text) -> list[float]``
            cache_store: Snapshot persistence (default: config.VECTOR_CACHE_PATH)
            chunker: Text chunker (default from config)
            extractor: Text extractor for .md/.txt/.pdf files
            max_concurrency: Files processed in parallel during warm-up
            allowed_extensions: Lowercase extensions eligible for indexing
        """
        self.root_dir = Path(root_dir).resolve()
        self.embedder = embedder
        self.cache_store = cache_store or VectorCacheStore()
        self.chunker = chunker or TextChunker()
        self.extractor = extractor or TextExtractor()
        self.max_concurrency = max(1, max_concurrency or config.INDEX_CONCURRENCY)
        self.allowed_extensions = frozenset(allowed_extensions or config.ALLOWED_EXTENSIONS)

        self._chunks: Tuple[VectorChunk, ...] = ()
        self.built_at: Optional[str] = None

        logger.info(
            "knowledge_base_initialized",
            root_dir=str(self.root_dir),
            cache_path=str(self.cache_store.cache_path),
            max_concurrency=self.max_concurrency,
        )

    @property
    def size(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> Tuple[VectorChunk, ...]:
        return self._chunks

    def ensure_root(self) -> None:
        """Raise if the knowledge base root is missing.

        Raises:
            KnowledgeBaseNotFoundError: If the root is not a directory
        """
        if not self.root_dir.is_dir():
            raise KnowledgeBaseNotFoundError(
                f"Knowledge base directory does not exist: {self.root_dir}"
            )

    def discover_files(self) -> List[Path]:
        """Find eligible files under the root, depth first, sorted by name.

        Hidden entries (leading dot) are skipped, directories are descended
        into, and files are kept only if their extension is allowed.
        """
        results: List[Path] = []
        self._walk(self.root_dir, results)

        logger.info(
            "knowledge_base_files_discovered",
            count=len(results),
            root_dir=str(self.root_dir),
        )
        return results

    def _walk(self, directory: Path, results: List[Path]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if directory == self.root_dir:
                raise
            logger.warning("directory_scan_failed", path=str(directory), error=str(e))
            return

        for entry in entries:
            if entry.name.startswith("."):
                continue

            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                self._walk(path, results)
            elif entry.is_file(follow_symlinks=False) and self._is_allowed(entry.name):
                results.append(path)

    def _is_allowed(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1].lower() in self.allowed_extensions

    async def warm_up(self, progress_callback: Optional[ProgressCallback] = None) -> WarmUpStats:
        """Rebuild the index against the current file system state.

        Args:
            progress_callback: Optional callback function(current, total, file_path)

        Returns:
            WarmUpStats for this pass

        Raises:
            KnowledgeBaseNotFoundError: If the root directory is missing
        """
        self.ensure_root()
        logger.info("warm_up_started", root_dir=str(self.root_dir))

        previous = await asyncio.to_thread(self.cache_store.load, self.root_dir)
        cached_entries: Dict[str, PersistedFileEntry] = (
            {entry.file_path: entry for entry in previous.files} if previous else {}
        )

        files = self.discover_files()
        stats = WarmUpStats(files_seen=len(files))
        semaphore = asyncio.Semaphore(self.max_concurrency)
        completed = 0

        async def process(path: Path) -> Optional[PersistedFileEntry]:
            nonlocal completed
            async with semaphore:
                try:
                    entry = await self._index_file(path, cached_entries, stats)
                except Exception as e:
                    # One bad file never aborts the pass.
                    logger.error(
                        "file_index_failed",
                        path=str(path),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    stats.files_failed += 1
                    stats.failed_paths.append(str(path))
                    entry = None

            completed += 1
            if progress_callback:
                progress_callback(completed, len(files), path)
            return entry

        results = await asyncio.gather(*(process(path) for path in files))
        entries = [entry for entry in results if entry is not None]

        self._chunks = tuple(chunk for entry in entries for chunk in entry.chunks)
        self.built_at = _iso_now()
        stats.chunks_total = len(self._chunks)

        store = PersistedVectorStore(
            knowledge_base_path=str(self.root_dir),
            built_at=self.built_at,
            files=entries,
        )
        await asyncio.to_thread(self.cache_store.save, store)

        logger.info("warm_up_completed", **stats.as_dict())
        return stats

    async def _index_file(
        self,
        path: Path,
        cached_entries: Dict[str, PersistedFileEntry],
        stats: WarmUpStats,
    ) -> Optional[PersistedFileEntry]:
        file_stat = path.stat()
        mtime_ms = file_stat.st_mtime_ns / 1_000_000
        file_path = str(path)

        cached = cached_entries.get(file_path)
        if cached and cached.mtime_ms == mtime_ms and cached.size == file_stat.st_size:
            stats.files_reused += 1
            logger.debug("file_cache_hit", path=file_path, chunks=len(cached.chunks))
            return cached

        text = await asyncio.to_thread(self.extractor.extract, path)
        if not text.strip():
            stats.files_skipped += 1
            logger.info("file_skipped_empty", path=file_path)
            return None

        text_chunks = self.chunker.chunk_text(text)

        chunks = []
        for text_chunk in text_chunks:
            embedding = await self.embedder.embed(text_chunk.content)
            stats.embeddings_generated += 1
            chunks.append(
                VectorChunk(
                    id=str(uuid.uuid4()),
                    file_path=file_path,
                    file_name=path.name,
                    chunk_index=text_chunk.chunk_index,
                    content=text_chunk.content,
                    embedding=embedding,
                    mtime_ms=mtime_ms,
                )
            )

        stats.files_indexed += 1
        logger.info(
            "file_indexed",
            path=file_path,
            **self.chunker.get_chunk_stats(text_chunks),
        )

        return PersistedFileEntry(
            file_path=file_path,
            mtime_ms=mtime_ms,
            size=file_stat.st_size,
            chunks=chunks,
        )

    async def query_similar_scored(self, text: str, top_k: int = None) -> List[ScoredChunk]:
        """Rank indexed chunks by cosine similarity to ``text``.

        Args:
            text: Query text
            top_k: Maximum results (default from config)

        Returns:
            Up to ``top_k`` ScoredChunk objects, best first; ties keep index order

        Raises:
            EmbeddingError: If the query cannot be embedded
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        chunks = self._chunks

        if not chunks or top_k <= 0:
            logger.debug("empty_index_no_results", top_k=top_k)
            return []

        query_embedding = await self.embedder.embed(text)
        if not query_embedding:
            logger.warning("empty_query_embedding", query_length=len(text or ""))
            return []

        scored = [
            ScoredChunk(chunk=chunk, score=cosine_similarity(query_embedding, chunk.embedding))
            for chunk in chunks
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        results = scored[:top_k]

        logger.info(
            "similarity_query_completed",
            query_length=len(text),
            candidates=len(chunks),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    async def query_similar(self, text: str, top_k: int = None) -> List[VectorChunk]:
        """Return up to ``top_k`` chunks most similar to ``text``."""
        return [item.chunk for item in await self.query_similar_scored(text, top_k)]
