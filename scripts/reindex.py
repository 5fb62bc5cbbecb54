#!/usr/bin/env python
"""Warm the vector cache without starting the server.

Usage:
    python scripts/reindex.py              # Incremental warm-up against storage.json
    python scripts/reindex.py --rebuild    # Discard the cache and re-embed everything
    python scripts/reindex.py --verbose    # One line per file instead of a progress bar
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from deepreasoning_node import config
from deepreasoning_node.errors import KnowledgeBaseNotFoundError
from deepreasoning_node.llm_client import OllamaClient
from deepreasoning_node.rag.cache_store import VectorCacheStore
from deepreasoning_node.rag.knowledge_base import KnowledgeBaseIndex
from deepreasoning_node.rag.models import WarmUpStats
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        if self.verbose:
            print(f"  ({current}/{total}) {file_path}")
            return

        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "#" * filled + "." * (bar_length - filled)
        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

    def finish(self, stats: WarmUpStats, cache_path: Path):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Warm-up Complete")
        print(f"{'=' * 60}\n")
        print(f"  Files discovered:      {stats.files_seen}")
        print(f"  Reused from cache:     {stats.files_reused}")
        print(f"  Indexed:               {stats.files_indexed}")
        print(f"  Skipped (no text):     {stats.files_skipped}")
        print(f"  Failed:                {stats.files_failed}")
        print(f"  Chunks in index:       {stats.chunks_total}")
        print(f"  Embeddings generated:  {stats.embeddings_generated}")
        print(f"  Time elapsed:          {elapsed_seconds:.1f}s")

        if stats.embeddings_generated > 0 and elapsed_seconds > 0:
            rate = stats.embeddings_generated / elapsed_seconds
            print(f"  Embedding rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        for path in stats.failed_paths:
            print(f"  failed: {path}")
        if stats.files_failed:
            print("  Check logs for details.\n")

        print(f"Cache written to: {cache_path}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Warm the knowledge base vector cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Delete the cache file first so every file is re-embedded",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show one line per processed file",
    )
    parser.add_argument(
        "--knowledge-base",
        type=Path,
        default=None,
        help=f"Knowledge base directory (default: {config.KNOWLEDGE_BASE_PATH})",
    )
    parser.add_argument(
        "--cache",
        type=Path,
        default=None,
        help=f"Vector cache file (default: {config.VECTOR_CACHE_PATH})",
    )
    args = parser.parse_args()

    progress = ProgressReporter(verbose=args.verbose)
    cache_store = VectorCacheStore(args.cache)
    index = KnowledgeBaseIndex(
        args.knowledge_base or config.KNOWLEDGE_BASE_PATH,
        OllamaClient(),
        cache_store=cache_store,
    )

    print("\nConfiguration:")
    print(f"   Knowledge base:   {index.root_dir}")
    print(f"   Cache file:       {cache_store.cache_path}")
    print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
    print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
    print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")

    try:
        index.ensure_root()

        if args.rebuild and cache_store.cache_path.exists():
            cache_store.cache_path.unlink()
            print("\nRebuild mode: existing cache removed.")

        progress.start("Rebuilding Index" if args.rebuild else "Warming Index")
        stats = await index.warm_up(progress_callback=progress.update)
        progress.finish(stats, cache_store.cache_path)

        if stats.files_failed > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nWarm-up cancelled by user.\n")
        sys.exit(1)

    except KnowledgeBaseNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
