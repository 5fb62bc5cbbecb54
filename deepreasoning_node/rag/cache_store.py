"""JSON persistence for the vector cache.

Handles:
- Loading the previous snapshot, rejecting one built against another root
- Atomic snapshot writes (temp file + rename)

Both operations are best-effort: a missing, corrupt or unwritable cache is
logged and never stops indexing.
"""
import os
import tempfile
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
import structlog

from deepreasoning_node import config
from deepreasoning_node.rag.models import PersistedVectorStore

logger = structlog.get_logger()


class VectorCacheStore:
    """Reads and writes the ``PersistedVectorStore`` snapshot."""

    def __init__(self, cache_path: Path = None):
        """Initialize the cache store.

        Args:
            cache_path: JSON file location (default: config.VECTOR_CACHE_PATH)
        """
        self.cache_path = Path(cache_path or config.VECTOR_CACHE_PATH)

    def load(self, root_dir: Path) -> Optional[PersistedVectorStore]:
        """Load the snapshot if it exists and was built for ``root_dir``.

        Returns:
            The stored snapshot, or None when there is no usable cache
        """
        if not self.cache_path.exists():
            logger.info("vector_cache_missing", path=str(self.cache_path))
            return None

        try:
            raw = self.cache_path.read_text(encoding="utf-8")
            store = PersistedVectorStore.model_validate_json(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(
                "vector_cache_unreadable",
                path=str(self.cache_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if store.knowledge_base_path != str(root_dir):
            logger.info(
                "vector_cache_root_mismatch",
                cached_root=store.knowledge_base_path,
                root=str(root_dir),
            )
            return None

        logger.info(
            "vector_cache_loaded",
            path=str(self.cache_path),
            file_count=len(store.files),
            built_at=store.built_at,
        )
        return store

    def save(self, store: PersistedVectorStore) -> bool:
        """Write the snapshot atomically.

        Returns:
            True if the snapshot was written, False if persistence failed
        """
        payload = store.model_dump_json(by_alias=True, indent=2)
        tmp_name = None

        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.cache_path.name}.",
                suffix=".tmp",
                dir=str(self.cache_path.parent),
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.cache_path)
            tmp_name = None
        except OSError as e:
            logger.warning(
                "vector_cache_persist_failed",
                path=str(self.cache_path),
                error=str(e),
            )
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

        logger.info(
            "vector_cache_saved",
            path=str(self.cache_path),
            file_count=len(store.files),
        )
        return True
