"""Tests for deepreasoning_node/rag/cache_store.py"""
import json

from deepreasoning_node.rag.cache_store import VectorCacheStore
from deepreasoning_node.rag.models import PersistedFileEntry, PersistedVectorStore, VectorChunk


def _store(root: str) -> PersistedVectorStore:
    chunk = VectorChunk(
        id="c1",
        file_path=f"{root}/note.md",
        file_name="note.md",
        chunk_index=0,
        content="alpha beta",
        embedding=[1.0, 0.0],
        mtime_ms=1700000000123.5,
    )
    return PersistedVectorStore(
        knowledge_base_path=root,
        built_at="2024-01-01T00:00:00.000Z",
        files=[
            PersistedFileEntry(
                file_path=chunk.file_path,
                mtime_ms=chunk.mtime_ms,
                size=10,
                chunks=[chunk],
            )
        ],
    )


class TestVectorCacheStore:
    """Snapshot load/save behaviour."""

    def test_missing_cache_loads_none(self, tmp_path):
        store = VectorCacheStore(tmp_path / "storage.json")
        assert store.load(tmp_path) is None

    def test_save_then_load_same_root(self, tmp_path):
        cache = VectorCacheStore(tmp_path / "storage.json")
        snapshot = _store(str(tmp_path))

        assert cache.save(snapshot) is True
        assert cache.load(tmp_path) == snapshot

    def test_written_json_uses_camel_case_fields(self, tmp_path):
        cache = VectorCacheStore(tmp_path / "storage.json")
        cache.save(_store(str(tmp_path)))

        data = json.loads((tmp_path / "storage.json").read_text(encoding="utf-8"))
        assert set(data) == {"knowledgeBasePath", "builtAt", "files"}
        entry = data["files"][0]
        assert {"filePath", "mtimeMs", "size", "chunks"} <= set(entry)
        assert {"fileName", "chunkIndex", "embedding"} <= set(entry["chunks"][0])

    def test_no_temp_files_left_behind(self, tmp_path):
        cache = VectorCacheStore(tmp_path / "storage.json")
        cache.save(_store(str(tmp_path)))

        assert [p.name for p in tmp_path.iterdir()] == ["storage.json"]

    def test_root_mismatch_discards_cache(self, tmp_path):
        cache = VectorCacheStore(tmp_path / "storage.json")
        cache.save(_store("/somewhere/else"))

        assert cache.load(tmp_path) is None

    def test_corrupt_cache_loads_none(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json", encoding="utf-8")

        assert VectorCacheStore(path).load(tmp_path) is None

    def test_wrong_shape_loads_none(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"knowledgeBasePath": str(tmp_path)}), encoding="utf-8")

        assert VectorCacheStore(path).load(tmp_path) is None

    def test_unwritable_location_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")
        cache = VectorCacheStore(blocker / "storage.json")

        assert cache.save(_store(str(tmp_path))) is False
