"""Tests for deepreasoning_node/rag/knowledge_base.py"""
import json
import os

import pytest

from deepreasoning_node.errors import KnowledgeBaseNotFoundError
from deepreasoning_node.rag.knowledge_base import KnowledgeBaseIndex

from tests.conftest import FakeEmbedder


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDiscovery:
    """File discovery under the knowledge base root."""

    def test_missing_root_is_fatal(self, tmp_path, embedder):
        index = KnowledgeBaseIndex(tmp_path / "nope", embedder)

        with pytest.raises(KnowledgeBaseNotFoundError):
            index.ensure_root()

    async def test_warm_up_on_missing_root_raises(self, tmp_path, embedder):
        index = KnowledgeBaseIndex(tmp_path / "nope", embedder)

        with pytest.raises(KnowledgeBaseNotFoundError):
            await index.warm_up()

    def test_skips_hidden_and_unsupported_files(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "b.md", "beta")
        _write(knowledge_dir / "a.txt", "alpha")
        _write(knowledge_dir / "sub" / "c.MD", "gamma")
        _write(knowledge_dir / "image.png", "not text")
        _write(knowledge_dir / ".hidden.md", "secret")
        _write(knowledge_dir / ".git" / "notes.md", "internal")

        found = make_index(embedder).discover_files()

        assert [p.relative_to(knowledge_dir).as_posix() for p in found] == [
            "a.txt",
            "b.md",
            "sub/c.MD",
        ]


class TestWarmUp:
    """Incremental warm-up against the snapshot cache."""

    async def test_scenario_single_file(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "a.txt", "hello world")
        index = make_index(embedder)

        stats = await index.warm_up()
        results = await index.query_similar_scored("hello", 5)

        assert stats.files_indexed == 1
        assert index.size == 1
        assert len(results) == 1
        assert results[0].chunk.content == "hello world"
        assert results[0].chunk.file_name == "a.txt"
        assert results[0].score > 0

    async def test_scenario_empty_root_makes_no_embedding_calls(self, make_index, embedder):
        index = make_index(embedder)

        await index.warm_up()
        results = await index.query_similar("anything", 5)

        assert results == []
        assert embedder.calls == []

    async def test_second_warm_up_reuses_cache_verbatim(self, knowledge_dir, make_index, cache_store):
        _write(knowledge_dir / "one.md", "alpha beta gamma " * 10)
        _write(knowledge_dir / "two.txt", "delta delta delta")

        first_embedder = FakeEmbedder()
        await make_index(first_embedder).warm_up()
        first = json.loads(cache_store.cache_path.read_text(encoding="utf-8"))

        second_embedder = FakeEmbedder()
        stats = await make_index(second_embedder).warm_up()
        second = json.loads(cache_store.cache_path.read_text(encoding="utf-8"))

        assert second_embedder.calls == []
        assert stats.files_reused == 2
        assert stats.files_indexed == 0
        assert first["files"] == second["files"]
        assert first["knowledgeBasePath"] == second["knowledgeBasePath"]

    async def test_changed_file_is_reembedded(self, knowledge_dir, make_index):
        _write(knowledge_dir / "keep.md", "alpha")
        changed = _write(knowledge_dir / "change.md", "beta")
        await make_index(FakeEmbedder()).warm_up()

        changed.write_text("gamma gamma and more", encoding="utf-8")
        stat = changed.stat()
        os.utime(changed, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

        embedder = FakeEmbedder()
        index = make_index(embedder)
        stats = await index.warm_up()

        assert stats.files_reused == 1
        assert stats.files_indexed == 1
        assert all("gamma" in call for call in embedder.calls)
        assert {c.content for c in index.chunks} == {"alpha", "gamma gamma and more"}

    async def test_deleted_file_leaves_index(self, knowledge_dir, make_index):
        _write(knowledge_dir / "stay.md", "alpha")
        gone = _write(knowledge_dir / "gone.md", "beta")
        await make_index(FakeEmbedder()).warm_up()

        gone.unlink()
        index = make_index(FakeEmbedder())
        await index.warm_up()

        assert [c.file_name for c in index.chunks] == ["stay.md"]

    async def test_blank_file_is_skipped(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "empty.md", "   \n\n  ")
        index = make_index(embedder)

        stats = await index.warm_up()

        assert stats.files_skipped == 1
        assert index.size == 0

    async def test_failing_file_does_not_abort_pass(self, knowledge_dir, make_index):
        _write(knowledge_dir / "good.md", "alpha")
        bad = _write(knowledge_dir / "bad.md", "poison beta")
        index = make_index(FakeEmbedder(fail_on="poison"))

        stats = await index.warm_up()

        assert stats.files_failed == 1
        assert stats.failed_paths == [str(bad.resolve())]
        assert [c.file_name for c in index.chunks] == ["good.md"]

    async def test_unparseable_pdf_is_counted_as_failure(self, knowledge_dir, make_index, embedder):
        (knowledge_dir / "broken.pdf").write_bytes(b"this is not a pdf")
        _write(knowledge_dir / "fine.txt", "alpha")
        index = make_index(embedder)

        stats = await index.warm_up()

        assert stats.files_failed == 1
        assert index.size == 1

    async def test_progress_callback_sees_every_file(self, knowledge_dir, make_index, embedder):
        for name in ("a.md", "b.md", "c.md"):
            _write(knowledge_dir / name, "alpha")
        seen = []

        await make_index(embedder).warm_up(
            progress_callback=lambda current, total, path: seen.append((current, total))
        )

        assert sorted(seen) == [(1, 3), (2, 3), (3, 3)]

    async def test_chunks_carry_source_metadata(self, knowledge_dir, make_index, embedder):
        path = _write(knowledge_dir / "long.md", "alpha " * 30)
        index = make_index(embedder)

        await index.warm_up()

        assert index.size > 1
        assert [c.chunk_index for c in index.chunks] == list(range(index.size))
        assert {c.file_path for c in index.chunks} == {str(path.resolve())}
        assert len({c.id for c in index.chunks}) == index.size
        assert index.built_at.endswith("Z")


class TestQuerySimilar:
    """Top-K retrieval over the in-memory index."""

    async def test_results_ordered_and_limited(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "a.md", "alpha alpha alpha")
        _write(knowledge_dir / "b.md", "beta beta")
        _write(knowledge_dir / "c.md", "alpha beta")
        _write(knowledge_dir / "d.md", "gamma")
        index = make_index(embedder)
        await index.warm_up()

        results = await index.query_similar_scored("alpha", 3)
        scores = [r.score for r in results]

        assert len(results) == 3
        assert scores == sorted(scores, reverse=True)
        assert results[0].chunk.file_name == "a.md"

    async def test_equal_scores_keep_index_order(self, knowledge_dir, make_index):
        """Ties resolve to the order chunks were indexed in."""

        class ConstantEmbedder:
            async def embed(self, text):
                return [1.0, 1.0] if text.strip() else []

        for name in ("c.md", "a.md", "d.md", "b.md"):
            _write(knowledge_dir / name, f"note {name}")
        index = make_index(ConstantEmbedder())
        await index.warm_up()

        results = await index.query_similar_scored("q", 4)

        assert [r.chunk.file_name for r in results] == ["a.md", "b.md", "c.md", "d.md"]
        assert len({r.score for r in results}) == 1

    async def test_top_k_larger_than_index(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "a.md", "alpha")
        _write(knowledge_dir / "b.md", "beta")
        index = make_index(embedder)
        await index.warm_up()

        assert len(await index.query_similar("alpha", 10)) == 2

    async def test_non_positive_top_k_skips_embedding(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "a.md", "alpha")
        index = make_index(embedder)
        await index.warm_up()
        embedder.calls.clear()

        assert await index.query_similar("alpha", 0) == []
        assert embedder.calls == []

    async def test_blank_query_returns_nothing(self, knowledge_dir, make_index, embedder):
        _write(knowledge_dir / "a.md", "alpha")
        index = make_index(embedder)
        await index.warm_up()

        assert await index.query_similar("   ", 5) == []

    async def test_query_embedding_failure_propagates(self, knowledge_dir, make_index):
        _write(knowledge_dir / "a.md", "alpha")
        index = make_index(FakeEmbedder(fail_on="boom"))
        await index.warm_up()

        with pytest.raises(RuntimeError):
            await index.query_similar("boom", 5)
