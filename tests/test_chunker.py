"""Tests for deepreasoning_node/rag/chunker.py"""
import pytest

from deepreasoning_node.rag.chunker import TextChunker, normalize_text


class TestNormalizeText:
    """Whitespace normalization before chunking."""

    def test_collapses_whitespace_and_line_endings(self):
        assert normalize_text("  one\r\ntwo\n\n\tthree  ") == "one two three"

    def test_blank_input_normalizes_to_empty(self):
        assert normalize_text(" \n\t\r\n ") == ""


class TestChunkerValidation:
    """Constructor rejects windows that could never advance."""

    def test_overlap_equal_to_size_rejected(self):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=100, chunk_overlap=100)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=100, chunk_overlap=-1)

    def test_non_positive_size_rejected(self):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=0, chunk_overlap=0)

    def test_defaults_come_from_config(self):
        chunker = TextChunker()
        assert chunker.chunk_size == 1000
        assert chunker.chunk_overlap == 200


class TestChunkText:
    """Sliding-window chunking."""

    def test_empty_text_produces_no_chunks(self):
        chunker = TextChunker(chunk_size=10, chunk_overlap=2)
        assert chunker.chunk_text("") == []
        assert chunker.chunk_text("   \n  ") == []

    def test_short_text_is_one_chunk(self):
        chunker = TextChunker(chunk_size=100, chunk_overlap=20)
        chunks = chunker.chunk_text("hello   world")

        assert len(chunks) == 1
        assert chunks[0].content == "hello world"
        assert chunks[0].chunk_index == 0
        assert (chunks[0].char_start, chunks[0].char_end) == (0, 11)

    def test_windows_advance_by_size_minus_overlap(self):
        chunker = TextChunker(chunk_size=10, chunk_overlap=3)
        text = "abcdefghijklmnopqrstuvwxyz"
        chunks = chunker.chunk_text(text)

        assert [c.char_start for c in chunks] == [0, 7, 14, 21]
        assert [c.content for c in chunks] == [
            "abcdefghij",
            "hijklmnopq",
            "opqrstuvwx",
            "vwxyz",
        ]
        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3]

    def test_chunks_bounded_and_cover_text(self):
        chunker = TextChunker(chunk_size=50, chunk_overlap=10)
        text = " ".join(f"word{i}" for i in range(200))
        normalized = normalize_text(text)
        chunks = chunker.chunk_text(text)

        assert all(0 < len(c.content) <= 50 for c in chunks)
        assert chunks[0].char_start == 0
        assert chunks[-1].char_end == len(normalized)
        for previous, current in zip(chunks, chunks[1:]):
            assert current.char_start <= previous.char_end

    def test_whitespace_only_window_is_dropped(self):
        chunker = TextChunker(chunk_size=4, chunk_overlap=0)
        chunks = chunker.chunk_text("abcd efgh")

        assert all(c.content.strip() for c in chunks)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_chunk_stats(self):
        chunker = TextChunker(chunk_size=10, chunk_overlap=3)
        stats = chunker.get_chunk_stats(chunker.chunk_text("abcdefghijklmnopqrstuvwxyz"))

        assert stats["chunk_count"] == 4
        assert stats["max_chunk_size"] == 10
        assert stats["min_chunk_size"] == 5
        assert chunker.get_chunk_stats([])["chunk_count"] == 0
