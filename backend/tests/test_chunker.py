"""
Tests for recursive text chunking.
"""
import pytest

from apps.ingestion.chunker import RecursiveChunker, chunk_text, split_keeping_separator


def assert_covers_in_order(text, chunks):
    """Every chunk is a slice of text; together they cover it with no gaps."""
    position = 0
    covered = 0
    for chunk in chunks:
        idx = text.find(chunk, position)
        assert idx != -1, f"chunk not found in order: {chunk[:30]!r}"
        assert idx <= covered, "gap between chunks"
        position = idx
        covered = max(covered, idx + len(chunk))
    assert covered == len(text)


@pytest.fixture
def long_text():
    words = [f"w{i:04d}" for i in range(200)]
    return " ".join(words) + "."


class TestSplitKeepingSeparator:
    """Tests for the separator-preserving split."""

    def test_pieces_join_back_to_original(self):
        text = "One. Two. Three"
        pieces = split_keeping_separator(text, ". ")
        assert pieces == ["One. ", "Two. ", "Three"]
        assert "".join(pieces) == text

    def test_empty_separator_splits_characters(self):
        assert split_keeping_separator("abc", "") == ["a", "b", "c"]


class TestRecursiveChunker:
    """Tests for chunk boundaries, size and overlap."""

    def test_short_text_is_one_chunk(self):
        assert chunk_text("  A short note.  ") == ["A short note."]

    def test_blank_text_gives_no_chunks(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\n ") == []

    def test_long_text_is_split_within_size(self, long_text):
        chunks = RecursiveChunker(chunk_size=500, chunk_overlap=50).chunk(long_text)

        assert len(chunks) == 3
        assert all(len(c) <= 500 for c in chunks)

    def test_chunks_cover_text_in_order(self, long_text):
        chunks = RecursiveChunker(chunk_size=500, chunk_overlap=50).chunk(long_text)
        assert_covers_in_order(long_text, chunks)

    def test_consecutive_chunks_overlap(self, long_text):
        chunks = RecursiveChunker(chunk_size=500, chunk_overlap=50).chunk(long_text)

        for previous, current in zip(chunks, chunks[1:]):
            head = current.split(" ")[0]
            assert head in previous

    def test_paragraphs_are_preferred_boundaries(self):
        first = "a" * 300
        second = "b" * 300
        chunks = RecursiveChunker(chunk_size=500, chunk_overlap=0).chunk(f"{first}\n\n{second}")

        assert chunks == [f"{first}\n\n", second]

    def test_unbroken_text_is_hard_cut(self):
        text = "".join(str(i) for i in range(500))[:1200]
        chunks = RecursiveChunker(chunk_size=500, chunk_overlap=50).chunk(text)

        assert all(len(c) <= 500 for c in chunks)
        assert_covers_in_order(text, chunks)

    def test_deterministic(self, long_text):
        chunker = RecursiveChunker(chunk_size=200, chunk_overlap=20)
        assert chunker.chunk(long_text) == chunker.chunk(long_text)

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            RecursiveChunker(chunk_size=100, chunk_overlap=100)
        with pytest.raises(ValueError):
            RecursiveChunker(chunk_size=0, chunk_overlap=0)
