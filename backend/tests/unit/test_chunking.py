"""Unit Tests — chunk_text"""

from __future__ import annotations

import pytest

from grantsignal.processing.chunking import CHUNK_OVERLAP, CHUNK_SIZE, chunk_text


@pytest.mark.unit
class TestChunkText:

    def test_empty_and_whitespace_yield_nothing(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\n  ") == []

    def test_short_text_is_one_chunk(self):
        chunks = chunk_text("A single short paragraph.")
        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].text == "A single short paragraph."
        assert chunks[0].start_char == 0

    def test_long_text_respects_size_limit(self):
        text = "\n\n".join(f"Paragraph {i}. " + "word " * 150 for i in range(20))
        chunks = chunk_text(text)

        assert len(chunks) > 1
        assert all(len(c.text) <= CHUNK_SIZE for c in chunks)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_indices_are_stable_across_runs(self):
        text = "Sentence number one. " * 400
        first = chunk_text(text)
        second = chunk_text(text)
        assert [(c.index, c.text) for c in first] == [(c.index, c.text) for c in second]

    def test_consecutive_chunks_overlap(self):
        text = " ".join(f"token{i}" for i in range(2000))
        chunks = chunk_text(text)

        assert len(chunks) >= 2
        # the second chunk starts inside the first one's window
        assert chunks[1].start_char < chunks[0].start_char + len(chunks[0].text)
        assert chunks[0].start_char + len(chunks[0].text) - chunks[1].start_char <= CHUNK_OVERLAP

    def test_start_offsets_point_into_source(self):
        text = "Alpha paragraph.\n\n" + "beta " * 600
        for chunk in chunk_text(text):
            assert text[chunk.start_char : chunk.start_char + len(chunk.text)] == chunk.text
