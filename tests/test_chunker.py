# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the boundary-aware character chunking without external dependencies.
# No API keys, databases, or network calls needed.
# =============================================================================

import math

import pytest

from app.services.chunker import Chunk, chunk_text


def _reconstruct(text: str, chunks: list[Chunk]) -> str:
    """Concatenate the non-overlapping cores of the chunks."""
    cores = [
        text[current.start:following.start]
        for current, following in zip(chunks, chunks[1:])
    ]
    cores.append(text[chunks[-1].start:chunks[-1].end])
    return "".join(cores)


FINANCIAL_TEXT = (
    "Revenue for FY25 was INR 30,351 million, up 14% year on year. "
    "EBITDA improved to INR 7,959 million. Net debt fell sharply.\n"
    "The board recommended a final dividend of INR 4 per share. "
    "Capital expenditure is expected to remain elevated in FY26.\n\n"
    "Key risks include raw material price volatility, currency exposure "
    "and regulatory changes in export markets. Management expects "
    "margins to stabilise as new capacity comes online."
)


class TestChunkText:
    """Tests for chunk_text()."""

    def test_short_text_is_single_chunk(self):
        chunks = chunk_text("Revenue grew 20%.", chunk_size=100, chunk_overlap=10)
        assert len(chunks) == 1
        assert chunks[0].text == "Revenue grew 20%."
        assert chunks[0].id == 0
        assert chunks[0].length == len("Revenue grew 20%.")

    def test_empty_text_yields_no_chunks(self):
        assert chunk_text("", chunk_size=100, chunk_overlap=10) == []

    def test_whitespace_only_yields_no_chunks(self):
        assert chunk_text("   \n  ", chunk_size=4, chunk_overlap=1) == []

    def test_scenario_short_sentences(self):
        text = "Revenue grew 20%. Risks include competition. • "
        chunks = chunk_text(text, chunk_size=20, chunk_overlap=5)

        assert len(chunks) >= 2
        assert all(0 < c.length <= 20 for c in chunks)
        assert chunks[0].text == "Revenue grew 20%. "

    def test_chunks_respect_size(self):
        chunks = chunk_text(FINANCIAL_TEXT, chunk_size=80, chunk_overlap=15)
        assert all(c.length <= 80 for c in chunks)
        assert all(c.text.strip() for c in chunks)

    def test_sequential_ids(self):
        chunks = chunk_text(FINANCIAL_TEXT, chunk_size=80, chunk_overlap=15)
        assert [c.id for c in chunks] == list(range(len(chunks)))

    def test_count_bound(self):
        for size, overlap in [(80, 15), (50, 0), (120, 60), (30, 29)]:
            chunks = chunk_text(FINANCIAL_TEXT, chunk_size=size, chunk_overlap=overlap)
            bound = math.ceil(len(FINANCIAL_TEXT) / (size - overlap))
            assert len(chunks) <= bound, (size, overlap)

    def test_cores_reconstruct_text(self):
        chunks = chunk_text(FINANCIAL_TEXT, chunk_size=80, chunk_overlap=15)
        assert chunks[0].start == 0
        assert chunks[-1].end == len(FINANCIAL_TEXT)
        assert _reconstruct(FINANCIAL_TEXT, chunks) == FINANCIAL_TEXT

    def test_adjacent_chunks_overlap_at_most_overlap(self):
        chunks = chunk_text(FINANCIAL_TEXT, chunk_size=80, chunk_overlap=15)
        for current, following in zip(chunks, chunks[1:]):
            assert following.start <= current.end
            assert current.end - following.start <= 15

    def test_text_matches_offsets(self):
        chunks = chunk_text(FINANCIAL_TEXT, chunk_size=80, chunk_overlap=15)
        for c in chunks:
            assert FINANCIAL_TEXT[c.start:c.end] == c.text

    def test_prefers_paragraph_break(self):
        text = "a" * 36 + "\n\n" + "b" * 30
        chunks = chunk_text(text, chunk_size=40, chunk_overlap=5)
        assert chunks[0].text == "a" * 36 + "\n\n"

    def test_prefers_sentence_over_word(self):
        text = "Margins held. Sales rose in every region"
        chunks = chunk_text(text, chunk_size=20, chunk_overlap=8)
        assert chunks[0].text == "Margins held. "

    def test_hard_split_when_no_separator(self):
        text = "x" * 50
        chunks = chunk_text(text, chunk_size=20, chunk_overlap=5)
        assert all(c.length <= 20 for c in chunks)
        assert _reconstruct(text, chunks) == text

    def test_uses_settings_defaults(self):
        chunks = chunk_text("word " * 600)
        assert all(c.length <= 1200 for c in chunks)
        assert len(chunks) > 1


class TestChunkTextValidation:
    """Tests for argument validation."""

    def test_overlap_must_be_below_size(self):
        with pytest.raises(ValueError, match="chunk_overlap"):
            chunk_text("text", chunk_size=10, chunk_overlap=10)

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError, match="chunk_size"):
            chunk_text("text", chunk_size=0, chunk_overlap=0)
