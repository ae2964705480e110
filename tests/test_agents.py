# =============================================================================
# Unit Tests — Analyst Agent
# =============================================================================
#
# Tests section synthesis, bullet post-processing and the Q&A answerer
# without API keys. Uses fake LLM/embedding providers and a hand-built
# VectorIndex.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.agents.analyst import (
    ANSWER_FALLBACK,
    ANSWER_TIMEOUT_MESSAGE,
    NO_CONTEXT_ANSWER,
    SECTION_FALLBACK,
    SECTION_SYSTEM_PROMPT,
    ReportSections,
    SectionKind,
    _format_context,
    answer_from_index,
    format_bullet_points,
    generate_section,
    synthesize_sections,
    template_for,
)
from app.config import settings
from app.services.chunker import Chunk
from app.services.errors import ApiFailure
from app.services.llm import LLMResponse
from app.services.vectorstore import IndexedChunk, VectorIndex, VectorSearchResult


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _response(content: str) -> LLMResponse:
    return LLMResponse(content=content, model="test-model", input_tokens=100, output_tokens=20)


def _index() -> VectorIndex:
    texts = [
        "Revenue for FY25 was INR 30,351 million, up 14%.",
        "Key risks include raw material price volatility.",
        "Management plans to expand capacity in FY26.",
    ]
    return VectorIndex([
        IndexedChunk(
            Chunk(id=i, text=text, start=0, end=len(text)),
            tuple(1.0 if j == i else 0.0 for j in range(3)),
        )
        for i, text in enumerate(texts)
    ])


def _embedder() -> AsyncMock:
    """Embeds every query to a vector orthogonal to all indexed chunks."""
    embedder = AsyncMock()
    embedder.embed.side_effect = lambda texts: [[0.0, 0.0, 0.0] for _ in texts]
    return embedder


# ---------------------------------------------------------------------------
# Test: Bullet Post-processing
# ---------------------------------------------------------------------------


class TestFormatBulletPoints:
    """Tests for format_bullet_points()."""

    def test_splits_inline_bullets(self):
        text = "• Revenue grew 14%. • EBITDA rose 9%. • Net debt fell."
        assert format_bullet_points(text) == (
            "• Revenue grew 14%.\n• EBITDA rose 9%.\n• Net debt fell."
        )

    def test_lead_in_separated_by_blank_line(self):
        text = "Highlights for FY25: • Revenue grew. • Margins held."
        assert format_bullet_points(text) == (
            "Highlights for FY25:\n\n• Revenue grew.\n• Margins held."
        )

    def test_dash_markers_become_bullets(self):
        assert format_bullet_points("- Revenue grew.\n- Margins held.") == (
            "• Revenue grew.\n• Margins held."
        )

    def test_negative_numbers_are_not_bullets(self):
        text = "Margin moved -5% year on year."
        assert format_bullet_points(text) == text

    def test_blank_lines_dropped(self):
        assert format_bullet_points("• One.\n\n\n• Two.") == "• One.\n• Two."

    def test_idempotent(self):
        samples = [
            "Intro: • a • b\n- c",
            "• One.\n\n• Two. • Three.",
            "Plain paragraph without bullets.",
        ]
        for sample in samples:
            once = format_bullet_points(sample)
            assert format_bullet_points(once) == once

    def test_every_bullet_starts_a_line(self):
        result = format_bullet_points("Lead • a • b • c\nmore • d")
        for line in result.split("\n"):
            assert "•" not in line or line.startswith("• ")
            assert line.count("•") <= 1


# ---------------------------------------------------------------------------
# Test: Section Templates
# ---------------------------------------------------------------------------


class TestSectionTemplates:
    """Tests for the SectionKind → SectionTemplate mapping."""

    def test_every_kind_has_a_template(self):
        for kind in SectionKind:
            template = template_for(kind)
            assert "{company}" in template.query
            assert "{company}" in template.instruction

    def test_exclusion_rules(self):
        assert "EXCLUDE qualitative commentary" in (
            template_for(SectionKind.FINANCIAL_HIGHLIGHTS).instruction
        )
        assert "risk" in (
            template_for(SectionKind.MANAGEMENT_COMMENTARY).instruction.lower()
        )

    def test_report_sections_serialise_with_report_keys(self):
        sections = ReportSections("o", "f", "k", "m")
        assert sections.to_dict() == {
            "overview": "o",
            "financialHighlights": "f",
            "keyRisks": "k",
            "managementCommentary": "m",
        }
        assert ReportSections.from_dict(sections.to_dict()) == sections


class TestFormatContext:
    """Tests for context formatting."""

    def test_numbered_and_separated(self):
        chunks = [
            VectorSearchResult(Chunk(id=0, text="First.", start=0, end=6), 0.9),
            VectorSearchResult(Chunk(id=1, text="Second.", start=6, end=13), 0.8),
        ]
        assert _format_context(chunks) == "[1]:\nFirst.\n\n---\n\n[2]:\nSecond."


# ---------------------------------------------------------------------------
# Test: Section Generation
# ---------------------------------------------------------------------------


class TestGenerateSection:
    """Tests for generate_section()."""

    def test_prompt_and_parameters(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("• Strong brand. • Wide reach.")

        result = _run(generate_section(
            SectionKind.OVERVIEW, _index(), "Acme", llm, _embedder(),
        ))

        assert result == "• Strong brand.\n• Wide reach."
        kwargs = llm.complete.call_args.kwargs
        assert kwargs["system"] == SECTION_SYSTEM_PROMPT
        assert "Acme" in kwargs["user"]
        assert "CRITICAL FORMATTING REQUIREMENTS" in kwargs["user"]
        assert "Revenue for FY25" in kwargs["user"]
        assert kwargs["max_tokens"] == settings.section_max_tokens
        assert kwargs["presence_penalty"] == settings.section_presence_penalty
        assert kwargs["frequency_penalty"] == settings.section_frequency_penalty

    def test_retrieves_section_top_k(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("• x")
        embedder = _embedder()

        with patch("app.agents.analyst.retrieve", new=AsyncMock(return_value=[])) as retrieve:
            _run(generate_section(SectionKind.KEY_RISKS, _index(), "Acme", llm, embedder))

        assert retrieve.call_args.kwargs["k"] == settings.section_top_k
        assert "Acme" in retrieve.call_args.args[1]

    def test_empty_output_becomes_fallback(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("   ")
        result = _run(generate_section(
            SectionKind.KEY_RISKS, _index(), "Acme", llm, _embedder(),
        ))
        assert result == SECTION_FALLBACK


class TestSynthesizeSections:
    """Tests for concurrent, fail-fast section synthesis."""

    def test_all_four_sections(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("• Point.")

        sections = _run(synthesize_sections(_index(), "Acme", llm, _embedder()))

        assert sections == ReportSections("• Point.", "• Point.", "• Point.", "• Point.")
        assert llm.complete.call_count == 4

    def test_sections_run_concurrently(self):
        in_flight = 0
        peak = 0

        async def complete(**kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _response("• Point.")

        llm = AsyncMock()
        llm.complete.side_effect = complete
        _run(synthesize_sections(_index(), "Acme", llm, _embedder()))
        assert peak == 4

    def test_one_failing_section_fails_report_and_cancels_others(self):
        cancelled = []

        async def complete(**kwargs):
            if "Identify 3-4 primary" in kwargs["user"]:
                raise ApiFailure("Key Risks section failed", status_code=500)
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(kwargs["user"][:20])
                raise
            return _response("• Point.")

        llm = AsyncMock()
        llm.complete.side_effect = complete

        async def scenario():
            return await asyncio.wait_for(
                synthesize_sections(_index(), "Acme", llm, _embedder()),
                timeout=2,
            )

        with pytest.raises(ApiFailure, match="Key Risks"):
            _run(scenario())
        assert len(cancelled) == 3


# ---------------------------------------------------------------------------
# Test: Q&A Answerer
# ---------------------------------------------------------------------------


class TestAnswerFromIndex:
    """Tests for answer_from_index()."""

    def test_unrelated_question_still_answered(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("  The report does not name the auditor.  ")

        answer = _run(answer_from_index(
            _index(), "Who is the auditor?", "Acme", llm, _embedder(),
        ))

        assert answer == "The report does not name the auditor."
        kwargs = llm.complete.call_args.kwargs
        assert kwargs["max_tokens"] == settings.answer_max_tokens
        assert "2-3 sentences" in kwargs["user"]
        # Top-3 best available chunks even at zero similarity
        assert "[3]:" in kwargs["user"]
        assert "presence_penalty" not in kwargs

    def test_timeout_returns_friendly_message(self):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        llm = AsyncMock()
        llm.complete.side_effect = slow

        with patch.object(settings, "answer_timeout", 0.01):
            answer = _run(answer_from_index(
                _index(), "What was revenue?", "Acme", llm, _embedder(),
            ))

        assert answer == ANSWER_TIMEOUT_MESSAGE

    def test_empty_answer_becomes_fallback(self):
        llm = AsyncMock()
        llm.complete.return_value = _response("")
        answer = _run(answer_from_index(
            _index(), "What was revenue?", "Acme", llm, _embedder(),
        ))
        assert answer == ANSWER_FALLBACK

    def test_empty_index_skips_llm(self):
        llm = AsyncMock()
        answer = _run(answer_from_index(
            VectorIndex(), "What was revenue?", "Acme", llm, _embedder(),
        ))
        assert answer == NO_CONTEXT_ANSWER
        llm.complete.assert_not_called()

    def test_api_failure_propagates(self):
        llm = AsyncMock()
        llm.complete.side_effect = ApiFailure("quota exceeded", status_code=402)
        with pytest.raises(ApiFailure):
            _run(answer_from_index(
                _index(), "What was revenue?", "Acme", llm, _embedder(),
            ))
