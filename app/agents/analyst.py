# =============================================================================
# Analyst Agent — Report Section Synthesis and Q&A Answers
# =============================================================================
#
# The analyst takes a built VectorIndex and produces either the four fixed
# report sections or a short answer to a free-form question.
#
# SECTIONS:
#   overview               — business model and market position
#   financial_highlights   — key metrics with numbers
#   key_risks              — business, financial and strategic risks
#   management_commentary  — forward-looking statements and priorities
#
# DESIGN DECISION: Sections are a closed enum, not string keys.
# Each SectionKind maps to a SectionTemplate (retrieval query + instruction)
# through an exhaustive `match` in template_for(). Adding a member without
# a template fails type checking (assert_never) and raises at runtime.
#
# DESIGN DECISION: Sections run concurrently, fail fast.
# The four sections share nothing mutable, so they are generated as
# independent asyncio tasks. The first failure cancels the siblings and
# propagates: no partial report is ever returned.
#
# DESIGN DECISION: Deterministic bullet post-processing.
# Models regularly run bullets together on one line despite instructions.
# format_bullet_points() puts every "•" marker at the start of its own
# line before the caller sees the text.
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from app.config import Settings, settings
from app.services.embedder import EmbeddingProvider
from app.services.errors import Timeout
from app.services.llm import LLMProvider
from app.services.resilience import RetryPolicy, call_with_retry
from app.services.vectorstore import VectorIndex, VectorSearchResult, retrieve

logger = logging.getLogger(__name__)

BULLET = "•"

SECTION_FALLBACK = "Analysis not available"
ANSWER_FALLBACK = (
    "I could not generate an answer based on the available information."
)
ANSWER_TIMEOUT_MESSAGE = (
    "The request timed out. Please try asking a simpler question."
)
NO_CONTEXT_ANSWER = (
    "No relevant information was found in the document. "
    "Please try rephrasing your question."
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class SectionKind(str, Enum):
    """The four fixed report sections, in report order."""

    OVERVIEW = "overview"
    FINANCIAL_HIGHLIGHTS = "financialHighlights"
    KEY_RISKS = "keyRisks"
    MANAGEMENT_COMMENTARY = "managementCommentary"


@dataclass(frozen=True)
class SectionTemplate:
    """Retrieval query and instruction for one section.

    Both strings are formatted with `company`.
    """

    title: str
    query: str
    instruction: str


@dataclass(frozen=True)
class ReportSections:
    """The finished report. Each field is plain text with • bullets."""

    overview: str
    financial_highlights: str
    key_risks: str
    management_commentary: str

    def to_dict(self) -> dict[str, str]:
        return {
            SectionKind.OVERVIEW.value: self.overview,
            SectionKind.FINANCIAL_HIGHLIGHTS.value: self.financial_highlights,
            SectionKind.KEY_RISKS.value: self.key_risks,
            SectionKind.MANAGEMENT_COMMENTARY.value: self.management_commentary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> ReportSections:
        return cls(
            overview=data[SectionKind.OVERVIEW.value],
            financial_highlights=data[SectionKind.FINANCIAL_HIGHLIGHTS.value],
            key_risks=data[SectionKind.KEY_RISKS.value],
            management_commentary=data[SectionKind.MANAGEMENT_COMMENTARY.value],
        )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
# Every section instruction follows the same pattern:
# 1. Task (3-4 bullets, 1-2 sentences each)
# 2. Focus
# 3. Exclusions, so sections do not repeat each other
# ---------------------------------------------------------------------------

SECTION_SYSTEM_PROMPT = (
    "You are a financial analyst. Format bullet points correctly - each "
    "bullet point MUST be on its own separate line. Never combine multiple "
    "bullet points in one paragraph. Never use markdown formatting - use "
    "only plain text with bullet points and line breaks."
)

_FORMATTING_RULES = (
    "CRITICAL FORMATTING REQUIREMENTS:\n"
    "- Maximum 3-4 bullet points\n"
    "- Each point should be 1-2 sentences maximum\n"
    f"- ALWAYS put each bullet point ({BULLET}) on its own separate line\n"
    "- Do NOT combine multiple bullet points in the same line or paragraph\n"
    "- Do NOT use markdown formatting (no **, no #)\n"
    "- Be concise and specific, include numbers where relevant"
)

_OVERVIEW = SectionTemplate(
    title="Overview",
    query=(
        "company business model overview market position core strengths "
        "competitive advantages operations {company}"
    ),
    instruction=(
        "Provide 3-4 key highlights about {company}'s business model and "
        "market position.\n"
        "- Focus on core operations, strategy and competitive advantages.\n"
        "- EXCLUDE specific financial numbers or performance metrics "
        "(revenue, EBITDA, profit); they belong in Financial Highlights.\n"
        "- EXCLUDE third-party opinions, buy/sell ratings and price targets."
    ),
)

_FINANCIAL_HIGHLIGHTS = SectionTemplate(
    title="Financial Highlights",
    query=(
        "financial metrics revenue profit margin EBITDA ROE debt equity "
        "ratio growth performance numbers {company}"
    ),
    instruction=(
        "Extract 3-4 key financial highlights for {company}.\n"
        "- Each bullet describes ONE metric in a full sentence with the "
        "trend, e.g. \"Revenue increased from X to Y, representing Z% "
        "growth.\"\n"
        "- Focus on revenue, profit, EBITDA and key operational metrics.\n"
        "- EXCLUDE qualitative commentary on strategy or outlook; it is "
        "covered in Overview and Management Commentary."
    ),
)

_KEY_RISKS = SectionTemplate(
    title="Key Risks",
    query=(
        "risk factors operational financial market regulatory credit risk "
        "challenges threats concerns {company}"
    ),
    instruction=(
        "Identify 3-4 primary business, financial and strategic risks for "
        "{company}.\n"
        "- If a \"Risk Factors\" or \"Risk Management\" section exists, "
        "prioritise it.\n"
        "- Summarise the potential negative impact of each risk in one "
        "sentence.\n"
        "- EXCLUDE risk mitigation strategies and management's plans to "
        "address the risks."
    ),
)

_MANAGEMENT_COMMENTARY = SectionTemplate(
    title="Management Commentary",
    query=(
        "management discussion outlook strategy future plans capital "
        "allocation market assessment leadership {company}"
    ),
    instruction=(
        "Summarise 3-4 forward-looking statements and strategic priorities "
        "from {company}'s management.\n"
        "- Focus on future plans, growth initiatives, investment strategy "
        "and outlook, e.g. from the Chairman's Letter or MD&A.\n"
        "- EXCLUDE financial results and past performance metrics.\n"
        "- EXCLUDE anything that is a risk; risks are covered in Key Risks.\n"
        "- EXCLUDE third-party opinions, buy/sell ratings and price targets."
    ),
)

ANSWER_SYSTEM_PROMPT = (
    "You are a professional financial analyst. Provide accurate, concise "
    "answers in plain text format. No markdown. Be direct and specific."
)


def template_for(kind: SectionKind) -> SectionTemplate:
    """Exhaustive mapping from section kind to its template."""
    match kind:
        case SectionKind.OVERVIEW:
            return _OVERVIEW
        case SectionKind.FINANCIAL_HIGHLIGHTS:
            return _FINANCIAL_HIGHLIGHTS
        case SectionKind.KEY_RISKS:
            return _KEY_RISKS
        case SectionKind.MANAGEMENT_COMMENTARY:
            return _MANAGEMENT_COMMENTARY
        case _:
            assert_never(kind)


# ---------------------------------------------------------------------------
# Public API — Sections
# ---------------------------------------------------------------------------


async def generate_section(
    kind: SectionKind,
    index: VectorIndex,
    company_name: str,
    llm: LLMProvider,
    embedder: EmbeddingProvider,
    config: Settings = settings,
) -> str:
    """
    Retrieve context for one section and generate its bullets.

    One request/response with the completion capability, wrapped in the
    completion retry policy.

    Raises:
        ApiFailure / Timeout: Retrieval or generation exhausted retries.
    """
    template = template_for(kind)
    query = template.query.format(company=company_name)
    chunks = await retrieve(
        index, query, embedder,
        k=config.section_top_k,
        policy=RetryPolicy.for_embedding(config),
    )

    user_prompt = (
        f"{template.instruction.format(company=company_name)}\n\n"
        f"Relevant Information:\n{_format_context(chunks)}\n\n"
        f"{_FORMATTING_RULES}"
    )

    logger.info(
        "Generating %s section for '%s' from %d chunks",
        template.title, company_name, len(chunks),
    )

    response = await call_with_retry(
        functools.partial(
            llm.complete,
            system=SECTION_SYSTEM_PROMPT,
            user=user_prompt,
            max_tokens=config.section_max_tokens,
            temperature=config.llm_temperature,
            presence_penalty=config.section_presence_penalty,
            frequency_penalty=config.section_frequency_penalty,
        ),
        RetryPolicy.for_completion(config),
        operation=f"{template.title} section",
    )

    logger.info(
        "%s section complete: model=%s, tokens=%d+%d",
        template.title, response.model,
        response.input_tokens, response.output_tokens,
    )
    return format_bullet_points(response.content) or SECTION_FALLBACK


async def synthesize_sections(
    index: VectorIndex,
    company_name: str,
    llm: LLMProvider,
    embedder: EmbeddingProvider,
    config: Settings = settings,
) -> ReportSections:
    """
    Generate all four sections concurrently and join them.

    Fail-fast: the first section to fail cancels the others and its error
    propagates. Cancelling this coroutine cancels all four sections.
    """
    tasks = {
        kind: asyncio.create_task(
            generate_section(kind, index, company_name, llm, embedder, config),
            name=f"section:{kind.value}",
        )
        for kind in SectionKind
    }

    try:
        await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [task for task in tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for kind, task in tasks.items():
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "%s section failed, aborting report: %s",
                template_for(kind).title, task.exception(),
            )
            raise task.exception()

    return ReportSections(
        overview=tasks[SectionKind.OVERVIEW].result(),
        financial_highlights=tasks[SectionKind.FINANCIAL_HIGHLIGHTS].result(),
        key_risks=tasks[SectionKind.KEY_RISKS].result(),
        management_commentary=tasks[SectionKind.MANAGEMENT_COMMENTARY].result(),
    )


# ---------------------------------------------------------------------------
# Public API — Q&A
# ---------------------------------------------------------------------------


async def answer_from_index(
    index: VectorIndex,
    question: str,
    company_name: str,
    llm: LLMProvider,
    embedder: EmbeddingProvider,
    config: Settings = settings,
) -> str:
    """
    Answer a free-form question in 2-3 sentences grounded in the index.

    A timeout yields a friendly retry message instead of an error. Any
    other exhausted-retry failure propagates.
    """
    chunks = await retrieve(
        index, question, embedder,
        k=config.answer_top_k,
        policy=RetryPolicy.for_embedding(config),
    )
    if not chunks:
        return NO_CONTEXT_ANSWER

    user_prompt = (
        f"You are a financial analyst answering a question about "
        f"{company_name}'s report.\n\n"
        f"Question: {question}\n\n"
        f"Relevant Information from the Report:\n{_format_context(chunks)}\n\n"
        "Provide a clear, concise answer (2-3 sentences maximum) based only "
        "on the information above. Use bullet points only if listing "
        "multiple items. Be specific with numbers when available. Do NOT "
        "use markdown formatting."
    )

    logger.info(
        "Answering question for '%s': '%s' (%d chunks)",
        company_name, question[:80], len(chunks),
    )

    try:
        response = await call_with_retry(
            functools.partial(
                llm.complete,
                system=ANSWER_SYSTEM_PROMPT,
                user=user_prompt,
                max_tokens=config.answer_max_tokens,
                temperature=config.llm_temperature,
            ),
            RetryPolicy.for_completion(config, timeout=config.answer_timeout),
            operation="Q&A answer",
        )
    except Timeout:
        logger.warning("Q&A answer timed out for '%s'", question[:80])
        return ANSWER_TIMEOUT_MESSAGE

    return response.content.strip() or ANSWER_FALLBACK


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

_DASH_BULLET = re.compile(r"^[ \t]*[-*][ \t]+", re.MULTILINE)
_LEAD_IN_BEFORE_BULLET = re.compile(rf"^([^{BULLET}\n][^\n]*)\n({BULLET})", re.MULTILINE)


def format_bullet_points(text: str) -> str:
    """
    Put every bullet marker at the start of its own line.

    - leading "-" or "*" list markers become "•"
    - "a • b • c" becomes "a", "• b", "• c" on separate lines
    - blank lines are dropped, except one between a lead-in sentence
      and the bullet that follows it

    Applying it twice gives the same result as applying it once.
    """
    text = _DASH_BULLET.sub(f"{BULLET} ", text)

    lines: list[str] = []
    for raw_line in text.split("\n"):
        parts = raw_line.strip().split(BULLET)
        lead = parts[0].strip()
        if lead:
            lines.append(lead)
        for part in parts[1:]:
            part = part.strip()
            if part:
                lines.append(f"{BULLET} {part}")

    return _LEAD_IN_BEFORE_BULLET.sub(r"\1\n\n\2", "\n".join(lines))


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _format_context(chunks: list[VectorSearchResult]) -> str:
    """
    Format retrieved chunks as numbered context for the LLM.

    Example output:
        [1]:
        Revenue for FY25 was INR 30,351 million...

        ---

        [2]:
        EBITDA improved to INR 7,959 million...
    """
    return "\n\n---\n\n".join(
        f"[{i}]:\n{result.content.strip()}"
        for i, result in enumerate(chunks, 1)
    )
