# =============================================================================
# LangGraph Orchestrator — Report Pipeline Graph + ReportService
# =============================================================================
#
# The orchestrator wires the pipeline stages into a LangGraph StateGraph:
#
# GRAPH TOPOLOGY:
#   START ──▶ normalize ──▶ chunk ──▶ index ──▶ synthesize ──▶ END
#
# and exposes ReportService, the entry point the API layer calls:
#   extract_document()  — PDF bytes → raw text (cached by file fingerprint)
#   generate_report()   — full run, cached report, Q&A context stored
#   answer_question()   — one answer against a Q&A context (index rebuilt
#                         from cached text when missing)
#
# DESIGN DECISION: Linear graph (no conditional edges).
# Every stage always runs. The only shortcut, reusing an index already
# cached under the Q&A context key, happens INSIDE the index node.
#
# DESIGN DECISION: Plain TypedDict state (not MessagesState).
# The state is structured data flowing through a pipeline:
# text → chunks → index → sections.
#
# DESIGN DECISION: Graph compiled once at module level.
# Compiling on import and reusing the compiled graph avoids per-request
# overhead.
#
# DESIGN DECISION: Explicit service object.
# ReportService holds the ResultCache, the text extractor and the provider
# factories. The API builds one per process; tests build their own with
# stubs and a fake clock.
#
# PROGRESS MILESTONES (sink receives non-decreasing floats in [0, 1]):
#   0.05 normalized · 0.10 chunked · 0.15-0.60 embedding batches ·
#   0.65 sections started · 0.95 sections done · 1.0 complete
#   A cached report jumps straight to 1.0.
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.analyst import ReportSections, answer_from_index, synthesize_sections
from app.config import Settings, settings
from app.services.cache import ResultCache, file_fingerprint, qa_context_fingerprint
from app.services.chunker import Chunk, chunk_text
from app.services.embedder import EmbeddingProvider, OpenAIEmbeddingProvider
from app.services.errors import (
    ContextNotFound,
    ExtractionFailure,
    Timeout,
    ValidationFailure,
)
from app.services.llm import LLMProvider, create_llm_provider
from app.services.normalizer import normalize_text
from app.services.parser import DoclingTextExtractor, TextExtractor
from app.services.resilience import RetryPolicy
from app.services.vectorstore import ProgressSink, VectorIndex, build_index

logger = logging.getLogger(__name__)

LLMFactory = Callable[[str | None], LLMProvider]
EmbedderFactory = Callable[[str | None], EmbeddingProvider]

_INDEX_START = 0.15
_INDEX_END = 0.60


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class ReportState(TypedDict, total=False):
    """
    State that flows through the report graph.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Input (set by caller) ---
    raw_text: str
    company_name: str

    # --- Collaborators (set by caller) ---
    # NOTE: Not JSON-serialisable. Safe as long as no checkpointer is
    # configured on the graph (current: no checkpointer).
    llm: LLMProvider
    embedder: EmbeddingProvider
    progress: ProgressSink
    cached_index: VectorIndex | None
    config: Settings

    # --- Intermediate (set by nodes) ---
    normalized_text: str
    chunks: list[Chunk]
    index: VectorIndex

    # --- Output ---
    sections: ReportSections


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def normalize_node(state: ReportState) -> dict:
    """Strip page furniture and collapse whitespace."""
    text = normalize_text(state["raw_text"])
    if not text:
        raise ExtractionFailure(
            "The document contains no usable text after cleaning"
        )

    logger.info(
        "Normalized text: %d → %d characters",
        len(state["raw_text"]), len(text),
    )
    state["progress"](0.05)
    return {"normalized_text": text}


async def chunk_node(state: ReportState) -> dict:
    """Split normalized text into overlapping chunks."""
    config = state.get("config", settings)
    chunks = chunk_text(
        state["normalized_text"],
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
    )
    logger.info("Chunked text into %d chunks", len(chunks))
    state["progress"](0.10)
    return {"chunks": chunks}


async def index_node(state: ReportState) -> dict:
    """
    Embed chunks into a VectorIndex, or reuse one already cached for the
    same Q&A context.
    """
    progress = state["progress"]
    progress(_INDEX_START)

    cached = state.get("cached_index")
    if cached is not None and len(cached) > 0:
        logger.info("Reusing cached index (%d vectors)", len(cached))
        progress(_INDEX_END)
        return {"index": cached}

    config = state.get("config", settings)
    index = await build_index(
        state["chunks"],
        state["embedder"],
        batch_size=config.embedding_batch_size,
        batch_delay=config.embedding_batch_delay,
        policy=RetryPolicy.for_embedding(config),
        on_progress=lambda fraction: progress(
            _INDEX_START + (_INDEX_END - _INDEX_START) * fraction
        ),
    )
    progress(_INDEX_END)
    return {"index": index}


async def synthesize_node(state: ReportState) -> dict:
    """Generate the four report sections concurrently."""
    state["progress"](0.65)
    sections = await synthesize_sections(
        state["index"],
        state["company_name"],
        state["llm"],
        state["embedder"],
        state.get("config", settings),
    )
    state["progress"](0.95)
    return {"sections": sections}


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(ReportState)
_builder.add_node("normalize", normalize_node)
_builder.add_node("chunk", chunk_node)
_builder.add_node("index", index_node)
_builder.add_node("synthesize", synthesize_node)

_builder.add_edge(START, "normalize")
_builder.add_edge("normalize", "chunk")
_builder.add_edge("chunk", "index")
_builder.add_edge("index", "synthesize")
_builder.add_edge("synthesize", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Service Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceDocument:
    """An uploaded file: its bytes plus the metadata used for caching."""

    name: str
    content: bytes
    last_modified: float | int = 0

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def fingerprint(self) -> str:
        return file_fingerprint(self.name, self.size, self.last_modified)


@dataclass
class ReportResult:
    sections: ReportSections
    context_ref: str  # Q&A context key for follow-up questions
    from_cache: bool = False


class MonotonicProgress:
    """Progress sink wrapper: clamps to [0, 1] and never goes backwards."""

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self.value = 0.0

    def __call__(self, fraction: float) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction < self.value:
            fraction = self.value
        self.value = fraction
        if self._sink is not None:
            self._sink(fraction)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ReportService:
    """
    Report and Q&A entry points over one process-wide ResultCache.

    Args:
        cache: Result cache (default: a new ResultCache).
        extractor: Text extractor (default: DoclingTextExtractor).
        llm_factory: Builds a completion provider from a credential.
        embedder_factory: Builds an embedding provider from a credential.
        config: Settings for every stage the service runs (chunking,
            batching, retrieval depth, retry policies, timeouts).
    """

    def __init__(
        self,
        cache: ResultCache | None = None,
        extractor: TextExtractor | None = None,
        llm_factory: LLMFactory = create_llm_provider,
        embedder_factory: EmbedderFactory = OpenAIEmbeddingProvider,
        config: Settings = settings,
    ) -> None:
        self.cache = cache if cache is not None else ResultCache(
            ttl_seconds=config.cache_ttl_seconds,
            key_prefix=config.cache_key_prefix,
        )
        self._extractor = extractor if extractor is not None else DoclingTextExtractor()
        self._llm_factory = llm_factory
        self._embedder_factory = embedder_factory
        self._config = config

    async def extract_document(self, document: SourceDocument) -> str:
        """
        PDF bytes → raw text, cached by file fingerprint.

        Docling is blocking, so extraction runs in a worker thread.

        Raises:
            ValidationFailure: No document content.
            ExtractionFailure: Unreadable document.
        """
        if not document.content:
            raise ValidationFailure("No document supplied")

        async def _extract() -> str:
            logger.info(
                "Extracting text from '%s' (%d bytes)",
                document.name, document.size,
            )
            return await asyncio.to_thread(
                self._extractor.extract_text, document.content, document.name,
            )

        text = await self.cache.get_or_compute(
            _text_key(document.fingerprint), _extract,
        )
        self.cache.put(_source_key(document.name), document.fingerprint)
        return text

    async def generate_report(
        self,
        document: SourceDocument,
        company_name: str,
        api_key: str | None = None,
        on_progress: ProgressSink | None = None,
    ) -> ReportResult:
        """
        Run the full pipeline for one document, or return the cached report.

        Exactly one terminal outcome: a complete ReportResult or one
        ReportError. Nothing partial is cached or returned.

        Raises:
            ValidationFailure: Missing document, company name or credential.
            ExtractionFailure / EmbeddingFailure / ApiFailure: Stage failed.
            Timeout: The run exceeded pipeline_timeout.
        """
        company_name = (company_name or "").strip()
        if not company_name:
            raise ValidationFailure("Company name is required")
        if not document.content:
            raise ValidationFailure("No document supplied")

        progress = MonotonicProgress(on_progress)
        report_key = f"report_{document.fingerprint}"
        file_key = _file_context_key(document.name)

        cached_report = self.cache.get(report_key)
        context_ref = self.cache.get(file_key)
        if cached_report is not None and context_ref is not None:
            logger.info("Report cache hit for '%s'", document.name)
            progress(1.0)
            return ReportResult(
                sections=ReportSections.from_dict(cached_report),
                context_ref=context_ref,
                from_cache=True,
            )

        llm = self._llm_factory(api_key)
        embedder = self._embedder_factory(api_key)

        timeout = self._config.pipeline_timeout
        try:
            result = await asyncio.wait_for(
                self._run_pipeline(document, company_name, llm, embedder, progress),
                timeout=timeout,
            )
        except TimeoutError as exc:
            logger.error(
                "Report for '%s' aborted after %gs", document.name, timeout,
            )
            raise Timeout(
                f"Report generation timed out after {timeout:g}s"
            ) from exc

        self.cache.put(report_key, result.sections.to_dict())
        self.cache.put(file_key, result.context_ref)
        progress(1.0)

        logger.info("Report complete for '%s' (%s)", document.name, company_name)
        return result

    async def answer_question(
        self,
        context_ref: str,
        question: str,
        company_name: str,
        api_key: str | None = None,
    ) -> str:
        """
        Answer one question against a Q&A context.

        A context whose index is not cached (upload only, or expired) is
        rebuilt from the cached extracted text: normalize → chunk → index.

        Raises:
            ValidationFailure: Missing question, company name or credential.
            ContextNotFound: Neither an index nor extracted text is cached
                for context_ref.
            EmbeddingFailure: Rebuilding the index failed.
            ApiFailure: The answer call exhausted its retries.
        """
        if not (question or "").strip():
            raise ValidationFailure("Question is required")
        company_name = (company_name or "").strip()
        if not company_name:
            raise ValidationFailure("Company name is required")
        if not context_ref:
            raise ContextNotFound(_NO_CONTEXT_MESSAGE)

        llm = self._llm_factory(api_key)
        embedder = self._embedder_factory(api_key)

        payload = await self.cache.get_or_compute(
            context_ref,
            functools.partial(
                self._rebuild_context, context_ref, company_name, embedder,
            ),
        )

        return await answer_from_index(
            VectorIndex.from_dict(payload),
            question.strip(),
            company_name,
            llm,
            embedder,
            self._config,
        )

    def context_ref_for_file(
        self,
        filename: str,
        company_name: str | None = None,
    ) -> str | None:
        """
        The Q&A context reference for a file.

        Prefers the reference stored by the last report for the file. A file
        that was only uploaded resolves through its extracted text, which
        needs the company name.
        """
        context_ref = self.cache.get(_file_context_key(filename))
        if context_ref is not None or not (company_name or "").strip():
            return context_ref

        fingerprint = self.cache.get(_source_key(filename))
        text = self.cache.get(_text_key(fingerprint)) if fingerprint else None
        if text is None:
            return None
        return qa_context_fingerprint(company_name.strip(), text)

    # -----------------------------------------------------------------------

    async def _run_pipeline(
        self,
        document: SourceDocument,
        company_name: str,
        llm: LLMProvider,
        embedder: EmbeddingProvider,
        progress: MonotonicProgress,
    ) -> ReportResult:
        raw_text = await self.extract_document(document)
        context_ref = qa_context_fingerprint(company_name, raw_text)

        cached_index = self.cache.get(context_ref)
        initial_state: ReportState = {
            "raw_text": raw_text,
            "company_name": company_name,
            "llm": llm,
            "embedder": embedder,
            "progress": progress,
            "config": self._config,
            "cached_index": (
                VectorIndex.from_dict(cached_index) if cached_index else None
            ),
        }

        logger.info(
            "Invoking report graph: file='%s', company='%s'",
            document.name, company_name,
        )
        final = await graph.ainvoke(initial_state)

        # Follow-up questions reuse this index without re-embedding
        self.cache.put(context_ref, final["index"].to_dict())

        return ReportResult(sections=final["sections"], context_ref=context_ref)


    async def _rebuild_context(
        self,
        context_ref: str,
        company_name: str,
        embedder: EmbeddingProvider,
    ) -> dict:
        raw_text = next(
            (
                text
                for text in self.cache.payloads("text_")
                if qa_context_fingerprint(company_name, text) == context_ref
            ),
            None,
        )
        if raw_text is None:
            raise ContextNotFound(_NO_CONTEXT_MESSAGE)

        text = normalize_text(raw_text)
        if not text:
            raise ExtractionFailure(
                "The document contains no usable text after cleaning"
            )

        chunks = chunk_text(
            text,
            chunk_size=self._config.chunk_size,
            chunk_overlap=self._config.chunk_overlap,
        )
        logger.info(
            "Rebuilding Q&A context for '%s' from %d chunks",
            company_name, len(chunks),
        )
        index = await build_index(
            chunks,
            embedder,
            batch_size=self._config.embedding_batch_size,
            batch_delay=self._config.embedding_batch_delay,
            policy=RetryPolicy.for_embedding(self._config),
        )
        return index.to_dict()


_NO_CONTEXT_MESSAGE = "Analysis context not found. Please generate a report first."


def _file_context_key(filename: str) -> str:
    return f"qa_file_{filename}"


def _source_key(filename: str) -> str:
    return f"source_{filename}"


def _text_key(fingerprint: str) -> str:
    return f"text_{fingerprint}"
