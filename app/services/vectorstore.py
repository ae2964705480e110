# =============================================================================
# Vector Index — In-Memory Nearest-Neighbour Store + Retriever
# =============================================================================
#
# Holds the {chunk, embedding} pairs for ONE document and answers nearest-K
# queries by cosine similarity.
#
# DESIGN DECISION: Exact numpy search, no vector database.
# A financial report yields a few hundred chunks. Embeddings live in one
# row-normalised numpy matrix, so a query is one matrix-vector product.
# Exact search keeps results deterministic: ties go to the lower chunk
# ordinal. An approximate HNSW store (Chroma) would not guarantee that.
#
# DESIGN DECISION: Build is all-or-nothing.
# build_index() embeds batches sequentially and only constructs the
# VectorIndex after every batch succeeded. A batch that exhausts its
# retries raises EmbeddingFailure and the partial vectors are dropped, so
# no caller can ever query a half-built index.
#
# ARCHITECTURE:
#   VectorIndex
#   ├── nearest()      — top-K by cosine similarity, ordinal tie-break
#   └── to_dict()/from_dict() — JSON-safe form for the result cache
#   build_index()      — sequential batches, fixed delay, progress sink
#   retrieve()         — embed query (with retries) → nearest()
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from app.config import settings
from app.services.chunker import Chunk
from app.services.embedder import EmbeddingProvider
from app.services.errors import ApiFailure, EmbeddingFailure, Timeout
from app.services.resilience import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

# Receives monotonically non-decreasing floats in [0, 1]
ProgressSink = Callable[[float], None]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexedChunk:
    """A chunk paired with its embedding vector."""

    chunk: Chunk
    embedding: tuple[float, ...]


@dataclass
class VectorSearchResult:
    """A single result from similarity search, best first."""

    chunk: Chunk
    similarity_score: float  # cosine similarity in [-1, 1], higher = closer

    @property
    def content(self) -> str:
        return self.chunk.text


class VectorIndex:
    """
    Exact cosine-similarity index over the chunks of one document.

    Embeddings are held as one row-normalised float matrix, built once at
    construction, so a query is a single matrix-vector product. Immutable
    after construction. Only build_index() and from_dict() create populated
    instances.
    """

    def __init__(self, entries: Sequence[IndexedChunk] = ()) -> None:
        self._chunks: tuple[Chunk, ...] = tuple(entry.chunk for entry in entries)
        self._ids = np.array([chunk.id for chunk in self._chunks], dtype=np.int64)
        self._matrix = _normalized_rows(
            np.array([entry.embedding for entry in entries], dtype=np.float64)
        )

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._chunks)

    def nearest(
        self,
        query_embedding: Sequence[float],
        k: int,
    ) -> list[VectorSearchResult]:
        """
        Top-k chunks by cosine similarity to the query vector.

        Ties go to the lower chunk ordinal. Returns fewer than k results
        only when the index holds fewer than k chunks. A zero-norm query
        scores 0.0 against every chunk.
        """
        if k <= 0 or not self._chunks:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        norm = np.linalg.norm(query)
        if norm == 0.0:
            scores = np.zeros(len(self._chunks))
        else:
            scores = self._matrix @ (query / norm)

        # lexsort keys run last-to-first: score descending, then ordinal
        order = np.lexsort((self._ids, -scores))[:k]
        return [
            VectorSearchResult(
                chunk=self._chunks[i],
                similarity_score=float(scores[i]),
            )
            for i in order
        ]

    def to_dict(self) -> dict:
        """JSON-serialisable form, used when the index is cached."""
        return {
            "entries": [
                {
                    "id": chunk.id,
                    "text": chunk.text,
                    "start": chunk.start,
                    "end": chunk.end,
                    "embedding": row,
                }
                for chunk, row in zip(self._chunks, self._matrix.tolist())
            ]
        }

    @classmethod
    def from_dict(cls, data: dict) -> VectorIndex:
        return cls([
            IndexedChunk(
                chunk=Chunk(
                    id=item["id"],
                    text=item["text"],
                    start=item["start"],
                    end=item["end"],
                ),
                embedding=tuple(item["embedding"]),
            )
            for item in data.get("entries", [])
        ])


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def build_index(
    chunks: Sequence[Chunk],
    embedder: EmbeddingProvider,
    batch_size: int | None = None,
    batch_delay: float | None = None,
    policy: RetryPolicy | None = None,
    on_progress: ProgressSink | None = None,
) -> VectorIndex:
    """
    Embed chunks batch by batch and assemble a VectorIndex.

    Batches run strictly one after another with `batch_delay` seconds
    between them (none before the first). Each batch goes through the
    embedding retry policy. After every successful batch the progress
    sink receives completed_batches / total_batches.

    Args:
        chunks: Chunks in document order.
        embedder: Embedding capability.
        batch_size: Chunks per request (default settings.embedding_batch_size).
        batch_delay: Pause between batches (default settings.embedding_batch_delay).
        policy: Retry policy (default RetryPolicy.for_embedding()).
        on_progress: Optional progress sink.

    Returns:
        A fully populated VectorIndex.

    Raises:
        EmbeddingFailure: A batch exhausted its retries. Names the chunk
            range of the failing batch.

    Pipeline position: Step 3 of a report run (normalize → chunk → index).
    """
    size = batch_size or settings.embedding_batch_size
    delay = settings.embedding_batch_delay if batch_delay is None else batch_delay
    retry_policy = policy or RetryPolicy.for_embedding()

    if size < 1:
        raise ValueError(f"batch_size must be positive, got {size}")

    total_batches = math.ceil(len(chunks) / size)
    entries: list[IndexedChunk] = []

    logger.info(
        "Building index: %d chunks in %d batches of %d",
        len(chunks), total_batches, size,
    )

    for batch_no, batch_start in enumerate(range(0, len(chunks), size)):
        batch = chunks[batch_start : batch_start + size]
        batch_end = batch_start + len(batch) - 1

        if batch_no > 0 and delay > 0:
            await asyncio.sleep(delay)

        # Newlines degrade embedding quality for some models
        texts = [c.text.replace("\n", " ") for c in batch]

        try:
            vectors = await call_with_retry(
                functools.partial(embedder.embed, texts),
                retry_policy,
                operation=f"Embedding batch {batch_no + 1}/{total_batches}",
            )
        except (ApiFailure, Timeout) as exc:
            raise EmbeddingFailure(
                f"Embedding failed for chunks {batch_start}-{batch_end}: "
                f"{exc.message}",
                batch_start=batch_start,
                batch_end=batch_end,
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(vectors)} vectors for "
                f"{len(batch)} chunks ({batch_start}-{batch_end})",
                batch_start=batch_start,
                batch_end=batch_end,
            )

        entries.extend(
            IndexedChunk(chunk=chunk, embedding=tuple(vector))
            for chunk, vector in zip(batch, vectors, strict=True)
        )

        if on_progress is not None:
            on_progress((batch_no + 1) / total_batches)

    logger.info("Index ready: %d vectors", len(entries))
    return VectorIndex(entries)


async def retrieve(
    index: VectorIndex,
    query: str,
    embedder: EmbeddingProvider,
    k: int = 4,
    policy: RetryPolicy | None = None,
) -> list[VectorSearchResult]:
    """
    Embed the query and return the k most similar chunks.

    Never errors on an empty index: returns [] without calling the
    embedding provider.

    Raises:
        ApiFailure / Timeout: The query embedding could not be obtained.
    """
    if len(index) == 0 or k <= 0:
        return []

    vectors = await call_with_retry(
        functools.partial(embedder.embed, [query]),
        policy or RetryPolicy.for_embedding(),
        operation="Query embedding",
    )
    results = index.nearest(vectors[0], k)

    logger.debug(
        "Retrieved %d chunks for query '%s' (top score %.3f)",
        len(results), query[:60],
        results[0].similarity_score if results else 0.0,
    )
    return results


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _normalized_rows(matrix: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows stay zero and score 0.0."""
    if matrix.size == 0:
        return matrix.reshape(0, 0)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return matrix / norms
