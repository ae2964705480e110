# =============================================================================
# Semantic Chunker — Boundary-Aware Sliding Window
# =============================================================================
#
# Splits normalized document text into overlapping character chunks whose
# edges fall on natural boundaries whenever possible.
#
# Separators, coarsest first:
#   "\n\n"  paragraph
#   "\n"    line
#   ". " "! " "? "   sentence
#   "; " ": "        clause
#   " "     word
#   ""      hard character split (always succeeds)
#
# ALGORITHM:
# A window of chunk_size characters slides over the text. Each chunk must
# advance the window by at least (chunk_size - chunk_overlap) characters,
# so its end is searched for inside the last chunk_overlap characters of
# the window:
#
#   start            start+size-overlap     start+size
#     |---------------------|====cut zone====|
#
# 1. CUT: the last occurrence of the coarsest separator that ends inside
#    the cut zone becomes the chunk end (separator kept on the left).
# 2. NEXT START: the earliest boundary inside [zone start, cut) becomes the
#    next chunk's start, so the tail of this chunk is repeated at the head
#    of the next one. No boundary there: restart at the cut if the cut was
#    natural, else at the zone start (hard split).
#
# GUARANTEES:
# - every chunk is at most chunk_size characters and never empty
# - chunks tile the text: chunk[i+1].start <= chunk[i].end, so the
#   non-overlapping cores text[chunk[i].start:chunk[i+1].start] concatenate
#   back to the input
# - count <= ceil(len(text) / (chunk_size - chunk_overlap))
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from app.config import settings

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS: tuple[str, ...] = (
    "\n\n", "\n", ". ", "! ", "? ", "; ", ": ", " ", "",
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Chunk:
    """
    A bounded contiguous span of normalized document text.

    `id` is the ordinal position in document order. `start`/`end` are
    character offsets into the normalized text the chunk was cut from.
    """

    id: int
    text: str
    start: int
    end: int
    length: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "length", len(self.text))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_text(
    text: str,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> list[Chunk]:
    """
    Split normalized text into overlapping, boundary-aligned chunks.

    Args:
        text: Normalized document text.
        chunk_size: Maximum characters per chunk (default settings.chunk_size).
        chunk_overlap: Maximum characters shared by adjacent chunks
            (default settings.chunk_overlap). Must be below chunk_size.
        separators: Boundary tokens from coarsest to finest. A trailing ""
            is added if missing so hard splitting is always possible.

    Returns:
        Chunks in document order, ids 0..n-1.

    Raises:
        ValueError: If chunk_size < 1 or overlap is outside [0, chunk_size).

    Pipeline position: Step 2 of a report run (normalize → chunk → index).
    """
    size = chunk_size if chunk_size is not None else settings.chunk_size
    overlap = chunk_overlap if chunk_overlap is not None else settings.chunk_overlap
    if size < 1:
        raise ValueError(f"chunk_size must be positive, got {size}")
    if not 0 <= overlap < size:
        raise ValueError(
            f"chunk_overlap must be in [0, {size}), got {overlap}"
        )

    seps = tuple(separators)
    if not seps or seps[-1] != "":
        seps = (*seps, "")

    total = len(text)
    min_advance = size - overlap
    chunks: list[Chunk] = []
    start = 0

    while start < total:
        if start + size >= total:
            end, natural = total, True
        else:
            end, natural = _find_cut(text, start + min_advance, start + size, seps)

        piece = text[start:end]
        if piece.strip():
            chunks.append(Chunk(id=len(chunks), text=piece, start=start, end=end))

        if end >= total:
            break
        start = _find_next_start(text, start + min_advance, end, natural, seps)

    logger.info(
        "Chunked %d characters into %d chunks (size=%d, overlap=%d)",
        total, len(chunks), size, overlap,
    )
    return chunks


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _find_cut(
    text: str,
    zone_start: int,
    zone_end: int,
    separators: Sequence[str],
) -> tuple[int, bool]:
    """
    Chunk end inside [zone_start, zone_end], preferring coarse separators.

    Returns (position, natural) where natural is False for a hard split.
    """
    for sep in separators:
        if not sep:
            return zone_end, False
        idx = text.rfind(sep, max(zone_start - len(sep), 0), zone_end)
        if idx != -1:
            return idx + len(sep), True
    return zone_end, False


def _find_next_start(
    text: str,
    zone_start: int,
    cut: int,
    natural_cut: bool,
    separators: Sequence[str],
) -> int:
    """Earliest boundary in [zone_start, cut) so the next chunk overlaps."""
    for sep in separators:
        if not sep:
            break
        idx = text.find(sep, max(zone_start - len(sep), 0), cut - 1)
        if idx != -1:
            return idx + len(sep)
    return cut if natural_cut else zone_start
