# =============================================================================
# Text Normalizer — Strip Page Furniture, Collapse Whitespace
# =============================================================================
#
# Extracted PDF text carries layout noise that pollutes embeddings:
# "Page 3 of 120" footers, running all-caps headers ("ANNUAL REPORT 2024"),
# ragged spacing. Rules are applied in a fixed order:
#
#   a. remove "Page X of Y" (case-insensitive)
#   b. remove lines made only of uppercase letters and blanks
#   c. collapse runs of horizontal whitespace to one space
#   d. collapse runs of newlines to one newline
#   e. trim
#
# Rule (b) is a heuristic: a legitimate all-caps line (e.g. a ticker list)
# is dropped too. Newlines survive rule (c) so the chunker can still prefer
# line boundaries.
#
# normalize(normalize(x)) == normalize(x) holds for every input.
# =============================================================================

from __future__ import annotations

import re

_PAGE_FURNITURE = re.compile(r"Page\s+\d+\s+of\s+\d+", re.IGNORECASE)
_ALL_CAPS_LINE = re.compile(r"^[A-Z \t]+$", re.MULTILINE)
_HORIZONTAL_WS = re.compile(r"[^\S\n]+")
_NEWLINE_RUNS = re.compile(r"\n+")


def normalize_text(raw_text: str) -> str:
    """
    Normalize raw extracted text for chunking.

    Never raises. May return an empty string, which callers treat as an
    extraction failure.

    The rules are re-applied until nothing changes: removing a header line
    can pull "Page" and "3 of 9" onto adjacent lines, forming a new match.
    Every pass after the first either removes characters or stops.
    """
    text = _normalize_once(raw_text)
    while True:
        again = _normalize_once(text)
        if again == text:
            return text
        text = again


def _normalize_once(text: str) -> str:
    text = _PAGE_FURNITURE.sub("", text)
    text = _ALL_CAPS_LINE.sub("", text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _NEWLINE_RUNS.sub("\n", text)
    return text.strip()
