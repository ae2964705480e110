# =============================================================================
# Error Taxonomy — Terminal Failures of a Report or Q&A Request
# =============================================================================
#
# Every failure the pipeline surfaces is one of the ReportError subclasses
# below. Each carries a human-readable message; ApiFailure also carries the
# upstream HTTP status. The API layer maps each class to one status code.
#
# ProviderError is NOT part of the public taxonomy. Capability adapters
# (embedder, llm) raise it for a single failed request, the resilience
# layer retries on it, and converts it to ApiFailure once retries run out.
# =============================================================================

from __future__ import annotations


class ReportError(Exception):
    """Base class for all terminal pipeline failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailure(ReportError):
    """A required input (document, company name, credential) is missing."""


class ExtractionFailure(ReportError):
    """The source document could not be turned into usable text."""


class EmbeddingFailure(ReportError):
    """An embedding batch exhausted its retries; the index was discarded."""

    def __init__(self, message: str, batch_start: int, batch_end: int) -> None:
        super().__init__(message)
        self.batch_start = batch_start
        self.batch_end = batch_end


class ApiFailure(ReportError):
    """A completion or embedding call exhausted its retries."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Timeout(ReportError):
    """A request or the whole pipeline run exceeded its wall-clock ceiling."""


class ContextNotFound(ReportError):
    """No cached Q&A context for the reference; a report must run first."""


class ProviderError(Exception):
    """
    A single failed call to an external capability.

    status_code is the upstream HTTP status, or None for connection-level
    failures (DNS, reset, TLS) that never produced a response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429
