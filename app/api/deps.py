# =============================================================================
# API Dependencies — Service Singleton + Caller Credential
# =============================================================================
#
# Two FastAPI dependencies used by the report routes:
#
# 1. get_report_service() — the process-wide ReportService (and with it the
#    one ResultCache every request shares)
# 2. get_caller_api_key() — the provider credential supplied by the caller
#
# DESIGN DECISION: The credential is opaque.
# X-API-Key is passed straight through to the provider SDK. When absent,
# the provider factories fall back to the keys in Settings. Nothing here
# validates or stores it.
#
# Both are overridable via app.dependency_overrides in tests.
# =============================================================================

from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from app.agents.orchestrator import ReportService


@lru_cache
def get_report_service() -> ReportService:
    """Build the ReportService once per process."""
    return ReportService()


async def get_caller_api_key(
    x_api_key: str | None = Header(
        default=None,
        description="Provider API key. Falls back to the server's configured key.",
    ),
) -> str | None:
    """Return the caller's credential, or None to use the configured key."""
    if x_api_key is None:
        return None
    return x_api_key.strip() or None
