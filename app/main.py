# =============================================================================
# FastAPI Application — Router Assembly + Error Mapping
# =============================================================================
#
# Run with:
#   uvicorn app.main:app --reload
#
# DESIGN DECISION: One exception handler for the whole error taxonomy.
# Routes and services raise ReportError subclasses and never build HTTP
# responses for pipeline failures themselves. The handler below maps each
# class to exactly one status code:
#
#   ValidationFailure → 400    EmbeddingFailure → 502
#   ContextNotFound   → 404    ApiFailure       → 502 (upstream status kept)
#   ExtractionFailure → 422    Timeout          → 504
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.report import router as report_router
from app.config import settings
from app.models.responses import HealthResponse
from app.services.errors import (
    ApiFailure,
    ContextNotFound,
    EmbeddingFailure,
    ExtractionFailure,
    ReportError,
    Timeout,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[ReportError], int], ...] = (
    (ValidationFailure, 400),
    (ContextNotFound, 404),
    (ExtractionFailure, 422),
    (EmbeddingFailure, 502),
    (ApiFailure, 502),
    (Timeout, 504),
)


def status_for_error(exc: ReportError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def report_error_handler(request: Request, exc: ReportError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)

    body: dict = {"error": exc.message}
    if isinstance(exc, ApiFailure) and exc.status_code is not None:
        body["upstream_status"] = exc.status_code
    return JSONResponse(status_code=status_code, content=body)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Generates a four-section analysis of a financial report PDF "
            "and answers follow-up questions about it."
        ),
        version=settings.app_version,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ReportError, report_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(report_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return app


app = create_app()
