# =============================================================================
# Report API — Upload, Report Generation and Follow-up Q&A
# =============================================================================
#
# ENDPOINTS:
#   POST /upload           — PDF → extracted text length (warms the cache)
#   POST /generate-report  — PDF + company name → four report sections
#   POST /ask-question     — follow-up question about a generated report
#
# The heavy lifting happens in app.agents:
#   - orchestrator.py runs the pipeline graph and owns the cache
#   - analyst.py generates sections and answers
#
# These endpoints are thin by design — just upload validation and response
# mapping. Pipeline errors (ReportError subclasses) propagate to the
# exception handler registered in app.main, which maps each to a status.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from app.agents.orchestrator import ReportService, SourceDocument
from app.api.deps import get_caller_api_key, get_report_service
from app.config import settings
from app.models.requests import AskQuestionRequest
from app.models.responses import AnswerResponse, ReportSectionsResponse, UploadResponse
from app.services.errors import ContextNotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports"])


# ---------------------------------------------------------------------------
# POST /upload — Extract text from a PDF
# ---------------------------------------------------------------------------


@router.post(
    "/upload",
    response_model=UploadResponse,
    summary="Upload a financial report PDF",
    description=(
        "Reads the PDF and extracts its text. The extracted text is cached "
        "by file name, size and last-modified time."
    ),
)
async def upload_endpoint(
    report: UploadFile = File(..., description="PDF financial report"),
    last_modified: float = Form(
        default=0,
        description="Client-side last-modified timestamp (ms since epoch)",
    ),
    service: ReportService = Depends(get_report_service),
) -> UploadResponse:
    document = await _read_upload(report, last_modified)
    text = await service.extract_document(document)

    return UploadResponse(
        message="File uploaded successfully",
        filename=document.name,
        file_size=document.size,
        text_length=len(text),
    )


# ---------------------------------------------------------------------------
# POST /generate-report — Full report
# ---------------------------------------------------------------------------


@router.post(
    "/generate-report",
    response_model=ReportSectionsResponse,
    summary="Generate the four-section financial report",
    description=(
        "Runs normalize → chunk → embed → four concurrent section prompts. "
        "Returns the complete report or a single error, never a partial one."
    ),
)
async def generate_report_endpoint(
    report: UploadFile = File(..., description="PDF financial report"),
    company_name: str = Form(..., alias="companyName"),
    last_modified: float = Form(default=0),
    api_key: str | None = Depends(get_caller_api_key),
    service: ReportService = Depends(get_report_service),
) -> ReportSectionsResponse:
    document = await _read_upload(report, last_modified)

    logger.info(
        "=== Report requested: file='%s', company='%s' ===",
        document.name, company_name,
    )
    result = await service.generate_report(document, company_name, api_key)

    return ReportSectionsResponse(
        **result.sections.to_dict(),
        cached=result.from_cache,
    )


# ---------------------------------------------------------------------------
# POST /ask-question — Follow-up Q&A
# ---------------------------------------------------------------------------


@router.post(
    "/ask-question",
    response_model=AnswerResponse,
    summary="Ask a follow-up question about a generated report",
)
async def ask_question_endpoint(
    request: AskQuestionRequest,
    api_key: str | None = Depends(get_caller_api_key),
    service: ReportService = Depends(get_report_service),
) -> AnswerResponse:
    context_ref = service.context_ref_for_file(
        request.filename, request.company_name,
    )
    if context_ref is None:
        raise ContextNotFound(
            "Analysis context not found. Please generate a report first."
        )

    answer = await service.answer_question(
        context_ref, request.question, request.company_name, api_key,
    )
    return AnswerResponse(answer=answer)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _read_upload(upload: UploadFile, last_modified: float) -> SourceDocument:
    """Validate the upload and read it fully into memory."""
    if not upload.filename or not upload.filename.lower().endswith(".pdf"):
        raise HTTPException(
            status_code=400,
            detail="Only PDF files are accepted. Please upload a .pdf file.",
        )

    content = await upload.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)}"
                " MB upload limit."
            ),
        )

    logger.info("Received upload: %s (%d bytes)", upload.filename, len(content))
    # Integral timestamps keep the fingerprint stable ("1700000000000", not "1.7e12")
    stamp = int(last_modified) if float(last_modified).is_integer() else last_modified
    return SourceDocument(
        name=upload.filename, content=content, last_modified=stamp,
    )
