# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI
# 3. Generate OpenAPI response schemas (visible at /docs)
#
# DESIGN DECISION: Report fields serialise as camelCase
# (financialHighlights, keyRisks, ...) because that is what the browser
# client renders. FastAPI serialises response models by alias.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class UploadResponse(BaseModel):
    """
    Response for POST /upload — the PDF was read and its text extracted.

    Extraction is cached by file fingerprint, so a following
    /generate-report for the same file skips it.
    """

    message: str
    filename: str
    file_size: int = Field(description="Size of the upload in bytes")
    text_length: int = Field(description="Characters of extracted text")


class ReportSectionsResponse(BaseModel):
    """Response for POST /generate-report — the four report sections."""

    model_config = ConfigDict(populate_by_name=True)

    overview: str
    financial_highlights: str = Field(alias="financialHighlights")
    key_risks: str = Field(alias="keyRisks")
    management_commentary: str = Field(alias="managementCommentary")
    cached: bool = Field(
        default=False,
        description="True when the report came from the result cache",
    )


class AnswerResponse(BaseModel):
    """Response for POST /ask-question."""

    answer: str
