# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of JSON coming INTO the API. Report
# generation and upload take multipart form data (a PDF plus fields), so
# only the Q&A endpoint has a JSON body.
#
# DESIGN DECISION: camelCase aliases.
# The browser client sends `companyName`; Python code reads
# `company_name`. populate_by_name accepts either spelling.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class AskQuestionRequest(BaseModel):
    """
    Request body for POST /ask-question — a follow-up question about a
    report that was already generated for `filename`.

    Example:
        {
            "filename": "annual-report-2025.pdf",
            "companyName": "Acme Industries",
            "question": "What drove the change in EBITDA margin?"
        }
    """

    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(
        ...,
        min_length=1,
        description="Name of the file a report was generated for",
        examples=["annual-report-2025.pdf"],
    )
    company_name: str = Field(
        ...,
        alias="companyName",
        min_length=1,
        max_length=200,
        examples=["Acme Industries"],
    )
    question: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="The question to ask about the financial document",
        examples=["What was the total revenue in FY25?"],
    )
