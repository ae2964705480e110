# =============================================================================
# Financial Report Agent
# =============================================================================
# A RAG pipeline that turns a financial report PDF into a four-section
# analysis (overview, financial highlights, key risks, management
# commentary) and answers follow-up questions against the same index.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (upload, report, Q&A)
#   ├── agents/       → LangGraph report pipeline + section/answer synthesis
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Extraction, normalizing, chunking, embedding, index,
#                        completion providers, retries, result cache
# =============================================================================
