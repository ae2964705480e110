# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API. Kept separate from the pipeline's
# dataclasses (ReportSections, Chunk, ...) so the public contract and the
# internal types can evolve independently.
# =============================================================================
