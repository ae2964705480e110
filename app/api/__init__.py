# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - report.py: POST /upload, /generate-report, /ask-question
#   - deps.py: ReportService singleton and caller credential dependencies
# =============================================================================
