# =============================================================================
# Agents Package — Report Pipeline Orchestration
# =============================================================================
#   - orchestrator.py: LangGraph graph (normalize → chunk → index →
#     synthesize) and ReportService, the entry point for the API
#   - analyst.py: the four section prompts, concurrent fail-fast section
#     generation, bullet post-processing and the Q&A answerer
# =============================================================================
