# =============================================================================
# Services Package — Pipeline Building Blocks
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - parser.py: PDF text extraction with Docling
#   - normalizer.py: page-furniture removal and whitespace cleanup
#   - chunker.py: boundary-aware overlapping character chunks
#   - embedder.py: OpenAI embedding provider
#   - vectorstore.py: in-memory cosine index, batched build, retrieval
#   - llm.py: multi-provider completion abstraction (OpenAI-compatible,
#     Anthropic)
#   - resilience.py: timeout + retry policy around every external call
#   - cache.py: fingerprint-keyed result cache with 24h expiry
#   - errors.py: error taxonomy
# =============================================================================
