# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: We use Pydantic V2's `BaseSettings` for configuration.
# This provides:
# 1. Type-safe configuration with validation at startup
# 2. Automatic loading from environment variables
# 3. Support for .env files (via `env_file` in model_config)
# 4. Sensible defaults for local development
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `CHUNK_SIZE=800`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from app.config import settings
#   print(settings.chunk_size)
# =============================================================================

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every pipeline knob (chunking, batching, retry budgets, timeouts, cache
    TTL) lives here so the report pipeline itself holds no magic numbers.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Financial Report Agent"
    app_version: str = "0.1.0"
    debug: bool = True

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # The credential is normally supplied per request by the caller. These
    # are fallbacks for deployments that run the service with a house key.
    #
    # LLM_API_KEY overrides the provider-specific key when set.
    # -------------------------------------------------------------------------
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llm_api_key: str | None = None

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    # Two providers are supported:
    #   - "openai_compatible": any OpenAI-compatible chat completions API
    #   - "anthropic": Claude via native Anthropic SDK
    #
    # Section prompts use small max_tokens budgets (3-4 short bullets) and
    # presence/frequency penalties to discourage repeated bullets.
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"  # "openai_compatible" or "anthropic"
    llm_base_url: str | None = None
    llm_model: str = "gpt-4-turbo-preview"
    llm_temperature: float = 0.1
    section_max_tokens: int = 250
    answer_max_tokens: int = 150
    section_presence_penalty: float = 0.6
    section_frequency_penalty: float = 0.6

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    # Batches are embedded one after another with a fixed pause between
    # them. This is the backpressure mechanism against provider rate limits.
    # -------------------------------------------------------------------------
    embedding_base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None
    embedding_batch_size: int = 25  # Chunks per embedding API call
    embedding_batch_delay: float = 1.0  # Seconds between batches
    embedding_max_attempts: int = 3  # Attempts per batch, first try included
    embedding_backoff_base: float = 1.0  # Seconds, doubled on each retry
    embedding_timeout: float = 30.0

    # -------------------------------------------------------------------------
    # Chunking Configuration (characters, not tokens)
    # -------------------------------------------------------------------------
    # Separators run from coarsest to finest. The empty string is the
    # hard-split fallback and must stay last.
    # -------------------------------------------------------------------------
    chunk_size: int = 1200
    chunk_overlap: int = 150

    # -------------------------------------------------------------------------
    # Retrieval Configuration
    # -------------------------------------------------------------------------
    section_top_k: int = 4
    answer_top_k: int = 3

    # -------------------------------------------------------------------------
    # Resilience Configuration
    # -------------------------------------------------------------------------
    # completion_timeout: hard wall-clock ceiling per section request
    # answer_timeout: slightly shorter ceiling for Q&A requests
    # rate_limit_*: HTTP 429 handling (exponential: base, 2*base, 4*base)
    # transient_*: any other non-2xx response (fixed delay)
    # pipeline_timeout: ceiling for one whole report run
    # -------------------------------------------------------------------------
    completion_timeout: float = 30.0
    answer_timeout: float = 25.0
    rate_limit_retries: int = 3
    rate_limit_backoff_base: float = 2.0
    transient_retries: int = 2
    transient_retry_delay: float = 1.0
    pipeline_timeout: float = 300.0

    # -------------------------------------------------------------------------
    # Result Cache
    # -------------------------------------------------------------------------
    # Entries expire 24h after creation. Expiry is checked lazily on read.
    # -------------------------------------------------------------------------
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_key_prefix: str = "creditai_cache_"

    # -------------------------------------------------------------------------
    # File Upload
    # -------------------------------------------------------------------------
    max_upload_bytes: int = 10 * 1024 * 1024

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_chunk_overlap(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=False)
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = Settings()
