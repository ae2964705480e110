# =============================================================================
# Embedding Service — Provider Adapter (OpenAI-Compatible)
# =============================================================================
#
# Turns a list of texts into embedding vectors through any OpenAI-compatible
# embeddings endpoint (OpenAI, Alibaba Cloud DashScope, ...).
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# Most providers expose OpenAI-compatible APIs, so a single adapter covers
# all of them with zero code changes.
#
# DESIGN DECISION: The SDK's own retries are disabled (max_retries=0).
# Retry, backoff and timeout belong to app.services.resilience, which wraps
# every call to embed(). Two stacked retry loops would multiply attempts
# and hide rate-limit pressure from the batch scheduler.
#
# DESIGN DECISION: One call = one request. Batching and inter-batch delays
# are the index builder's job (app.services.vectorstore.build_index).
#
# Failures are translated into ProviderError with the upstream status so
# the resilience layer can tell 429s from other errors without importing
# SDK exception types.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from app.config import settings
from app.services.errors import ProviderError, ValidationFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    """Anything that can embed a batch of texts in input order."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


# ---------------------------------------------------------------------------
# Implementation: OpenAI-Compatible Embeddings
# ---------------------------------------------------------------------------


class OpenAIEmbeddingProvider:
    """
    Embedding adapter over AsyncOpenAI.

    Built per request from the caller's credential. Key resolution order:
      1. api_key argument (the caller's credential)
      2. OPENAI_API_KEY
      3. LLM_API_KEY (one shared key for LLM + embeddings)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        resolved_key = api_key or settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ValidationFailure(
                "No API key supplied for embeddings. Provide a key with the "
                "request or set OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key, "max_retries": 0}
        resolved_base_url = base_url or settings.embedding_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.embedding_model

        logger.debug(
            "Initialized embedding client (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed one batch of texts with a single API request.

        Returns:
            One vector per input text, in input order.

        Raises:
            ProviderError: The request failed (status_code None when no
                HTTP response was received).
        """
        if not texts:
            return []

        create_kwargs: dict = {"model": self._model, "input": list(texts)}
        if settings.embedding_dimensions:
            create_kwargs["dimensions"] = settings.embedding_dimensions

        try:
            response = await self._client.embeddings.create(**create_kwargs)
        except APIStatusError as exc:
            raise ProviderError(
                f"Embedding request failed: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except (APITimeoutError, APIConnectionError) as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        # Sort by response index so output order matches input order
        vectors = [
            item.embedding
            for item in sorted(response.data, key=lambda x: x.index)
        ]

        logger.debug(
            "Embedded %d texts, %d prompt tokens",
            len(vectors),
            response.usage.prompt_tokens if response.usage else 0,
        )
        return vectors
