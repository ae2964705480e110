# =============================================================================
# Multi-Provider LLM Abstraction — Completion Capability
# =============================================================================
#
# Provides a common interface for single-turn completions (one system
# prompt + one user prompt → one text), with implementations for
# OpenAI-compatible APIs (OpenAI, DeepSeek, Qwen, ...) and Anthropic.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right `complete()` method works, which keeps test
# doubles trivial (an AsyncMock satisfies it).
#
# DESIGN DECISION: Native SDKs, SDK retries disabled.
# The resilience layer owns timeouts and retries. Each provider turns SDK
# status errors into ProviderError carrying the HTTP status.
#
# DESIGN DECISION: Built per request, not a singleton.
# The credential is supplied by the caller with every request, so
# create_llm_provider(api_key) builds a fresh provider each time.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── OpenAICompatibleProvider — system prompt as a message role,
#   │                              supports presence/frequency penalties
#   ├── AnthropicProvider        — system prompt as top-level kwarg,
#   │                              penalties not supported (ignored)
#   └── create_llm_provider()    — factory, reads provider type from config
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from app.config import settings
from app.services.errors import ProviderError, ValidationFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Protocol defining the completion capability."""

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        presence_penalty: float | None = None,
        frequency_penalty: float | None = None,
    ) -> LLMResponse:
        """
        Generate one completion.

        Args:
            system: System prompt (role and global rules).
            user: User prompt (task, context, formatting rules).
            max_tokens: Output token ceiling.
            temperature: Sampling temperature.
            presence_penalty: Optional, ignored by providers without it.
            frequency_penalty: Optional, ignored by providers without it.

        Raises:
            ProviderError: The request failed.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValidationFailure(
                "No API key supplied for the completion provider. Provide "
                "a key with the request or set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key, "max_retries": 0}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model

        logger.debug(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        presence_penalty: float | None = None,
        frequency_penalty: float | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        from openai import APIConnectionError, APIStatusError

        kwargs: dict = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if presence_penalty is not None:
            kwargs["presence_penalty"] = presence_penalty
        if frequency_penalty is not None:
            kwargs["frequency_penalty"] = frequency_penalty

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except APIStatusError as exc:
            raise ProviderError(
                f"Completion request failed: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except APIConnectionError as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Implementation 2: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system". It has no
    presence/frequency penalties; those arguments are accepted and dropped.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValidationFailure(
                "No Anthropic API key supplied. Provide a key with the "
                "request or set ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key, max_retries=0)
        self._model = model or settings.llm_model

        logger.debug("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        presence_penalty: float | None = None,
        frequency_penalty: float | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        from anthropic import APIConnectionError, APIStatusError

        try:
            response = await self._client.messages.create(
                model=self._model,
                system=system,
                messages=[{"role": "user", "content": user}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except APIStatusError as exc:
            raise ProviderError(
                f"Completion request failed: {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except APIConnectionError as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc

        # Extract text from the first text content block
        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def create_llm_provider(
    api_key: str | None = None,
) -> OpenAICompatibleProvider | AnthropicProvider:
    """
    Build the configured completion provider for one request.

    Reads `llm_provider` from settings:
    - "openai_compatible" → OpenAICompatibleProvider
    - "anthropic" → AnthropicProvider

    Raises:
        ValidationFailure: No credential available.
        ValueError: Unknown provider type in configuration.
    """
    if settings.llm_provider == "anthropic":
        return AnthropicProvider(api_key=api_key)
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(api_key=api_key)
    raise ValueError(
        f"Unknown LLM provider '{settings.llm_provider}'. "
        "Supported: 'openai_compatible', 'anthropic'"
    )
