# =============================================================================
# Unit Tests — Capability Adapters (LLM, Embeddings, Text Extraction)
# =============================================================================
#
# SDK clients are replaced with mocks; no API keys or network calls needed.
# Docling is never loaded: only the input checks that run before
# conversion are exercised here.
# =============================================================================

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import openai
import pytest

from app.config import settings
from app.services.embedder import OpenAIEmbeddingProvider
from app.services.errors import ExtractionFailure, ProviderError, ValidationFailure
from app.services.llm import (
    AnthropicProvider,
    OpenAICompatibleProvider,
    create_llm_provider,
)
from app.services.parser import DoclingTextExtractor


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _status_error(status: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.example.com/v1/embeddings")
    return openai.APIStatusError(
        "upstream error",
        response=httpx.Response(status, request=request),
        body=None,
    )


# ---------------------------------------------------------------------------
# Test: LLM Provider Factory
# ---------------------------------------------------------------------------


class TestLLMProviderFactory:
    """Tests for create_llm_provider()."""

    def test_openai_compatible_by_default(self):
        with patch.object(settings, "llm_provider", "openai_compatible"):
            provider = create_llm_provider(api_key="sk-test")
        assert isinstance(provider, OpenAICompatibleProvider)

    def test_anthropic(self):
        with patch.object(settings, "llm_provider", "anthropic"):
            provider = create_llm_provider(api_key="sk-ant-test")
        assert isinstance(provider, AnthropicProvider)

    def test_unknown_provider(self):
        with patch.object(settings, "llm_provider", "mystery"):
            with pytest.raises(ValueError, match="Unknown LLM provider"):
                create_llm_provider(api_key="sk-test")

    def test_missing_credential(self):
        with (
            patch.object(settings, "llm_provider", "openai_compatible"),
            patch.object(settings, "llm_api_key", None),
            patch.object(settings, "openai_api_key", ""),
        ):
            with pytest.raises(ValidationFailure):
                create_llm_provider(api_key=None)


class TestOpenAICompatibleProvider:
    """Tests for request shaping and error translation."""

    def _provider(self) -> OpenAICompatibleProvider:
        provider = OpenAICompatibleProvider(api_key="sk-test", model="test-model")
        provider._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())),
        )
        return provider

    def test_passes_penalties_and_maps_response(self):
        provider = self._provider()
        create = provider._client.chat.completions.create
        create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="• Point."))],
            model="test-model",
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
        )

        response = _run(provider.complete(
            system="sys", user="usr", max_tokens=250, temperature=0.1,
            presence_penalty=0.6, frequency_penalty=0.6,
        ))

        assert response.content == "• Point."
        assert response.input_tokens == 120
        kwargs = create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["presence_penalty"] == 0.6
        assert kwargs["frequency_penalty"] == 0.6

    def test_omits_unset_penalties(self):
        provider = self._provider()
        create = provider._client.chat.completions.create
        create.return_value = SimpleNamespace(choices=[], model="m", usage=None)

        response = _run(provider.complete(
            system="sys", user="usr", max_tokens=150, temperature=0.1,
        ))

        assert response.content == ""
        assert "presence_penalty" not in create.call_args.kwargs

    def test_rate_limit_becomes_provider_error(self):
        provider = self._provider()
        provider._client.chat.completions.create.side_effect = _status_error(429)

        with pytest.raises(ProviderError) as exc_info:
            _run(provider.complete(system="s", user="u", max_tokens=10, temperature=0))
        assert exc_info.value.is_rate_limited


# ---------------------------------------------------------------------------
# Test: Embedding Provider
# ---------------------------------------------------------------------------


class TestOpenAIEmbeddingProvider:

    def _provider(self) -> OpenAIEmbeddingProvider:
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        provider._client = SimpleNamespace(
            embeddings=SimpleNamespace(create=AsyncMock()),
        )
        return provider

    def test_orders_vectors_by_index(self):
        provider = self._provider()
        provider._client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ],
            usage=SimpleNamespace(prompt_tokens=8),
        )

        vectors = _run(provider.embed(["first", "second"]))

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]

    def test_empty_batch_makes_no_request(self):
        provider = self._provider()
        assert _run(provider.embed([])) == []
        provider._client.embeddings.create.assert_not_called()

    def test_server_error_carries_status(self):
        provider = self._provider()
        provider._client.embeddings.create.side_effect = _status_error(503)

        with pytest.raises(ProviderError) as exc_info:
            _run(provider.embed(["text"]))
        assert exc_info.value.status_code == 503
        assert not exc_info.value.is_rate_limited

    def test_missing_credential(self):
        with (
            patch.object(settings, "openai_api_key", ""),
            patch.object(settings, "llm_api_key", None),
        ):
            with pytest.raises(ValidationFailure):
                OpenAIEmbeddingProvider(api_key=None)


# ---------------------------------------------------------------------------
# Test: Text Extractor Input Checks
# ---------------------------------------------------------------------------


class TestDoclingTextExtractor:

    def test_empty_input(self):
        with pytest.raises(ExtractionFailure, match="empty"):
            DoclingTextExtractor().extract_text(b"", "report.pdf")

    def test_not_a_pdf(self):
        with pytest.raises(ExtractionFailure, match="not a PDF"):
            DoclingTextExtractor().extract_text(b"PK\x03\x04 zip data", "report.pdf")
