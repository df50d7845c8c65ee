"""
Tests for the embedding provider and provider error classification.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from semantic_categorizer.embeddings.provider import (
    LiteLLMEmbeddingProvider,
    _extract_vectors,
    classify_provider_exception,
)
from semantic_categorizer.exceptions import (
    EmbeddingProviderError,
    ProviderAuthError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTransportError,
)


class _HTTPError(Exception):
    def __init__(self, message: str, status_code=None, code=None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class TestClassifyProviderException:
    """Test mapping of client exceptions onto the error hierarchy."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (_HTTPError("unauthorized", status_code=401), ProviderAuthError),
            (_HTTPError("forbidden", status_code=403), ProviderAuthError),
            (_HTTPError("bad key", code="invalid_api_key"), ProviderAuthError),
            (_HTTPError("slow down", status_code=429), ProviderRateLimitedError),
            (_HTTPError("server", status_code=503), ProviderTransportError),
            (ConnectionError("reset by peer"), ProviderTransportError),
            (TimeoutError("timed out"), ProviderTransportError),
            (_HTTPError("bad request", status_code=400), EmbeddingProviderError),
            (ValueError("odd"), EmbeddingProviderError),
        ],
    )
    def test_classification(self, error, expected) -> None:
        """Test that each failure class maps to the right error type."""
        classified = classify_provider_exception(error, "text-embedding-3-small")

        assert type(classified) is expected
        assert classified.model == "text-embedding-3-small"

    def test_status_and_code_are_kept(self) -> None:
        """Test that HTTP status and provider code survive classification."""
        classified = classify_provider_exception(
            _HTTPError("slow down", status_code=429, code=42), "m"
        )

        assert classified.status_code == 429
        assert classified.provider_code == "42"
        assert classified.code == "provider_rate_limited"

    def test_provider_errors_pass_through(self) -> None:
        """Test that already classified errors are returned unchanged."""
        original = ProviderAuthError("nope", model="m")
        assert classify_provider_exception(original, "m") is original


class TestExtractVectors:
    """Test response parsing."""

    def test_dict_response(self) -> None:
        """Test a plain dict response."""
        response = {"data": [{"embedding": [1.0, 2.0]}, {"embedding": [3.0, 4.0]}]}
        assert _extract_vectors(response) == [[1.0, 2.0], [3.0, 4.0]]

    def test_object_response_sorted_by_index(self) -> None:
        """Test that items are reordered by their index field."""
        response = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ]
        )
        assert _extract_vectors(response) == [[1.0, 0.0], [0.0, 1.0]]

    def test_missing_data(self) -> None:
        """Test that a response without data raises ProviderResponseError."""
        with pytest.raises(ProviderResponseError):
            _extract_vectors({"object": "list"})

    def test_missing_embedding(self) -> None:
        """Test that an item without an embedding raises ProviderResponseError."""
        with pytest.raises(ProviderResponseError):
            _extract_vectors({"data": [{"index": 0}]})


class TestLiteLLMEmbeddingProvider:
    """Test the liteLLM-backed provider."""

    @pytest.mark.asyncio
    async def test_embed_calls_litellm(self) -> None:
        """Test request arguments and vector extraction."""
        provider = LiteLLMEmbeddingProvider(api_key="sk-test", timeout_seconds=5)
        response = {"data": [{"embedding": [0.1]}, {"embedding": [0.2]}]}

        with patch(
            "semantic_categorizer.embeddings.provider.litellm.aembedding",
            new=AsyncMock(return_value=response),
        ) as mock_embedding:
            vectors = await provider.embed(["a", "b"], "text-embedding-3-small")

        assert vectors == [[0.1], [0.2]]
        mock_embedding.assert_awaited_once_with(
            model="text-embedding-3-small",
            input=["a", "b"],
            timeout=5,
            api_key="sk-test",
        )

    @pytest.mark.asyncio
    async def test_empty_input_skips_call(self) -> None:
        """Test that an empty batch makes no request."""
        provider = LiteLLMEmbeddingProvider()

        with patch(
            "semantic_categorizer.embeddings.provider.litellm.aembedding",
            new=AsyncMock(),
        ) as mock_embedding:
            assert await provider.embed([], "m") == []

        mock_embedding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_mismatch(self) -> None:
        """Test that fewer vectors than inputs is a response error."""
        provider = LiteLLMEmbeddingProvider()
        response = {"data": [{"embedding": [0.1]}]}

        with patch(
            "semantic_categorizer.embeddings.provider.litellm.aembedding",
            new=AsyncMock(return_value=response),
        ):
            with pytest.raises(ProviderResponseError) as exc_info:
                await provider.embed(["a", "b"], "m")

        assert "expected 2 embeddings" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_client_errors_are_classified(self) -> None:
        """Test that client exceptions surface as provider errors."""
        provider = LiteLLMEmbeddingProvider()

        with patch(
            "semantic_categorizer.embeddings.provider.litellm.aembedding",
            new=AsyncMock(side_effect=_HTTPError("limit", status_code=429)),
        ):
            with pytest.raises(ProviderRateLimitedError) as exc_info:
                await provider.embed(["a"], "m")

        assert isinstance(exc_info.value.__cause__, _HTTPError)
