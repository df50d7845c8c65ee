"""
Embedding provider abstraction and the liteLLM-backed implementation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import litellm
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from ..exceptions import (
    EmbeddingProviderError,
    ProviderAuthError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTransportError,
)

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Contract for embedding providers."""

    @abstractmethod
    async def embed(self, texts: Sequence[str], model: str) -> List[List[float]]:
        """
        Embed a batch of texts.

        Returns one vector per input text, in input order. Implementations
        raise an ``EmbeddingProviderError`` subclass on failure.
        """
        raise NotImplementedError


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by ``litellm.aembedding``.

    liteLLM routes the model name to the right vendor API; the default
    ``text-embedding-3-small`` goes to OpenAI and reads ``OPENAI_API_KEY``
    unless an explicit key is given.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base
        self.timeout_seconds = timeout_seconds

    async def embed(self, texts: Sequence[str], model: str) -> List[List[float]]:
        if not texts:
            return []

        kwargs: dict = {"timeout": self.timeout_seconds}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await litellm.aembedding(
                model=model, input=list(texts), **kwargs
            )
        except Exception as e:
            raise classify_provider_exception(e, model) from e

        vectors = _extract_vectors(response)
        if len(vectors) != len(texts):
            raise ProviderResponseError(
                f"expected {len(texts)} embeddings, received {len(vectors)}",
                model=model,
            )
        return vectors


def classify_provider_exception(error: Exception, model: str) -> EmbeddingProviderError:
    """
    Map a provider/client exception onto the error hierarchy.

    Authentication failures, throttling and transport problems stay
    distinguishable so callers can decide between aborting and backing off.
    """
    if isinstance(error, EmbeddingProviderError):
        return error

    status_code = getattr(error, "status_code", None)
    provider_code = getattr(error, "code", None)
    if provider_code is not None and not isinstance(provider_code, str):
        provider_code = str(provider_code)
    message = str(error) or type(error).__name__

    if isinstance(
        error, (AuthenticationError, PermissionDeniedError)
    ) or status_code in (401, 403) or provider_code == "invalid_api_key":
        error_cls = ProviderAuthError
    elif isinstance(error, RateLimitError) or status_code == 429:
        error_cls = ProviderRateLimitedError
    elif isinstance(
        error,
        (
            Timeout,
            APIConnectionError,
            ServiceUnavailableError,
            InternalServerError,
            ConnectionError,
            TimeoutError,
        ),
    ) or (isinstance(status_code, int) and status_code >= 500):
        error_cls = ProviderTransportError
    else:
        error_cls = EmbeddingProviderError

    logger.debug(
        f"Provider error classified as {error_cls.__name__}: "
        f"{type(error).__name__} status={status_code} code={provider_code}"
    )
    return error_cls(
        message, model=model, status_code=status_code, provider_code=provider_code
    )


def _extract_vectors(response: Any) -> List[List[float]]:
    """Pull ``data[*].embedding`` out of a dict or object response."""
    data = getattr(response, "data", None)
    if data is None and isinstance(response, dict):
        data = response.get("data")
    if data is None:
        raise ProviderResponseError("response has no data field")

    items = list(data)
    if items and all(_field(item, "index") is not None for item in items):
        items.sort(key=lambda item: _field(item, "index"))

    vectors = []
    for item in items:
        embedding = _field(item, "embedding")
        if embedding is None:
            raise ProviderResponseError("response item has no embedding")
        vectors.append(list(embedding))
    return vectors


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
