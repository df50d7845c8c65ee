"""
Embedding module for the semantic categorizer.

This module provides the persistent embedding cache, the storage codec,
the provider abstraction and the batched cache-first fetcher.
"""

from .cache import BULK_QUERY_LIMIT, EmbeddingCache
from .codec import BINARY_ENCODING, JSON_ENCODING, decode_vector, encode_vector
from .fetcher import EmbeddingFetcher, FetchProgress, FetchResult
from .provider import (
    EmbeddingProvider,
    LiteLLMEmbeddingProvider,
    classify_provider_exception,
)

__all__ = [
    # Cache
    "EmbeddingCache",
    "BULK_QUERY_LIMIT",
    # Codec
    "encode_vector",
    "decode_vector",
    "BINARY_ENCODING",
    "JSON_ENCODING",
    # Fetcher
    "EmbeddingFetcher",
    "FetchProgress",
    "FetchResult",
    # Providers
    "EmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "classify_provider_exception",
]
