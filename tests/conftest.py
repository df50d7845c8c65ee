"""
Shared fixtures: in-memory database, deterministic embedding provider.
"""

import hashlib
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from semantic_categorizer.config import CategorizerConfig
from semantic_categorizer.database.engine import DatabaseManager
from semantic_categorizer.embeddings.cache import EmbeddingCache
from semantic_categorizer.embeddings.fetcher import EmbeddingFetcher
from semantic_categorizer.embeddings.provider import EmbeddingProvider

TEST_MODEL = "text-embedding-3-small"


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic provider: each text maps to a fixed pseudo-random vector.

    ``vectors`` overrides specific texts; ``errors`` maps a 1-based call
    number to the exception that call raises.
    """

    def __init__(
        self,
        dimension: int = 8,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        errors: Optional[Dict[int, Exception]] = None,
    ) -> None:
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.errors = dict(errors or {})
        self.calls: List[List[str]] = []

    @property
    def texts_sent(self) -> List[str]:
        return [text for call in self.calls for text in call]

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        return np.random.default_rng(seed).normal(size=self.dimension).tolist()

    async def embed(self, texts: Sequence[str], model: str) -> List[List[float]]:
        self.calls.append(list(texts))
        error = self.errors.pop(len(self.calls), None)
        if error is not None:
            raise error
        return [self.vector_for(text) for text in texts]


@pytest.fixture
def config() -> CategorizerConfig:
    return CategorizerConfig(
        database_url="sqlite:///:memory:",
        embedding_model=TEST_MODEL,
        embedding_chunk_size=4,
        embedding_chunk_delay_ms=0,
        target_page_size=3,
        category_page_size=2,
        training_epochs=50,
        training_seed=7,
        rate_limit_backoff_seconds=0.0,
    )


@pytest.fixture
def db_manager(config):
    manager = DatabaseManager(config)
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def cache(db_manager) -> EmbeddingCache:
    return EmbeddingCache(db_manager, default_model=TEST_MODEL)


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def fetcher(cache, provider) -> EmbeddingFetcher:
    return EmbeddingFetcher(
        cache, provider, model=TEST_MODEL, chunk_size=4, chunk_delay_seconds=0
    )
