"""
Batched, cache-first embedding fetcher.

Texts are de-duplicated across the whole call, looked up in the cache, and
only the misses are sent to the provider, one chunk at a time. Every fetched
chunk is written through to the cache before the next one is requested.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import numpy as np

from ..config import DEFAULT_EMBEDDING_MODEL, CategorizerConfig
from ..exceptions import (
    CacheMissError,
    EmbeddingProviderError,
    OperationAbortedError,
    ProviderResponseError,
    ValidationError,
)
from ..models import EmbeddingSource
from .cache import EmbeddingCache
from .provider import EmbeddingProvider, classify_provider_exception

logger = logging.getLogger(__name__)


@dataclass
class FetchProgress:
    """Progress over the unique texts that needed a provider call."""

    fetched: int
    total: int
    stage: str = "embeddings"

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.fetched / self.total * 100)


@dataclass
class FetchResult:
    """Vectors aligned to the input order of a fetch call."""

    vectors: List[Optional[np.ndarray]]
    sources: List[EmbeddingSource]
    unique_texts: int = 0
    cache_hits: int = 0
    fetched: int = 0
    provider_calls: int = 0
    missing_positions: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.vectors)

    def __getitem__(self, index: int) -> Optional[np.ndarray]:
        return self.vectors[index]


ProgressCallback = Callable[[FetchProgress], Any]


class EmbeddingFetcher:
    """
    Resolves texts to embeddings with dedup, caching and sequential chunking.

    Features:
    - One cache slot and one provider slot per distinct text
    - Sequential provider calls, one per chunk, with a delay between chunks
    - Write-through caching of every fetched chunk
    - Cache-only mode that fails fast on any miss
    - Cooperative cancellation between chunks
    """

    def __init__(
        self,
        cache: EmbeddingCache,
        provider: EmbeddingProvider,
        model: str = DEFAULT_EMBEDDING_MODEL,
        chunk_size: int = 64,
        chunk_delay_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            cache: Embedding cache used for lookups and write-through
            provider: Embedding provider for cache misses
            model: Default embedding model name
            chunk_size: Default number of texts per provider call
            chunk_delay_seconds: Pause between consecutive provider calls
            sleep: Awaitable sleep, replaceable in tests
        """
        if chunk_size <= 0:
            raise ValidationError(
                "chunk_size must be positive", field="chunk_size", value=chunk_size
            )
        if chunk_delay_seconds < 0:
            raise ValidationError(
                "chunk_delay_seconds cannot be negative",
                field="chunk_delay_seconds",
                value=chunk_delay_seconds,
            )

        self.cache = cache
        self.provider = provider
        self.model = model
        self.chunk_size = chunk_size
        self.chunk_delay_seconds = chunk_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: CategorizerConfig,
        cache: EmbeddingCache,
        provider: EmbeddingProvider,
    ) -> "EmbeddingFetcher":
        """Build a fetcher using the configured model and batching."""
        return cls(
            cache=cache,
            provider=provider,
            model=config.embedding_model,
            chunk_size=config.embedding_chunk_size,
            chunk_delay_seconds=config.embedding_chunk_delay_seconds,
        )

    async def fetch(
        self,
        texts: Sequence[str],
        model: Optional[str] = None,
        chunk_size: Optional[int] = None,
        cache_only: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Any = None,
        stage: str = "embeddings",
    ) -> FetchResult:
        """
        Resolve ``texts`` to embeddings.

        Args:
            texts: Input texts; surrounding whitespace is ignored and blank
                texts resolve to None without any lookup
            model: Embedding model name (defaults to the fetcher's model)
            chunk_size: Texts per provider call (defaults to the fetcher's)
            cache_only: Fail with CacheMissError instead of calling the provider
            on_progress: Called after each chunk with a FetchProgress
            cancel: Object with ``is_set()``; checked before each chunk
            stage: Label attached to progress updates and logs

        Returns:
            FetchResult with vectors and sources aligned to ``texts``
        """
        model = model or self.model
        chunk_size = chunk_size or self.chunk_size
        if chunk_size <= 0:
            raise ValidationError(
                "chunk_size must be positive", field="chunk_size", value=chunk_size
            )

        normalized = [t.strip() if isinstance(t, str) else "" for t in texts]

        positions: Dict[str, List[int]] = {}
        for index, text in enumerate(normalized):
            if text:
                positions.setdefault(text, []).append(index)

        resolved: Dict[str, np.ndarray] = {}
        sources: Dict[str, EmbeddingSource] = {}

        if positions:
            cached = self.cache.get_bulk(list(positions), model)
            for text, vector in cached.items():
                resolved[text] = vector
                sources[text] = EmbeddingSource.CACHE

        missing = [text for text in positions if text not in resolved]

        if missing and cache_only:
            raise CacheMissError(missing, model=model)

        total = len(missing)
        provider_calls = 0
        if missing:
            logger.info(
                f"Embedding fetch ({stage}): {len(positions)} unique texts, "
                f"{len(positions) - total} cached, {total} to fetch "
                f"in chunks of {chunk_size} ({model})"
            )

        fetched = 0
        for start in range(0, total, chunk_size):
            if cancel is not None and cancel.is_set():
                raise OperationAbortedError(stage=stage)

            chunk = missing[start : start + chunk_size]
            logger.debug(
                f"Requesting embeddings for chunk {start}-{start + len(chunk) - 1} "
                f"(size {len(chunk)})"
            )
            vectors = await self._embed_chunk(chunk, model)
            provider_calls += 1

            # Write-through before the chunk counts as fetched
            self.cache.put_many(zip(chunk, vectors), model)

            for text, vector in zip(chunk, vectors):
                resolved[text] = vector
                sources[text] = EmbeddingSource.PROVIDER

            fetched += len(chunk)
            if on_progress is not None:
                on_progress(FetchProgress(fetched=fetched, total=total, stage=stage))

            if fetched < total and self.chunk_delay_seconds > 0:
                await self._sleep(self.chunk_delay_seconds)

        out_vectors: List[Optional[np.ndarray]] = []
        out_sources: List[EmbeddingSource] = []
        missing_positions: List[int] = []
        for index, text in enumerate(normalized):
            vector = resolved.get(text) if text else None
            out_vectors.append(vector)
            out_sources.append(sources.get(text, EmbeddingSource.UNKNOWN))
            if vector is None:
                missing_positions.append(index)

        return FetchResult(
            vectors=out_vectors,
            sources=out_sources,
            unique_texts=len(positions),
            cache_hits=len(positions) - total,
            fetched=fetched,
            provider_calls=provider_calls,
            missing_positions=missing_positions,
        )

    async def _embed_chunk(self, chunk: List[str], model: str) -> List[np.ndarray]:
        try:
            raw_vectors = await self.provider.embed(chunk, model)
        except EmbeddingProviderError as e:
            logger.error(f"Embedding provider failed for chunk of {len(chunk)}: {e}")
            raise
        except Exception as e:
            logger.error(f"Embedding provider failed for chunk of {len(chunk)}: {e}")
            raise classify_provider_exception(e, model) from e

        if raw_vectors is None or len(raw_vectors) != len(chunk):
            received = 0 if raw_vectors is None else len(raw_vectors)
            raise ProviderResponseError(
                f"expected {len(chunk)} embeddings, received {received}", model=model
            )

        vectors = []
        for text, raw in zip(chunk, raw_vectors):
            vector = np.asarray(raw, dtype=np.float32)
            if vector.ndim != 1 or vector.size == 0:
                raise ProviderResponseError(
                    f"empty or malformed embedding for {text!r}", model=model
                )
            vectors.append(vector)
        return vectors
