"""
Persistent embedding cache keyed by (text, model).

The cache is an explicitly constructed object owned by a job; it keeps no
state of its own beyond the database manager it writes through.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import func

from ..config import DEFAULT_EMBEDDING_MODEL
from ..database.engine import DatabaseManager
from ..database.models import EmbeddingCacheEntry
from ..exceptions import MalformedCachedPayloadError, ValidationError
from ..models import Vector
from .codec import decode_vector, encode_vector

logger = logging.getLogger(__name__)

# Most SQL backends cap bound parameters per statement (SQLite: 999 on old builds).
BULK_QUERY_LIMIT = 900


class EmbeddingCache:
    """
    Content-addressed store mapping (text, model) to a vector.

    Features:
    - Bulk lookups split into parameter-limited sub-queries
    - Idempotent overwrite on put (one row per text and model)
    - Binary float32 storage with transparent legacy decoding
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        default_model: str = DEFAULT_EMBEDDING_MODEL,
        bulk_query_limit: int = BULK_QUERY_LIMIT,
    ) -> None:
        """
        Initialize the cache.

        Args:
            db_manager: Database manager providing sessions
            default_model: Model name used when callers pass none
            bulk_query_limit: Maximum keys bound into one SELECT
        """
        if bulk_query_limit <= 0:
            raise ValidationError(
                "bulk_query_limit must be positive",
                field="bulk_query_limit",
                value=bulk_query_limit,
            )

        self.db_manager = db_manager
        self.default_model = default_model
        self.bulk_query_limit = bulk_query_limit

    def _model(self, model: Optional[str]) -> str:
        return model or self.default_model

    def get(self, text: str, model: Optional[str] = None) -> Optional[np.ndarray]:
        """Return the cached vector for ``text`` or None."""
        return self.get_bulk([text], model).get(text)

    def get_bulk(
        self, texts: Sequence[str], model: Optional[str] = None
    ) -> Dict[str, np.ndarray]:
        """
        Look up many texts at once.

        Args:
            texts: Texts to look up; duplicates are queried once
            model: Embedding model name

        Returns:
            Mapping of text to vector for the texts that were found
        """
        model = self._model(model)
        unique_texts = list(dict.fromkeys(t for t in texts if t))
        found: Dict[str, np.ndarray] = {}

        if not unique_texts:
            return found

        with self.db_manager.get_session() as session:
            for batch in _batched(unique_texts, self.bulk_query_limit):
                rows = (
                    session.query(
                        EmbeddingCacheEntry.key,
                        EmbeddingCacheEntry.embedding,
                        EmbeddingCacheEntry.encoding,
                    )
                    .filter(
                        EmbeddingCacheEntry.vector_model == model,
                        EmbeddingCacheEntry.key.in_(batch),
                    )
                    .all()
                )

                for key, payload, encoding in rows:
                    try:
                        found[key] = decode_vector(payload, encoding, key=key)
                    except MalformedCachedPayloadError as e:
                        # Treated as a miss so the next fetch overwrites it
                        logger.warning(f"Ignoring unreadable cache row: {e}")

        logger.debug(
            f"Cache lookup for {len(unique_texts)} texts ({model}): {len(found)} hits"
        )
        return found

    def put(self, text: str, vector: Vector, model: Optional[str] = None) -> bool:
        """Store (or overwrite) one vector. Returns True once committed."""
        self.put_many([(text, vector)], model)
        return True

    def put_many(
        self, items: Iterable[Tuple[str, Vector]], model: Optional[str] = None
    ) -> int:
        """
        Store many vectors in one short transaction.

        Args:
            items: (text, vector) pairs; a repeated text keeps the last vector
            model: Embedding model name

        Returns:
            Number of distinct texts written
        """
        model = self._model(model)
        encoded: Dict[str, Tuple[bytes, str, int]] = {}

        for text, vector in items:
            if not text or not text.strip():
                raise ValidationError("Cache key cannot be empty", field="text")
            if vector is None or len(vector) == 0:
                raise ValidationError(
                    "Cannot cache an empty embedding", field="vector", value=text
                )
            payload, encoding = encode_vector(vector)
            encoded[text] = (payload, encoding, len(vector))

        if not encoded:
            return 0

        self.db_manager.execute_with_retry(self._write_entries, encoded, model)
        logger.debug(f"Cached {len(encoded)} embeddings ({model})")
        return len(encoded)

    def _write_entries(
        self, encoded: Dict[str, Tuple[bytes, str, int]], model: str
    ) -> None:
        now = datetime.now()
        with self.db_manager.get_session() as session:
            for batch in _batched(list(encoded), self.bulk_query_limit):
                existing = {
                    row.key: row
                    for row in session.query(EmbeddingCacheEntry)
                    .filter(
                        EmbeddingCacheEntry.vector_model == model,
                        EmbeddingCacheEntry.key.in_(batch),
                    )
                    .all()
                }

                for key in batch:
                    payload, encoding, dimension = encoded[key]
                    row = existing.get(key)
                    if row is None:
                        session.add(
                            EmbeddingCacheEntry(
                                key=key,
                                vector_model=model,
                                embedding=payload,
                                encoding=encoding,
                                dimension=dimension,
                                created_at=now,
                            )
                        )
                    else:
                        row.embedding = payload
                        row.encoding = encoding
                        row.dimension = dimension
                        row.created_at = now

    def size(self, model: Optional[str] = None) -> int:
        """Count cached rows, optionally for one model only."""
        with self.db_manager.get_session() as session:
            query = session.query(func.count(EmbeddingCacheEntry.id))
            if model:
                query = query.filter(EmbeddingCacheEntry.vector_model == model)
            return int(query.scalar() or 0)

    def clear(self, model: Optional[str] = None) -> int:
        """Delete cached rows, optionally for one model only."""
        with self.db_manager.get_session() as session:
            query = session.query(EmbeddingCacheEntry)
            if model:
                query = query.filter(EmbeddingCacheEntry.vector_model == model)
            deleted = query.delete(synchronize_session=False)

        logger.info(f"Cleared {deleted} cached embeddings")
        return deleted


def _batched(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]
