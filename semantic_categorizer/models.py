"""
Data models and type definitions shared across the semantic categorizer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

Vector = Union[Sequence[float], np.ndarray]


class EmbeddingSource(Enum):
    """Where a resolved embedding came from."""

    CACHE = "cache"
    PROVIDER = "provider"
    UNKNOWN = "unknown"


@dataclass
class LabeledSample:
    """Training sample owned by the upstream sample store."""

    id: int
    text: str
    label: str


@dataclass
class Item:
    """
    A target or category item loaded in a bounded page.

    ``vector`` may be supplied by the caller; otherwise it is resolved through
    the embedding fetcher and discarded with the page. ``ready`` mirrors the
    stored ready flag so already-flagged items are not updated again.
    """

    id: int
    text: str
    vector: Optional[np.ndarray] = None
    ready: bool = False


@dataclass
class AssignmentResult:
    """Best category for a single target item."""

    item_id: int
    best_category_id: Optional[int]
    best_category_name: Optional[str]
    similarity_score: Optional[float]
    embedding_source: EmbeddingSource = EmbeddingSource.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "id": self.item_id,
            "bestCategoryId": self.best_category_id,
            "bestCategoryName": self.best_category_name,
            "similarity": self.similarity_score,
            "embeddingSource": self.embedding_source.value,
        }
