"""
Matching module for the semantic categorizer.

This module provides cosine similarity, cursor-paged item sources and the
streaming nearest-category matcher.
"""

from .item_store import (
    CATEGORY_ROLE,
    READY_FLAG_BATCH_SIZE,
    TARGET_ROLE,
    InMemoryItemSource,
    ItemSource,
    KeywordItemSource,
    ReadyFlagWriter,
)
from .similarity import cosine_matrix, cosine_similarity, unit_rows
from .streaming_matcher import MatchProgress, MatchStats, StreamingCategoryMatcher

__all__ = [
    # Similarity
    "cosine_similarity",
    "cosine_matrix",
    "unit_rows",
    # Item sources
    "ItemSource",
    "ReadyFlagWriter",
    "KeywordItemSource",
    "InMemoryItemSource",
    "TARGET_ROLE",
    "CATEGORY_ROLE",
    "READY_FLAG_BATCH_SIZE",
    # Streaming matcher
    "StreamingCategoryMatcher",
    "MatchProgress",
    "MatchStats",
]
