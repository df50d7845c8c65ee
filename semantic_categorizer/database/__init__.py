"""
Database module for the semantic categorizer.
"""

from .engine import DatabaseManager
from .models import Base, EmbeddingCacheEntry, Keyword, TypingModel, TypingSample

__all__ = [
    "Base",
    "DatabaseManager",
    "EmbeddingCacheEntry",
    "Keyword",
    "TypingModel",
    "TypingSample",
]
