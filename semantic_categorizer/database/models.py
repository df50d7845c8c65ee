"""SQLAlchemy database models for the semantic categorizer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates
from sqlalchemy.sql import func

from ..exceptions import ValidationError


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""

    pass


class EmbeddingCacheEntry(Base):
    """
    Content-addressed embedding cache row.

    One row per (key, vector_model) pair. The payload is written as float32
    little-endian binary; ``encoding`` records the format so reads never have
    to guess, except for rows inherited from the legacy store where it is NULL.
    """

    __tablename__ = "embeddings_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    key: Mapped[str] = mapped_column(Text, nullable=False)
    vector_model: Mapped[str] = mapped_column(String(255), nullable=False)

    embedding: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    encoding: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    dimension: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("key", "vector_model", name="unique_key_per_model"),
        Index("idx_embeddings_cache_key", "key"),
        Index("idx_embeddings_cache_model", "vector_model"),
    )

    def __repr__(self) -> str:
        key_preview = self.key[:40] + "..." if len(self.key) > 40 else self.key
        return (
            f"<EmbeddingCacheEntry(key='{key_preview}', model='{self.vector_model}', "
            f"dim={self.dimension}, encoding={self.encoding})>"
        )


class Keyword(Base):
    """
    Keyword row from the project item store.

    A row is a categorization target when ``is_keyword`` is set and
    ``target_query`` is not explicitly false, and a category candidate when
    ``is_category`` is set.
    """

    __tablename__ = "keywords"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False)

    keyword: Mapped[str] = mapped_column(Text, nullable=False)

    is_keyword: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_category: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    target_query: Mapped[Optional[bool]] = mapped_column(
        Boolean, default=True, nullable=True
    )
    has_embedding: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_keywords_project_id", "project_id", "id"),
        Index("idx_keywords_project_category", "project_id", "is_category"),
    )

    @validates("keyword")
    def validate_keyword(self, key: str, keyword: str) -> str:
        """Validate keyword text."""
        if not keyword or not keyword.strip():
            raise ValidationError(
                "Keyword text cannot be empty", field="keyword", value=keyword
            )
        return keyword.strip()

    def __repr__(self) -> str:
        return (
            f"<Keyword(id={self.id}, project={self.project_id}, "
            f"keyword='{self.keyword}', category={self.is_category})>"
        )


class TypingSample(Base):
    """Labeled training sample for the embeddings classifier."""

    __tablename__ = "typing_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False)

    label: Mapped[str] = mapped_column(String(255), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_typing_samples_project_id", "project_id", "id"),)

    @validates("label", "text")
    def validate_not_empty(self, key: str, value: str) -> str:
        """Validate label and text are not empty."""
        if not value or not value.strip():
            raise ValidationError(
                f"Typing sample {key} cannot be empty", field=key, value=value
            )
        return value.strip()

    def __repr__(self) -> str:
        return f"<TypingSample(id={self.id}, label='{self.label}', text='{self.text}')>"


class TypingModel(Base):
    """Persisted classifier, one per project (upsert by owner)."""

    __tablename__ = "typing_model"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    model_name: Mapped[str] = mapped_column(String(64), nullable=False)
    vector_model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("length(payload_json) > 0", name="non_empty_payload"),
    )

    def __repr__(self) -> str:
        return (
            f"<TypingModel(project={self.project_id}, model='{self.model_name}', "
            f"vector_model='{self.vector_model}')>"
        )
