"""
Cursor-paged item sources for the streaming matcher.

Sources hand out items in increasing id order, one bounded page at a time,
so a matcher never needs the whole target or category set in memory.
"""

import bisect
import logging
from typing import (
    Any,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import numpy as np
from sqlalchemy import or_

from ..database.engine import DatabaseManager
from ..database.models import Keyword
from ..exceptions import ValidationError
from ..models import Item

logger = logging.getLogger(__name__)

READY_FLAG_BATCH_SIZE = 500

TARGET_ROLE = "target"
CATEGORY_ROLE = "category"


@runtime_checkable
class ItemSource(Protocol):
    """Cursor-paged read access to targets or categories."""

    def fetch_page(self, after_id: Optional[int], limit: int) -> List[Item]:
        """Return up to ``limit`` items with id > ``after_id``, ordered by id."""
        ...

    def count(self) -> int:
        """Total number of items the source will page through."""
        ...


@runtime_checkable
class ReadyFlagWriter(Protocol):
    """Records that items have a resolved embedding."""

    def mark_ready(self, ids: Sequence[int]) -> int:
        ...


def _check_limit(limit: int) -> None:
    if limit <= 0:
        raise ValidationError("Page limit must be positive", field="limit", value=limit)


def _normalize_name(text: str) -> str:
    return " ".join(text.split()).lower()


class KeywordItemSource:
    """
    Keyword table source for one project.

    ``role="target"`` pages keywords flagged as targets (``is_keyword`` set
    and ``target_query`` not explicitly false); ``role="category"`` pages
    keywords flagged ``is_category``.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        project_id: int,
        role: str = TARGET_ROLE,
        ready_batch_size: int = READY_FLAG_BATCH_SIZE,
    ) -> None:
        if role not in (TARGET_ROLE, CATEGORY_ROLE):
            raise ValidationError(
                f"Unknown item role '{role}'", field="role", value=role
            )
        if not (0 < ready_batch_size <= READY_FLAG_BATCH_SIZE):
            raise ValidationError(
                f"ready_batch_size must be between 1 and {READY_FLAG_BATCH_SIZE}",
                field="ready_batch_size",
                value=ready_batch_size,
            )

        self.db_manager = db_manager
        self.project_id = project_id
        self.role = role
        self.ready_batch_size = ready_batch_size

    def _filtered(self, session):
        query = session.query(Keyword).filter(Keyword.project_id == self.project_id)
        if self.role == CATEGORY_ROLE:
            return query.filter(Keyword.is_category.is_(True))
        return query.filter(
            Keyword.is_keyword.is_(True),
            or_(Keyword.target_query.is_(None), Keyword.target_query.is_(True)),
        )

    def fetch_page(self, after_id: Optional[int], limit: int) -> List[Item]:
        _check_limit(limit)
        with self.db_manager.get_session() as session:
            query = self._filtered(session)
            if after_id is not None:
                query = query.filter(Keyword.id > after_id)
            rows = query.order_by(Keyword.id).limit(limit).all()
            return [
                Item(id=row.id, text=row.keyword, ready=bool(row.has_embedding))
                for row in rows
            ]

    def count(self) -> int:
        with self.db_manager.get_session() as session:
            return self._filtered(session).count()

    def mark_ready(self, ids: Sequence[int]) -> int:
        """Set ``has_embedding`` for ``ids`` in batches. Returns rows updated."""
        ids = list(dict.fromkeys(ids))
        updated = 0
        for start in range(0, len(ids), self.ready_batch_size):
            batch = ids[start : start + self.ready_batch_size]
            with self.db_manager.get_session() as session:
                updated += (
                    session.query(Keyword)
                    .filter(Keyword.id.in_(batch))
                    .update({Keyword.has_embedding: True}, synchronize_session=False)
                )

        if ids:
            logger.debug(f"Marked {updated} {self.role} keywords as embedded")
        return updated


class InMemoryItemSource:
    """
    Source over an explicit list of items.

    Also acts as its own ReadyFlagWriter by remembering ready ids, which is
    enough for callers that pass items directly instead of a project.
    """

    def __init__(self, items: Iterable[Item]) -> None:
        self._items = sorted(items, key=lambda item: item.id)
        self._ids = [item.id for item in self._items]
        if len(set(self._ids)) != len(self._ids):
            raise ValidationError("Item ids must be unique", field="items")
        self.ready_ids: set = set()

    @classmethod
    def from_texts(
        cls, texts: Iterable[str], start_id: int = 1, dedupe: bool = False
    ) -> "InMemoryItemSource":
        """
        Build a source from plain strings, numbering them from ``start_id``.

        With ``dedupe`` set, texts that differ only in case or whitespace are
        collapsed to their first occurrence. Blank texts are dropped.
        """
        items = []
        seen = set()
        for text in texts:
            if not text or not text.strip():
                continue
            if dedupe:
                name = _normalize_name(text)
                if name in seen:
                    continue
                seen.add(name)
            items.append(Item(id=start_id + len(items), text=text.strip()))
        return cls(items)

    @classmethod
    def from_records(
        cls, records: Iterable[Any], dedupe: bool = False
    ) -> "InMemoryItemSource":
        """
        Build a source from strings or mappings.

        A mapping may carry ``id``, ``text`` (or ``keyword``) and a
        precomputed ``vector``. Strings, and mappings without an id, are
        numbered by their 1-based position.
        """
        items = []
        seen = set()
        for position, record in enumerate(records, start=1):
            if isinstance(record, str):
                item_id, text, vector = position, record, None
            elif isinstance(record, dict):
                item_id = int(record.get("id", position))
                text = record.get("text") or record.get("keyword") or ""
                vector = record.get("vector")
            else:
                raise ValidationError(
                    f"Unsupported item record {type(record).__name__}",
                    field="records",
                )

            if not text.strip():
                continue
            if dedupe:
                name = _normalize_name(text)
                if name in seen:
                    continue
                seen.add(name)

            items.append(
                Item(
                    id=item_id,
                    text=text.strip(),
                    vector=None if vector is None else np.asarray(vector, dtype=np.float32),
                )
            )
        return cls(items)

    def fetch_page(self, after_id: Optional[int], limit: int) -> List[Item]:
        _check_limit(limit)
        start = 0 if after_id is None else bisect.bisect_right(self._ids, after_id)
        return self._items[start : start + limit]

    def count(self) -> int:
        return len(self._items)

    def mark_ready(self, ids: Sequence[int]) -> int:
        before = len(self.ready_ids)
        self.ready_ids.update(ids)
        return len(self.ready_ids) - before
