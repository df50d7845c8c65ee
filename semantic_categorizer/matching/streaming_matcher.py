"""
Streaming nearest-category matcher.

For each bounded page of targets, every page of categories is streamed past
it and each target keeps its running best match. Only one target page and one
category page of embeddings are alive at any time.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..config import CategorizerConfig
from ..embeddings.fetcher import EmbeddingFetcher
from ..exceptions import InvalidEmbeddingDimensionError, OperationAbortedError
from ..models import AssignmentResult, EmbeddingSource, Item
from .item_store import ItemSource, ReadyFlagWriter
from .similarity import cosine_matrix

logger = logging.getLogger(__name__)


@dataclass
class MatchProgress:
    """Targets fully matched so far."""

    processed: int
    total: int
    stage: str = "matching"

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return min(100, round(self.processed / self.total * 100))


@dataclass
class MatchStats:
    """Counters collected while streaming."""

    target_pages: int = 0
    category_pages: int = 0
    targets_processed: int = 0
    targets_unmatched: int = 0
    comparisons: int = 0
    peak_live_embeddings: int = 0


@dataclass
class _ResolvedPage:
    items: List[Item]
    vectors: List[Optional[np.ndarray]]
    sources: List[EmbeddingSource]
    ready_ids: List[int]

    def stacked(self) -> Tuple[List[int], Optional[np.ndarray]]:
        """Row positions that have a vector, and the vectors as one matrix."""
        rows = [i for i, vector in enumerate(self.vectors) if vector is not None]
        if not rows:
            return rows, None

        dimension = len(self.vectors[rows[0]])
        for i in rows:
            if len(self.vectors[i]) != dimension:
                raise InvalidEmbeddingDimensionError(
                    expected=dimension, actual=len(self.vectors[i]), index=i
                )
        return rows, np.vstack([self.vectors[i] for i in rows])


@dataclass
class _RunningBest:
    scores: np.ndarray
    ids: List[Optional[int]]
    names: List[Optional[str]]


class StreamingCategoryMatcher:
    """
    Assigns every target item the category with the highest cosine similarity.

    Results are produced as an async iterator, one target page at a time.
    Ties keep the category seen first in cursor order.
    """

    def __init__(
        self,
        fetcher: EmbeddingFetcher,
        target_page_size: int = 2000,
        category_page_size: int = 500,
        model: Optional[str] = None,
        cache_only: bool = False,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            fetcher: Embedding fetcher used for items without a vector
            target_page_size: Targets held in memory at once
            category_page_size: Categories held in memory at once
            model: Embedding model name (defaults to the fetcher's)
            cache_only: Resolve embeddings from the cache only
        """
        if target_page_size <= 0 or category_page_size <= 0:
            raise ValueError("page sizes must be positive")

        self.fetcher = fetcher
        self.target_page_size = target_page_size
        self.category_page_size = category_page_size
        self.model = model
        self.cache_only = cache_only

        self.stats = MatchStats()
        self.last_completed_id: Optional[int] = None

    @classmethod
    def from_config(
        cls, config: CategorizerConfig, fetcher: EmbeddingFetcher, **kwargs: Any
    ) -> "StreamingCategoryMatcher":
        return cls(
            fetcher,
            target_page_size=config.target_page_size,
            category_page_size=config.category_page_size,
            model=config.embedding_model,
            **kwargs,
        )

    async def stream(
        self,
        targets: ItemSource,
        categories: ItemSource,
        ready_writer: Optional[ReadyFlagWriter] = None,
        on_progress: Optional[Callable[[MatchProgress], Any]] = None,
        cancel: Any = None,
        start_after_id: Optional[int] = None,
        initial_processed: int = 0,
    ) -> AsyncIterator[AssignmentResult]:
        """
        Stream one AssignmentResult per target.

        Args:
            targets: Target item source
            categories: Category item source
            ready_writer: Receives ids whose embeddings were resolved
            on_progress: Called after each target page with MatchProgress
            cancel: Object with ``is_set()``; checked before each target page
            start_after_id: Resume after this target id
            initial_processed: Targets already processed before a resume
        """
        self.stats = MatchStats()
        self.last_completed_id = start_after_id

        total = targets.count()
        processed = initial_processed
        cursor = start_after_id
        categories_marked = False

        logger.info(
            f"Streaming match of {total} targets "
            f"(target page {self.target_page_size}, "
            f"category page {self.category_page_size})"
        )

        while True:
            if cancel is not None and cancel.is_set():
                raise OperationAbortedError(stage="matching")

            page = targets.fetch_page(cursor, self.target_page_size)
            if not page:
                break

            target_page = await self._resolve(page, "targets", cancel)
            if ready_writer is not None and target_page.ready_ids:
                ready_writer.mark_ready(target_page.ready_ids)

            results = await self._match_page(
                target_page,
                categories,
                ready_writer=None if categories_marked else ready_writer,
                cancel=cancel,
            )
            categories_marked = True

            for result in results:
                yield result

            cursor = page[-1].id
            self.last_completed_id = cursor
            processed += len(page)
            self.stats.target_pages += 1
            self.stats.targets_processed += len(page)

            logger.debug(
                f"Target page ending at id {cursor} done ({processed}/{total})"
            )
            if on_progress is not None:
                on_progress(MatchProgress(processed=processed, total=total))

        logger.info(
            f"Streaming match finished: {self.stats.targets_processed} targets, "
            f"{self.stats.comparisons} comparisons, "
            f"{self.stats.targets_unmatched} unmatched"
        )

    async def match_all(
        self, targets: ItemSource, categories: ItemSource, **kwargs: Any
    ) -> List[AssignmentResult]:
        """Collect the whole stream into a list."""
        return [
            result async for result in self.stream(targets, categories, **kwargs)
        ]

    async def _match_page(
        self,
        target_page: _ResolvedPage,
        categories: ItemSource,
        ready_writer: Optional[ReadyFlagWriter],
        cancel: Any,
    ) -> List[AssignmentResult]:
        count = len(target_page.items)
        best = _RunningBest(
            scores=np.full(count, -np.inf),
            ids=[None] * count,
            names=[None] * count,
        )
        rows, target_matrix = target_page.stacked()

        category_cursor = None
        while True:
            # Each category page is released inside the call, before the next fetch
            category_cursor = await self._scan_category_page(
                categories,
                category_cursor,
                rows,
                target_matrix,
                best,
                ready_writer,
                cancel,
            )
            if category_cursor is None:
                break

        results = []
        for position, item in enumerate(target_page.items):
            if best.ids[position] is None:
                self.stats.targets_unmatched += 1
                score = None
            else:
                score = float(best.scores[position])
            results.append(
                AssignmentResult(
                    item_id=item.id,
                    best_category_id=best.ids[position],
                    best_category_name=best.names[position],
                    similarity_score=score,
                    embedding_source=target_page.sources[position],
                )
            )
        return results

    async def _scan_category_page(
        self,
        categories: ItemSource,
        after_id: Optional[int],
        rows: List[int],
        target_matrix: Optional[np.ndarray],
        best: "_RunningBest",
        ready_writer: Optional[ReadyFlagWriter],
        cancel: Any,
    ) -> Optional[int]:
        """Fold one category page into ``best``; returns its last id, or None at the end."""
        category_items = categories.fetch_page(after_id, self.category_page_size)
        if not category_items:
            return None
        last_id = category_items[-1].id
        self.stats.category_pages += 1

        # Without targets to compare, a page is only resolved for its ready flags
        if target_matrix is None and ready_writer is None:
            return last_id

        category_page = await self._resolve(category_items, "categories", cancel)
        if ready_writer is not None and category_page.ready_ids:
            ready_writer.mark_ready(category_page.ready_ids)

        columns, category_matrix = category_page.stacked()
        if target_matrix is None or category_matrix is None:
            return last_id

        if category_matrix.shape[1] != target_matrix.shape[1]:
            raise InvalidEmbeddingDimensionError(
                expected=target_matrix.shape[1],
                actual=category_matrix.shape[1],
            )

        live = target_matrix.shape[0] + category_matrix.shape[0]
        self.stats.peak_live_embeddings = max(self.stats.peak_live_embeddings, live)
        self.stats.comparisons += target_matrix.shape[0] * category_matrix.shape[0]

        scores = cosine_matrix(target_matrix, category_matrix)
        # argmax returns the first maximum, so in-page ties keep cursor order
        page_best = np.argmax(scores, axis=1)
        page_scores = scores[np.arange(len(rows)), page_best]

        # Strictly greater, so earlier pages win ties
        row_index = np.asarray(rows, dtype=np.intp)
        improved = np.nonzero(page_scores > best.scores[row_index])[0]
        for row_pos in improved:
            position = rows[row_pos]
            item = category_page.items[columns[page_best[row_pos]]]
            best.scores[position] = page_scores[row_pos]
            best.ids[position] = item.id
            best.names[position] = item.text
        return last_id

    async def _resolve(
        self, items: Sequence[Item], stage: str, cancel: Any
    ) -> _ResolvedPage:
        vectors: List[Optional[np.ndarray]] = [None] * len(items)
        sources = [EmbeddingSource.UNKNOWN] * len(items)
        pending = []

        for position, item in enumerate(items):
            if item.vector is not None:
                vectors[position] = np.asarray(item.vector, dtype=np.float32)
            else:
                pending.append(position)

        ready_ids = []
        resolved = 0
        if pending:
            fetched = await self.fetcher.fetch(
                [items[position].text for position in pending],
                model=self.model,
                cache_only=self.cache_only,
                cancel=cancel,
                stage=stage,
            )
            for position, vector, source in zip(
                pending, fetched.vectors, fetched.sources
            ):
                vectors[position] = vector
                sources[position] = source
                if vector is None:
                    continue
                resolved += 1
                if not items[position].ready:
                    ready_ids.append(items[position].id)

            skipped = len(pending) - resolved
            if skipped:
                logger.warning(f"{skipped} {stage} without usable text were skipped")

        return _ResolvedPage(
            items=list(items), vectors=vectors, sources=sources, ready_ids=ready_ids
        )

