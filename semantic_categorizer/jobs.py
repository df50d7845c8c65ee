"""
Long-running jobs: nearest-category categorization and classifier typing.

A job owns its cache, fetcher and database manager for the duration of one
run, streams results through a ResultSink, reports milestones and progress
through a ProgressReporter, and reports a failure exactly once as an
``error`` record before re-raising it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .classification.model_store import ModelStore
from .classification.predictor import ClassifierPredictor
from .classification.trainer import ClassifierTrainer
from .config import CategorizerConfig
from .database.engine import DatabaseManager
from .database.models import Keyword, TypingSample
from .embeddings.cache import EmbeddingCache
from .embeddings.fetcher import EmbeddingFetcher
from .embeddings.provider import EmbeddingProvider, LiteLLMEmbeddingProvider
from .exceptions import (
    OperationAbortedError,
    ProviderRateLimitedError,
    SemanticCategorizerError,
    ValidationError,
)
from .matching.item_store import CATEGORY_ROLE, TARGET_ROLE, KeywordItemSource
from .matching.streaming_matcher import MatchProgress, StreamingCategoryMatcher
from .models import AssignmentResult, LabeledSample
from .progress.reporter import ProgressReporter, ResultSink

logger = logging.getLogger(__name__)

CATEGORIZATION_STAGE = "categorization"
TYPING_STAGE = "typing"


def load_samples(db_manager: DatabaseManager, project_id: int) -> List[LabeledSample]:
    """Labeled samples of a project in id order."""
    with db_manager.get_session() as session:
        rows = (
            session.query(TypingSample)
            .filter(TypingSample.project_id == project_id)
            .order_by(TypingSample.id)
            .all()
        )
        return [LabeledSample(id=r.id, text=r.text, label=r.label) for r in rows]


def category_ids_by_name(db_manager: DatabaseManager, project_id: int) -> Dict[str, int]:
    """Map lower-cased category keyword to its id; the lowest id wins."""
    with db_manager.get_session() as session:
        rows = (
            session.query(Keyword.id, Keyword.keyword)
            .filter(
                Keyword.project_id == project_id,
                Keyword.is_category.is_(True),
            )
            .order_by(Keyword.id)
            .all()
        )

    mapping: Dict[str, int] = {}
    for keyword_id, name in rows:
        mapping.setdefault(name.lower(), keyword_id)
    return mapping


def build_fetcher(
    config: CategorizerConfig,
    db_manager: DatabaseManager,
    provider: Optional[EmbeddingProvider] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> EmbeddingFetcher:
    """Cache-backed fetcher configured from ``config``."""
    if provider is None:
        provider = LiteLLMEmbeddingProvider(
            api_key=config.api_key,
            api_base=config.api_base,
            timeout_seconds=config.request_timeout_seconds,
        )
    cache = EmbeddingCache(db_manager, default_model=config.embedding_model)
    return EmbeddingFetcher(
        cache,
        provider,
        model=config.embedding_model,
        chunk_size=config.embedding_chunk_size,
        chunk_delay_seconds=config.embedding_chunk_delay_seconds,
        sleep=sleep,
    )


@dataclass
class JobSummary:
    """Counters for a finished job."""

    project_id: int
    processed: int = 0
    unmatched: int = 0
    rate_limit_retries: int = 0
    model_reused: Optional[bool] = None
    duration_seconds: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "projectId": self.project_id,
            "processed": self.processed,
            "unmatched": self.unmatched,
            "rateLimitRetries": self.rate_limit_retries,
            "durationSeconds": round(self.duration_seconds, 3),
        }
        if self.model_reused is not None:
            data["modelReused"] = self.model_reused
        data.update(self.details)
        return data


class _JobBase:
    """Wiring shared by the jobs."""

    stage = "job"

    def __init__(
        self,
        config: CategorizerConfig,
        db_manager: Optional[DatabaseManager] = None,
        provider: Optional[EmbeddingProvider] = None,
        reporter: Optional[ProgressReporter] = None,
        results: Optional[ResultSink] = None,
        cancel: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.db_manager = db_manager or DatabaseManager(config)
        self.reporter = reporter or ProgressReporter()
        self.results = results or ResultSink()
        self.cancel = cancel
        self._sleep = sleep

        self.fetcher = build_fetcher(config, self.db_manager, provider, sleep=sleep)
        self.cache = self.fetcher.cache
        self.provider = self.fetcher.provider

    async def run(self, project_id: int) -> JobSummary:
        """Run the job, reporting completion or the single failure record."""
        started = time.monotonic()
        self.reporter.info(
            f"{self.stage} started", stage=self.stage, projectId=project_id
        )

        try:
            summary = await self._run(project_id)
        except OperationAbortedError as e:
            logger.warning(f"{self.stage} for project {project_id} aborted: {e}")
            self.reporter.error(e, stage=self.stage)
            raise
        except SemanticCategorizerError as e:
            logger.error(f"{self.stage} for project {project_id} failed: {e}")
            self.reporter.error(e, stage=self.stage)
            raise
        except Exception as e:
            logger.exception(f"{self.stage} for project {project_id} crashed")
            self.reporter.error(e, stage=self.stage)
            raise

        summary.duration_seconds = time.monotonic() - started
        logger.info(
            f"{self.stage} for project {project_id} finished: "
            f"{summary.processed} items in {summary.duration_seconds:.1f}s"
        )
        self.reporter.complete(stage=self.stage, **summary.to_dict())
        return summary

    async def _run(self, project_id: int) -> JobSummary:
        raise NotImplementedError

    def _emit(self, result: AssignmentResult) -> None:
        self.results.write(result)


class CategorizationJob(_JobBase):
    """
    Assigns every target keyword of a project its nearest category keyword.

    On ``ProviderRateLimitedError`` the job waits with exponential backoff
    and resumes after the last target page it fully emitted.
    """

    stage = CATEGORIZATION_STAGE

    async def _run(self, project_id: int) -> JobSummary:
        targets = KeywordItemSource(self.db_manager, project_id, role=TARGET_ROLE)
        categories = KeywordItemSource(self.db_manager, project_id, role=CATEGORY_ROLE)

        category_count = categories.count()
        if category_count == 0:
            raise ValidationError(
                "Project has no categories to match against",
                field="project_id",
                value=project_id,
            )

        matcher = StreamingCategoryMatcher.from_config(self.config, self.fetcher)
        summary = JobSummary(project_id=project_id)
        self.reporter.info(
            "Matching targets against categories",
            stage=self.stage,
            targets=targets.count(),
            categories=category_count,
        )

        resume_after: Optional[int] = None
        attempt = 0
        while True:
            try:
                async for result in matcher.stream(
                    targets,
                    categories,
                    ready_writer=targets,
                    on_progress=self._on_progress,
                    cancel=self.cancel,
                    start_after_id=resume_after,
                    initial_processed=summary.processed,
                ):
                    self._emit(result)
                    summary.processed += 1
                    if result.best_category_id is None:
                        summary.unmatched += 1
                break
            except ProviderRateLimitedError as e:
                if attempt >= self.config.rate_limit_retries:
                    raise
                delay = self.config.rate_limit_backoff_seconds * (2**attempt)
                attempt += 1
                summary.rate_limit_retries = attempt
                resume_after = matcher.last_completed_id
                logger.warning(
                    f"Rate limited ({e}); retry {attempt}/"
                    f"{self.config.rate_limit_retries} in {delay:.1f}s, "
                    f"resuming after id {resume_after}"
                )
                self.reporter.info(
                    "Rate limited by embedding provider, backing off",
                    stage=self.stage,
                    retryInSeconds=delay,
                    resumeAfterId=resume_after,
                )
                await self._sleep(delay)

        summary.details["comparisons"] = matcher.stats.comparisons
        return summary

    def _on_progress(self, update: MatchProgress) -> None:
        self.reporter.progress(update, stage=self.stage)


class TypingJob(_JobBase):
    """
    Trains (or reuses) the project's classifier and labels its target keywords.

    A predicted label is mapped to the category keyword with the same name
    (case-insensitive); labels without such a category keep a null id.
    """

    stage = TYPING_STAGE

    def __init__(self, config: CategorizerConfig, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self.model_store = ModelStore(self.db_manager)
        self.trainer = ClassifierTrainer.from_config(
            config, self.fetcher, model_store=self.model_store
        )
        self.predictor = ClassifierPredictor(
            self.fetcher,
            model_store=self.model_store,
            vector_model=config.embedding_model,
        )

    async def _run(self, project_id: int) -> JobSummary:
        samples = load_samples(self.db_manager, project_id)
        labels = {sample.label for sample in samples}
        if len(samples) < 2 or len(labels) < 2:
            raise ValidationError(
                "Not enough training samples: need at least two distinct labels",
                field="samples",
                value=len(samples),
            )

        self.reporter.info(
            "Preparing classifier",
            stage=self.stage,
            samples=len(samples),
            labels=len(labels),
        )
        outcome = await self.trainer.train_or_reuse(
            project_id,
            samples,
            on_fetch_progress=lambda update: self.reporter.progress(update),
            on_epoch=lambda update: self.reporter.progress(update),
            cancel=self.cancel,
        )
        self.reporter.info(
            "Reusing stored model" if outcome.reused else "Model trained",
            stage=self.stage,
            epochs=outcome.epochs_run,
        )

        category_ids = category_ids_by_name(self.db_manager, project_id)
        targets = KeywordItemSource(self.db_manager, project_id, role=TARGET_ROLE)
        total = targets.count()
        summary = JobSummary(project_id=project_id, model_reused=outcome.reused)

        cursor = None
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise OperationAbortedError(stage=self.stage)

            page = targets.fetch_page(cursor, self.config.target_page_size)
            if not page:
                break

            predictions = await self.predictor.predict_many(
                [item.text for item in page],
                outcome.model,
                cancel=self.cancel,
                skip_mismatched=True,
            )
            ready_ids = []
            for item, prediction in zip(page, predictions):
                if prediction is None:
                    summary.unmatched += 1
                    self._emit(AssignmentResult(item.id, None, None, None))
                    continue
                if not item.ready:
                    ready_ids.append(item.id)
                self._emit(
                    AssignmentResult(
                        item_id=item.id,
                        best_category_id=category_ids.get(prediction.label.lower()),
                        best_category_name=prediction.label,
                        similarity_score=prediction.score,
                        embedding_source=prediction.embedding_source,
                    )
                )
            targets.mark_ready(ready_ids)

            cursor = page[-1].id
            summary.processed += len(page)
            self.reporter.progress(
                MatchProgress(
                    processed=summary.processed, total=total, stage="classification"
                )
            )

        summary.details["labels"] = outcome.model.labels
        return summary
