"""
Classifier training with reuse of a persisted, still-valid model.

Retraining is skipped when every sample already has a cached embedding at
the persisted model's dimension and the persisted model was produced by the
current training code for the same embedding model. In that case the
provider is never called and no epochs run.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from ..config import CategorizerConfig
from ..embeddings.fetcher import EmbeddingFetcher, FetchProgress, FetchResult
from ..exceptions import (
    CacheMissError,
    InvalidEmbeddingError,
    ModelCompatibilityError,
    ValidationError,
)
from ..models import LabeledSample, Vector
from .logistic_regression import (
    MODEL_NAME,
    MODEL_VERSION,
    ClassifierModel,
    TrainingProgress,
    train_classifier,
)
from .model_store import ModelStore

logger = logging.getLogger(__name__)


@dataclass
class TrainingOutcome:
    """Result of ``train_or_reuse``."""

    model: ClassifierModel
    reused: bool
    epochs_run: int
    samples: int
    provider_calls: int = 0
    fetched: int = 0


class ClassifierTrainer:
    """
    Trains softmax classifiers over sample embeddings.

    Features:
    - Deterministic training when a seed is configured
    - Embedding resolution through the cache-first fetcher
    - Reuse of a persisted model when nothing relevant changed
    - Upsert of the trained model by owner
    """

    def __init__(
        self,
        fetcher: EmbeddingFetcher,
        model_store: Optional[ModelStore] = None,
        epochs: int = 500,
        learning_rate: float = 0.1,
        batch_size: int = 32,
        l2_reg: float = 1e-4,
        seed: Optional[int] = None,
        vector_model: Optional[str] = None,
    ) -> None:
        self.fetcher = fetcher
        self.model_store = model_store
        self.epochs = epochs
        self.learning_rate = learning_rate
        self.batch_size = batch_size
        self.l2_reg = l2_reg
        self.seed = seed
        self.vector_model = vector_model or fetcher.model

    @classmethod
    def from_config(
        cls,
        config: CategorizerConfig,
        fetcher: EmbeddingFetcher,
        model_store: Optional[ModelStore] = None,
    ) -> "ClassifierTrainer":
        return cls(
            fetcher,
            model_store=model_store,
            epochs=config.training_epochs,
            learning_rate=config.learning_rate,
            batch_size=config.training_batch_size,
            l2_reg=config.l2_reg,
            seed=config.training_seed,
            vector_model=config.embedding_model,
        )

    def train(
        self,
        samples: Sequence[LabeledSample],
        embeddings: Sequence[Optional[Vector]],
        epochs: Optional[int] = None,
        learning_rate: Optional[float] = None,
        batch_size: Optional[int] = None,
        l2_reg: Optional[float] = None,
        on_epoch: Optional[Callable[[TrainingProgress], Any]] = None,
        cancel: Any = None,
    ) -> ClassifierModel:
        """
        Train a new model from samples and their aligned embeddings.

        Raises:
            ValidationError: on empty data or mismatched lengths
            InvalidEmbeddingError: for a missing or non-finite embedding
            InvalidEmbeddingDimensionError: for a dimension differing from the first
        """
        if not samples:
            raise ValidationError("Empty training data", field="samples")

        return train_classifier(
            [sample.label for sample in samples],
            embeddings,
            epochs=epochs if epochs is not None else self.epochs,
            learning_rate=(
                learning_rate if learning_rate is not None else self.learning_rate
            ),
            batch_size=batch_size if batch_size is not None else self.batch_size,
            l2_reg=l2_reg if l2_reg is not None else self.l2_reg,
            seed=self.seed,
            on_epoch=on_epoch,
            cancel=cancel,
        )

    async def train_or_reuse(
        self,
        owner_id: int,
        samples: Sequence[LabeledSample],
        on_fetch_progress: Optional[Callable[[FetchProgress], Any]] = None,
        on_epoch: Optional[Callable[[TrainingProgress], Any]] = None,
        cancel: Any = None,
    ) -> TrainingOutcome:
        """
        Return the owner's persisted model if still valid, otherwise retrain.

        Args:
            owner_id: Owner (project) the model belongs to
            samples: Current labeled samples
            on_fetch_progress: Progress callback for embedding fetches
            on_epoch: Progress callback for training epochs
            cancel: Object with ``is_set()`` for cooperative cancellation
        """
        if not samples:
            raise ValidationError("Empty training data", field="samples")

        texts = [sample.text for sample in samples]

        current = self._load_current(owner_id)
        if current is not None:
            reusable = await self._cached_at_dimension(texts, current.dimension)
            if reusable:
                logger.info(
                    f"Reusing stored model for owner {owner_id}: "
                    f"{len(samples)} samples cached at dim {current.dimension}"
                )
                return TrainingOutcome(
                    model=current, reused=True, epochs_run=0, samples=len(samples)
                )

        fetched: FetchResult = await self.fetcher.fetch(
            texts,
            model=self.vector_model,
            on_progress=on_fetch_progress,
            cancel=cancel,
            stage="training_embeddings",
        )

        model = self.train(samples, fetched.vectors, on_epoch=on_epoch, cancel=cancel)

        if self.model_store is not None:
            self.model_store.put(owner_id, MODEL_NAME, self.vector_model, model.to_json())

        return TrainingOutcome(
            model=model,
            reused=False,
            epochs_run=self.epochs,
            samples=len(samples),
            provider_calls=fetched.provider_calls,
            fetched=fetched.fetched,
        )

    def _load_current(self, owner_id: int) -> Optional[ClassifierModel]:
        if self.model_store is None:
            return None

        stored = self.model_store.get(owner_id)
        if stored is None:
            return None
        if stored.vector_model != self.vector_model:
            logger.info(
                f"Stored model for owner {owner_id} uses {stored.vector_model}, "
                f"retraining for {self.vector_model}"
            )
            return None

        try:
            model = ClassifierModel.from_json(stored.payload_json)
        except ModelCompatibilityError as e:
            logger.warning(f"Stored model for owner {owner_id} is unusable: {e}")
            return None

        if model.version != MODEL_VERSION:
            logger.info(
                f"Stored model for owner {owner_id} has version {model.version}, "
                f"retraining"
            )
            return None
        return model

    async def _cached_at_dimension(self, texts: List[str], dimension: int) -> bool:
        try:
            cached = await self.fetcher.fetch(
                texts, model=self.vector_model, cache_only=True
            )
        except CacheMissError as e:
            logger.info(f"{len(e.missing_texts)} sample embeddings not cached yet")
            return False

        for index, vector in enumerate(cached.vectors):
            if vector is None:
                raise InvalidEmbeddingError("sample text is empty", index=index)
            if len(vector) != dimension:
                logger.info(
                    f"Cached embedding dim {len(vector)} differs from model dim "
                    f"{dimension}"
                )
                return False
        return True
