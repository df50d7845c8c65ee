"""
Prediction with a trained classifier.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from ..embeddings.fetcher import EmbeddingFetcher, FetchProgress
from ..exceptions import ModelCompatibilityError, ValidationError
from ..models import Vector
from .logistic_regression import ClassifierModel, Prediction, predict_vector
from .model_store import ModelStore

logger = logging.getLogger(__name__)


class ClassifierPredictor:
    """Resolves inputs to embeddings and applies a ClassifierModel."""

    def __init__(
        self,
        fetcher: EmbeddingFetcher,
        model_store: Optional[ModelStore] = None,
        vector_model: Optional[str] = None,
    ) -> None:
        self.fetcher = fetcher
        self.model_store = model_store
        self.vector_model = vector_model or fetcher.model

    def load_model(self, owner_id: int) -> Optional[ClassifierModel]:
        """
        Load the owner's persisted model.

        Returns None when no model is stored; raises ModelCompatibilityError
        when the stored payload cannot be used.
        """
        if self.model_store is None:
            raise ModelCompatibilityError("No model store configured")

        stored = self.model_store.get(owner_id)
        if stored is None:
            return None
        if stored.vector_model and stored.vector_model != self.vector_model:
            raise ModelCompatibilityError(
                f"Stored model was trained on {stored.vector_model}, "
                f"predictor uses {self.vector_model}"
            )
        return ClassifierModel.from_json(stored.payload_json)

    async def predict(
        self,
        input: Union[str, Vector],
        model: ClassifierModel,
        cache_only: bool = False,
    ) -> Prediction:
        """
        Classify a text or an embedding.

        Text goes through the cache-first fetcher; vectors are used as given.

        Raises:
            ValidationError: for blank text
            InvalidEmbeddingDimensionError: when the embedding length differs from the model
        """
        if isinstance(input, str):
            result = await self.fetcher.fetch(
                [input], model=self.vector_model, cache_only=cache_only
            )
            vector = result.vectors[0]
            if vector is None:
                raise ValidationError("Cannot classify empty text", field="input")
            prediction = predict_vector(model, vector)
            prediction.embedding_source = result.sources[0]
            return prediction

        return predict_vector(model, input)

    async def predict_many(
        self,
        texts: Sequence[str],
        model: ClassifierModel,
        cache_only: bool = False,
        on_progress: Optional[Callable[[FetchProgress], Any]] = None,
        cancel: Any = None,
        skip_mismatched: bool = False,
    ) -> List[Optional[Prediction]]:
        """
        Classify many texts with a single fetch.

        Blank texts give None. Each prediction records whether its embedding
        came from the cache or the provider. With ``skip_mismatched`` a vector
        whose dimension differs from the model also gives None instead of
        raising InvalidEmbeddingDimensionError.
        """
        result = await self.fetcher.fetch(
            texts,
            model=self.vector_model,
            cache_only=cache_only,
            on_progress=on_progress,
            cancel=cancel,
            stage="prediction_embeddings",
        )

        predictions: List[Optional[Prediction]] = []
        for text, vector, source in zip(texts, result.vectors, result.sources):
            if vector is None:
                predictions.append(None)
                continue
            if skip_mismatched and len(vector) != model.dimension:
                logger.warning(
                    f"Skipping {text!r}: cached embedding has dimension "
                    f"{len(vector)}, model expects {model.dimension}"
                )
                predictions.append(None)
                continue
            prediction = predict_vector(model, vector)
            prediction.embedding_source = source
            predictions.append(prediction)
        return predictions
