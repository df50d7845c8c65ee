"""
Multiclass logistic regression (softmax) over embedding vectors.

This module holds the numeric core shared by training and prediction:
L2 normalization, a numerically stable softmax, mini-batch SGD on the
cross-entropy loss, and the model payload format.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from ..exceptions import (
    InvalidEmbeddingDimensionError,
    InvalidEmbeddingError,
    ModelCompatibilityError,
    OperationAbortedError,
    ValidationError,
)
from ..models import EmbeddingSource, Vector

logger = logging.getLogger(__name__)

MODEL_NAME = "logreg"
MODEL_VERSION = "logreg-l2norm-v1"

# Vectors with a smaller norm are left unscaled
NORM_EPSILON = 1e-12


@dataclass
class TrainingProgress:
    """Completed training epochs."""

    epoch: int
    total: int
    stage: str = "training"

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.epoch / self.total * 100)


@dataclass
class Prediction:
    """Arg-max label plus the full probability and logit vectors."""

    label: str
    score: float
    probabilities: List[float] = field(default_factory=list)
    logits: List[float] = field(default_factory=list)
    embedding_source: EmbeddingSource = EmbeddingSource.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "score": self.score,
            "probs": self.probabilities,
            "logits": self.logits,
            "embeddingSource": self.embedding_source.value,
        }


@dataclass
class ClassifierModel:
    """
    Trained softmax classifier.

    ``weights`` is K x D, ``bias`` has K entries and ``labels`` lists the K
    class names in first-seen training order.
    """

    weights: np.ndarray
    bias: np.ndarray
    labels: List[str]
    dimension: int
    version: Optional[str] = MODEL_VERSION

    def __post_init__(self):
        self.weights = np.asarray(self.weights, dtype=np.float64)
        self.bias = np.asarray(self.bias, dtype=np.float64)
        self.labels = [str(label) for label in self.labels]
        self._validate()

    def _validate(self):
        k = len(self.labels)
        if k == 0:
            raise ModelCompatibilityError("Model has no labels")
        if len(set(self.labels)) != k:
            raise ModelCompatibilityError("Model labels must be unique")
        if self.weights.ndim != 2 or self.weights.shape[0] != k:
            raise ModelCompatibilityError(
                f"weights shape {self.weights.shape} does not match {k} labels"
            )
        if self.bias.shape != (k,):
            raise ModelCompatibilityError(
                f"bias shape {self.bias.shape} does not match {k} labels"
            )
        if self.dimension <= 0 or self.weights.shape[1] != self.dimension:
            raise ModelCompatibilityError(
                f"weights have {self.weights.shape[1]} columns, "
                f"model dimension is {self.dimension}"
            )

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serializable representation (keys W, b, labels, D, version)."""
        return {
            "W": self.weights.tolist(),
            "b": self.bias.tolist(),
            "labels": list(self.labels),
            "D": int(self.dimension),
            "version": self.version,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload())

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ClassifierModel":
        """
        Rebuild a model from its payload.

        Payloads written before versioning carry no ``version`` key; they load
        with ``version=None`` and are never considered current.
        """
        if not isinstance(payload, dict):
            raise ModelCompatibilityError(
                f"Model payload must be an object, got {type(payload).__name__}"
            )
        missing = [key for key in ("W", "b", "labels") if key not in payload]
        if missing:
            raise ModelCompatibilityError(f"Model payload is missing {missing}")

        try:
            weights = np.asarray(payload["W"], dtype=np.float64)
            bias = np.asarray(payload["b"], dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ModelCompatibilityError(f"Model payload is not numeric: {e}")

        dimension = payload.get("D")
        if dimension is None and weights.ndim == 2:
            dimension = weights.shape[1]

        return cls(
            weights=weights,
            bias=bias,
            labels=list(payload["labels"]),
            dimension=int(dimension or 0),
            version=payload.get("version"),
        )

    @classmethod
    def from_json(cls, payload_json: str) -> "ClassifierModel":
        try:
            payload = json.loads(payload_json)
        except (TypeError, ValueError) as e:
            raise ModelCompatibilityError(f"Model payload is not valid JSON: {e}")
        return cls.from_payload(payload)


def normalize(vector: Vector) -> np.ndarray:
    """L2-normalize a vector; near-zero vectors pass through unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm < NORM_EPSILON:
        return arr
    return arr / norm


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-wise ``normalize`` for an N x D matrix."""
    matrix = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.maximum(norms, NORM_EPSILON)
    return np.where(norms < NORM_EPSILON, matrix, matrix / safe)


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    logits = np.asarray(logits, dtype=np.float64)
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def stack_embeddings(embeddings: Sequence[Optional[Vector]]) -> np.ndarray:
    """
    Validate and stack training embeddings into an N x D matrix.

    Raises:
        ValidationError: if there are no embeddings
        InvalidEmbeddingError: for a missing or non-finite embedding
        InvalidEmbeddingDimensionError: when a dimension differs from the first
    """
    if len(embeddings) == 0:
        raise ValidationError("Empty training data", field="embeddings")

    rows = []
    dimension = None
    for index, embedding in enumerate(embeddings):
        if embedding is None:
            raise InvalidEmbeddingError("embedding is missing", index=index)
        try:
            row = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidEmbeddingError(f"embedding is not numeric: {e}", index=index)
        if row.ndim != 1 or row.size == 0:
            raise InvalidEmbeddingError("embedding must be a non-empty vector", index=index)
        if dimension is None:
            dimension = row.size
        elif row.size != dimension:
            raise InvalidEmbeddingDimensionError(
                expected=dimension, actual=row.size, index=index
            )
        if not np.all(np.isfinite(row)):
            raise InvalidEmbeddingError("embedding contains NaN or Inf", index=index)
        rows.append(row)

    return np.vstack(rows)


def build_label_index(labels: Sequence[str]) -> List[str]:
    """Distinct labels in first-seen order."""
    return list(dict.fromkeys(labels))


def train_classifier(
    labels: Sequence[str],
    embeddings: Sequence[Optional[Vector]],
    epochs: int = 500,
    learning_rate: float = 0.1,
    batch_size: int = 32,
    l2_reg: float = 1e-4,
    seed: Optional[int] = None,
    on_epoch: Optional[Callable[[TrainingProgress], Any]] = None,
    cancel: Any = None,
) -> ClassifierModel:
    """
    Fit a softmax classifier with mini-batch SGD.

    Args:
        labels: One label per embedding
        embeddings: Training vectors, all of the same dimension
        epochs: Full passes over the data
        learning_rate: SGD step size
        batch_size: Samples per gradient step
        l2_reg: Weight decay applied to W (not to the bias)
        seed: Seed for the per-epoch shuffles
        on_epoch: Called after every epoch with TrainingProgress
        cancel: Object with ``is_set()``; checked before every epoch

    Returns:
        ClassifierModel tagged with MODEL_VERSION
    """
    if len(labels) != len(embeddings):
        raise ValidationError(
            f"{len(labels)} labels for {len(embeddings)} embeddings",
            field="labels",
        )
    if epochs < 1 or batch_size < 1 or learning_rate <= 0 or l2_reg < 0:
        raise ValidationError(
            "Invalid training hyperparameters",
            field="hyperparameters",
            value=dict(
                epochs=epochs, lr=learning_rate, batch_size=batch_size, l2_reg=l2_reg
            ),
        )

    x = normalize_rows(stack_embeddings(embeddings))
    classes = build_label_index(labels)
    class_index = {label: k for k, label in enumerate(classes)}
    y = np.array([class_index[label] for label in labels], dtype=np.intp)

    n, d = x.shape
    k = len(classes)
    weights = np.zeros((k, d))
    bias = np.zeros(k)
    onehot = np.eye(k)[y]

    rng = np.random.default_rng(seed)
    order = np.arange(n)

    logger.info(
        f"Training softmax classifier: {n} samples, {k} labels, dim {d}, "
        f"{epochs} epochs"
    )

    for epoch in range(epochs):
        if cancel is not None and cancel.is_set():
            raise OperationAbortedError(stage="training")

        rng.shuffle(order)
        for start in range(0, n, batch_size):
            batch = order[start : start + batch_size]
            xb = x[batch]
            probs = softmax(xb @ weights.T + bias)
            diff = probs - onehot[batch]

            grad_w = diff.T @ xb / len(batch) + l2_reg * weights
            grad_b = diff.mean(axis=0)

            weights -= learning_rate * grad_w
            bias -= learning_rate * grad_b

        if on_epoch is not None:
            on_epoch(TrainingProgress(epoch=epoch + 1, total=epochs))

    logger.debug(f"Training finished after {epochs} epochs")
    return ClassifierModel(
        weights=weights, bias=bias, labels=classes, dimension=d, version=MODEL_VERSION
    )


def predict_vector(model: ClassifierModel, vector: Vector) -> Prediction:
    """
    Classify one embedding.

    Raises:
        InvalidEmbeddingDimensionError: if the vector length differs from the model
        InvalidEmbeddingError: if the vector has NaN or Inf values
    """
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1 or arr.size != model.dimension:
        raise InvalidEmbeddingDimensionError(expected=model.dimension, actual=arr.size)
    if not np.all(np.isfinite(arr)):
        raise InvalidEmbeddingError("embedding contains NaN or Inf")

    logits = model.weights @ normalize(arr) + model.bias
    probs = softmax(logits)
    best = int(np.argmax(probs))

    return Prediction(
        label=model.labels[best],
        score=float(probs[best]),
        probabilities=probs.tolist(),
        logits=logits.tolist(),
    )
