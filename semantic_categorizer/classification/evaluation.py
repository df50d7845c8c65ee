"""
Accuracy and confusion-matrix evaluation of a trained classifier.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..models import LabeledSample, Vector
from .logistic_regression import ClassifierModel, predict_vector

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    """Evaluation summary over labeled samples."""

    total: int
    evaluated: int
    correct: int
    labels: List[str] = field(default_factory=list)
    true_counts: Dict[str, int] = field(default_factory=dict)
    predicted_counts: Dict[str, int] = field(default_factory=dict)
    # confusion[true_label][predicted_label]
    confusion: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return self.total - self.evaluated

    @property
    def accuracy(self) -> float:
        if self.evaluated == 0:
            return 0.0
        return self.correct / self.evaluated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "correct": self.correct,
            "accuracy": self.accuracy,
            "labels": list(self.labels),
            "trueCounts": dict(self.true_counts),
            "predictedCounts": dict(self.predicted_counts),
            "confusion": {k: dict(v) for k, v in self.confusion.items()},
        }


def evaluate_model(
    model: ClassifierModel,
    samples: Sequence[LabeledSample],
    embeddings: Sequence[Optional[Vector]],
) -> EvaluationReport:
    """
    Score ``model`` against labeled samples.

    ``embeddings`` is aligned to ``samples``; samples without an embedding
    are counted as skipped.
    """
    if len(samples) != len(embeddings):
        raise ValueError(
            f"{len(samples)} samples but {len(embeddings)} embeddings"
        )

    labels = list(model.labels)
    for sample in samples:
        if sample.label not in labels:
            labels.append(sample.label)

    confusion = {true: {pred: 0 for pred in labels} for true in labels}
    true_counts: Counter = Counter()
    predicted_counts: Counter = Counter()
    evaluated = correct = 0

    for sample, embedding in zip(samples, embeddings):
        if embedding is None:
            continue
        predicted = predict_vector(model, embedding).label
        evaluated += 1
        true_counts[sample.label] += 1
        predicted_counts[predicted] += 1
        confusion[sample.label][predicted] += 1
        if predicted == sample.label:
            correct += 1

    report = EvaluationReport(
        total=len(samples),
        evaluated=evaluated,
        correct=correct,
        labels=labels,
        true_counts=dict(true_counts),
        predicted_counts=dict(predicted_counts),
        confusion=confusion,
    )
    logger.info(
        f"Evaluated {evaluated}/{len(samples)} samples: "
        f"accuracy {report.accuracy:.3f}"
    )
    return report
