"""
Classification module for the semantic categorizer.

This module provides the softmax classifier over embeddings, its
persistence, training with model reuse, prediction and evaluation.
"""

from .evaluation import EvaluationReport, evaluate_model
from .logistic_regression import (
    MODEL_NAME,
    MODEL_VERSION,
    ClassifierModel,
    Prediction,
    TrainingProgress,
    normalize,
    predict_vector,
    softmax,
    train_classifier,
)
from .model_store import ModelStore, StoredModel
from .predictor import ClassifierPredictor
from .trainer import ClassifierTrainer, TrainingOutcome

__all__ = [
    # Model math
    "ClassifierModel",
    "Prediction",
    "TrainingProgress",
    "MODEL_NAME",
    "MODEL_VERSION",
    "normalize",
    "softmax",
    "train_classifier",
    "predict_vector",
    # Persistence
    "ModelStore",
    "StoredModel",
    # Training and prediction
    "ClassifierTrainer",
    "TrainingOutcome",
    "ClassifierPredictor",
    # Evaluation
    "EvaluationReport",
    "evaluate_model",
]
