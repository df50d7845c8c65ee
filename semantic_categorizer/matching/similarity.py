"""
Cosine similarity helpers.
"""

import numpy as np

from ..models import Vector


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    Cosine similarity of two vectors, clipped to [-1, 1].

    Returns 0.0 when either vector has zero norm.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"vector shapes differ: {a.shape} vs {b.shape}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


def unit_rows(matrix: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0, 1.0, norms)
    return np.where(norms == 0, 0.0, matrix / safe)


def cosine_matrix(targets: np.ndarray, categories: np.ndarray) -> np.ndarray:
    """
    Pairwise cosine similarity between two stacks of row vectors.

    Args:
        targets: Array of shape (T, D)
        categories: Array of shape (C, D)

    Returns:
        Array of shape (T, C) with values in [-1, 1]; rows or columns that
        belong to zero vectors are 0.
    """
    targets = np.asarray(targets, dtype=np.float64)
    categories = np.asarray(categories, dtype=np.float64)
    if targets.ndim != 2 or categories.ndim != 2:
        raise ValueError("cosine_matrix expects two 2-d arrays")
    if targets.shape[1] != categories.shape[1]:
        raise ValueError(
            f"dimension mismatch: {targets.shape[1]} vs {categories.shape[1]}"
        )

    scores = unit_rows(targets) @ unit_rows(categories).T
    return np.clip(scores, -1.0, 1.0)
