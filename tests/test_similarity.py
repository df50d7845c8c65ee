"""
Tests for cosine similarity helpers.
"""

import numpy as np
import pytest

from semantic_categorizer.matching.similarity import (
    cosine_matrix,
    cosine_similarity,
    unit_rows,
)


class TestCosineSimilarity:
    """Test pairwise cosine similarity."""

    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 5.0]) == pytest.approx(0.0)

    def test_scale_invariant(self) -> None:
        """Test that magnitude does not change the score."""
        assert cosine_similarity([1.0, 1.0], [10.0, 10.0]) == pytest.approx(1.0)

    def test_zero_norm_is_zero(self) -> None:
        """Test that a zero vector scores 0 instead of NaN."""
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_result_is_clipped(self) -> None:
        """Test that rounding never pushes scores outside [-1, 1]."""
        vector = np.full(1000, 0.1, dtype=np.float32)
        assert -1.0 <= cosine_similarity(vector, vector) <= 1.0

    def test_shape_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestCosineMatrix:
    """Test the batched similarity matrix."""

    def test_matches_pairwise(self) -> None:
        """Test that the matrix agrees with the pairwise function."""
        rng = np.random.default_rng(3)
        targets = rng.normal(size=(5, 6))
        categories = rng.normal(size=(4, 6))

        scores = cosine_matrix(targets, categories)

        assert scores.shape == (5, 4)
        for i in range(5):
            for j in range(4):
                assert scores[i, j] == pytest.approx(
                    cosine_similarity(targets[i], categories[j])
                )

    def test_zero_rows(self) -> None:
        """Test that zero vectors produce zero scores."""
        scores = cosine_matrix(np.zeros((1, 3)), np.eye(3))
        assert scores.tolist() == [[0.0, 0.0, 0.0]]

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_matrix(np.ones((2, 3)), np.ones((2, 4)))

    def test_requires_2d(self) -> None:
        with pytest.raises(ValueError):
            cosine_matrix(np.ones(3), np.ones((2, 3)))


def test_unit_rows() -> None:
    rows = unit_rows(np.array([[3.0, 4.0], [0.0, 0.0]]))
    np.testing.assert_allclose(rows, [[0.6, 0.8], [0.0, 0.0]])
