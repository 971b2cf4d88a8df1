"""
tests/test_entropy.py - Tests for entropy.py

Every test has assert statements.
"""

import math

import pytest

from entropy import (
    emit_entropy_measurement,
    entropy_delta,
    euclidean_norm,
    shannon_entropy,
)


class TestShannonEntropy:
    """Tests for shannon_entropy."""

    def test_empty(self):
        """Empty input returns 0.0 - no uncertainty."""
        result = shannon_entropy([])
        assert result == 0.0, f"Expected 0.0 for empty input, got {result}"

    def test_point_mass(self):
        """A point mass has no uncertainty."""
        result = shannon_entropy([1.0])
        assert result == 0.0, f"Expected 0.0 for point mass, got {result}"

    def test_zeros_ignored(self):
        """0 * log(0) is taken as 0."""
        result = shannon_entropy([1.0, 0.0, 0.0])
        assert result == 0.0, f"Expected zeros to contribute nothing, got {result}"

    @pytest.mark.parametrize("n", [2, 3, 4, 8, 10])
    def test_uniform(self, n):
        """Uniform over n states = log2(n) bits."""
        result = shannon_entropy([1.0 / n] * n)
        assert abs(result - math.log2(n)) < 1e-10, f"Expected log2({n}), got {result}"

    def test_random_walk_two_steps(self):
        """Masses 0.25/0.5/0.25 give 1.5 bits."""
        result = shannon_entropy([0.25, 0.5, 0.25])
        assert abs(result - 1.5) < 1e-12, f"Expected 1.5 bits, got {result}"

    def test_never_negative(self):
        """Masses slightly above 1 do not produce negative entropy."""
        assert shannon_entropy([1.0 + 1e-15]) == 0.0


class TestEuclideanNorm:
    """Tests for euclidean_norm."""

    def test_point_mass(self):
        result = euclidean_norm([1.0])
        assert result == 1.0, f"Expected 1.0 for point mass, got {result}"

    def test_uniform(self):
        """Uniform over 4 states has norm 1/2."""
        result = euclidean_norm([0.25] * 4)
        assert abs(result - 0.5) < 1e-12, f"Expected 0.5, got {result}"

    def test_empty(self):
        assert euclidean_norm([]) == 0.0


class TestEntropyDelta:
    """Tests for entropy_delta."""

    def test_spreading_is_positive(self):
        """Spreading mass increases entropy."""
        delta = entropy_delta([1.0], [0.5, 0.5])
        assert abs(delta - 1.0) < 1e-12, f"Expected +1.0, got {delta}"

    def test_concentrating_is_negative(self):
        delta = entropy_delta([0.5, 0.5], [1.0])
        assert delta < 0, f"Expected negative delta, got {delta}"


class TestEntropyMeasurementReceipt:
    """Tests for emit_entropy_measurement."""

    def test_fields(self):
        """Receipt records before/after entropy and support size."""
        r = emit_entropy_measurement("t", 1, [1.0], [0.5, 0.5])
        assert r["receipt_type"] == "entropy_measurement"
        assert r["time"] == 1
        assert r["entropy_before"] == 0.0
        assert abs(r["entropy_after"] - 1.0) < 1e-12
        assert r["support_size"] == 2

    def test_delta_matches_entropy_delta(self):
        """Receipt delta is after - before, as entropy_delta computes it."""
        r = emit_entropy_measurement("t", 2, [0.5, 0.5], [0.25, 0.5, 0.25])
        expected = entropy_delta([0.5, 0.5], [0.25, 0.5, 0.25])
        assert r["entropy_delta"] == expected, f"Expected {expected}, got {r['entropy_delta']}"
        assert abs(r["entropy_delta"] - 0.5) < 1e-12
