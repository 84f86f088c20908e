"""Tests for the finite-difference Jacobian utilities."""

import numpy as np
import pytest

from panobundle.core.math.jacobians import (
    JacobianTester,
    check_jacobian,
    finite_difference_jacobian,
)


def quadratic(x):
    return np.array([x[0] ** 2 + x[1], np.sin(x[1]) * x[0]])


def quadratic_jacobian(x):
    return np.array([
        [2 * x[0], 1.0],
        [np.sin(x[1]), np.cos(x[1]) * x[0]],
    ])


class TestFiniteDifferences:
    """Test finite-difference Jacobian computation."""

    def test_linear_function_exact(self):
        """Test that a linear map is recovered."""
        A = np.array([[1.0, 2.0, 3.0], [-1.0, 0.5, 0.0]])
        J = finite_difference_jacobian(lambda x: A @ x, np.array([0.3, -0.2, 1.0]))
        np.testing.assert_allclose(J, A, atol=1e-9)

    @pytest.mark.parametrize("method", ["forward", "backward", "central"])
    def test_methods(self, method):
        """Test all difference schemes on a smooth function."""
        x = np.array([0.7, -1.3])
        J = finite_difference_jacobian(quadratic, x, h=1e-7, method=method)
        np.testing.assert_allclose(J, quadratic_jacobian(x), atol=1e-5)

    def test_unknown_method(self):
        """Test that an unknown scheme is rejected."""
        with pytest.raises(ValueError):
            finite_difference_jacobian(quadratic, np.zeros(2), method="spline")

    def test_check_jacobian(self):
        """Test analytic vs numeric comparison."""
        x = np.array([0.2, 0.9])
        is_correct, max_error, error = check_jacobian(quadratic, quadratic_jacobian, x)

        assert is_correct
        assert max_error < 1e-6
        assert error.shape == (2, 2)

    def test_check_jacobian_detects_error(self):
        """Test that a wrong Jacobian is flagged."""
        x = np.array([0.2, 0.9])
        is_correct, max_error, _ = check_jacobian(quadratic, lambda x: np.zeros((2, 2)), x)

        assert not is_correct
        assert max_error > 0.1

    def test_check_jacobian_shape_mismatch(self):
        """Test that shape mismatches raise."""
        with pytest.raises(ValueError):
            check_jacobian(quadratic, lambda x: np.zeros((3, 2)), np.zeros(2))

    def test_jacobian_tester(self):
        """Test multi-point checking."""
        tester = JacobianTester(atol=1e-6)
        points = tester.generate_random_test_points(2, n_points=5, seed=1)

        assert len(points) == 5
        assert tester.test_jacobian(quadratic, quadratic_jacobian, points)
        assert not tester.test_jacobian(quadratic, lambda x: np.eye(2), points)
