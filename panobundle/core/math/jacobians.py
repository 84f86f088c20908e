"""Finite-difference Jacobians used to check the analytic derivatives."""

import logging
from typing import Callable, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def finite_difference_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    h: float = 1e-6,
    method: str = "central"
) -> np.ndarray:
    """Compute Jacobian using finite differences.

    Args:
        func: Function that takes x and returns a vector
        x: Input parameters
        h: Step size for finite differences
        method: Finite difference method ("forward", "backward", "central")

    Returns:
        Jacobian matrix J where J[i,j] = df_i/dx_j
    """
    x = np.atleast_1d(np.asarray(x, dtype=float))
    f0 = np.atleast_1d(func(x))

    m, n = len(f0), len(x)
    J = np.zeros((m, n))

    if method not in ("forward", "backward", "central"):
        raise ValueError(f"Unknown finite difference method: {method}")

    for j in range(n):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[j] += h
        x_minus[j] -= h

        if method == "forward":
            J[:, j] = (np.atleast_1d(func(x_plus)) - f0) / h
        elif method == "backward":
            J[:, j] = (f0 - np.atleast_1d(func(x_minus))) / h
        else:
            J[:, j] = (np.atleast_1d(func(x_plus)) - np.atleast_1d(func(x_minus))) / (2 * h)

    return J


def manifold_finite_difference_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    manifold,
    h: float = 1e-6
) -> np.ndarray:
    """Central-difference Jacobian w.r.t. the tangent coordinates of a manifold point.

    Args:
        func: Function of the ambient value (e.g. a 3x3 or flattened rotation)
        x: Ambient value at which to differentiate
        manifold: Object providing ``retract(x, delta)`` and ``tangent_size``
        h: Tangent step size

    Returns:
        Jacobian matrix of shape (m, tangent_size)
    """
    def along_tangent(delta: np.ndarray) -> np.ndarray:
        return np.atleast_1d(func(manifold.retract(x, delta)))

    return finite_difference_jacobian(along_tangent, np.zeros(manifold.tangent_size), h)


def check_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    jacobian_func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    h: float = 1e-6,
    atol: float = 1e-6,
    rtol: float = 1e-5
) -> tuple[bool, float, np.ndarray]:
    """Check analytic Jacobian against central finite differences.

    Args:
        func: Forward function
        jacobian_func: Function that computes the analytic Jacobian
        x: Input parameters
        h: Step size for finite differences
        atol: Absolute tolerance
        rtol: Relative tolerance

    Returns:
        Tuple of (is_correct, max_abs_error, error_matrix)
    """
    J_analytic = np.atleast_2d(jacobian_func(x))
    J_numeric = finite_difference_jacobian(func, x, h)

    if J_analytic.shape != J_numeric.shape:
        raise ValueError(
            f"Analytic Jacobian shape {J_analytic.shape} != numeric shape {J_numeric.shape}"
        )

    error = np.abs(J_analytic - J_numeric)
    is_correct = bool(np.allclose(J_analytic, J_numeric, atol=atol, rtol=rtol))

    return is_correct, float(np.max(error)) if error.size else 0.0, error


class JacobianTester:
    """Helper class for testing Jacobian implementations at many sample points."""

    def __init__(self, atol: float = 1e-6, rtol: float = 1e-5, h: float = 1e-6):
        """Initialize tester with tolerances and step size."""
        self.atol = atol
        self.rtol = rtol
        self.h = h

    def test_jacobian(
        self,
        func: Callable[[np.ndarray], np.ndarray],
        jacobian_func: Callable[[np.ndarray], np.ndarray],
        test_points: Sequence[np.ndarray],
    ) -> bool:
        """Test Jacobian at multiple points.

        Returns:
            True if all tests pass
        """
        all_passed = True

        for i, x in enumerate(test_points):
            is_correct, max_error, _ = check_jacobian(
                func, jacobian_func, x, h=self.h, atol=self.atol, rtol=self.rtol
            )
            if not is_correct:
                logger.debug("Jacobian mismatch at test point %d: max error %.2e", i, max_error)

            all_passed = all_passed and is_correct

        return all_passed

    def generate_random_test_points(
        self,
        n_dims: int,
        n_points: int = 10,
        scale: float = 1.0,
        seed: Optional[int] = None
    ) -> list[np.ndarray]:
        """Generate random test points."""
        rng = np.random.default_rng(seed)
        return [scale * rng.standard_normal(n_dims) for _ in range(n_points)]
