"""Solver diagnostics and analysis tools."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy.linalg import svd

from ..optimization.factor_graph import FactorGraph, VariableType

logger = logging.getLogger(__name__)


class SolveDiagnostics:
    """Diagnostics and analysis for optimization results."""

    def compute_diagnostics(
        self,
        factor_graph: FactorGraph,
        residuals: np.ndarray,
        jacobian: Optional[np.ndarray] = None
    ) -> Dict[str, Any]:
        """Compute comprehensive diagnostics.

        Args:
            factor_graph: Factor graph
            residuals: Final residual vector
            jacobian: Jacobian matrix w.r.t. the packed solver coordinates (optional)

        Returns:
            Dictionary with diagnostic information
        """
        diagnostics = {}

        diagnostics["residuals"] = self._compute_per_view_residuals(factor_graph, residuals)

        if jacobian is not None:
            diagnostics["unconstrained_dofs"] = self._analyze_unconstrained_dofs(
                factor_graph, jacobian
            )
        else:
            diagnostics["unconstrained_dofs"] = []

        diagnostics["largest_residuals"] = self._find_largest_residuals(
            factor_graph, residuals
        )

        diagnostics["statistics"] = self._compute_statistics(residuals)

        return diagnostics

    def _iter_factor_residuals(self, factor_graph: FactorGraph, residuals: np.ndarray):
        residual_offset = 0
        for factor_id in factor_graph.get_factor_ids():
            factor = factor_graph.factors[factor_id]
            residual_dim = factor.residual_dimension()

            if residual_offset + residual_dim <= len(residuals):
                yield factor, residuals[residual_offset:residual_offset + residual_dim]

            residual_offset += residual_dim

    def _compute_per_view_residuals(
        self,
        factor_graph: FactorGraph,
        residuals: np.ndarray
    ) -> Dict[str, float]:
        """RMS residual of the factors predicting into each target view."""
        squares: Dict[str, List[float]] = {}

        for factor, factor_residuals in self._iter_factor_residuals(factor_graph, residuals):
            view_id = getattr(factor, "target_view", None)
            if view_id is None:
                continue
            squares.setdefault(view_id, []).extend((factor_residuals**2).tolist())

        return {
            view_id: float(np.sqrt(np.mean(values)))
            for view_id, values in squares.items()
        }

    def _analyze_unconstrained_dofs(
        self,
        factor_graph: FactorGraph,
        jacobian: np.ndarray
    ) -> List[str]:
        """Analyze under-constrained degrees of freedom.

        Args:
            factor_graph: Factor graph
            jacobian: Jacobian matrix

        Returns:
            List of under-constrained variable descriptions
        """
        unconstrained_dofs = []

        if jacobian.size == 0:
            return unconstrained_dofs

        try:
            U, s, Vt = svd(jacobian, full_matrices=True)
        except (np.linalg.LinAlgError, ValueError) as e:
            logger.warning(f"DOF analysis failed: {e}")
            return [f"DOF analysis failed: {str(e)}"]

        tolerance = 1e-6
        rank = int(np.sum(s > tolerance * s[0])) if len(s) > 0 and s[0] > 0 else 0
        nullspace_dim = jacobian.shape[1] - rank

        if nullspace_dim > 0:
            null_vectors = Vt[rank:].T

            param_offset = 0
            for var_id in factor_graph.get_free_variable_ids():
                variable = factor_graph.variables[var_id]
                size = variable.tangent_size

                var_null_components = null_vectors[param_offset:param_offset + size, :]
                var_null_magnitude = np.linalg.norm(var_null_components)

                if var_null_magnitude > 0.1:
                    unconstrained_dofs.append(f"{var_id} (magnitude: {var_null_magnitude:.3f})")

                param_offset += size

            if not unconstrained_dofs:
                unconstrained_dofs.append(f"System has {nullspace_dim} unconstrained DOFs")

        return unconstrained_dofs

    def _find_largest_residuals(
        self,
        factor_graph: FactorGraph,
        residuals: np.ndarray,
        top_k: int = 10
    ) -> List[Tuple[str, float]]:
        """Find factors with largest residuals.

        Returns:
            List of (factor_id, residual norm) tuples
        """
        factor_residuals = [
            (factor.factor_id, float(np.linalg.norm(values)))
            for factor, values in self._iter_factor_residuals(factor_graph, residuals)
        ]

        factor_residuals.sort(key=lambda x: x[1], reverse=True)
        return factor_residuals[:top_k]

    def _compute_statistics(self, residuals: np.ndarray) -> Dict[str, float]:
        """Compute overall residual statistics."""
        if len(residuals) == 0:
            return {
                "total_residuals": 0,
                "rms_residual": 0.0,
                "max_residual": 0.0,
                "mean_residual": 0.0,
                "std_residual": 0.0
            }

        return {
            "total_residuals": len(residuals),
            "rms_residual": float(np.sqrt(np.mean(residuals**2))),
            "max_residual": float(np.max(np.abs(residuals))),
            "mean_residual": float(np.mean(residuals)),
            "std_residual": float(np.std(residuals))
        }


def analyze_jacobian_rank(jacobian: np.ndarray, tolerance: float = 1e-6) -> Dict[str, Any]:
    """Analyze Jacobian matrix rank and condition.

    Args:
        jacobian: Jacobian matrix
        tolerance: Numerical tolerance for rank determination

    Returns:
        Dictionary with rank analysis
    """
    if jacobian.size == 0:
        return {
            "rank": 0,
            "full_rank": True,
            "condition_number": 1.0,
            "singular_values": [],
            "nullspace_dimension": 0
        }

    s = svd(jacobian, compute_uv=False)

    rank = int(np.sum(s > tolerance * s[0])) if s[0] > 0 else 0
    full_rank = rank == min(jacobian.shape)
    nullspace_dim = jacobian.shape[1] - rank
    condition_number = s[0] / s[-1] if s[-1] > 0 else np.inf

    return {
        "rank": rank,
        "full_rank": bool(full_rank),
        "condition_number": float(condition_number),
        "singular_values": s.tolist(),
        "nullspace_dimension": int(nullspace_dim),
        "matrix_shape": jacobian.shape,
        "largest_singular_value": float(s[0]),
        "smallest_singular_value": float(s[-1])
    }


def detect_degeneracies(
    factor_graph: FactorGraph,
    jacobian: Optional[np.ndarray] = None
) -> Dict[str, Any]:
    """Detect common degeneracies in panorama problems.

    Args:
        factor_graph: Factor graph
        jacobian: Jacobian matrix (optional)

    Returns:
        Dictionary with degeneracy analysis
    """
    degeneracies = {
        "detected_issues": [],
        "warnings": [],
        "recommendations": []
    }

    rotations = [
        var for var in factor_graph.variables.values()
        if var.type == VariableType.CAMERA_ROTATION
    ]

    if len(rotations) < 2:
        degeneracies["detected_issues"].append("Fewer than 2 views - no relative rotation to estimate")

    if not factor_graph.factors:
        degeneracies["detected_issues"].append("No residuals - views share no matches")

    if rotations and all(not var.is_constant for var in rotations):
        degeneracies["warnings"].append("All rotations are free - the global orientation is not fixed")
        degeneracies["recommendations"].append("Lock the rotation of one view to fix the gauge")

    if jacobian is not None:
        rank_analysis = analyze_jacobian_rank(jacobian)

        if not rank_analysis["full_rank"]:
            degeneracies["detected_issues"].append(
                f"Jacobian is rank deficient: rank {rank_analysis['rank']} < "
                f"min dimension {min(jacobian.shape)}"
            )

        if rank_analysis["condition_number"] > 1e12:
            degeneracies["warnings"].append(
                f"Jacobian is poorly conditioned: condition number = {rank_analysis['condition_number']:.2e}"
            )

    return degeneracies


def compute_reprojection_errors(
    factor_graph: FactorGraph,
    residuals: np.ndarray
) -> Dict[str, Any]:
    """Compute reprojection error statistics in pixels.

    Args:
        factor_graph: Factor graph
        residuals: Residual vector

    Returns:
        Dictionary with reprojection error analysis
    """
    reprojection_errors = []
    residual_offset = 0

    for factor_id in factor_graph.get_factor_ids():
        factor = factor_graph.factors[factor_id]
        residual_dim = factor.residual_dimension()

        if factor_id.startswith("reprojection_") and residual_offset + residual_dim <= len(residuals):
            factor_residuals = residuals[residual_offset:residual_offset + residual_dim]
            sigma = getattr(factor, "sigma", 1.0)
            reprojection_errors.append(np.linalg.norm(factor_residuals) * sigma)

        residual_offset += residual_dim

    if not reprojection_errors:
        return {"error": "No reprojection residuals found"}

    errors = np.array(reprojection_errors)

    return {
        "n_observations": len(errors),
        "mean_error": float(np.mean(errors)),
        "median_error": float(np.median(errors)),
        "std_error": float(np.std(errors)),
        "max_error": float(np.max(errors)),
        "min_error": float(np.min(errors)),
        "rms_error": float(np.sqrt(np.mean(errors**2))),
        "percentile_95": float(np.percentile(errors, 95)),
        "percentile_99": float(np.percentile(errors, 99))
    }
