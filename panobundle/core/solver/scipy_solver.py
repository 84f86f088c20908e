"""SciPy-based nonlinear least squares solver."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from scipy.optimize import least_squares

from ..models.scene import SolveResult, SolverSettings
from ..optimization.factor_graph import FactorGraph
from .diagnostics import SolveDiagnostics

logger = logging.getLogger(__name__)


@dataclass
class SolverOptions:
    """Options for the SciPy solver."""

    method: str = "lm"  # "lm", "trf", "dogbox"
    max_iterations: int = 500
    tolerance: float = 1e-10
    gradient_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-10
    use_inner_iterations: bool = True
    verbose: int = 0
    use_bounds: bool = False

    @classmethod
    def from_settings(cls, settings: SolverSettings) -> "SolverOptions":
        """Build options from scene solver settings."""
        return cls(
            method=settings.method,
            max_iterations=settings.max_iterations,
            tolerance=settings.tolerance,
            gradient_tolerance=settings.tolerance,
            parameter_tolerance=settings.tolerance,
            use_inner_iterations=settings.use_inner_iterations
        )


class SciPySolver:
    """SciPy-based nonlinear least squares solver for panoramic bundle adjustment.

    Free manifold variables are optimized in their tangent space around the
    value they had when the solve started.
    """

    def __init__(self, options: Optional[SolverOptions] = None):
        """Initialize solver.

        Args:
            options: Solver options
        """
        self.options = options or SolverOptions()
        self.diagnostics = SolveDiagnostics()

        self.factor_graph: Optional[FactorGraph] = None
        self.iteration_count = 0
        self.evaluation_count = 0
        self.cost_history: List[float] = []
        self.trial_costs: List[float] = []
        self._last_solve: Dict[str, Any] = {}
        self._last_x: Optional[np.ndarray] = None
        self._last_cost: Optional[float] = None
        self._active_variables: Optional[List[str]] = None
        self._active_factors: Optional[List[str]] = None

    def solve(self, factor_graph: FactorGraph) -> SolveResult:
        """Solve the optimization problem.

        Args:
            factor_graph: Factor graph to optimize

        Returns:
            Solve result with diagnostics

        Raises:
            MissingJacobianError: If a free variable lacks an analytic Jacobian
        """
        factor_graph.validate_jacobians()

        self.factor_graph = factor_graph
        self.iteration_count = 0
        self.evaluation_count = 0
        self.cost_history = []
        self.trial_costs = []
        self._last_solve = {}

        start_time = time.time()
        initial_cost = np.inf

        try:
            initial_cost = factor_graph.compute_cost()
            self.cost_history.append(initial_cost)

            x0 = factor_graph.pack_variables()

            if len(x0) == 0:
                return self._finish(SolveResult(
                    success=True,
                    iterations=0,
                    initial_cost=initial_cost,
                    final_cost=initial_cost,
                    convergence_reason="No free variables",
                    cost_history=self.cost_history,
                    computation_time=time.time() - start_time
                ))

            if self.options.use_inner_iterations:
                self._inner_iterations()
                x0 = factor_graph.pack_variables()

            result = self._run_least_squares(x0, None, None, self.options.method)

            factor_graph.unpack_variables(result.x)

            final_residuals = factor_graph.compute_all_residuals()
            final_cost = 0.5 * float(np.dot(final_residuals, final_residuals))
            if final_cost != self.cost_history[-1]:
                self.cost_history.append(final_cost)

            final_diagnostics = self.diagnostics.compute_diagnostics(
                factor_graph, final_residuals, factor_graph.compute_jacobian_matrix()
            )

            iterations = result.njev if result.njev is not None else self.iteration_count

            solve_result = SolveResult(
                success=bool(result.success),
                iterations=int(iterations),
                initial_cost=initial_cost,
                final_cost=final_cost,
                convergence_reason=self._parse_termination_reason(result),
                cost_history=self.cost_history,
                residuals=final_diagnostics["residuals"],
                unconstrained_dofs=final_diagnostics["unconstrained_dofs"],
                largest_residuals=final_diagnostics["largest_residuals"],
                computation_time=time.time() - start_time
            )

            self._last_solve["statistics"] = final_diagnostics["statistics"]
            self._last_solve["num_parameters"] = len(x0)
            self._last_solve["num_residuals"] = len(final_residuals)

            return self._finish(solve_result)

        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            logger.warning(f"Solver failed: {e}")
            return self._finish(SolveResult(
                success=False,
                iterations=self.iteration_count,
                initial_cost=initial_cost,
                final_cost=np.inf,
                convergence_reason=f"Solver error: {str(e)}",
                cost_history=self.cost_history,
                computation_time=time.time() - start_time
            ))

    def _finish(self, solve_result: SolveResult) -> SolveResult:
        solve_result.report = self.full_report(solve_result)
        level = logging.INFO if solve_result.success else logging.WARNING
        logger.log(
            level,
            f"Solve finished: {solve_result.convergence_reason}, "
            f"cost {solve_result.initial_cost:.6e} -> {solve_result.final_cost:.6e} "
            f"in {solve_result.iterations} iterations"
        )
        return solve_result

    def _run_least_squares(
        self,
        x0: np.ndarray,
        variable_ids: Optional[List[str]],
        factor_ids: Optional[List[str]],
        method: str
    ):
        """Run scipy.optimize.least_squares on a subset of variables and factors."""
        self._active_variables = variable_ids
        self._active_factors = factor_ids
        self._last_x = None
        self._last_cost = None

        n_residuals = sum(
            self.factor_graph.factors[f].residual_dimension()
            for f in (factor_ids if factor_ids is not None else self.factor_graph.get_factor_ids())
        )
        if method == "lm" and n_residuals < len(x0):
            method = "trf"

        kwargs = {}
        if method != "lm" and self.options.use_bounds:
            lower_bounds, upper_bounds = self.factor_graph.get_variable_bounds(variable_ids)
            if len(lower_bounds) > 0:
                kwargs["bounds"] = (lower_bounds, upper_bounds)

        return least_squares(
            fun=self._residual_function,
            x0=x0,
            jac=self._jacobian_function,
            method=method,
            ftol=self.options.tolerance,
            xtol=self.options.parameter_tolerance,
            gtol=self.options.gradient_tolerance,
            max_nfev=self.options.max_iterations,
            verbose=self.options.verbose,
            **kwargs
        )

    def _inner_iterations(self) -> None:
        """Refine each free variable alone, holding the others fixed."""
        for var_id in self.factor_graph.get_free_variable_ids():
            factor_ids = self.factor_graph.get_connected_factor_ids(var_id)
            if not factor_ids:
                continue

            before = self.factor_graph.compute_cost(factor_ids)
            x0 = self.factor_graph.pack_variables([var_id])
            result = self._run_least_squares(x0, [var_id], factor_ids, "lm")
            self.factor_graph.unpack_variables(result.x, [var_id])
            after = self.factor_graph.compute_cost(factor_ids)

            logger.debug(f"Inner iteration on {var_id}: cost {before:.6e} -> {after:.6e}")

        self._active_variables = None
        self._active_factors = None
        self.cost_history.append(self.factor_graph.compute_cost())

    def _residual_function(self, x: np.ndarray) -> np.ndarray:
        """Residual function for scipy.optimize.least_squares.

        Args:
            x: Parameter vector

        Returns:
            Residual vector
        """
        self.factor_graph.unpack_variables(x, self._active_variables)
        residuals = self.factor_graph.compute_all_residuals(self._active_factors)

        cost = 0.5 * float(np.dot(residuals, residuals))
        self._last_x = x.copy()
        self._last_cost = cost
        if self._active_variables is None:
            self.trial_costs.append(cost)
        self.evaluation_count += 1

        return residuals

    def _jacobian_function(self, x: np.ndarray) -> np.ndarray:
        """Jacobian function for scipy.optimize.least_squares.

        SciPy only requests the Jacobian at accepted iterates, so this is
        where the joint solve's cost history is recorded.
        """
        self.factor_graph.unpack_variables(x, self._active_variables)

        if self._active_variables is None:
            self.iteration_count += 1
            if self._last_x is not None and np.array_equal(x, self._last_x):
                cost = self._last_cost
            else:
                cost = self.factor_graph.compute_cost(self._active_factors)
            self.cost_history.append(cost)

        return self.factor_graph.compute_jacobian_matrix(self._active_variables, self._active_factors)

    def _parse_termination_reason(self, result) -> str:
        """Parse SciPy termination reason into human-readable string.

        Args:
            result: SciPy least_squares result

        Returns:
            Human-readable termination reason
        """
        if result.success:
            if result.status == 1:
                return "Converged: gradient tolerance satisfied"
            elif result.status in (2, 4):
                return "Converged: function tolerance satisfied"
            elif result.status == 3:
                return "Converged: parameter tolerance satisfied"
            else:
                return "Converged"
        else:
            if result.status == 0:
                return "No convergence: maximum number of iterations reached"
            if hasattr(result, 'message'):
                return f"Failed: {result.message}"
            else:
                return "Failed: unknown reason"

    def get_cost_history(self) -> List[float]:
        """Get optimization cost history.

        Returns:
            List of cost values at each accepted iterate
        """
        return self.cost_history.copy()

    def full_report(self, solve_result: SolveResult) -> str:
        """Render a text summary of a solve."""
        summary = self.factor_graph.summary() if self.factor_graph is not None else {}
        variables = summary.get("variables", {})
        factors = summary.get("factors", {})
        statistics = self._last_solve.get("statistics", {})

        lines = [
            "Solver Summary",
            "",
            f"{'':<28}{'Original':>14}",
            f"{'Parameter blocks':<28}{variables.get('total', 0):>14}",
            f"{'Free parameter blocks':<28}{variables.get('free', 0):>14}",
            f"{'Free parameters':<28}{variables.get('free_parameters', 0):>14}",
            f"{'Residual blocks':<28}{factors.get('total', 0):>14}",
            f"{'Residuals':<28}{factors.get('total_residuals', 0):>14}",
            "",
            f"Trust region strategy      {self.options.method}",
            f"Inner iterations           {'enabled' if self.options.use_inner_iterations else 'disabled'}",
            f"Maximum iterations         {self.options.max_iterations}",
            "",
            f"Initial cost               {solve_result.initial_cost:.6e}",
            f"Final cost                 {solve_result.final_cost:.6e}",
            f"Change                     {solve_result.initial_cost - solve_result.final_cost:.6e}",
            "",
            f"Iterations                 {solve_result.iterations}",
            f"Residual evaluations       {self.evaluation_count}",
        ]

        if solve_result.computation_time is not None:
            lines.append(f"Total time (s)             {solve_result.computation_time:.4f}")

        if statistics:
            lines.append(f"RMS residual               {statistics['rms_residual']:.6e}")
            lines.append(f"Max residual               {statistics['max_residual']:.6e}")

        lines.append("")
        lines.append(
            f"Termination:               {'CONVERGENCE' if solve_result.success else 'FAILURE'} "
            f"({solve_result.convergence_reason})"
        )

        return "\n".join(lines)

    def analyze_convergence(self) -> Dict[str, Any]:
        """Analyze convergence properties of the last solve.

        Returns:
            Dictionary with convergence analysis
        """
        if not self.cost_history:
            return {"error": "No solve history available"}

        costs = np.array(self.cost_history)

        analysis = {
            "initial_cost": float(costs[0]),
            "final_cost": float(costs[-1]),
            "cost_reduction": float(costs[0] - costs[-1]),
            "relative_cost_reduction": float((costs[0] - costs[-1]) / (costs[0] + 1e-12)),
            "iterations": len(costs),
            "monotonic": bool(np.all(np.diff(costs) <= 0)),
            "cost_history": costs.tolist(),
        }

        if len(costs) > 2:
            cost_reductions = np.diff(costs)
            analysis["mean_cost_reduction_per_iter"] = float(np.mean(-cost_reductions))
            analysis["cost_reduction_std"] = float(np.std(cost_reductions))

            last_few_iters = min(10, len(costs) // 2)
            if last_few_iters > 1:
                recent_reduction = costs[-last_few_iters] - costs[-1]
                analysis["recent_cost_reduction"] = float(recent_reduction)
                analysis["convergence_stagnant"] = bool(recent_reduction < 1e-8)

        return analysis
