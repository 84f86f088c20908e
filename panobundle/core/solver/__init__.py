"""Nonlinear optimization solvers for panobundle."""

from .scipy_solver import SciPySolver, SolverOptions
from .diagnostics import SolveDiagnostics, analyze_jacobian_rank, compute_reprojection_errors
from .pipeline import refine_scene

__all__ = [
    "SciPySolver",
    "SolverOptions",
    "SolveDiagnostics",
    "analyze_jacobian_rank",
    "compute_reprojection_errors",
    "refine_scene",
]
