"""Solver API routes."""

from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from panobundle.core.export.converters import rotations_to_euler_degrees
from panobundle.core.math.camera import UnsupportedCameraModelError
from panobundle.core.models.scene import SolveResult
from panobundle.core.optimization.factor_graph import MissingJacobianError
from panobundle.core.optimization.problem import PanoramaProblem
from panobundle.core.solver.pipeline import refine_scene
from panobundle.core.solver.scipy_solver import SolverOptions

from .scenes import get_scene_or_404

router = APIRouter(prefix="/solve", tags=["solve"])


class SolveRequest(BaseModel):
    """Request model for solve operation."""

    method: Literal["lm", "trf", "dogbox"] = "lm"
    max_iterations: int = 500
    tolerance: float = 1e-10
    use_inner_iterations: bool = True


@router.post("/{scene_id}")
async def solve_scene(scene_id: str, request: SolveRequest) -> SolveResult:
    """Refine rotations and free intrinsics of a scene."""
    scene = get_scene_or_404(scene_id)

    solver_options = SolverOptions(
        method=request.method,
        max_iterations=request.max_iterations,
        tolerance=request.tolerance,
        gradient_tolerance=request.tolerance,
        parameter_tolerance=request.tolerance,
        use_inner_iterations=request.use_inner_iterations,
    )

    try:
        return refine_scene(scene, solver_options)
    except (MissingJacobianError, UnsupportedCameraModelError) as e:
        raise HTTPException(status_code=422, detail=f"Scene cannot be solved: {str(e)}")


@router.get("/{scene_id}/diagnostics")
async def get_solve_diagnostics(scene_id: str) -> dict[str, Any]:
    """Get the latest solve result and refined orientations."""
    scene = get_scene_or_404(scene_id)

    if scene.diagnostics is None:
        raise HTTPException(status_code=404, detail="No solve results found")

    rotations = {view_id: view.get_rotation() for view_id, view in scene.views.items()}

    return {
        "solve_result": scene.diagnostics,
        "orientations_deg": rotations_to_euler_degrees(rotations),
        "intrinsics": {view_id: view.intrinsics.params for view_id, view in scene.views.items()},
    }


@router.get("/{scene_id}/optimization-summary")
async def get_optimization_summary(scene_id: str) -> dict[str, Any]:
    """Get optimization problem summary."""
    scene = get_scene_or_404(scene_id)

    try:
        problem = PanoramaProblem(scene)
        problem.build_factor_graph()
        return problem.get_optimization_summary()

    except (MissingJacobianError, UnsupportedCameraModelError) as e:
        raise HTTPException(status_code=422, detail=f"Scene cannot be solved: {str(e)}")
