"""End-to-end refinement of a panorama scene."""

import logging
from typing import Optional

from ..export.converters import (
    Orientation,
    apply_offsets,
    apply_orientation,
    restore_reference_rotation,
)
from ..models.scene import Scene, SolveResult
from ..optimization.problem import PanoramaProblem
from .scipy_solver import SciPySolver, SolverOptions

logger = logging.getLogger(__name__)


def refine_scene(scene: Scene, options: Optional[SolverOptions] = None) -> SolveResult:
    """Build the problem, solve it and write refined poses back to the scene.

    After a successful solve the rig is re-anchored: if every view had an
    initial rotation the first view keeps its initial orientation, otherwise
    the configured orientation is applied relative to the first view. The
    longitude/latitude offsets are applied last.

    Args:
        scene: Scene to refine in place
        options: Solver options (defaults to ``scene.settings.solver``)

    Returns:
        Solve result, also stored in ``scene.diagnostics``
    """
    settings = scene.settings
    initial = {}
    if scene.has_initial_rotations():
        initial = {view_id: view.get_rotation() for view_id, view in scene.views.items()}

    problem = PanoramaProblem(scene)
    factor_graph = problem.build_factor_graph()

    solver = SciPySolver(options or SolverOptions.from_settings(settings.solver))
    result = solver.solve(factor_graph)

    if result.success:
        problem.extract_solution_to_scene()

        rotations = problem.get_rotations()
        if initial:
            if settings.restore_reference:
                rotations = restore_reference_rotation(initial, rotations)
        else:
            first_view = scene.get_view_ids()[0]
            rotations = apply_orientation(rotations, first_view, Orientation(settings.orientation))

        rotations = apply_offsets(rotations, settings.offset_longitude, settings.offset_latitude)

        for view_id, R in rotations.items():
            scene.views[view_id].set_rotation(R)
    else:
        logger.warning(f"Scene left unchanged: {result.convergence_reason}")

    scene.diagnostics = result
    return result
