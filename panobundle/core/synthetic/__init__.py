"""Synthetic panorama generation for testing."""

from .scene_gen import (
    SceneGenerator,
    make_reference_intrinsics,
    make_reference_rig,
    perturb_distortion,
    project_directions,
    sphere_grid,
)
from .visibility import check_visibility, filter_visible_directions

__all__ = [
    "SceneGenerator",
    "make_reference_intrinsics",
    "make_reference_rig",
    "perturb_distortion",
    "project_directions",
    "sphere_grid",
    "check_visibility",
    "filter_visible_directions",
]
