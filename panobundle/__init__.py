"""panobundle - rotation-only bundle adjustment for fisheye panorama rigs.

Estimates the relative rotations of cameras sharing one optical center, and
refines a subset of their intrinsics, from point matches between overlapping
fisheye views.
"""

__version__ = "0.1.0"

# Core models
from .core.models.entities import Intrinsics, IntrinsicsLockFlags, PairMatches, View
from .core.models.scene import Scene, SceneSettings, SolveResult, SolverSettings

# Camera
from .core.math.camera import CameraModelType, EquidistantCamera, make_camera_model

# Optimization
from .core.optimization.correspondences import CorrespondenceGraph
from .core.optimization.problem import PanoramaProblem
from .core.solver.scipy_solver import SciPySolver, SolverOptions
from .core.solver.pipeline import refine_scene

__all__ = [
    # Version
    "__version__",
    # Models
    "Intrinsics",
    "IntrinsicsLockFlags",
    "PairMatches",
    "View",
    "Scene",
    "SceneSettings",
    "SolveResult",
    "SolverSettings",
    # Camera
    "CameraModelType",
    "EquidistantCamera",
    "make_camera_model",
    # Optimization
    "CorrespondenceGraph",
    "PanoramaProblem",
    "SciPySolver",
    "SolverOptions",
    "refine_scene",
]
