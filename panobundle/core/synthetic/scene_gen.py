"""Synthetic panorama generation utilities."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..math.camera import EquidistantCamera, make_camera_model
from ..math.so3 import axis_angle_matrix
from ..models.entities import Intrinsics, IntrinsicsLockFlags, PairMatches, View
from ..models.scene import Scene
from ..optimization.correspondences import CorrespondenceGraph
from .visibility import check_visibility

logger = logging.getLogger(__name__)

# Reference fisheye rig
REFERENCE_WIDTH = 3840.0
REFERENCE_HEIGHT = 5760.0
REFERENCE_FOV = np.radians(176.0)
REFERENCE_PRINCIPAL_POINT = (1920.0 + 32.0, 2880.0 - 56.0)
REFERENCE_RADIUS = 1980.0
REFERENCE_DISTORTION = (0.004, 0.0, 0.0)
REFERENCE_ANGLES = (0.0, 0.5 * np.pi, np.pi)


def sphere_grid(step_deg: float = 1.0) -> np.ndarray:
    """Unit directions on a latitude/longitude grid.

    Latitude runs over ``[0, 180)`` and longitude over ``[0, 360)`` degrees,
    so directions with latitude past 90 degrees revisit the sphere from the
    other side.

    Args:
        step_deg: Grid step in degrees

    Returns:
        Nx3 array of unit directions
    """
    if step_deg <= 0:
        raise ValueError(f"step_deg must be positive, got {step_deg}")

    theta = np.radians(np.arange(0.0, 180.0, step_deg))
    phi = np.radians(np.arange(0.0, 360.0, step_deg))
    th, ph = np.meshgrid(theta, phi, indexing="ij")

    return np.column_stack([
        (np.cos(th) * np.sin(ph)).ravel(),
        np.sin(th).ravel(),
        (np.cos(th) * np.cos(ph)).ravel(),
    ])


def project_directions(
    camera: EquidistantCamera,
    rotation: np.ndarray,
    directions: np.ndarray
) -> Tuple[List[Tuple[float, float]], Dict[int, int]]:
    """Project directions into a view.

    Returns:
        Tuple of (features, feature_map): the visible pixels in projection
        order and the ``{direction index: feature index}`` map
    """
    visible, uv = check_visibility(camera, rotation, directions)

    features = []
    feature_map = {}
    for index in np.flatnonzero(visible):
        feature_map[int(index)] = len(features)
        features.append((float(uv[index, 0]), float(uv[index, 1])))

    return features, feature_map


def make_reference_intrinsics() -> Intrinsics:
    """Intrinsics of one camera of the reference rig."""
    return Intrinsics(
        width=REFERENCE_WIDTH,
        height=REFERENCE_HEIGHT,
        radius=REFERENCE_RADIUS,
        params=[REFERENCE_FOV, *REFERENCE_PRINCIPAL_POINT, *REFERENCE_DISTORTION]
    )


class SceneGenerator:
    """Generator for synthetic panorama scenes."""

    def __init__(self, seed: Optional[int] = None):
        """Initialize scene generator.

        Args:
            seed: Random seed for reproducible feature noise
        """
        self.rng = np.random.default_rng(seed)

    def generate_rig(
        self,
        intrinsics: Sequence[Intrinsics],
        rotations: Sequence[np.ndarray],
        step_deg: float = 1.0,
        noise_std: float = 0.0,
        lock_flags: Optional[IntrinsicsLockFlags] = None
    ) -> Scene:
        """Build a scene by projecting a sphere grid through every view.

        Args:
            intrinsics: One intrinsics per view
            rotations: One rig-to-view rotation per view
            step_deg: Sphere grid step in degrees
            noise_std: Standard deviation of Gaussian pixel noise
            lock_flags: Lock flags applied to every view

        Returns:
            Scene with views, features and matches
        """
        if len(intrinsics) != len(rotations):
            raise ValueError("intrinsics and rotations must have the same length")

        directions = sphere_grid(step_deg)
        scene = Scene()
        feature_maps: Dict[str, Dict[int, int]] = {}

        for index, (view_intrinsics, rotation) in enumerate(zip(intrinsics, rotations)):
            view_id = f"view_{index}"
            camera = make_camera_model(view_intrinsics)
            features, feature_map = project_directions(camera, rotation, directions)

            if noise_std > 0 and features:
                noisy = np.array(features) + self.rng.normal(0.0, noise_std, (len(features), 2))
                features = [tuple(p) for p in noisy.tolist()]

            view = View(
                id=view_id,
                intrinsics=view_intrinsics.model_copy(deep=True),
                features=features,
                lock_flags=lock_flags.model_copy() if lock_flags is not None else IntrinsicsLockFlags()
            )
            view.set_rotation(rotation)
            scene.add_view(view)
            feature_maps[view_id] = feature_map

            logger.debug(f"{view_id}: {len(features)} of {len(directions)} directions visible")

        graph = CorrespondenceGraph.from_projections(feature_maps)
        for view_i, view_j in graph.pairs():
            scene.add_matches(PairMatches(
                view_i=view_i,
                view_j=view_j,
                matches=[tuple(m) for m in graph.matches((view_i, view_j))]
            ))

        logger.info(
            f"Generated rig: {len(scene.views)} views, {graph.num_matches()} matches "
            f"over {len(graph.pairs())} pairs"
        )

        return scene


def make_reference_rig(
    step_deg: float = 1.0,
    seed: Optional[int] = None,
    noise_std: float = 0.0,
    lock_rotations: bool = True
) -> Scene:
    """Three identical fisheye views rotated 0, 90 and 180 degrees about Y.

    Field of view and principal point are locked, distortion is free.

    Args:
        step_deg: Sphere grid step in degrees
        seed: Random seed for feature noise
        noise_std: Standard deviation of Gaussian pixel noise
        lock_rotations: Hold every rotation fixed during the solve

    Returns:
        Reference scene
    """
    rotations = [axis_angle_matrix(np.array([0.0, 1.0, 0.0]), angle) for angle in REFERENCE_ANGLES]
    intrinsics = [make_reference_intrinsics() for _ in rotations]

    scene = SceneGenerator(seed).generate_rig(
        intrinsics,
        rotations,
        step_deg=step_deg,
        noise_std=noise_std,
        lock_flags=IntrinsicsLockFlags(fov=True, principal_point=True)
    )
    scene.settings.lock_rotations = lock_rotations

    return scene


def perturb_distortion(scene: Scene, index: int, value: float) -> None:
    """Set one distortion coefficient of every view.

    Args:
        scene: Scene to modify in place
        index: Coefficient index (0 for k1)
        value: New coefficient value
    """
    if index not in (0, 1, 2):
        raise ValueError(f"Distortion index must be 0, 1 or 2, got {index}")

    for view in scene.views.values():
        params = view.intrinsics.get_params()
        params[3 + index] = value
        view.intrinsics.set_params(params)
