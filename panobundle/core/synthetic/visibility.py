"""Visibility checking utilities for synthetic scene generation."""

from typing import List, Sequence, Tuple

import numpy as np

from ..math.camera import EquidistantCamera


def check_visibility(
    camera: EquidistantCamera,
    rotation: np.ndarray,
    directions: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Check visibility of rig-frame directions in a camera.

    A direction is visible when its rotated ray passes the camera's ray
    predicate and its projected pixel passes the pixel predicate.

    Args:
        camera: Camera model
        rotation: Rig-to-camera rotation (3x3)
        directions: Nx3 array of unit directions in the rig frame

    Returns:
        Tuple of (visibility_mask, projected_points) where projected_points
        is Nx2 and NaN for invisible directions
    """
    directions = np.atleast_2d(directions)
    rotation = np.asarray(rotation, dtype=float).reshape(3, 3)

    visible = np.zeros(len(directions), dtype=bool)
    uv = np.full((len(directions), 2), np.nan)

    for index, direction in enumerate(directions):
        ray = rotation @ direction
        if not camera.is_visible_ray(ray):
            continue

        pixel = camera.world_to_image(ray, apply_distortion=True)
        if not camera.is_visible(pixel):
            continue

        visible[index] = True
        uv[index] = pixel

    return visible, uv


def filter_visible_directions(
    directions: np.ndarray,
    cameras: Sequence[EquidistantCamera],
    rotations: Sequence[np.ndarray],
    min_visible_views: int = 2
) -> List[int]:
    """Indices of directions seen by at least ``min_visible_views`` cameras.

    Args:
        directions: Nx3 array of unit directions in the rig frame
        cameras: One camera per view
        rotations: One rig-to-camera rotation per view
        min_visible_views: Minimum number of views that must see a direction

    Returns:
        Sorted list of direction indices
    """
    if len(cameras) != len(rotations):
        raise ValueError("cameras and rotations must have the same length")

    counts = np.zeros(len(np.atleast_2d(directions)), dtype=int)
    for camera, rotation in zip(cameras, rotations):
        visible, _ = check_visibility(camera, rotation, directions)
        counts += visible

    return np.flatnonzero(counts >= min_visible_views).tolist()
