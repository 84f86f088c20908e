"""Rig pose post-processing and rotation conversion utilities."""

import logging
from enum import Enum
from typing import Dict, List, Mapping

import numpy as np

from ..math.quaternions import quat_from_matrix, quat_to_matrix
from ..math.so3 import axis_angle_matrix, orthonormalize

logger = logging.getLogger(__name__)

_X_AXIS = np.array([1.0, 0.0, 0.0])
_Y_AXIS = np.array([0.0, 1.0, 0.0])
_Z_AXIS = np.array([0.0, 0.0, 1.0])


class Orientation(str, Enum):
    """How the rig is re-oriented relative to the first shot."""
    FROM_IMAGES = "from_images"
    RIGHT = "right"
    LEFT = "left"
    UPSIDE_DOWN = "upside_down"
    NONE = "none"


def restore_reference_rotation(
    initial: Mapping[str, np.ndarray],
    refined: Mapping[str, np.ndarray],
) -> Dict[str, np.ndarray]:
    """Rotate refined poses so the first view keeps its initial orientation.

    ``R_restore = R_first_refined.T @ R_first_initial`` and every pose becomes
    ``R @ R_restore``. Relative rotations between views are unchanged.

    Args:
        initial: Rotations before refinement, first view first
        refined: Rotations after refinement, same keys

    Returns:
        Restored rotations (new dict)
    """
    if not refined:
        return {}
    if not initial:
        return {view_id: np.array(R) for view_id, R in refined.items()}

    first = next(iter(refined))
    if first not in initial:
        raise ValueError(f"No initial rotation for reference view {first}")

    R_restore = np.asarray(refined[first]).T @ np.asarray(initial[first])

    return {
        view_id: orthonormalize(np.asarray(R) @ R_restore)
        for view_id, R in refined.items()
    }


def orientation_rotation(reference_rotation: np.ndarray, orientation: Orientation) -> np.ndarray:
    """World re-alignment rotation for an orientation choice."""
    orientation = Orientation(orientation)
    R_first = np.asarray(reference_rotation, dtype=float)
    Ry_180 = axis_angle_matrix(_Y_AXIS, np.pi)

    if orientation == Orientation.FROM_IMAGES:
        return R_first
    if orientation == Orientation.RIGHT:
        return Ry_180 @ axis_angle_matrix(_Z_AXIS, np.radians(90.0)) @ R_first
    if orientation == Orientation.LEFT:
        return Ry_180 @ axis_angle_matrix(_Z_AXIS, np.radians(270.0)) @ R_first
    if orientation == Orientation.UPSIDE_DOWN:
        return Ry_180 @ R_first
    return Ry_180 @ axis_angle_matrix(_Z_AXIS, np.pi) @ R_first


def apply_orientation(
    rotations: Mapping[str, np.ndarray],
    reference_view: str,
    orientation: Orientation,
) -> Dict[str, np.ndarray]:
    """Re-orient the rig relative to a reference view.

    The world frame is rotated by :func:`orientation_rotation`, so every
    rig-to-view rotation becomes ``R @ R_align.T``. With ``FROM_IMAGES`` the
    reference view ends up at identity.

    Args:
        rotations: Rig-to-view rotations
        reference_view: View defining the new frame (usually the first shot)
        orientation: Orientation choice

    Returns:
        Re-oriented rotations (new dict)
    """
    if reference_view not in rotations:
        raise ValueError(f"Reference view {reference_view} has no rotation")

    R_align = orientation_rotation(rotations[reference_view], orientation)
    logger.info(f"Orientation: {Orientation(orientation).name} (reference view {reference_view})")

    return {
        view_id: orthonormalize(np.asarray(R) @ R_align.T)
        for view_id, R in rotations.items()
    }


def apply_offsets(
    rotations: Mapping[str, np.ndarray],
    offset_longitude_deg: float = 0.0,
    offset_latitude_deg: float = 0.0,
) -> Dict[str, np.ndarray]:
    """Apply longitude/latitude offsets: ``R @ Ry(longitude) @ Rx(latitude)``."""
    offset = (
        axis_angle_matrix(_Y_AXIS, np.radians(offset_longitude_deg))
        @ axis_angle_matrix(_X_AXIS, np.radians(offset_latitude_deg))
    )
    return {view_id: np.asarray(R) @ offset for view_id, R in rotations.items()}


def euler_to_quaternion(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Convert Euler angles to quaternion.

    Args:
        roll: Rotation around X axis (radians)
        pitch: Rotation around Y axis (radians)
        yaw: Rotation around Z axis (radians)

    Returns:
        Quaternion [w, x, y, z]
    """
    cr = np.cos(roll * 0.5)
    sr = np.sin(roll * 0.5)
    cp = np.cos(pitch * 0.5)
    sp = np.sin(pitch * 0.5)
    cy = np.cos(yaw * 0.5)
    sy = np.sin(yaw * 0.5)

    w = cr * cp * cy + sr * sp * sy
    x = sr * cp * cy - cr * sp * sy
    y = cr * sp * cy + sr * cp * sy
    z = cr * cp * sy - sr * sp * cy

    return np.array([w, x, y, z])


def quaternion_to_euler(q: np.ndarray) -> tuple[float, float, float]:
    """
    Convert quaternion to Euler angles.

    Args:
        q: Quaternion [w, x, y, z]

    Returns:
        Tuple of (roll, pitch, yaw) in radians
    """
    w, x, y, z = q

    sinr_cosp = 2 * (w * x + y * z)
    cosr_cosp = 1 - 2 * (x * x + y * y)
    roll = np.arctan2(sinr_cosp, cosr_cosp)

    sinp = 2 * (w * y - z * x)
    if abs(sinp) >= 1:
        pitch = np.copysign(np.pi / 2, sinp)
    else:
        pitch = np.arcsin(sinp)

    siny_cosp = 2 * (w * z + x * y)
    cosy_cosp = 1 - 2 * (y * y + z * z)
    yaw = np.arctan2(siny_cosp, cosy_cosp)

    return float(roll), float(pitch), float(yaw)


def rotation_to_euler(R: np.ndarray) -> tuple[float, float, float]:
    """Rotation matrix to (roll, pitch, yaw) in radians."""
    return quaternion_to_euler(quat_from_matrix(np.asarray(R, dtype=float)))


def euler_to_rotation(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """(roll, pitch, yaw) in radians to rotation matrix."""
    return quat_to_matrix(euler_to_quaternion(roll, pitch, yaw))


def rotations_to_euler_degrees(rotations: Mapping[str, np.ndarray]) -> Dict[str, List[float]]:
    """Per-view [roll, pitch, yaw] in degrees."""
    return {
        view_id: np.degrees(rotation_to_euler(R)).tolist()
        for view_id, R in rotations.items()
    }
