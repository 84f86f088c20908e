"""Pose post-processing and rotation conversions."""

from .converters import (
    Orientation,
    apply_offsets,
    apply_orientation,
    restore_reference_rotation,
    rotation_to_euler,
    rotations_to_euler_degrees,
)

__all__ = [
    "Orientation",
    "apply_offsets",
    "apply_orientation",
    "restore_reference_rotation",
    "rotation_to_euler",
    "rotations_to_euler_degrees",
]
