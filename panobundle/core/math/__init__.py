"""Math primitives for panobundle."""

from .so3 import so3_exp, so3_log, skew_symmetric, left_jacobian, orthonormalize, RotationManifold
from .quaternions import quat_normalize, quat_from_axis_angle, quat_to_matrix, quat_from_matrix
from .camera import (
    CameraModelType,
    EquidistantCamera,
    UnsupportedCameraModelError,
    make_camera_model,
)
from .jacobians import finite_difference_jacobian, check_jacobian, JacobianTester

__all__ = [
    "so3_exp",
    "so3_log",
    "skew_symmetric",
    "left_jacobian",
    "orthonormalize",
    "RotationManifold",
    "quat_normalize",
    "quat_from_axis_angle",
    "quat_to_matrix",
    "quat_from_matrix",
    "CameraModelType",
    "EquidistantCamera",
    "UnsupportedCameraModelError",
    "make_camera_model",
    "finite_difference_jacobian",
    "check_jacobian",
    "JacobianTester",
]
