"""SO(3) Lie group operations and the rotation manifold used by the optimizer.

Rotations are stored as 3x3 matrices and flattened row-major when they live
in a parameter block (9 ambient coordinates). Updates happen in the 3-D
tangent space through a rotation vector and are always composed on the left:
``R' = Exp(delta) @ R``.
"""

import numpy as np

from .quaternions import quat_from_matrix, quat_from_rotation_vector, quat_to_matrix


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix from 3D vector."""
    if v.shape != (3,):
        raise ValueError(f"v must be 3-element vector, got shape {v.shape}")

    return np.array([
        [0, -v[2], v[1]],
        [v[2], 0, -v[0]],
        [-v[1], v[0], 0]
    ])


def so3_exp(phi: np.ndarray) -> np.ndarray:
    """Convert so(3) rotation vector to a rotation matrix.

    Args:
        phi: 3-element rotation vector (axis * angle)

    Returns:
        3x3 rotation matrix
    """
    if phi.shape != (3,):
        raise ValueError(f"phi must be 3-element vector, got shape {phi.shape}")

    return quat_to_matrix(quat_from_rotation_vector(phi))


def so3_log(R: np.ndarray) -> np.ndarray:
    """Convert rotation matrix to its rotation vector.

    Args:
        R: 3x3 rotation matrix

    Returns:
        3-element rotation vector with angle in [0, pi]
    """
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3 matrix, got shape {R.shape}")

    q = quat_from_matrix(R)
    w, v = q[0], q[1:]
    sin_half = np.linalg.norm(v)

    if sin_half < 1e-12:
        return 2.0 * v / w

    angle = 2.0 * np.arctan2(sin_half, w)
    return angle * v / sin_half


def left_jacobian(phi: np.ndarray) -> np.ndarray:
    """Left Jacobian of SO(3).

    Satisfies ``Exp(phi + d) ~= Exp(J_l(phi) @ d) @ Exp(phi)`` for small d.
    """
    if phi.shape != (3,):
        raise ValueError(f"phi must be 3-element vector, got shape {phi.shape}")

    theta = np.linalg.norm(phi)
    Phi = skew_symmetric(phi)

    if theta < 1e-6:
        # Small angle approximation
        return np.eye(3) + 0.5 * Phi + Phi @ Phi / 6.0

    s = np.sin(theta)
    c = np.cos(theta)
    return np.eye(3) + (1 - c) / theta**2 * Phi + (theta - s) / theta**3 * Phi @ Phi


def orthonormalize(R: np.ndarray) -> np.ndarray:
    """Project a near-rotation matrix onto SO(3) (closest in Frobenius norm)."""
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3 matrix, got shape {R.shape}")

    U, _, Vt = np.linalg.svd(R)
    D = np.diag([1.0, 1.0, np.linalg.det(U @ Vt)])
    return U @ D @ Vt


def axis_angle_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    axis = np.asarray(axis, dtype=float)
    norm = np.linalg.norm(axis)
    if norm < 1e-12:
        raise ValueError("Rotation axis must be non-zero")
    return so3_exp(axis / norm * angle)


def is_rotation_matrix(R: np.ndarray, atol: float = 1e-9) -> bool:
    """Check orthonormality and positive determinant."""
    if R.shape != (3, 3):
        return False
    return bool(
        np.allclose(R @ R.T, np.eye(3), atol=atol)
        and abs(np.linalg.det(R) - 1.0) < atol
    )


class RotationManifold:
    """Local parameterization of 3x3 rotation matrices.

    Ambient size is 9 (row-major matrix entries), tangent size is 3
    (rotation vector).
    """

    ambient_size = 9
    tangent_size = 3

    # Column k is the row-major flattening of the generator [e_k]x
    _LOCAL_JACOBIAN = np.array([
        [0.0, 0.0, 0.0],
        [0.0, 0.0, -1.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [0.0, 0.0, 0.0],
        [-1.0, 0.0, 0.0],
        [0.0, -1.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.0, 0.0, 0.0],
    ])

    def retract(self, R: np.ndarray, delta: np.ndarray) -> np.ndarray:
        """Apply a tangent update: ``Exp(delta) @ R``.

        Accepts either a 3x3 matrix or its 9-element row-major flattening and
        returns the same form. A zero delta returns ``R`` unchanged.

        Args:
            R: Current rotation
            delta: 3-element rotation vector in the tangent space

        Returns:
            Updated rotation, re-orthonormalized
        """
        delta = np.asarray(delta, dtype=float)
        if delta.shape != (3,):
            raise ValueError(f"delta must be 3-element vector, got shape {delta.shape}")

        flat = np.shape(R) == (9,)
        R_mat = np.asarray(R, dtype=float).reshape(3, 3)

        if not np.any(delta):
            result = R_mat.copy()
        else:
            result = orthonormalize(so3_exp(delta) @ R_mat)

        return result.reshape(9) if flat else result

    def local_jacobian(self) -> np.ndarray:
        """Jacobian of the flattened ``Exp(delta)`` at ``delta = 0``.

        Independent of the current rotation value.

        Returns:
            9x3 matrix with six non-zero (+/-1) rows
        """
        return self._LOCAL_JACOBIAN.copy()

    def plus_jacobian(self, R0: np.ndarray, delta: np.ndarray) -> np.ndarray:
        """Exact Jacobian of the flattened ``retract(R0, delta)`` w.r.t. delta.

        ``d vec(Exp(delta) R0) / d delta = (I kron R^T) L J_l(delta)`` where
        ``R = retract(R0, delta)`` and ``L`` is :meth:`local_jacobian`.

        Args:
            R0: Anchor rotation (3x3 or 9 flattened)
            delta: Current tangent coordinates

        Returns:
            9x3 matrix
        """
        delta = np.asarray(delta, dtype=float)
        R = np.asarray(self.retract(R0, delta)).reshape(3, 3)
        return np.kron(np.eye(3), R.T) @ self._LOCAL_JACOBIAN @ left_jacobian(delta)
