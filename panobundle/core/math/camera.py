"""Equidistant (fisheye) camera model with radial K3 distortion.

Intrinsic parameter vector layout, shared with the scene model and the
optimizer parameter blocks::

    [fov, ppx, ppy, k1, k2, k3]

``fov`` is the full angular field of view in radians, ``(ppx, ppy)`` the
principal point in pixels and ``k1..k3`` the radial distortion coefficients.
Image size and image-circle radius are fixed properties of the sensor.

Mapping stages (each has a matching derivative function)::

    ray --to_plane--> P --add_distortion--> Pd --cam2ima--> pixel
    pixel --ima2cam--> Pd --remove_distortion--> P --to_unit_sphere--> ray
"""

from enum import Enum
from typing import Tuple

import numpy as np

FOV_BLOCK = slice(0, 1)
PRINCIPAL_POINT_BLOCK = slice(1, 3)
DISTORTION_BLOCK = slice(3, 6)
N_PARAMS = 6

# Normalized-radius tolerance applied by both visibility predicates
FOV_TOLERANCE = 1e-9

_AXIS_EPS = 1e-12


class CameraModelType(str, Enum):
    """Closed set of camera model variants."""
    EQUIDISTANT_RADIAL_K3 = "equidistant_r3"
    PINHOLE_RADIAL_K3 = "pinhole_radial_k3"


class UnsupportedCameraModelError(ValueError):
    """Raised when a camera model variant has no implementation."""


class EquidistantCamera:
    """Equidistant fisheye camera: image radius proportional to incidence angle."""

    model_type = CameraModelType.EQUIDISTANT_RADIAL_K3

    def __init__(
        self,
        width: float,
        height: float,
        fov: float,
        ppx: float,
        ppy: float,
        radius: float,
        k1: float = 0.0,
        k2: float = 0.0,
        k3: float = 0.0
    ):
        """Initialize camera.

        Args:
            width: Image width in pixels
            height: Image height in pixels
            fov: Full field of view in radians
            ppx: Principal point x in pixels
            ppy: Principal point y in pixels
            radius: Image-circle radius in pixels (scale of the normalized plane)
            k1, k2, k3: Radial distortion coefficients
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {width}x{height}")
        if radius <= 0:
            raise ValueError(f"Image-circle radius must be positive, got {radius}")
        if fov <= 0:
            raise ValueError(f"Field of view must be positive, got {fov}")

        self.width = float(width)
        self.height = float(height)
        self.radius = float(radius)
        self.fov = float(fov)
        self.principal_point = np.array([ppx, ppy], dtype=float)
        self.distortion = np.array([k1, k2, k3], dtype=float)

    @classmethod
    def from_params(cls, width: float, height: float, radius: float, params: np.ndarray) -> "EquidistantCamera":
        """Create camera from a ``[fov, ppx, ppy, k1, k2, k3]`` vector."""
        params = np.asarray(params, dtype=float)
        if params.shape != (N_PARAMS,):
            raise ValueError(f"params must be {N_PARAMS}-element vector, got shape {params.shape}")
        return cls(width, height, params[0], params[1], params[2], radius, *params[3:])

    def get_params(self) -> np.ndarray:
        """Get intrinsic parameter vector ``[fov, ppx, ppy, k1, k2, k3]``."""
        return np.concatenate([[self.fov], self.principal_point, self.distortion])

    @property
    def circle_center(self) -> np.ndarray:
        """Center of the image circle (image center)."""
        return np.array([self.width / 2.0, self.height / 2.0])

    # ------------------------------------------------------------------
    # Forward mapping
    # ------------------------------------------------------------------

    def to_plane(self, ray: np.ndarray) -> np.ndarray:
        """Map a ray to the undistorted normalized plane.

        The normalized radius is the incidence angle divided by half the
        field of view, so the field-of-view limit maps to radius 1.
        """
        x, y, z = ray
        n = np.hypot(x, y)
        theta = np.arctan2(n, z)
        rho = theta / (0.5 * self.fov)

        if n < _AXIS_EPS:
            if z >= 0:
                return np.zeros(2)
            return np.array([rho, 0.0])

        return rho * np.array([x, y]) / n

    def add_distortion(self, P: np.ndarray) -> np.ndarray:
        """Apply radial distortion ``Pd = P (1 + k1 r^2 + k2 r^4 + k3 r^6)``."""
        k1, k2, k3 = self.distortion
        r2 = P @ P
        return P * (1.0 + k1 * r2 + k2 * r2**2 + k3 * r2**3)

    def cam2ima(self, P: np.ndarray) -> np.ndarray:
        """Normalized plane to pixel."""
        return self.radius * P + self.principal_point

    def world_to_image(self, ray: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        """Project a ray expressed in the camera frame to pixel coordinates.

        Args:
            ray: 3-element direction (need not be unit length)
            apply_distortion: Apply forward radial distortion

        Returns:
            2-element pixel coordinate
        """
        ray = np.asarray(ray, dtype=float)
        if ray.shape != (3,):
            raise ValueError(f"ray must be 3-element vector, got shape {ray.shape}")

        P = self.to_plane(ray)
        if apply_distortion:
            P = self.add_distortion(P)
        return self.cam2ima(P)

    def project(self, rotation: np.ndarray, point: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        """Rotate a rig-frame direction into the camera frame and project it."""
        return self.world_to_image(rotation @ point, apply_distortion)

    # ------------------------------------------------------------------
    # Inverse mapping
    # ------------------------------------------------------------------

    def ima2cam(self, pixel: np.ndarray) -> np.ndarray:
        """Pixel to (distorted) normalized plane. Does not remove distortion."""
        pixel = np.asarray(pixel, dtype=float)
        if pixel.shape != (2,):
            raise ValueError(f"pixel must be 2-element vector, got shape {pixel.shape}")
        return (pixel - self.principal_point) / self.radius

    def image_to_camera(self, pixel: np.ndarray) -> np.ndarray:
        """Alias of :meth:`ima2cam`."""
        return self.ima2cam(pixel)

    def remove_distortion(self, Pd: np.ndarray, max_iterations: int = 50) -> np.ndarray:
        """Invert the radial distortion polynomial.

        Solves ``r_d = r (1 + k1 r^2 + k2 r^4 + k3 r^6)`` for ``r`` with Newton
        iterations, then rescales ``Pd`` along its own direction.
        """
        Pd = np.asarray(Pd, dtype=float)
        r_d = np.linalg.norm(Pd)
        if r_d < _AXIS_EPS:
            return Pd.copy()

        k1, k2, k3 = self.distortion
        r = r_d
        for _ in range(max_iterations):
            r2 = r * r
            f = r * (1.0 + k1 * r2 + k2 * r2**2 + k3 * r2**3) - r_d
            fp = 1.0 + 3 * k1 * r2 + 5 * k2 * r2**2 + 7 * k3 * r2**3
            step = f / fp
            r -= step
            if abs(step) < 1e-15 * max(1.0, abs(r)):
                break

        return Pd * (r / r_d)

    def to_unit_sphere(self, P: np.ndarray) -> np.ndarray:
        """Undistorted normalized point to unit ray (inverse of :meth:`to_plane`)."""
        P = np.asarray(P, dtype=float)
        rho = np.linalg.norm(P)
        theta = rho * 0.5 * self.fov

        if rho < _AXIS_EPS:
            return np.array([0.5 * self.fov * P[0], 0.5 * self.fov * P[1], 1.0])

        xy = P / rho * np.sin(theta)
        return np.array([xy[0], xy[1], np.cos(theta)])

    def image_to_ray(self, pixel: np.ndarray) -> np.ndarray:
        """Full inverse: pixel to unit ray in the camera frame."""
        return self.to_unit_sphere(self.remove_distortion(self.ima2cam(pixel)))

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def _inside_image(self, pixel: np.ndarray) -> bool:
        if not np.all(np.isfinite(pixel)):
            return False
        if pixel[0] < 0 or pixel[0] >= self.width or pixel[1] < 0 or pixel[1] >= self.height:
            return False
        return bool(np.linalg.norm(pixel - self.circle_center) <= self.radius)

    def is_visible(self, pixel: np.ndarray) -> bool:
        """Pixel lies in the image circle and within the angular field of view."""
        pixel = np.asarray(pixel, dtype=float)
        if not self._inside_image(pixel):
            return False
        rho = np.linalg.norm(self.remove_distortion(self.ima2cam(pixel)))
        return bool(rho <= 1.0 + FOV_TOLERANCE)

    def is_visible_ray(self, ray: np.ndarray) -> bool:
        """Ray is within the angular field of view and lands in the image circle."""
        ray = np.asarray(ray, dtype=float)
        if ray.shape != (3,) or np.linalg.norm(ray) == 0:
            return False
        rho = np.linalg.norm(self.to_plane(ray))
        if rho > 1.0 + FOV_TOLERANCE:
            return False
        return self._inside_image(self.world_to_image(ray, True))

    # ------------------------------------------------------------------
    # Stage derivatives
    # ------------------------------------------------------------------

    def d_to_plane_d_ray(self, ray: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`to_plane` w.r.t. the ray (2x3)."""
        x, y, z = ray
        a = 2.0 / self.fov
        n = np.hypot(x, y)

        if n < _AXIS_EPS:
            J = np.zeros((2, 3))
            J[:, :2] = a / z * np.eye(2)
            return J

        theta = np.arctan2(n, z)
        q = n * n + z * z
        u = np.array([x, y]) / n
        uu = np.outer(u, u)

        J = np.zeros((2, 3))
        J[:, :2] = a * ((z / q) * uu + (theta / n) * (np.eye(2) - uu))
        J[:, 2] = -a * u * n / q
        return J

    def d_to_plane_d_fov(self, ray: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`to_plane` w.r.t. the field of view (2x1)."""
        return (-self.to_plane(ray) / self.fov).reshape(2, 1)

    def d_add_distortion_d_point(self, P: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`add_distortion` w.r.t. the normalized point (2x2)."""
        k1, k2, k3 = self.distortion
        r2 = P @ P
        g = 1.0 + k1 * r2 + k2 * r2**2 + k3 * r2**3
        dg = k1 + 2 * k2 * r2 + 3 * k3 * r2**2
        return g * np.eye(2) + 2.0 * dg * np.outer(P, P)

    def d_add_distortion_d_disto(self, P: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`add_distortion` w.r.t. ``[k1, k2, k3]`` (2x3)."""
        r2 = P @ P
        return np.column_stack([P * r2, P * r2**2, P * r2**3])

    def d_remove_distortion_d_point(self, Pd: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`remove_distortion` w.r.t. the distorted point (2x2)."""
        P = self.remove_distortion(Pd)
        return np.linalg.inv(self.d_add_distortion_d_point(P))

    def d_remove_distortion_d_disto(self, Pd: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`remove_distortion` w.r.t. ``[k1, k2, k3]`` (2x3).

        Implicit function theorem on ``add_distortion(P, k) = Pd``.
        """
        P = self.remove_distortion(Pd)
        return -np.linalg.solve(self.d_add_distortion_d_point(P), self.d_add_distortion_d_disto(P))

    def d_ima2cam_d_point(self) -> np.ndarray:
        """Derivative of :meth:`ima2cam` w.r.t. the pixel (2x2)."""
        return np.eye(2) / self.radius

    def d_ima2cam_d_principal_point(self) -> np.ndarray:
        """Derivative of :meth:`ima2cam` w.r.t. the principal point (2x2)."""
        return -np.eye(2) / self.radius

    def d_to_unit_sphere_d_point(self, P: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`to_unit_sphere` w.r.t. the normalized point (3x2)."""
        half_fov = 0.5 * self.fov
        rho = np.linalg.norm(P)

        J = np.zeros((3, 2))
        if rho < _AXIS_EPS:
            J[:2, :] = half_fov * np.eye(2)
            return J

        theta = rho * half_fov
        v = P / rho
        vv = np.outer(v, v)
        J[:2, :] = np.sin(theta) / rho * (np.eye(2) - vv) + half_fov * np.cos(theta) * vv
        J[2, :] = -np.sin(theta) * half_fov * v
        return J

    def d_to_unit_sphere_d_fov(self, P: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`to_unit_sphere` w.r.t. the field of view (3x1)."""
        rho = np.linalg.norm(P)
        theta = rho * 0.5 * self.fov
        return np.array([
            0.5 * P[0] * np.cos(theta),
            0.5 * P[1] * np.cos(theta),
            -0.5 * rho * np.sin(theta),
        ]).reshape(3, 1)

    # ------------------------------------------------------------------
    # Projection derivatives
    # ------------------------------------------------------------------

    def d_project_d_point(self, ray: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        """Derivative of :meth:`world_to_image` w.r.t. the ray (2x3)."""
        J = self.radius * self.d_to_plane_d_ray(ray)
        if apply_distortion:
            J = self.d_add_distortion_d_point(self.to_plane(ray)) @ J
        return J

    def d_project_d_principal_point(self) -> np.ndarray:
        """Derivative of :meth:`world_to_image` w.r.t. the principal point (2x2)."""
        return np.eye(2)

    def d_project_d_disto(self, ray: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`world_to_image` (distorted) w.r.t. ``[k1, k2, k3]`` (2x3)."""
        return self.radius * self.d_add_distortion_d_disto(self.to_plane(ray))

    def d_project_d_fov(self, ray: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        """Derivative of :meth:`world_to_image` w.r.t. the field of view (2x1)."""
        J = self.radius * self.d_to_plane_d_fov(ray)
        if apply_distortion:
            J = self.d_add_distortion_d_point(self.to_plane(ray)) @ J
        return J

    def d_project_d_rotation(self, rotation: np.ndarray, point: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`project` w.r.t. the row-major rotation entries (2x9)."""
        A = self.d_project_d_point(rotation @ point)
        return np.kron(A, np.asarray(point, dtype=float).reshape(1, 3))

    def __repr__(self) -> str:
        return (
            f"EquidistantCamera(fov={np.degrees(self.fov):.3f}deg, "
            f"pp=({self.principal_point[0]:.2f}, {self.principal_point[1]:.2f}), "
            f"radius={self.radius:.1f}, disto={self.distortion.tolist()})"
        )


def make_camera_model(intrinsics) -> EquidistantCamera:
    """Build the camera model for a view's intrinsics.

    Args:
        intrinsics: Object with ``model``, ``width``, ``height``, ``radius``
            and ``params`` attributes (see ``models.entities.Intrinsics``)

    Returns:
        Camera model instance

    Raises:
        UnsupportedCameraModelError: For any variant other than equidistant
    """
    model = CameraModelType(intrinsics.model)

    if model == CameraModelType.EQUIDISTANT_RADIAL_K3:
        return EquidistantCamera.from_params(
            intrinsics.width, intrinsics.height, intrinsics.radius, np.asarray(intrinsics.params)
        )

    raise UnsupportedCameraModelError(f"Camera model '{model.value}' is not supported")


def split_params(params: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an intrinsic vector into (fov, principal point, distortion) blocks."""
    params = np.asarray(params, dtype=float)
    if params.shape != (N_PARAMS,):
        raise ValueError(f"params must be {N_PARAMS}-element vector, got shape {params.shape}")
    return params[FOV_BLOCK].copy(), params[PRINCIPAL_POINT_BLOCK].copy(), params[DISTORTION_BLOCK].copy()
