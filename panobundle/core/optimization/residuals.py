"""Residual functors for panoramic bundle adjustment."""

from abc import abstractmethod
from typing import Collection, Dict, List, Optional

import numpy as np

from .factor_graph import Factor
from ..math.camera import EquidistantCamera


def rotation_id(view_id: str) -> str:
    return f"{view_id}_rotation"


def fov_id(view_id: str) -> str:
    return f"{view_id}_fov"


def principal_point_id(view_id: str) -> str:
    return f"{view_id}_principal_point"


def distortion_id(view_id: str) -> str:
    return f"{view_id}_distortion"


def view_variable_ids(view_id: str) -> List[str]:
    """Variable ids of one view: rotation, fov, principal point, distortion."""
    return [rotation_id(view_id), fov_id(view_id), principal_point_id(view_id), distortion_id(view_id)]


class ResidualFunctor(Factor):
    """Base class for residual functors."""

    def __init__(self, factor_id: str, variable_ids: List[str]):
        """Initialize residual functor."""
        super().__init__(factor_id, variable_ids)

    @abstractmethod
    def compute_residual(self, variables: Dict[str, np.ndarray]) -> np.ndarray:
        """Compute residual given variable values."""
        pass

    @abstractmethod
    def compute_jacobian(
        self,
        variables: Dict[str, np.ndarray],
        requested: Optional[Collection[str]] = None
    ) -> Dict[str, np.ndarray]:
        """Compute Jacobian matrices of the requested blocks."""
        pass


class ReprojectionResidual(ResidualFunctor):
    """Transfer error of one match from a source view into a target view.

    The source pixel is lifted to a ray with the source camera, rotated into
    the target frame with ``R_j @ R_i.T`` and projected with the target
    camera. The residual is ``(predicted - observed_target) / sigma``.

    Connected variables, in order: ``R_i, R_j, fov_i, pp_i, disto_i, fov_j,
    pp_j, disto_j``. Rotations are 9-element row-major matrices and their
    Jacobians are taken w.r.t. those ambient entries.
    """

    def __init__(
        self,
        factor_id: str,
        source_view: str,
        target_view: str,
        observed_source,
        observed_target,
        source_camera: EquidistantCamera,
        target_camera: EquidistantCamera,
        sigma: float = 1.0
    ):
        """Initialize reprojection residual.

        Args:
            factor_id: Unique factor identifier
            source_view: View id the observation is lifted from
            target_view: View id the prediction is compared in
            observed_source: Pixel observed in the source view
            observed_target: Pixel observed in the target view
            source_camera: Camera supplying the fixed size and radius of the source view
            target_camera: Camera supplying the fixed size and radius of the target view
            sigma: Measurement uncertainty in pixels
        """
        if source_view == target_view:
            raise ValueError("Source and target views must differ")
        if sigma <= 0:
            raise ValueError(f"sigma must be positive, got {sigma}")

        self.source_view = source_view
        self.target_view = target_view

        variable_ids = [
            rotation_id(source_view),
            rotation_id(target_view),
            fov_id(source_view),
            principal_point_id(source_view),
            distortion_id(source_view),
            fov_id(target_view),
            principal_point_id(target_view),
            distortion_id(target_view),
        ]
        super().__init__(factor_id, variable_ids)

        self.observed_source = np.asarray(observed_source, dtype=float)
        self.observed_target = np.asarray(observed_target, dtype=float)
        self.source_camera = source_camera
        self.target_camera = target_camera
        self.sigma = sigma

    def _camera(self, template: EquidistantCamera, view_id: str, variables: Dict[str, np.ndarray]) -> EquidistantCamera:
        params = np.concatenate([
            variables[fov_id(view_id)],
            variables[principal_point_id(view_id)],
            variables[distortion_id(view_id)],
        ])
        return EquidistantCamera.from_params(template.width, template.height, template.radius, params)

    def _rotations(self, variables: Dict[str, np.ndarray]):
        R_i = np.asarray(variables[rotation_id(self.source_view)]).reshape(3, 3)
        R_j = np.asarray(variables[rotation_id(self.target_view)]).reshape(3, 3)
        return R_i, R_j

    def predict(self, variables: Dict[str, np.ndarray]) -> np.ndarray:
        """Predicted pixel of the source observation in the target view."""
        cam_i = self._camera(self.source_camera, self.source_view, variables)
        cam_j = self._camera(self.target_camera, self.target_view, variables)
        R_i, R_j = self._rotations(variables)

        ray_i = cam_i.image_to_ray(self.observed_source)
        return cam_j.world_to_image(R_j @ R_i.T @ ray_i, apply_distortion=True)

    def compute_residual(self, variables: Dict[str, np.ndarray]) -> np.ndarray:
        """Compute reprojection residual."""
        return (self.predict(variables) - self.observed_target) / self.sigma

    def compute_jacobian(
        self,
        variables: Dict[str, np.ndarray],
        requested: Optional[Collection[str]] = None
    ) -> Dict[str, np.ndarray]:
        """Compute analytic Jacobians of the requested connected blocks.

        Every one of the eight blocks has an analytic form. Blocks left out of
        ``requested`` are skipped along with the chain-rule factors only they
        need.
        """
        wanted = set(self.variable_ids if requested is None else requested)

        rot_i = rotation_id(self.source_view)
        rot_j = rotation_id(self.target_view)
        fov_i = fov_id(self.source_view)
        pp_i = principal_point_id(self.source_view)
        disto_i = distortion_id(self.source_view)
        source_blocks = {fov_i, pp_i, disto_i}

        cam_i = self._camera(self.source_camera, self.source_view, variables)
        cam_j = self._camera(self.target_camera, self.target_view, variables)
        R_i, R_j = self._rotations(variables)

        # Source chain: pixel -> Pd -> P -> ray
        Pd_i = cam_i.ima2cam(self.observed_source)
        P_i = cam_i.remove_distortion(Pd_i)
        ray_i = cam_i.to_unit_sphere(P_i)

        R = R_j @ R_i.T
        ray_j = R @ ray_i

        jacobians = {}

        if wanted & ({rot_i, rot_j} | source_blocks):
            A = cam_j.d_project_d_point(ray_j)

            if rot_i in wanted:
                jacobians[rot_i] = np.kron(ray_i.reshape(1, 3), A @ R_j)
            if rot_j in wanted:
                jacobians[rot_j] = np.kron(A, (R_i.T @ ray_i).reshape(1, 3))

            if wanted & source_blocks:
                B = A @ R
                if fov_i in wanted:
                    jacobians[fov_i] = B @ cam_i.d_to_unit_sphere_d_fov(P_i)
                if pp_i in wanted or disto_i in wanted:
                    BS = B @ cam_i.d_to_unit_sphere_d_point(P_i)
                    if pp_i in wanted:
                        jacobians[pp_i] = (
                            BS @ cam_i.d_remove_distortion_d_point(Pd_i)
                            @ cam_i.d_ima2cam_d_principal_point()
                        )
                    if disto_i in wanted:
                        jacobians[disto_i] = BS @ cam_i.d_remove_distortion_d_disto(Pd_i)

        if fov_id(self.target_view) in wanted:
            jacobians[fov_id(self.target_view)] = cam_j.d_project_d_fov(ray_j)
        if principal_point_id(self.target_view) in wanted:
            jacobians[principal_point_id(self.target_view)] = cam_j.d_project_d_principal_point()
        if distortion_id(self.target_view) in wanted:
            jacobians[distortion_id(self.target_view)] = cam_j.d_project_d_disto(ray_j)

        return {var_id: J / self.sigma for var_id, J in jacobians.items()}

    def residual_dimension(self) -> int:
        """Get residual dimension."""
        return 2
