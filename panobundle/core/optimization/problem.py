"""Optimization problem builder for panorama scenes."""

import logging
from typing import Any, Dict, Optional

import numpy as np

from .correspondences import CorrespondenceGraph
from .factor_graph import FactorGraph, Variable, VariableType
from .residuals import (
    ReprojectionResidual,
    distortion_id,
    fov_id,
    principal_point_id,
    rotation_id,
)
from ..math.camera import DISTORTION_BLOCK, FOV_BLOCK, PRINCIPAL_POINT_BLOCK, make_camera_model
from ..math.so3 import RotationManifold
from ..models.scene import Scene, SceneSettings

logger = logging.getLogger(__name__)


class PanoramaProblem:
    """Builder for the rotation-only bundle adjustment of a panorama scene."""

    def __init__(self, scene: Scene, settings: Optional[SceneSettings] = None):
        """Initialize optimization problem.

        Args:
            scene: Scene holding views, features and matches
            settings: Overrides ``scene.settings`` when given
        """
        self.scene = scene
        self.settings = settings if settings is not None else scene.settings
        self.factor_graph = FactorGraph()
        self.correspondences: Optional[CorrespondenceGraph] = None
        self._cameras: Dict[str, Any] = {}
        self._residual_counter = 0

    def build_factor_graph(self) -> FactorGraph:
        """Build factor graph from the scene.

        Returns:
            Complete factor graph ready for optimization

        Raises:
            UnsupportedCameraModelError: If a view uses an unsupported camera model
            MissingJacobianError: If a free block receives no analytic Jacobian
        """
        self.factor_graph = FactorGraph()
        self._residual_counter = 0
        self._cameras = {
            view_id: make_camera_model(view.intrinsics)
            for view_id, view in self.scene.views.items()
        }

        self._add_view_variables()

        self.correspondences = CorrespondenceGraph.from_scene(self.scene)
        self._add_reprojection_factors()

        self.factor_graph.validate_jacobians()

        summary = self.factor_graph.summary()
        logger.info(
            f"Built problem: {len(self.scene.views)} views, "
            f"{self.correspondences.num_matches()} matches, "
            f"{summary['factors']['total']} residuals, "
            f"{summary['variables']['free']} free blocks"
        )

        return self.factor_graph

    def _add_view_variables(self) -> None:
        """Add the four parameter blocks of every view."""
        manifold = RotationManifold()
        lock_intrinsics = self.settings.lock_all_intrinsics

        for view_id, view in self.scene.views.items():
            flags = view.lock_flags
            params = view.intrinsics.get_params()

            self.factor_graph.add_variable(Variable(
                id=rotation_id(view_id),
                type=VariableType.CAMERA_ROTATION,
                size=9,
                value=view.get_rotation().reshape(9),
                is_constant=self.settings.lock_rotations or flags.rotation,
                manifold=manifold
            ))

            self.factor_graph.add_variable(Variable(
                id=fov_id(view_id),
                type=VariableType.FIELD_OF_VIEW,
                size=1,
                value=params[FOV_BLOCK],
                is_constant=lock_intrinsics or flags.fov,
                lower_bounds=np.array([1e-3]),
                upper_bounds=np.array([2.0 * np.pi])
            ))

            self.factor_graph.add_variable(Variable(
                id=principal_point_id(view_id),
                type=VariableType.PRINCIPAL_POINT,
                size=2,
                value=params[PRINCIPAL_POINT_BLOCK],
                is_constant=lock_intrinsics or flags.principal_point
            ))

            self.factor_graph.add_variable(Variable(
                id=distortion_id(view_id),
                type=VariableType.DISTORTION,
                size=3,
                value=params[DISTORTION_BLOCK],
                is_constant=lock_intrinsics or flags.distortion
            ))

    def _add_reprojection_factors(self) -> None:
        """Add two reprojection factors (one per direction) for every match."""
        for corr in self.correspondences.oriented_correspondences():
            source = self.scene.views[corr.source_view]
            target = self.scene.views[corr.target_view]

            factor_id = f"reprojection_{self._residual_counter}"
            self._residual_counter += 1

            factor = ReprojectionResidual(
                factor_id=factor_id,
                source_view=corr.source_view,
                target_view=corr.target_view,
                observed_source=source.get_feature(corr.source_feature),
                observed_target=target.get_feature(corr.target_feature),
                source_camera=self._cameras[corr.source_view],
                target_camera=self._cameras[corr.target_view]
            )

            self.factor_graph.add_factor(factor)

    def get_optimization_summary(self) -> Dict[str, Any]:
        """Get summary of optimization problem.

        Returns:
            Dictionary with problem statistics
        """
        summary = self.factor_graph.summary()

        summary["scene_info"] = {
            "n_views": len(self.scene.views),
            "n_matches": self.correspondences.num_matches() if self.correspondences else 0,
            "n_residuals": len(self.factor_graph.factors),
        }

        summary["blocks"] = {
            "free": self.factor_graph.get_free_variable_ids(),
            "fixed": [
                var_id for var_id, var in self.factor_graph.variables.items()
                if var.is_constant
            ],
        }

        if self.correspondences is not None:
            summary["pairs"] = self.correspondences.summary()["pairs"]

        return summary

    def extract_solution_to_scene(self) -> None:
        """Write optimized rotations and intrinsics back to the scene."""
        for view_id, view in self.scene.views.items():
            rot_var = self.factor_graph.variables.get(rotation_id(view_id))
            if rot_var is not None and rot_var.is_initialized():
                view.set_rotation(rot_var.get_value())

            block_ids = [fov_id(view_id), principal_point_id(view_id), distortion_id(view_id)]
            if all(var_id in self.factor_graph.variables for var_id in block_ids):
                params = np.concatenate([
                    self.factor_graph.variables[var_id].get_value() for var_id in block_ids
                ])
                view.intrinsics.set_params(params)

    def get_rotations(self) -> Dict[str, np.ndarray]:
        """Current rotations of all views as 3x3 matrices."""
        return {
            view_id: self.factor_graph.variables[rotation_id(view_id)].get_value().reshape(3, 3)
            for view_id in self.scene.views
        }
