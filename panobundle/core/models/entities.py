"""Core entities: Intrinsics, View, PairMatches."""

from typing import List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field, field_validator

from ..math.camera import (
    CameraModelType,
    DISTORTION_BLOCK,
    FOV_BLOCK,
    N_PARAMS,
    PRINCIPAL_POINT_BLOCK,
    make_camera_model,
)
from ..math.so3 import is_rotation_matrix


class Intrinsics(BaseModel):
    """Camera intrinsics for one view.

    ``params`` follows the camera-model layout ``[fov, ppx, ppy, k1, k2, k3]``.
    Width, height and image-circle radius are fixed sensor properties.
    """

    model: CameraModelType = Field(
        default=CameraModelType.EQUIDISTANT_RADIAL_K3,
        description="Camera model variant"
    )
    width: float = Field(gt=0, description="Image width in pixels")
    height: float = Field(gt=0, description="Image height in pixels")
    radius: float = Field(gt=0, description="Image-circle radius in pixels")
    params: List[float] = Field(
        description="Intrinsic vector [fov, ppx, ppy, k1, k2, k3]",
        min_length=N_PARAMS,
        max_length=N_PARAMS
    )

    @field_validator('params')
    @classmethod
    def validate_params(cls, v):
        if len(v) != N_PARAMS:
            raise ValueError(f"params must have exactly {N_PARAMS} elements")
        if v[0] <= 0:
            raise ValueError("Field of view must be positive")
        return v

    def get_params(self) -> np.ndarray:
        """Get intrinsic vector as numpy array."""
        return np.array(self.params, dtype=float)

    def set_params(self, params: np.ndarray) -> None:
        """Set intrinsic vector from numpy array."""
        params = np.asarray(params, dtype=float)
        if params.shape != (N_PARAMS,):
            raise ValueError(f"params must be {N_PARAMS}-element array")
        self.params = params.tolist()

    def get_fov(self) -> float:
        """Get field of view in radians."""
        return float(self.get_params()[FOV_BLOCK][0])

    def get_principal_point(self) -> np.ndarray:
        """Get principal point (ppx, ppy)."""
        return self.get_params()[PRINCIPAL_POINT_BLOCK]

    def get_distortion(self) -> np.ndarray:
        """Get distortion coefficients [k1, k2, k3]."""
        return self.get_params()[DISTORTION_BLOCK]

    def to_camera(self):
        """Build the camera model for these intrinsics."""
        return make_camera_model(self)


class IntrinsicsLockFlags(BaseModel):
    """Flags indicating which view parameter blocks are held fixed during optimization."""

    fov: bool = Field(default=False, description="Lock field of view")
    principal_point: bool = Field(default=False, description="Lock principal point")
    distortion: bool = Field(default=False, description="Lock distortion coefficients")
    rotation: bool = Field(default=False, description="Lock rotation")


class View(BaseModel):
    """One camera of the rig: intrinsics, orientation and observed point features."""

    id: str = Field(description="Unique identifier for the view")
    intrinsics: Intrinsics = Field(description="Camera intrinsics")
    rotation: Optional[List[float]] = Field(
        default=None,
        description="Rig-to-view rotation, row-major 3x3",
        min_length=9,
        max_length=9
    )
    features: List[Tuple[float, float]] = Field(
        default_factory=list,
        description="Observed point features (x, y) indexed by feature id"
    )
    lock_flags: IntrinsicsLockFlags = Field(
        default_factory=IntrinsicsLockFlags,
        description="Parameter lock flags"
    )

    @field_validator('rotation')
    @classmethod
    def validate_rotation(cls, v):
        if v is None:
            return v
        if len(v) != 9:
            raise ValueError("rotation must have exactly 9 elements")
        if not is_rotation_matrix(np.array(v, dtype=float).reshape(3, 3), atol=1e-6):
            raise ValueError("rotation must be orthonormal with determinant +1")
        return v

    def has_rotation(self) -> bool:
        """Check if the view has an initial rotation."""
        return self.rotation is not None

    def get_rotation(self) -> np.ndarray:
        """Get rotation as 3x3 matrix (identity if unset)."""
        if self.rotation is None:
            return np.eye(3)
        return np.array(self.rotation, dtype=float).reshape(3, 3)

    def set_rotation(self, R: np.ndarray) -> None:
        """Set rotation from 3x3 matrix or 9-element row-major array."""
        R = np.asarray(R, dtype=float)
        if R.shape not in ((3, 3), (9,)):
            raise ValueError("R must be 3x3 matrix or 9-element array")
        self.rotation = R.reshape(9).tolist()

    def get_feature(self, index: int) -> np.ndarray:
        """Get point feature by index."""
        if index < 0 or index >= len(self.features):
            raise ValueError(f"View {self.id} has no feature {index}")
        return np.array(self.features[index], dtype=float)

    def num_features(self) -> int:
        """Number of observed features."""
        return len(self.features)


class PairMatches(BaseModel):
    """Index-level matches between features of two views."""

    view_i: str = Field(description="First view ID")
    view_j: str = Field(description="Second view ID")
    matches: List[Tuple[int, int]] = Field(
        default_factory=list,
        description="Pairs (feature index in view_i, feature index in view_j)"
    )

    @field_validator('view_j')
    @classmethod
    def validate_distinct(cls, v, info):
        if info.data.get('view_i') == v:
            raise ValueError("A pair must reference two distinct views")
        return v

    def key(self) -> Tuple[str, str]:
        """Ordered view pair key."""
        return self.view_i, self.view_j
