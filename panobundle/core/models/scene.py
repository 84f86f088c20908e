"""Scene model and settings."""

import math
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .entities import PairMatches, View


class SolverSettings(BaseModel):
    """Solver configuration settings."""

    method: Literal["lm", "trf", "dogbox"] = Field(
        default="lm",
        description="Trust-region strategy"
    )
    max_iterations: int = Field(default=500, gt=0, description="Maximum solver iterations")
    tolerance: float = Field(default=1e-10, gt=0, description="Convergence tolerance")
    use_inner_iterations: bool = Field(
        default=True,
        description="Refine each free block alone before the joint solve"
    )


class SceneSettings(BaseModel):
    """Scene-wide settings."""

    solver: SolverSettings = Field(default_factory=SolverSettings)
    lock_all_intrinsics: bool = Field(
        default=False,
        description="Hold every intrinsic block fixed"
    )
    lock_rotations: bool = Field(
        default=False,
        description="Hold every rotation fixed"
    )
    orientation: Literal["from_images", "right", "left", "upside_down", "none"] = Field(
        default="from_images",
        description="Rig orientation applied when no initial rotations were given"
    )
    offset_longitude: float = Field(default=0.0, description="Longitude offset in degrees")
    offset_latitude: float = Field(default=0.0, description="Latitude offset in degrees")
    restore_reference: bool = Field(
        default=True,
        description="Keep the first view at its initial orientation after refinement"
    )


class SolveResult(BaseModel):
    """Results from optimization solve."""

    success: bool = Field(description="Whether solve succeeded")
    iterations: int = Field(description="Number of iterations performed")
    initial_cost: float = Field(default=0.0, description="Cost before optimization")
    final_cost: float = Field(description="Final optimization cost")
    convergence_reason: str = Field(description="Reason for convergence/termination")
    cost_history: List[float] = Field(
        default_factory=list,
        description="Cost at every accepted iterate"
    )
    residuals: Dict[str, float] = Field(
        default_factory=dict,
        description="Per-view RMS reprojection error in pixels"
    )
    unconstrained_dofs: List[str] = Field(
        default_factory=list,
        description="List of unconstrained degrees of freedom"
    )
    largest_residuals: List[Tuple[str, float]] = Field(
        default_factory=list,
        description="Largest residuals by factor ID"
    )
    computation_time: Optional[float] = Field(
        default=None,
        description="Solve time in seconds"
    )
    report: str = Field(default="", description="Text summary of the solve")

    @field_validator('final_cost', 'initial_cost')
    @classmethod
    def validate_cost(cls, v):
        """Ensure costs are JSON serializable."""
        if math.isinf(v) or math.isnan(v):
            return 1e10
        return v

    @field_validator('cost_history')
    @classmethod
    def validate_cost_history(cls, v):
        return [1e10 if (math.isinf(c) or math.isnan(c)) else c for c in v]

    @field_validator('computation_time')
    @classmethod
    def validate_computation_time(cls, v):
        """Ensure computation_time is JSON serializable."""
        if v is not None and (math.isinf(v) or math.isnan(v)):
            return None
        return v

    @field_validator('residuals')
    @classmethod
    def validate_residuals(cls, v):
        """Ensure residuals are JSON serializable."""
        result = {}
        for key, value in v.items():
            if math.isinf(value) or math.isnan(value):
                result[key] = 1e10
            else:
                result[key] = value
        return result

    @field_validator('largest_residuals')
    @classmethod
    def validate_largest_residuals(cls, v):
        """Ensure largest residuals are JSON serializable."""
        result = []
        for factor_id, residual in v:
            if math.isinf(residual) or math.isnan(residual):
                result.append((factor_id, 1e10))
            else:
                result.append((factor_id, residual))
        return result


class Scene(BaseModel):
    """Complete panorama scene: views, their matches and settings."""

    version: str = Field(default="0.1.0", description="Scene format version")
    views: Dict[str, View] = Field(
        default_factory=dict,
        description="Views by ID, in shooting order"
    )
    matches: List[PairMatches] = Field(
        default_factory=list,
        description="Feature matches per view pair"
    )
    settings: SceneSettings = Field(
        default_factory=SceneSettings,
        description="Scene settings"
    )
    diagnostics: Optional[SolveResult] = Field(
        default=None,
        description="Latest solve diagnostics"
    )

    def add_view(self, view: View) -> None:
        """Add a view to the scene."""
        if view.id in self.views:
            raise ValueError(f"View {view.id} already exists")
        self.views[view.id] = view

    def add_matches(self, pair_matches: PairMatches) -> None:
        """Add matches for a view pair, merging with existing ones."""
        self._validate_match_references(pair_matches)

        existing = self.get_pair_matches(pair_matches.view_i, pair_matches.view_j)
        if existing is None:
            self.matches.append(pair_matches)
            return

        if existing.view_i == pair_matches.view_i:
            new_matches = pair_matches.matches
        else:
            new_matches = [(b, a) for a, b in pair_matches.matches]
        known = set(existing.matches)
        existing.matches.extend(m for m in new_matches if m not in known)

    def get_pair_matches(self, view_a: str, view_b: str) -> Optional[PairMatches]:
        """Get the matches between two views in either order."""
        for pair in self.matches:
            if {pair.view_i, pair.view_j} == {view_a, view_b}:
                return pair
        return None

    def remove_view(self, view_id: str) -> None:
        """Remove a view and all matches referencing it."""
        if view_id not in self.views:
            raise ValueError(f"View {view_id} does not exist")

        self.matches = [
            m for m in self.matches
            if view_id not in (m.view_i, m.view_j)
        ]
        del self.views[view_id]

    def get_view_ids(self) -> List[str]:
        """Get list of all view IDs in shooting order."""
        return list(self.views.keys())

    def has_initial_rotations(self) -> bool:
        """Check whether every view carries an initial rotation."""
        return bool(self.views) and all(v.has_rotation() for v in self.views.values())

    def num_matches(self) -> int:
        """Total number of matches over all pairs."""
        return sum(len(m.matches) for m in self.matches)

    def validate_scene(self) -> List[str]:
        """Validate entire scene and return list of issues."""
        issues = []

        for i, pair_matches in enumerate(self.matches):
            try:
                self._validate_match_references(pair_matches)
            except ValueError as e:
                issues.append(f"Matches {i}: {str(e)}")

        if len(self.views) < 2:
            issues.append("Scene needs at least two views")

        return issues

    def _validate_match_references(self, pair_matches: PairMatches) -> None:
        """Validate that match references exist."""
        for view_id in (pair_matches.view_i, pair_matches.view_j):
            if view_id not in self.views:
                raise ValueError(f"Matches reference non-existent view {view_id}")

        n_i = self.views[pair_matches.view_i].num_features()
        n_j = self.views[pair_matches.view_j].num_features()
        for a, b in pair_matches.matches:
            if not (0 <= a < n_i and 0 <= b < n_j):
                raise ValueError(
                    f"Match ({a}, {b}) out of range for views "
                    f"{pair_matches.view_i}/{pair_matches.view_j}"
                )
