"""Tests for scene entities and settings."""

import numpy as np
import pytest
from pydantic import ValidationError

from panobundle.core.math.so3 import axis_angle_matrix
from panobundle.core.models.entities import Intrinsics, IntrinsicsLockFlags, PairMatches, View
from panobundle.core.models.scene import Scene, SceneSettings, SolveResult, SolverSettings


def make_intrinsics(**overrides):
    data = dict(width=3840, height=5760, radius=1980, params=[3.07, 1952.0, 2824.0, 0.004, 0.0, 0.0])
    data.update(overrides)
    return Intrinsics(**data)


def make_view(view_id, n_features=3, **kwargs):
    return View(
        id=view_id,
        intrinsics=make_intrinsics(),
        features=[(1900.0 + i, 2800.0 + i) for i in range(n_features)],
        **kwargs
    )


class TestIntrinsics:
    """Test intrinsics validation and accessors."""

    def test_blocks(self):
        """Test block accessors."""
        intrinsics = make_intrinsics()

        assert intrinsics.get_fov() == pytest.approx(3.07)
        np.testing.assert_array_equal(intrinsics.get_principal_point(), [1952.0, 2824.0])
        np.testing.assert_array_equal(intrinsics.get_distortion(), [0.004, 0.0, 0.0])

    def test_invalid_params(self):
        """Test params length and field-of-view sign."""
        with pytest.raises(ValidationError):
            make_intrinsics(params=[1.0, 2.0, 3.0])
        with pytest.raises(ValidationError):
            make_intrinsics(params=[0.0, 1952.0, 2824.0, 0.0, 0.0, 0.0])
        with pytest.raises(ValidationError):
            make_intrinsics(radius=0)

    def test_set_params(self):
        """Test params setter validation."""
        intrinsics = make_intrinsics()
        intrinsics.set_params(np.array([3.0, 1.0, 2.0, 0.1, 0.2, 0.3]))

        assert intrinsics.params == [3.0, 1.0, 2.0, 0.1, 0.2, 0.3]
        with pytest.raises(ValueError):
            intrinsics.set_params(np.zeros(5))


class TestView:
    """Test view entities."""

    def test_rotation_default_identity(self):
        """Test an unset rotation reads as identity."""
        view = make_view("a")

        assert not view.has_rotation()
        np.testing.assert_array_equal(view.get_rotation(), np.eye(3))

    def test_set_rotation(self):
        """Test rotation storage is row-major."""
        view = make_view("a")
        R = axis_angle_matrix(np.array([0.0, 1.0, 0.0]), 0.5)
        view.set_rotation(R)

        assert view.has_rotation()
        np.testing.assert_allclose(view.get_rotation(), R)
        assert view.rotation[2] == pytest.approx(R[0, 2])

    def test_invalid_rotation(self):
        """Test non-orthonormal rotations are rejected."""
        with pytest.raises(ValidationError):
            make_view("a", rotation=[2.0, 0, 0, 0, 1, 0, 0, 0, 1])
        with pytest.raises(ValidationError):
            make_view("a", rotation=[1.0, 0, 0, 0, 1, 0, 0, 0])

    def test_features(self):
        """Test feature access by index."""
        view = make_view("a", n_features=2)

        assert view.num_features() == 2
        np.testing.assert_array_equal(view.get_feature(1), [1901.0, 2801.0])
        with pytest.raises(ValueError):
            view.get_feature(2)
        with pytest.raises(ValueError):
            view.get_feature(-1)

    def test_lock_flags_default_free(self):
        """Test every block is free by default."""
        flags = make_view("a").lock_flags
        assert flags == IntrinsicsLockFlags()
        assert not (flags.fov or flags.principal_point or flags.distortion or flags.rotation)


class TestPairMatches:
    """Test pair matches."""

    def test_distinct_views(self):
        """Test a pair must connect two views."""
        with pytest.raises(ValidationError):
            PairMatches(view_i="a", view_j="a")

    def test_key(self):
        """Test the pair key."""
        assert PairMatches(view_i="a", view_j="b", matches=[(0, 1)]).key() == ("a", "b")


class TestScene:
    """Test scene operations."""

    def setup_method(self):
        """Set up a two-view scene."""
        self.scene = Scene()
        self.scene.add_view(make_view("a"))
        self.scene.add_view(make_view("b"))

    def test_duplicate_view(self):
        """Test duplicate view ids are rejected."""
        with pytest.raises(ValueError):
            self.scene.add_view(make_view("a"))

    def test_add_matches_merges(self):
        """Test matches for the same pair merge in either order."""
        self.scene.add_matches(PairMatches(view_i="a", view_j="b", matches=[(0, 1)]))
        self.scene.add_matches(PairMatches(view_i="b", view_j="a", matches=[(1, 0), (2, 2)]))

        assert len(self.scene.matches) == 1
        assert self.scene.get_pair_matches("b", "a").matches == [(0, 1), (2, 2)]
        assert self.scene.num_matches() == 2

    def test_match_references_checked(self):
        """Test matches must reference known views and features."""
        with pytest.raises(ValueError):
            self.scene.add_matches(PairMatches(view_i="a", view_j="zzz", matches=[]))
        with pytest.raises(ValueError):
            self.scene.add_matches(PairMatches(view_i="a", view_j="b", matches=[(0, 3)]))

    def test_remove_view(self):
        """Test removing a view drops its matches."""
        self.scene.add_matches(PairMatches(view_i="a", view_j="b", matches=[(0, 0)]))
        self.scene.remove_view("b")

        assert self.scene.get_view_ids() == ["a"]
        assert self.scene.matches == []
        with pytest.raises(ValueError):
            self.scene.remove_view("b")

    def test_initial_rotations(self):
        """Test initial rotations are present only if every view has one."""
        assert not self.scene.has_initial_rotations()
        self.scene.views["a"].set_rotation(np.eye(3))
        assert not self.scene.has_initial_rotations()
        self.scene.views["b"].set_rotation(np.eye(3))
        assert self.scene.has_initial_rotations()
        assert not Scene().has_initial_rotations()

    def test_validate_scene(self):
        """Test scene validation issues."""
        assert self.scene.validate_scene() == []

        self.scene.matches.append(PairMatches(view_i="a", view_j="ghost", matches=[]))
        issues = self.scene.validate_scene()
        assert len(issues) == 1 and "ghost" in issues[0]

        assert "Scene needs at least two views" in Scene().validate_scene()

    def test_json_round_trip(self):
        """Test scenes serialize through JSON."""
        self.scene.views["a"].set_rotation(axis_angle_matrix(np.array([0.0, 1.0, 0.0]), 0.3))
        self.scene.add_matches(PairMatches(view_i="a", view_j="b", matches=[(0, 1)]))

        restored = Scene.model_validate_json(self.scene.model_dump_json())

        assert restored.get_view_ids() == ["a", "b"]
        assert restored.matches[0].matches == [(0, 1)]
        np.testing.assert_allclose(restored.views["a"].get_rotation(), self.scene.views["a"].get_rotation())


class TestSettingsAndResults:
    """Test settings defaults and result sanitizing."""

    def test_defaults(self):
        """Test default settings."""
        settings = SceneSettings()

        assert settings.solver == SolverSettings()
        assert settings.solver.method == "lm"
        assert settings.solver.max_iterations == 500
        assert settings.orientation == "from_images"
        assert settings.restore_reference

    def test_invalid_settings(self):
        """Test rejected settings."""
        with pytest.raises(ValidationError):
            SolverSettings(method="newton")
        with pytest.raises(ValidationError):
            SolverSettings(max_iterations=0)
        with pytest.raises(ValidationError):
            SceneSettings(orientation="sideways")

    def test_non_finite_values_sanitized(self):
        """Test infinite costs are made JSON serializable."""
        result = SolveResult(
            success=False,
            iterations=0,
            initial_cost=float("nan"),
            final_cost=float("inf"),
            convergence_reason="failed",
            cost_history=[1.0, float("inf")],
            residuals={"a": float("nan")},
            largest_residuals=[("f", float("inf"))],
            computation_time=float("inf"),
        )

        assert result.initial_cost == 1e10
        assert result.final_cost == 1e10
        assert result.cost_history == [1.0, 1e10]
        assert result.residuals == {"a": 1e10}
        assert result.largest_residuals == [("f", 1e10)]
        assert result.computation_time is None
