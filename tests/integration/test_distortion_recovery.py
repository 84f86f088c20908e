"""End-to-end recovery tests on the synthetic reference rig."""

import numpy as np
import pytest

from panobundle.core.math.so3 import axis_angle_matrix
from panobundle.core.models.scene import SolverSettings
from panobundle.core.optimization.problem import PanoramaProblem
from panobundle.core.solver.pipeline import refine_scene
from panobundle.core.solver.scipy_solver import SciPySolver, SolverOptions
from panobundle.core.synthetic.scene_gen import (
    SceneGenerator,
    make_reference_intrinsics,
    make_reference_rig,
    perturb_distortion,
)

Y_AXIS = np.array([0.0, 1.0, 0.0])


class TestDistortionRecovery:
    """Recover k1 after perturbing it on the reference rig."""

    def setup_method(self):
        """Set up the coarse reference rig with k1 zeroed."""
        self.scene = make_reference_rig(step_deg=10.0)
        perturb_distortion(self.scene, 0, 0.0)

    def test_recovers_k1(self):
        """Test the solver brings k1 back to its true value."""
        problem = PanoramaProblem(self.scene)
        graph = problem.build_factor_graph()

        result = SciPySolver().solve(graph)
        problem.extract_solution_to_scene()

        assert result.success
        assert result.initial_cost > 1.0
        assert result.final_cost < 1e-8
        for view in self.scene.views.values():
            np.testing.assert_allclose(view.intrinsics.get_distortion(), [0.004, 0.0, 0.0], atol=1e-5)

    def test_cost_history_never_increases(self):
        """Test accepted-iterate costs are non-increasing."""
        graph = PanoramaProblem(self.scene).build_factor_graph()
        result = SciPySolver().solve(graph)

        history = result.cost_history
        assert len(history) >= 3
        assert all(later <= earlier for earlier, later in zip(history, history[1:]))
        assert history[-1] < 1e-8 < history[0]

    @pytest.mark.parametrize("method", ["lm", "trf"])
    def test_without_inner_iterations(self, method):
        """Test the joint solve alone also recovers k1."""
        graph = PanoramaProblem(self.scene).build_factor_graph()
        options = SolverOptions(method=method, use_inner_iterations=False)

        result = SciPySolver(options).solve(graph)

        assert result.success
        np.testing.assert_allclose(graph.get_variable("view_1_distortion").get_value()[0], 0.004, atol=1e-5)

    def test_diagnostics_after_solve(self):
        """Test per-view residuals are near zero after recovery."""
        result = refine_scene(self.scene)

        assert self.scene.diagnostics is result
        assert set(result.residuals) == {"view_0", "view_1", "view_2"}
        assert max(result.residuals.values()) < 1e-4
        assert result.unconstrained_dofs == []


class TestRefineScene:
    """Test the end-to-end pipeline and pose post-processing."""

    def test_locked_rotations_unchanged(self):
        """Test a locked rig keeps its rotations."""
        scene = make_reference_rig(step_deg=10.0)
        perturb_distortion(scene, 0, 0.0)
        before = {vid: v.get_rotation() for vid, v in scene.views.items()}

        result = refine_scene(scene)

        assert result.success
        for view_id, R in before.items():
            np.testing.assert_allclose(scene.views[view_id].get_rotation(), R, atol=1e-12)

    def test_free_rotations_restored_to_reference(self):
        """Test freeing rotations recovers relative poses with the first view anchored."""
        scene = make_reference_rig(step_deg=10.0, lock_rotations=False)
        perturb_distortion(scene, 0, 0.002)
        truth = {vid: v.get_rotation() for vid, v in scene.views.items()}

        nudge = axis_angle_matrix(np.array([0.2, 1.0, -0.1]), np.radians(1.0))
        scene.views["view_1"].set_rotation(nudge @ truth["view_1"])

        result = refine_scene(scene)

        assert result.success
        assert result.final_cost < 1e-8
        for view_id, R in truth.items():
            np.testing.assert_allclose(scene.views[view_id].get_rotation(), R, atol=1e-6)

    def test_orientation_without_initial_rotations(self):
        """Test the orientation choice and offsets when no rotation was given."""
        rotations = [np.eye(3), np.eye(3)]
        intrinsics = [make_reference_intrinsics() for _ in rotations]
        scene = SceneGenerator().generate_rig(intrinsics, rotations, step_deg=15.0)
        for view in scene.views.values():
            view.rotation = None
        scene.settings.lock_rotations = True
        scene.settings.orientation = "upside_down"
        scene.settings.offset_longitude = 90.0

        result = refine_scene(scene)

        assert result.success
        expected = axis_angle_matrix(Y_AXIS, np.pi).T @ axis_angle_matrix(Y_AXIS, np.pi / 2)
        for view in scene.views.values():
            np.testing.assert_allclose(view.get_rotation(), expected, atol=1e-12)

    def test_failed_solve_leaves_scene(self):
        """Test a solve stopped by the iteration limit does not write back."""
        scene = make_reference_rig(step_deg=10.0)
        perturb_distortion(scene, 0, 0.0)
        scene.settings.solver = SolverSettings(max_iterations=1)

        result = refine_scene(scene)

        assert not result.success
        assert scene.diagnostics is result
        for view in scene.views.values():
            assert view.intrinsics.get_distortion()[0] == 0.0
