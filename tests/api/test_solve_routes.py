"""Tests for the synthetic and solve endpoints."""

import pytest
from fastapi.testclient import TestClient

from main import app
from routers.scenes import scenes_store

client = TestClient(app)


def create_rig(**overrides):
    payload = {"step_deg": 10.0, "k1": 0.0}
    payload.update(overrides)
    response = client.post("/synthetic/reference-rig", json=payload)
    assert response.status_code == 200
    return response.json()


class TestSyntheticRoutes:
    """Test synthetic scene generation."""

    def test_reference_rig(self):
        """Test the reference rig is created and stored."""
        data = create_rig()

        assert data["type"] == "reference_rig"
        assert data["views"] == 3
        assert data["matches"] > 0

        scene = client.get(f"/scenes/{data['scene_id']}").json()
        assert scene["views"]["view_0"]["intrinsics"]["params"][3] == 0.0
        assert scene["settings"]["lock_rotations"] is True

    def test_invalid_step(self):
        """Test request validation."""
        response = client.post("/synthetic/reference-rig", json={"step_deg": 0.0})
        assert response.status_code == 422


class TestSolveRoutes:
    """Test solving through the API."""

    def test_solve_recovers_k1(self):
        """Test solving the perturbed rig restores k1."""
        scene_id = create_rig()["scene_id"]

        response = client.post(f"/solve/{scene_id}", json={})

        assert response.status_code == 200
        result = response.json()
        assert result["success"]
        assert result["final_cost"] < result["initial_cost"]
        assert result["report"].startswith("Solver Summary")

        diagnostics = client.get(f"/solve/{scene_id}/diagnostics").json()
        assert diagnostics["intrinsics"]["view_1"][3] == pytest.approx(0.004, abs=1e-5)
        assert diagnostics["orientations_deg"]["view_0"] == pytest.approx([0.0, 0.0, 0.0], abs=1e-9)

    def test_diagnostics_before_solve(self):
        """Test diagnostics are missing until a solve ran."""
        scene_id = create_rig(step_deg=20.0)["scene_id"]
        assert client.get(f"/solve/{scene_id}/diagnostics").status_code == 404

    def test_optimization_summary(self):
        """Test the problem summary endpoint."""
        scene_id = create_rig(step_deg=20.0)["scene_id"]

        summary = client.get(f"/solve/{scene_id}/optimization-summary").json()

        assert summary["scene_info"]["n_views"] == 3
        assert summary["blocks"]["free"] == ["view_0_distortion", "view_1_distortion", "view_2_distortion"]
        assert set(summary["pairs"]) == {"view_0:view_1", "view_1:view_2"}

    def test_unsupported_camera(self):
        """Test a pinhole view is rejected as unsolvable input."""
        scene_id = create_rig(step_deg=20.0)["scene_id"]
        scenes_store[scene_id].views["view_0"].intrinsics.model = "pinhole_radial_k3"

        response = client.post(f"/solve/{scene_id}", json={})
        assert response.status_code == 422
        assert client.get(f"/solve/{scene_id}/optimization-summary").status_code == 422

    def test_free_view_without_matches(self):
        """Test free blocks no match constrains are rejected as unsolvable input."""
        scene_id = create_rig(step_deg=20.0)["scene_id"]
        scenes_store[scene_id].matches = []

        response = client.post(f"/solve/{scene_id}", json={})

        assert response.status_code == 422
        assert "not constrained by any factor" in response.json()["detail"]
        assert client.get(f"/solve/{scene_id}/optimization-summary").status_code == 422

    def test_unknown_scene(self):
        """Test solving a missing scene."""
        assert client.post("/solve/nope", json={}).status_code == 404
