"""Synthetic scene generation API routes."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from panobundle.core.synthetic import make_reference_rig, perturb_distortion

from .scenes import store_scene

router = APIRouter(prefix="/synthetic", tags=["synthetic"])


class ReferenceRigRequest(BaseModel):
    """Request model for reference rig generation."""

    step_deg: float = Field(default=1.0, gt=0, le=90)
    seed: int | None = None
    noise_std: float = Field(default=0.0, ge=0)
    lock_rotations: bool = True
    k1: float | None = Field(default=None, description="Overrides k1 of every view")


@router.post("/reference-rig")
async def create_reference_rig(request: ReferenceRigRequest) -> dict[str, str | int]:
    """Generate the three-view reference fisheye rig."""
    try:
        scene = make_reference_rig(
            step_deg=request.step_deg,
            seed=request.seed,
            noise_std=request.noise_std,
            lock_rotations=request.lock_rotations,
        )
        if request.k1 is not None:
            perturb_distortion(scene, 0, request.k1)

    except ValueError as e:
        raise HTTPException(
            status_code=500, detail=f"Failed to create reference rig: {str(e)}"
        )

    scene_id = store_scene(scene, prefix="synthetic_reference_rig")
    return {
        "scene_id": scene_id,
        "type": "reference_rig",
        "status": "created",
        "views": len(scene.views),
        "matches": scene.num_matches(),
    }
