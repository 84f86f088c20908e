"""Scene management API routes."""

from typing import Any

from fastapi import APIRouter, HTTPException

from panobundle.core.models.scene import Scene

router = APIRouter(prefix="/scenes", tags=["scenes"])

# In-memory scene store
scenes_store: dict[str, Scene] = {}


def get_scene_or_404(scene_id: str) -> Scene:
    """Look up a scene, raising 404 when it does not exist."""
    if scene_id not in scenes_store:
        raise HTTPException(status_code=404, detail="Scene not found")
    return scenes_store[scene_id]


def store_scene(scene: Scene, prefix: str = "scene") -> str:
    """Add a scene to the store and return its ID."""
    scene_id = f"{prefix}_{len(scenes_store)}"
    while scene_id in scenes_store:
        scene_id = f"{scene_id}_"
    scenes_store[scene_id] = scene
    return scene_id


@router.post("/", response_model=dict[str, str])
async def create_scene(scene: Scene | None = None) -> dict[str, str]:
    """Create a scene, empty or from a posted scene document."""
    scene = scene if scene is not None else Scene()

    issues = scene.validate_scene() if scene.views else []
    reference_issues = [issue for issue in issues if not issue.startswith("Scene needs")]
    if reference_issues:
        raise HTTPException(status_code=400, detail=f"Invalid scene: {'; '.join(reference_issues)}")

    scene_id = store_scene(scene)
    return {"scene_id": scene_id, "status": "created"}


@router.get("/")
async def list_scenes() -> dict[str, Any]:
    """List stored scenes with view and match counts."""
    return {
        scene_id: {"views": len(scene.views), "matches": scene.num_matches()}
        for scene_id, scene in scenes_store.items()
    }


@router.get("/{scene_id}")
async def get_scene(scene_id: str) -> Scene:
    """Get scene by ID."""
    return get_scene_or_404(scene_id)


@router.get("/{scene_id}/validate")
async def validate_scene(scene_id: str) -> dict[str, Any]:
    """Validate scene references."""
    issues = get_scene_or_404(scene_id).validate_scene()
    return {"valid": not issues, "issues": issues}


@router.delete("/{scene_id}")
async def delete_scene(scene_id: str) -> dict[str, str]:
    """Delete scene."""
    get_scene_or_404(scene_id)
    del scenes_store[scene_id]
    return {"status": "deleted"}
