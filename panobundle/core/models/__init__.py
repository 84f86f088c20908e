"""Data models for panobundle."""

from .entities import Intrinsics, IntrinsicsLockFlags, View, PairMatches
from .scene import Scene, SceneSettings, SolverSettings, SolveResult

__all__ = [
    "Intrinsics",
    "IntrinsicsLockFlags",
    "View",
    "PairMatches",
    "Scene",
    "SceneSettings",
    "SolverSettings",
    "SolveResult",
]
