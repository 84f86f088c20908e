"""Correspondence graph: index-level feature matches between view pairs."""

import logging
from typing import Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from ..math.camera import make_camera_model

logger = logging.getLogger(__name__)


class IndexMatch(NamedTuple):
    """One match: feature index in the first view and in the second view."""
    i_feature: int
    j_feature: int


class OrientedCorrespondence(NamedTuple):
    """A match seen from one direction: source view lifted, target view predicted."""
    source_view: str
    target_view: str
    source_feature: int
    target_feature: int


class CorrespondenceGraph:
    """Matches stored per ordered view pair ``(i, j)`` with ``i`` before ``j``.

    View order is the order in which views were registered. The graph is
    built once and is not mutated while a problem is being solved.
    """

    def __init__(self, view_ids: Optional[Sequence[str]] = None):
        self._view_order: Dict[str, int] = {}
        self._matches: Dict[Tuple[str, str], List[IndexMatch]] = {}
        for view_id in view_ids or []:
            self.add_view(view_id)

    def add_view(self, view_id: str) -> None:
        """Register a view; its position defines pair ordering."""
        if view_id in self._view_order:
            raise ValueError(f"View {view_id} already registered")
        self._view_order[view_id] = len(self._view_order)

    def view_ids(self) -> List[str]:
        return list(self._view_order)

    def add_match(self, view_a: str, view_b: str, feature_a: int, feature_b: int) -> None:
        """Add a match between two views given in any order."""
        for view_id in (view_a, view_b):
            if view_id not in self._view_order:
                raise ValueError(f"Unknown view {view_id}")
        if view_a == view_b:
            raise ValueError("A match must connect two distinct views")

        if self._view_order[view_a] > self._view_order[view_b]:
            view_a, view_b = view_b, view_a
            feature_a, feature_b = feature_b, feature_a

        self._matches.setdefault((view_a, view_b), []).append(
            IndexMatch(int(feature_a), int(feature_b))
        )

    @classmethod
    def from_projections(cls, feature_maps: Mapping[str, Mapping[int, int]]) -> "CorrespondenceGraph":
        """Build matches from per-view ``{point index: feature index}`` maps.

        Two features match iff they are projections of the same point index.
        A point missing from a view's map was not visible there and yields no
        match for that view.

        Args:
            feature_maps: Per view (in shooting order), the visible point
                indices and the feature index each one produced

        Returns:
            Correspondence graph
        """
        graph = cls(list(feature_maps.keys()))
        view_ids = graph.view_ids()

        for a, view_i in enumerate(view_ids):
            map_i = feature_maps[view_i]
            for view_j in view_ids[a + 1:]:
                map_j = feature_maps[view_j]
                common = sorted(set(map_i).intersection(map_j))
                for point_index in common:
                    graph.add_match(view_i, view_j, map_i[point_index], map_j[point_index])
                logger.debug(f"Pair ({view_i}, {view_j}): {len(common)} matches")

        return graph

    @classmethod
    def from_scene(cls, scene) -> "CorrespondenceGraph":
        """Build matches from a scene's provided pair matches.

        Matches whose feature is not visible in its own view are dropped.
        """
        graph = cls(scene.get_view_ids())
        cameras = {view_id: make_camera_model(view.intrinsics) for view_id, view in scene.views.items()}

        for pair in scene.matches:
            view_i = scene.views[pair.view_i]
            view_j = scene.views[pair.view_j]
            kept = 0
            for a, b in pair.matches:
                if not cameras[pair.view_i].is_visible(view_i.get_feature(a)):
                    continue
                if not cameras[pair.view_j].is_visible(view_j.get_feature(b)):
                    continue
                graph.add_match(pair.view_i, pair.view_j, a, b)
                kept += 1

            dropped = len(pair.matches) - kept
            logger.debug(
                f"Pair ({pair.view_i}, {pair.view_j}): kept {kept} matches, dropped {dropped} invisible"
            )

        return graph

    def pairs(self) -> List[Tuple[str, str]]:
        """View pairs with at least one match."""
        return [pair for pair, matches in self._matches.items() if matches]

    def matches(self, pair: Tuple[str, str]) -> List[IndexMatch]:
        """Matches of a pair, oriented as the pair is given."""
        view_a, view_b = pair
        if (view_a, view_b) in self._matches:
            return list(self._matches[(view_a, view_b)])
        if (view_b, view_a) in self._matches:
            return [IndexMatch(m.j_feature, m.i_feature) for m in self._matches[(view_b, view_a)]]
        return []

    def oriented_correspondences(self) -> Iterator[OrientedCorrespondence]:
        """Yield every match twice, once per direction (``i -> j`` then ``j -> i``)."""
        for (view_i, view_j), matches in self._matches.items():
            for match in matches:
                yield OrientedCorrespondence(view_i, view_j, match.i_feature, match.j_feature)
                yield OrientedCorrespondence(view_j, view_i, match.j_feature, match.i_feature)

    def num_matches(self) -> int:
        return sum(len(m) for m in self._matches.values())

    def summary(self) -> Dict[str, object]:
        """Match counts per pair."""
        return {
            "views": len(self._view_order),
            "pairs": {f"{i}:{j}": len(m) for (i, j), m in self._matches.items() if m},
            "total_matches": self.num_matches(),
        }
