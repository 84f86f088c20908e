"""Tests for the correspondence graph."""

import pytest

from panobundle.core.models.entities import PairMatches, View
from panobundle.core.models.scene import Scene
from panobundle.core.optimization.correspondences import (
    CorrespondenceGraph,
    IndexMatch,
    OrientedCorrespondence,
)
from panobundle.core.synthetic.scene_gen import make_reference_intrinsics


class TestCorrespondenceGraph:
    """Test match storage and orientation."""

    def setup_method(self):
        """Set up a three-view graph."""
        self.graph = CorrespondenceGraph(["v0", "v1", "v2"])

    def test_add_match_normalizes_order(self):
        """Test matches are stored under (earlier, later) view order."""
        self.graph.add_match("v1", "v0", 7, 3)

        assert self.graph.pairs() == [("v0", "v1")]
        assert self.graph.matches(("v0", "v1")) == [IndexMatch(3, 7)]

    def test_matches_reversed_pair(self):
        """Test querying a pair in reverse order swaps feature indices."""
        self.graph.add_match("v0", "v1", 1, 2)
        assert self.graph.matches(("v1", "v0")) == [IndexMatch(2, 1)]
        assert self.graph.matches(("v0", "v2")) == []

    def test_invalid_matches(self):
        """Test unknown and identical views are rejected."""
        with pytest.raises(ValueError):
            self.graph.add_match("v0", "v9", 0, 0)
        with pytest.raises(ValueError):
            self.graph.add_match("v0", "v0", 0, 1)
        with pytest.raises(ValueError):
            self.graph.add_view("v1")

    def test_oriented_correspondences(self):
        """Test each match yields both directions, i -> j first."""
        self.graph.add_match("v0", "v1", 4, 5)
        self.graph.add_match("v1", "v2", 6, 8)

        oriented = list(self.graph.oriented_correspondences())

        assert oriented == [
            OrientedCorrespondence("v0", "v1", 4, 5),
            OrientedCorrespondence("v1", "v0", 5, 4),
            OrientedCorrespondence("v1", "v2", 6, 8),
            OrientedCorrespondence("v2", "v1", 8, 6),
        ]
        assert len(oriented) == 2 * self.graph.num_matches()

    def test_from_projections(self):
        """Test features match iff they project the same point."""
        feature_maps = {
            "v0": {0: 0, 1: 1, 2: 2},
            "v1": {1: 0, 2: 1, 3: 2},
            "v2": {3: 0, 4: 1},
        }

        graph = CorrespondenceGraph.from_projections(feature_maps)

        assert graph.view_ids() == ["v0", "v1", "v2"]
        assert graph.matches(("v0", "v1")) == [IndexMatch(1, 0), IndexMatch(2, 1)]
        assert graph.matches(("v1", "v2")) == [IndexMatch(2, 0)]
        # No shared point between v0 and v2
        assert ("v0", "v2") not in graph.pairs()

    def test_summary(self):
        """Test per-pair counts."""
        self.graph.add_match("v0", "v1", 0, 0)
        self.graph.add_match("v0", "v1", 1, 1)

        summary = self.graph.summary()

        assert summary == {"views": 3, "pairs": {"v0:v1": 2}, "total_matches": 2}


class TestCorrespondencesFromScene:
    """Test building matches from scene data."""

    def test_invisible_features_dropped(self):
        """Test matches whose endpoint lies outside the image circle are skipped."""
        scene = Scene()
        for view_id in ("a", "b"):
            scene.add_view(View(
                id=view_id,
                intrinsics=make_reference_intrinsics(),
                features=[(1952.0, 2824.0), (2000.0, 3000.0), (5.0, 5.0)],
            ))
        scene.add_matches(PairMatches(view_i="a", view_j="b", matches=[(0, 1), (1, 0), (2, 2), (0, 2)]))

        graph = CorrespondenceGraph.from_scene(scene)

        assert graph.matches(("a", "b")) == [IndexMatch(0, 1), IndexMatch(1, 0)]
