"""Unit tests for waypoint selection under the provider's waypoint ceiling."""

import pytest

from src.domain.entities import Coordinate
from src.domain.waypoints import WaypointOptimizer


def _coords(n):
    return [Coordinate(19.0 + i * 0.001, 72.8) for i in range(n)]


class TestWaypointOptimizer:
    def test_two_points_is_direct_route(self):
        coords = _coords(2)
        plan = WaypointOptimizer(23).optimize(coords)
        assert plan.optimization == "direct_route"
        assert plan.waypoints == []
        assert plan.origin == coords[0]
        assert plan.destination == coords[1]

    def test_under_limit_uses_all_points(self):
        coords = _coords(25)  # 23 intermediate points
        plan = WaypointOptimizer(23).optimize(coords)
        assert plan.optimization == "all_points"
        assert plan.waypoints == coords[1:-1]

    def test_hundred_points_evenly_spaced(self):
        coords = _coords(100)
        plan = WaypointOptimizer(23).optimize(coords)

        assert plan.origin == coords[0]
        assert plan.destination == coords[-1]
        assert len(plan.waypoints) <= 23
        assert plan.optimization == "interval_selection_4"

        indices = [coords.index(w) for w in plan.waypoints]
        gaps = {b - a for a, b in zip(indices, indices[1:])}
        assert gaps == {4}
        assert indices[0] == 1

    def test_selection_is_deterministic(self):
        coords = _coords(300)
        optimizer = WaypointOptimizer(23)
        assert optimizer.optimize(coords) == optimizer.optimize(coords)

    def test_explicit_limit_overrides_default(self):
        plan = WaypointOptimizer(23).optimize(_coords(50), max_waypoints=8)
        assert len(plan.waypoints) == 8

    def test_thin_keeps_ends_and_budget(self):
        coords = _coords(400)
        thinned = WaypointOptimizer(23).thin(coords, 97)
        assert len(thinned) == 97
        assert thinned[0] == coords[0]
        assert thinned[-1] == coords[-1]

    def test_thin_short_sequence_is_untouched(self):
        coords = _coords(10)
        assert WaypointOptimizer(23).thin(coords, 97) == coords

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            WaypointOptimizer(23).optimize([])
