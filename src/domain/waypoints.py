"""
Waypoint optimisation under provider limits.

Shaped-route providers accept an origin, a destination and at most ``W``
intermediate waypoints per call.  Given ``N`` coordinates:

* ``N <= 2``      -- direct route, no waypoints.
* ``N <= W + 2``  -- every intermediate point becomes a waypoint.
* otherwise      -- intermediate points are sampled at
  ``stride = floor((N - 2) / W)`` so coverage is spread along the whole
  path, capped at ``W`` waypoints.

Origin and destination are always the first and last coordinate and the
selection is deterministic for identical input.

Complexity: O(W).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .entities import Coordinate


@dataclass(frozen=True)
class WaypointPlan:
    origin: Coordinate
    destination: Coordinate
    waypoints: list[Coordinate] = field(default_factory=list)
    optimization: str = "direct_route"

    @property
    def points(self) -> list[Coordinate]:
        return [self.origin, *self.waypoints, self.destination]


class WaypointOptimizer:
    def __init__(self, max_waypoints: int = 23):
        if max_waypoints < 1:
            raise ValueError("max_waypoints must be at least 1")
        self.max_waypoints = max_waypoints

    def optimize(
        self, coordinates: Sequence[Coordinate], max_waypoints: int | None = None
    ) -> WaypointPlan:
        if not coordinates:
            raise ValueError("At least one coordinate is required")

        limit = max_waypoints or self.max_waypoints
        origin = coordinates[0]
        destination = coordinates[-1]
        n = len(coordinates)

        if n <= 2:
            return WaypointPlan(origin, destination, [], "direct_route")

        intermediate = list(coordinates[1:-1])
        if n <= limit + 2:
            return WaypointPlan(origin, destination, intermediate, "all_points")

        stride = (n - 2) // limit
        selected = [intermediate[i * stride] for i in range(limit)]
        return WaypointPlan(
            origin, destination, selected, f"interval_selection_{stride}"
        )

    def thin(
        self, coordinates: Sequence[Coordinate], max_points: int
    ) -> list[Coordinate]:
        """Reduce *coordinates* to at most *max_points*, keeping both ends."""
        if len(coordinates) <= max_points:
            return list(coordinates)
        return self.optimize(coordinates, max(max_points - 2, 1)).points
