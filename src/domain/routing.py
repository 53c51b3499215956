"""
Routing Decision Engine
=======================

Classifies an ordered coordinate sequence and recommends how its distance
should be computed.  A stationary rep produces hundreds of near-duplicate
fixes; none of them may trigger a paid routing call.

Measurements
------------
* **displacement**   -- great-circle distance first -> last point
* **path length**    -- cumulative great-circle length
* **straightness**   -- displacement / path length (1.0 = straight line)
* **radius**         -- max distance of any point from the centroid
* **direction changes** -- consecutive bearings differing by > 30 degrees

Rules (first match wins)
------------------------
1. < 2 points, path below the static threshold, or radius below the
   building radius                         -> SKIP (static location)
2. only the two endpoints are known        -> ALGORITHMIC
3. short path that is nearly straight      -> ALGORITHMIC
4. otherwise network routing: SHAPED_ROUTE for winding paths,
   POINT_PAIR for the rest.

Complexity: O(n).
"""

from __future__ import annotations

import logging
from typing import Sequence

from .distance import bearing_degrees, coordinate_distance_km, path_length_km
from .entities import Coordinate, RouteAnalysis
from .enums import RoutingStrategy

logger = logging.getLogger(__name__)

DIRECTION_CHANGE_DEGREES = 30.0


class RoutingDecisionEngine:
    def __init__(
        self,
        static_path_threshold_km: float = 0.05,
        static_radius_km: float = 0.02,
        short_path_km: float = 1.0,
        straight_ratio_threshold: float = 0.9,
        winding_direction_change_ratio: float = 0.1,
    ):
        self.static_path_threshold_km = static_path_threshold_km
        self.static_radius_km = static_radius_km
        self.short_path_km = short_path_km
        self.straight_ratio_threshold = straight_ratio_threshold
        self.winding_direction_change_ratio = winding_direction_change_ratio

    def analyze(self, coordinates: Sequence[Coordinate]) -> RouteAnalysis:
        if len(coordinates) < 2:
            return RouteAnalysis(
                skip_routing=True,
                strategy=RoutingStrategy.SKIP,
                reasoning=["Insufficient points for route analysis"],
            )

        length = path_length_km(coordinates)
        displacement = coordinate_distance_km(coordinates[0], coordinates[-1])
        straightness = displacement / length if length > 0 else 0.0
        analysis = RouteAnalysis(
            movement_distance_km=length,
            displacement_km=displacement,
            straightness=straightness,
            movement_radius_km=movement_radius_km(coordinates),
            direction_changes=direction_changes(coordinates),
        )
        self._decide(analysis, len(coordinates))

        logger.info(
            "Routing decision for %d points: %s (path=%.3fkm, displacement=%.3fkm, "
            "radius=%.3fkm, turns=%d) -- %s",
            len(coordinates),
            analysis.strategy.value,
            length,
            displacement,
            analysis.movement_radius_km,
            analysis.direction_changes,
            "; ".join(analysis.reasoning),
        )
        return analysis

    def _decide(self, analysis: RouteAnalysis, n_points: int) -> None:
        reasons = analysis.reasoning

        # 1. Static location
        if analysis.movement_distance_km < self.static_path_threshold_km:
            reasons.append(
                f"Static location: cumulative movement {analysis.movement_distance_km * 1000:.0f}m "
                f"below {self.static_path_threshold_km * 1000:.0f}m"
            )
        elif analysis.movement_radius_km < self.static_radius_km:
            reasons.append(
                f"Static location: all points within {analysis.movement_radius_km * 1000:.0f}m "
                "of their centre"
            )
        if reasons:
            analysis.skip_routing = True
            analysis.strategy = RoutingStrategy.SKIP
            return

        # 2. Endpoints only
        if n_points == 2:
            reasons.append(
                "Only endpoints known: no intermediate shape for a network route to follow"
            )
            analysis.use_algorithmic = True
            analysis.strategy = RoutingStrategy.ALGORITHMIC
            return

        # 3. Short and straight
        if (
            analysis.movement_distance_km < self.short_path_km
            and analysis.straightness >= self.straight_ratio_threshold
        ):
            reasons.append(
                f"Short ({analysis.movement_distance_km:.2f}km) near-straight path "
                f"(ratio {analysis.straightness:.2f}): great-circle is accurate enough"
            )
            analysis.use_algorithmic = True
            analysis.strategy = RoutingStrategy.ALGORITHMIC
            return

        # 4. Network routing
        turn_ratio = analysis.direction_changes / n_points
        if turn_ratio >= self.winding_direction_change_ratio or analysis.straightness < 0.5:
            reasons.append(
                f"Winding path ({analysis.direction_changes} direction changes, "
                f"ratio {analysis.straightness:.2f}): shaped-route lookup"
            )
            analysis.strategy = RoutingStrategy.SHAPED_ROUTE
        else:
            reasons.append(
                f"Path of {analysis.movement_distance_km:.2f}km needs road distance: "
                "point-pair lookup"
            )
            analysis.strategy = RoutingStrategy.POINT_PAIR


def movement_radius_km(coordinates: Sequence[Coordinate]) -> float:
    """Largest distance of any point from the centroid of the sequence."""
    if not coordinates:
        return 0.0
    centre = Coordinate(
        latitude=sum(c.latitude for c in coordinates) / len(coordinates),
        longitude=sum(c.longitude for c in coordinates) / len(coordinates),
    )
    return max(coordinate_distance_km(centre, c) for c in coordinates)


def direction_changes(coordinates: Sequence[Coordinate]) -> int:
    changes = 0
    for i in range(2, len(coordinates)):
        b1 = bearing_degrees(coordinates[i - 2], coordinates[i - 1])
        b2 = bearing_degrees(coordinates[i - 1], coordinates[i])
        diff = abs(b1 - b2)
        if min(diff, 360 - diff) > DIRECTION_CHANGE_DEGREES:
            changes += 1
    return changes
