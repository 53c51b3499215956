"""Unit tests for the routing decision engine."""

import pytest

from src.domain.entities import Coordinate
from src.domain.enums import RoutingStrategy
from src.domain.routing import RoutingDecisionEngine, direction_changes, movement_radius_km
from tests.conftest import BASE_LAT, BASE_LNG, straight_path, zigzag_path


@pytest.fixture
def engine():
    return RoutingDecisionEngine()


class TestStaticLocation:
    def test_single_point_skips(self, engine):
        analysis = engine.analyze([Coordinate(BASE_LAT, BASE_LNG)])
        assert analysis.skip_routing
        assert analysis.strategy == RoutingStrategy.SKIP

    def test_short_cumulative_movement_skips(self, engine):
        # 4 x 10 m = 40 m of movement
        analysis = engine.analyze(straight_path(5, 0.01))
        assert analysis.skip_routing
        assert "Static location" in analysis.reasoning[0]

    def test_pacing_inside_building_skips(self, engine):
        # Back and forth over 15 m: lots of movement, tiny radius.
        a = Coordinate(BASE_LAT, BASE_LNG)
        b = Coordinate(BASE_LAT + 0.015 / 111.195, BASE_LNG)
        analysis = engine.analyze([a, b] * 10)
        assert analysis.movement_distance_km > 0.05
        assert analysis.skip_routing


class TestAlgorithmic:
    def test_two_distant_points_are_algorithmic(self, engine):
        analysis = engine.analyze(straight_path(2, 2.3))
        assert analysis.use_algorithmic
        assert analysis.strategy == RoutingStrategy.ALGORITHMIC
        assert analysis.displacement_km == pytest.approx(2.3, abs=0.01)

    def test_short_straight_path_is_algorithmic(self, engine):
        analysis = engine.analyze(straight_path(5, 0.2))
        assert analysis.use_algorithmic
        assert analysis.straightness == pytest.approx(1.0, abs=0.01)


class TestNetworkRouting:
    def test_long_straight_path_uses_point_pairs(self, engine):
        analysis = engine.analyze(straight_path(10, 0.5))
        assert not analysis.skip_routing
        assert not analysis.use_algorithmic
        assert analysis.strategy == RoutingStrategy.POINT_PAIR

    def test_winding_path_uses_shaped_route(self, engine):
        analysis = engine.analyze(zigzag_path(12))
        assert analysis.direction_changes >= 9
        assert analysis.strategy == RoutingStrategy.SHAPED_ROUTE

    def test_every_decision_has_reasoning(self, engine):
        for coords in (straight_path(2, 2.3), straight_path(10, 0.5), zigzag_path(12)):
            assert engine.analyze(coords).reasoning


class TestMeasurements:
    def test_direction_changes_on_straight_line(self):
        assert direction_changes(straight_path(10, 0.5)) == 0

    def test_direction_changes_on_zigzag(self):
        assert direction_changes(zigzag_path(6)) == 4

    def test_movement_radius(self):
        coords = straight_path(3, 1.0)
        assert movement_radius_km(coords) == pytest.approx(1.0, abs=0.01)
