"""
Routing provider tests.

The Google endpoints are replaced by ``httpx.MockTransport`` so every
failure mode (HTTP status, timeout, API status, malformed payload) can be
produced deterministically.
"""

from __future__ import annotations

import httpx
import pytest

from src.domain import polyline
from src.domain.distance import path_length_km
from src.domain.entities import Coordinate
from src.domain.enums import CalculationMethod, RouteAccuracy
from src.infrastructure.providers import (
    GoogleDirectionsProvider,
    GoogleDistanceMatrixProvider,
    GoogleMapsClient,
)
from src.infrastructure.route_cache import RouteCache
from src.services.distance_calculator import DistanceCalculator
from tests.conftest import zigzag_path

A = Coordinate(19.0760, 72.8777)
W = Coordinate(19.0850, 72.8800)
B = Coordinate(19.0950, 72.8850)


def _client(handler, api_key="test-key") -> GoogleMapsClient:
    transport = httpx.MockTransport(handler)
    return GoogleMapsClient(
        api_key=api_key, client=httpx.AsyncClient(transport=transport)
    )


def _leg(meters, seconds):
    return {"distance": {"value": meters}, "duration": {"value": seconds}}


def _element(meters, seconds, status="OK"):
    if status != "OK":
        return {"status": status}
    return {"status": "OK", **_leg(meters, seconds)}


class TestDirections:
    @pytest.mark.asyncio
    async def test_success_sums_legs_and_decodes_geometry(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(
                200,
                json={
                    "status": "OK",
                    "routes": [
                        {
                            "legs": [_leg(1200, 180), _leg(1500, 240)],
                            "overview_polyline": {
                                "points": polyline.encode([A.as_pair(), W.as_pair(), B.as_pair()])
                            },
                        }
                    ],
                },
            )

        provider = GoogleDirectionsProvider(_client(handler))
        result = await provider.shaped_route(A, B, [W])

        assert result.ok
        assert result.distance_km == pytest.approx(2.7)
        assert result.duration_minutes == pytest.approx(7.0)
        assert len(result.geometry) == 3
        assert seen["url"].path.endswith("/directions/json")
        assert seen["url"].params["waypoints"] == "19.085,72.88"
        assert seen["url"].params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_api_status_error_is_a_failed_result(self):
        def handler(request):
            return httpx.Response(
                200, json={"status": "OVER_QUERY_LIMIT", "error_message": "quota"}
            )

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok
        assert "OVER_QUERY_LIMIT" in result.error

    @pytest.mark.asyncio
    async def test_http_error_is_a_failed_result(self):
        def handler(request):
            return httpx.Response(503)

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_result(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_leg_count_mismatch_is_rejected(self):
        def handler(request):
            return httpx.Response(
                200, json={"status": "OK", "routes": [{"legs": [_leg(1000, 60)]}]}
            )

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [W])
        assert not result.ok

    @pytest.mark.asyncio
    async def test_negative_distance_is_rejected(self):
        def handler(request):
            return httpx.Response(
                200, json={"status": "OK", "routes": [{"legs": [_leg(-5, 60)]}]}
            )

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok

    @pytest.mark.asyncio
    async def test_invalid_json_is_rejected(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok

    def test_disabled_without_api_key(self):
        provider = GoogleDirectionsProvider(_client(lambda r: httpx.Response(200), api_key=""))
        assert not provider.enabled


class TestDistanceMatrix:
    @pytest.mark.asyncio
    async def test_uses_diagonal_elements_only(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "status": "OK",
                    "rows": [
                        {"elements": [_element(1000, 120), _element(99_999, 9999)]},
                        {"elements": [_element(99_999, 9999), _element(1500, 180)]},
                    ],
                },
            )

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A, W, B])
        assert result.ok
        assert result.distance_km == pytest.approx(2.5)
        assert result.duration_minutes == pytest.approx(5.0)
        assert result.pair_fallbacks == 0

    @pytest.mark.asyncio
    async def test_not_found_pair_falls_back_to_great_circle(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "status": "OK",
                    "rows": [
                        {"elements": [_element(1000, 120), _element(0, 0)]},
                        {"elements": [_element(0, 0), _element(0, 0, status="NOT_FOUND")]},
                    ],
                },
            )

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A, W, B])
        assert result.ok
        assert result.pair_fallbacks == 1
        assert result.distance_km > 1.0

    @pytest.mark.asyncio
    async def test_other_element_status_fails_the_batch(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"status": "OK", "rows": [{"elements": [_element(0, 0, status="DENIED")]}]},
            )

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A, B])
        assert not result.ok

    @pytest.mark.asyncio
    async def test_row_count_mismatch_fails_the_batch(self):
        def handler(request):
            return httpx.Response(200, json={"status": "OK", "rows": []})

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A, B])
        assert not result.ok

    @pytest.mark.asyncio
    async def test_single_point_is_rejected_without_a_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status": "OK", "rows": []})

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A])
        assert not result.ok
        assert calls == []


class TestMalformedPayloads:
    """Shape errors anywhere in a payload fail the batch, never the caller."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "OK", "routes": ["abc"]},
            {"status": "OK", "routes": {"legs": []}},
            {"status": "OK", "routes": [{"legs": [None]}]},
            {"status": "OK", "routes": [{"legs": "leg"}]},
            {"status": "OK", "routes": [{"legs": [_leg(1000, 60)], "overview_polyline": "abc"}]},
            {"status": "OK", "routes": [{"legs": [_leg(1000, 60)], "overview_polyline": {"points": 42}}]},
        ],
    )
    async def test_directions(self, payload):
        def handler(request):
            return httpx.Response(200, json=payload)

        result = await GoogleDirectionsProvider(_client(handler)).shaped_route(A, B, [])
        assert not result.ok
        assert result.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "OK", "rows": [None]},
            {"status": "OK", "rows": "rows"},
            {"status": "OK", "rows": [{"elements": None}]},
            {"status": "OK", "rows": [{"elements": [None]}]},
            {"status": "OK", "rows": [{"elements": "OK"}]},
            {"status": "OK", "rows": [{"elements": [_element(-1, 60)]}]},
        ],
    )
    async def test_distance_matrix(self, payload):
        def handler(request):
            return httpx.Response(200, json=payload)

        result = await GoogleDistanceMatrixProvider(_client(handler)).pair_distances([A, B])
        assert not result.ok
        assert result.error

    @pytest.mark.asyncio
    async def test_calculator_degrades_to_great_circle(self):
        def handler(request):
            if request.url.path.endswith("/directions/json"):
                return httpx.Response(
                    200, json={"status": "OK", "routes": [{"legs": [None], "overview_polyline": "x"}]}
                )
            return httpx.Response(200, json={"status": "OK", "rows": [None] * 20})

        client = _client(handler)
        calculator = DistanceCalculator(
            cache=RouteCache(),
            shaped_provider=GoogleDirectionsProvider(client),
            pair_provider=GoogleDistanceMatrixProvider(client),
            inter_call_delay_seconds=0,
        )
        coords = zigzag_path(12)

        result = await calculator.compute(coords)

        assert result.method == CalculationMethod.FALLBACK
        assert result.accuracy == RouteAccuracy.APPROXIMATE
        assert result.distance_km == pytest.approx(path_length_km(coords), abs=0.001)
        assert result.warnings
        assert len(calculator.cache) == 0
