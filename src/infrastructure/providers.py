"""
Routing provider clients (Google Maps Platform over ``httpx``).

Two shapes are consumed:

* **Shaped route** (Directions API): origin + destination + waypoints ->
  encoded path geometry and per-leg distances.
* **Point pair** (Distance Matrix API): consecutive origin/destination
  pairs -> distance and duration per pair.

Every call returns a ``ProviderResult`` instead of raising.  HTTP errors,
timeouts, quota / status errors and payloads that fail validation are all
mapped to ``ProviderResult.failure`` here, so callers handle degradation
as an explicit branch.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx

from src.domain import polyline
from src.domain.distance import haversine_km
from src.domain.entities import Coordinate
from src.domain.errors import ProviderError

logger = logging.getLogger(__name__)

PAIR_FALLBACK_STATUSES = {"NOT_FOUND", "ZERO_RESULTS", "MAX_ROUTE_LENGTH_EXCEEDED"}


@dataclass
class ProviderResult:
    ok: bool
    distance_km: float = 0.0
    duration_minutes: Optional[float] = None
    geometry: list[tuple[float, float]] = field(default_factory=list)
    pair_fallbacks: int = 0
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "ProviderResult":
        return cls(ok=False, error=error)


# ── Abstract providers ────────────────────────────────────────────────


class ShapedRouteProvider(ABC):
    @property
    @abstractmethod
    def enabled(self) -> bool: ...

    @abstractmethod
    async def shaped_route(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
    ) -> ProviderResult: ...


class PointPairProvider(ABC):
    @property
    @abstractmethod
    def enabled(self) -> bool: ...

    @abstractmethod
    async def pair_distances(self, points: Sequence[Coordinate]) -> ProviderResult:
        """Distance along ``points[i] -> points[i + 1]`` for every consecutive pair."""


# ── Google implementations ────────────────────────────────────────────


def _fmt(coord: Coordinate) -> str:
    return f"{coord.latitude},{coord.longitude}"


def _object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ProviderError(f"{what} is not an object")
    return value


def _array(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProviderError(f"{what} is not a list")
    return value


class GoogleMapsClient:
    """Shared HTTP plumbing: one ``AsyncClient``, bounded timeout, status checks."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://maps.googleapis.com/maps/api",
        timeout_seconds: float = 10.0,
        mode: str = "driving",
        region: str = "in",
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.mode = mode
        self.region = region
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def get_json(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET ``endpoint`` and return the payload, raising ``ProviderError`` on any failure."""
        query = {**params, "key": self.api_key, "mode": self.mode}
        try:
            response = await self.client.get(f"{self.base_url}/{endpoint}/json", params=query)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{endpoint} timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{endpoint} HTTP error: {exc.response.status_code}"
            ) from exc
        except (httpx.RequestError, ValueError) as exc:
            raise ProviderError(f"{endpoint} request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise ProviderError(f"{endpoint} returned a non-object payload")
        status = data.get("status")
        if status != "OK":
            raise ProviderError(
                f"{endpoint} error: {status} - {data.get('error_message', 'Unknown error')}"
            )
        return data

    async def aclose(self) -> None:
        await self.client.aclose()


class GoogleDirectionsProvider(ShapedRouteProvider):
    def __init__(self, client: GoogleMapsClient):
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool(self.client.api_key)

    async def shaped_route(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
    ) -> ProviderResult:
        params: dict[str, Any] = {
            "origin": _fmt(origin),
            "destination": _fmt(destination),
            "region": self.client.region,
            "language": "en",
        }
        if waypoints:
            params["waypoints"] = "|".join(_fmt(w) for w in waypoints)

        try:
            data = await self.client.get_json("directions", params)
            return self._parse(data, expected_legs=len(waypoints) + 1)
        except ProviderError as exc:
            logger.warning("Directions lookup failed: %s", exc.message)
            return ProviderResult.failure(exc.message)

    @staticmethod
    def _parse(data: dict[str, Any], expected_legs: int) -> ProviderResult:
        routes = _array(data.get("routes"), "directions routes")
        if not routes:
            raise ProviderError("directions returned no routes")
        route = _object(routes[0], "directions route")
        legs = _array(route.get("legs"), "directions legs")
        if len(legs) != expected_legs:
            raise ProviderError(
                f"directions returned {len(legs)} legs, expected {expected_legs}"
            )

        meters = 0.0
        seconds = 0.0
        for leg in legs:
            leg = _object(leg, "directions leg")
            try:
                leg_m = float(leg["distance"]["value"])
                leg_s = float(leg["duration"]["value"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError("directions leg missing distance/duration") from exc
            if leg_m < 0 or leg_s < 0:
                raise ProviderError("directions leg has a negative value")
            meters += leg_m
            seconds += leg_s

        overview = _object(route.get("overview_polyline") or {}, "directions overview_polyline")
        encoded = overview.get("points") or ""
        if not isinstance(encoded, str):
            raise ProviderError("directions polyline is not a string")
        try:
            geometry = polyline.decode(encoded) if encoded else []
        except ValueError as exc:
            raise ProviderError("directions returned a malformed polyline") from exc

        return ProviderResult(
            ok=True,
            distance_km=meters / 1000,
            duration_minutes=seconds / 60,
            geometry=geometry,
        )


class GoogleDistanceMatrixProvider(PointPairProvider):
    def __init__(self, client: GoogleMapsClient):
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool(self.client.api_key)

    async def pair_distances(self, points: Sequence[Coordinate]) -> ProviderResult:
        if len(points) < 2:
            return ProviderResult.failure("Insufficient coordinates")

        origins = list(points[:-1])
        destinations = list(points[1:])
        params = {
            "origins": "|".join(_fmt(c) for c in origins),
            "destinations": "|".join(_fmt(c) for c in destinations),
            "units": "metric",
        }

        try:
            data = await self.client.get_json("distancematrix", params)
            return self._parse(data, origins, destinations)
        except ProviderError as exc:
            logger.warning("Distance Matrix lookup failed: %s", exc.message)
            return ProviderResult.failure(exc.message)

    @staticmethod
    def _parse(
        data: dict[str, Any],
        origins: list[Coordinate],
        destinations: list[Coordinate],
    ) -> ProviderResult:
        rows = _array(data.get("rows"), "distancematrix rows")
        if len(rows) != len(origins):
            raise ProviderError(
                f"distancematrix returned {len(rows)} rows, expected {len(origins)}"
            )

        km = 0.0
        seconds = 0.0
        fallbacks = 0
        # Only the diagonal (origin[i] -> destination[i]) is a path segment.
        for i, row in enumerate(rows):
            row = _object(row, "distancematrix row")
            elements = _array(row.get("elements"), "distancematrix elements")
            if i >= len(elements):
                raise ProviderError("distancematrix row is missing its diagonal element")
            element = _object(elements[i], "distancematrix element")
            status = element.get("status")
            if status == "OK":
                try:
                    pair_m = float(element["distance"]["value"])
                    pair_s = float(element["duration"]["value"])
                except (KeyError, TypeError, ValueError) as exc:
                    raise ProviderError("distancematrix element missing values") from exc
                if pair_m < 0 or pair_s < 0:
                    raise ProviderError("distancematrix element has a negative value")
                km += pair_m / 1000
                seconds += pair_s
            elif status in PAIR_FALLBACK_STATUSES:
                o, d = origins[i], destinations[i]
                km += haversine_km(o.latitude, o.longitude, d.latitude, d.longitude)
                fallbacks += 1
            else:
                raise ProviderError(f"distancematrix element status {status}")

        return ProviderResult(
            ok=True,
            distance_km=km,
            duration_minutes=seconds / 60,
            pair_fallbacks=fallbacks,
        )
