"""
Distance Calculator
===================

Turns an ordered list of raw GPS fixes into a travelled distance while
spending as few paid routing calls as possible.

Pipeline
--------
1. **Jitter filter**  -- collapse stationary noise (``filter_jitter``).
2. **Routing decision** -- static or simple paths never reach the network.
3. **Route cache**    -- exact key first, then a return-journey match.
4. **Batched lookups** -- shaped-route batches (<= waypoint ceiling) or
   point-pair segments, issued sequentially with a small delay between
   calls to respect provider rate limits.
5. **Per-batch fallback** -- a failed batch is measured great-circle;
   the computation as a whole never fails because of a provider.
6. **Cache write**    -- results backed by at least one network batch.

Complexity: O(n) locally plus ``ceil(n / batch)`` network calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from src.domain import polyline
from src.domain.distance import path_length_km, round_km
from src.domain.entities import Coordinate, DistanceResult, RouteAnalysis
from src.domain.enums import CalculationMethod, RouteAccuracy, RoutingStrategy
from src.domain.routing import RoutingDecisionEngine
from src.domain.validation import filter_jitter
from src.domain.waypoints import WaypointOptimizer
from src.infrastructure.providers import (
    PointPairProvider,
    ProviderResult,
    ShapedRouteProvider,
)
from src.infrastructure.route_cache import CachedRoute, RouteCache

logger = logging.getLogger(__name__)


def chunk_with_overlap(points: Sequence[Coordinate], size: int) -> list[list[Coordinate]]:
    """Split into batches of at most *size* points; neighbours share a boundary point."""
    if size < 2:
        raise ValueError("Batch size must be at least 2")
    batches = []
    for start in range(0, len(points) - 1, size - 1):
        batch = list(points[start:start + size])
        if len(batch) >= 2:
            batches.append(batch)
    return batches


@dataclass
class _Totals:
    distance_km: float = 0.0
    duration_minutes: float = 0.0
    api_calls: int = 0
    segments: int = 0
    succeeded: int = 0
    failed: int = 0
    geometry: list[tuple[float, float]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend_geometry(self, points: Sequence[tuple[float, float]]) -> None:
        points = list(points)
        if self.geometry and points and points[0] == self.geometry[-1]:
            points = points[1:]
        self.geometry.extend(points)


class DistanceCalculator:
    def __init__(
        self,
        cache: RouteCache,
        shaped_provider: Optional[ShapedRouteProvider] = None,
        pair_provider: Optional[PointPairProvider] = None,
        decision_engine: Optional[RoutingDecisionEngine] = None,
        optimizer: Optional[WaypointOptimizer] = None,
        jitter_tolerance_km: float = 0.01,
        max_speed_kmh: Optional[float] = 150.0,
        segment_size: int = 10,
        max_shaped_route_calls: int = 4,
        inter_call_delay_seconds: float = 0.1,
    ):
        self.cache = cache
        self.shaped_provider = shaped_provider
        self.pair_provider = pair_provider
        self.engine = decision_engine or RoutingDecisionEngine()
        self.optimizer = optimizer or WaypointOptimizer()
        self.jitter_tolerance_km = jitter_tolerance_km
        self.max_speed_kmh = max_speed_kmh
        self.segment_size = segment_size
        self.max_shaped_route_calls = max_shaped_route_calls
        self.inter_call_delay_seconds = inter_call_delay_seconds

    @classmethod
    def from_settings(
        cls,
        settings,
        cache: RouteCache,
        shaped_provider: Optional[ShapedRouteProvider] = None,
        pair_provider: Optional[PointPairProvider] = None,
    ) -> "DistanceCalculator":
        return cls(
            cache=cache,
            shaped_provider=shaped_provider,
            pair_provider=pair_provider,
            decision_engine=RoutingDecisionEngine(
                static_path_threshold_km=settings.static_path_threshold_km,
                static_radius_km=settings.static_radius_km,
                short_path_km=settings.short_path_km,
                straight_ratio_threshold=settings.straight_ratio_threshold,
                winding_direction_change_ratio=settings.winding_direction_change_ratio,
            ),
            optimizer=WaypointOptimizer(settings.waypoint_limit),
            jitter_tolerance_km=settings.jitter_tolerance_km,
            max_speed_kmh=settings.max_plausible_speed_kmh,
            segment_size=settings.point_pair_segment_size,
            max_shaped_route_calls=settings.max_shaped_route_calls,
            inter_call_delay_seconds=settings.provider_inter_call_delay_seconds,
        )

    # ── Public API ────────────────────────────────────────────────────

    async def compute(
        self, coordinates: Sequence[Coordinate], keep_last: bool = False
    ) -> DistanceResult:
        if len(coordinates) < 2:
            return DistanceResult(
                distance_km=0.0,
                method=CalculationMethod.INSUFFICIENT_POINTS,
                accuracy=RouteAccuracy.STANDARD,
                coordinates_processed=len(coordinates),
                geometry=[c.as_pair() for c in coordinates],
            )

        points = filter_jitter(
            coordinates, self.jitter_tolerance_km, self.max_speed_kmh, keep_last=keep_last
        )
        analysis = self.engine.analyze(points)

        local = self._local_result(points, analysis)
        if local is not None:
            return local

        cached = self._probe_cache(points, analysis)
        if cached is not None:
            return cached

        return await self._route(points, analysis)

    def compute_offline(
        self,
        coordinates: Sequence[Coordinate],
        method: CalculationMethod,
        keep_last: bool = False,
    ) -> DistanceResult:
        """Great-circle only, for closures that must not spend API quota."""
        points = filter_jitter(
            coordinates, self.jitter_tolerance_km, self.max_speed_kmh, keep_last=keep_last
        )
        analysis = self.engine.analyze(points)
        distance = 0.0 if analysis.skip_routing else path_length_km(points)
        return self._plain_result(points, analysis, distance, method, RouteAccuracy.APPROXIMATE)

    # ── Steps ─────────────────────────────────────────────────────────

    def _local_result(
        self, points: list[Coordinate], analysis: RouteAnalysis
    ) -> Optional[DistanceResult]:
        if analysis.skip_routing:
            return self._plain_result(
                points, analysis, 0.0, CalculationMethod.SKIPPED_STATIC, RouteAccuracy.STANDARD
            )
        if analysis.use_algorithmic:
            return self._plain_result(
                points,
                analysis,
                path_length_km(points),
                CalculationMethod.ALGORITHMIC,
                RouteAccuracy.STANDARD,
            )
        return None

    def _probe_cache(
        self, points: list[Coordinate], analysis: RouteAnalysis
    ) -> Optional[DistanceResult]:
        origin, destination = points[0].as_pair(), points[-1].as_pair()
        key = self.cache.make_key(origin, destination, len(points))

        entry = self.cache.get(key)
        method = CalculationMethod.CACHED
        warnings: list[str] = []
        if entry is None:
            entry = self.cache.find_reverse(origin, destination)
            method = CalculationMethod.RETURN_JOURNEY
            warnings.append(
                "Reused the reversed route of a cached journey; assumes the road "
                "network is symmetric"
            )
        if entry is None:
            return None

        route = entry.route
        logger.info("Route cache hit %s (%s)", entry.route_hash, method.value)
        accuracy = RouteAccuracy(route.accuracy)
        if method == CalculationMethod.RETURN_JOURNEY and accuracy == RouteAccuracy.HIGH:
            accuracy = RouteAccuracy.STANDARD
        return DistanceResult(
            distance_km=round_km(route.distance_km),
            method=method,
            accuracy=accuracy,
            duration_minutes=route.duration_minutes,
            api_calls_made=0,
            coordinates_processed=len(points),
            cache_hit=True,
            warnings=warnings,
            geometry=list(route.geometry),
            encoded_polyline=route.encoded_polyline,
            analysis=analysis,
        )

    async def _route(
        self, points: list[Coordinate], analysis: RouteAnalysis
    ) -> DistanceResult:
        use_shaped = analysis.strategy == RoutingStrategy.SHAPED_ROUTE
        provider = self.shaped_provider if use_shaped else self.pair_provider
        if provider is None or not provider.enabled:
            # Either shape can stand in for the other.
            provider = self.pair_provider if use_shaped else self.shaped_provider
            use_shaped = not use_shaped
        if provider is None or not provider.enabled:
            logger.warning("No routing provider configured; using great-circle distance")
            result = self._plain_result(
                points,
                analysis,
                path_length_km(points),
                CalculationMethod.FALLBACK,
                RouteAccuracy.APPROXIMATE,
            )
            result.warnings.append("Routing provider not configured; used great-circle distance")
            return result

        if use_shaped:
            totals = await self._run_shaped(points)
            network_method = CalculationMethod.SHAPED_ROUTE
        else:
            totals = await self._run_point_pairs(points)
            network_method = CalculationMethod.POINT_PAIR

        if totals.failed == 0:
            method, accuracy = network_method, RouteAccuracy.HIGH
        elif totals.succeeded:
            method, accuracy = CalculationMethod.MIXED, RouteAccuracy.MIXED
        else:
            method, accuracy = CalculationMethod.FALLBACK, RouteAccuracy.APPROXIMATE

        geometry = totals.geometry or [p.as_pair() for p in points]
        result = DistanceResult(
            distance_km=round_km(totals.distance_km),
            method=method,
            accuracy=accuracy,
            duration_minutes=round(totals.duration_minutes, 1) if totals.succeeded else None,
            api_calls_made=totals.api_calls,
            segments_processed=totals.segments,
            coordinates_processed=len(points),
            warnings=totals.warnings,
            geometry=geometry,
            encoded_polyline=polyline.encode(geometry),
            analysis=analysis,
        )

        if totals.succeeded:
            origin, destination = points[0].as_pair(), points[-1].as_pair()
            self.cache.put(
                self.cache.make_key(origin, destination, len(points)),
                origin,
                destination,
                len(points),
                CachedRoute(
                    distance_km=result.distance_km,
                    method=method.value,
                    accuracy=accuracy.value,
                    duration_minutes=result.duration_minutes,
                    geometry=tuple(geometry),
                    encoded_polyline=result.encoded_polyline,
                    api_calls_made=totals.api_calls,
                ),
            )

        logger.info(
            "Distance %.3fkm via %s (%d calls, %d/%d batches failed)",
            result.distance_km,
            method.value,
            totals.api_calls,
            totals.failed,
            totals.failed + totals.succeeded,
        )
        return result

    async def _run_shaped(self, points: list[Coordinate]) -> _Totals:
        assert self.shaped_provider is not None
        totals = _Totals()
        ceiling = self.optimizer.max_waypoints
        budget = self.max_shaped_route_calls * (ceiling + 1) + 1
        if len(points) > budget:
            logger.info("Thinning %d points to %d for shaped-route lookups", len(points), budget)
            points = self.optimizer.thin(points, budget)

        batches = chunk_with_overlap(points, ceiling + 2)
        for index, batch in enumerate(batches):
            plan = self.optimizer.optimize(batch)
            outcome = await self.shaped_provider.shaped_route(
                plan.origin, plan.destination, plan.waypoints
            )
            totals.api_calls += 1
            totals.segments += len(batch) - 1
            self._apply(totals, outcome, batch, index, len(batches))
            if outcome.ok:
                totals.extend_geometry(outcome.geometry or [p.as_pair() for p in batch])
            await self._pause(index, len(batches))
        return totals

    async def _run_point_pairs(self, points: list[Coordinate]) -> _Totals:
        assert self.pair_provider is not None
        totals = _Totals()
        batches = chunk_with_overlap(points, self.segment_size + 1)
        for index, batch in enumerate(batches):
            outcome = await self.pair_provider.pair_distances(batch)
            totals.api_calls += 1
            totals.segments += len(batch) - 1
            self._apply(totals, outcome, batch, index, len(batches))
            if outcome.ok:
                totals.extend_geometry([p.as_pair() for p in batch])
                if outcome.pair_fallbacks:
                    totals.warnings.append(
                        f"{outcome.pair_fallbacks} pair(s) in segment {index + 1} had no "
                        "road result; used great-circle distance"
                    )
            await self._pause(index, len(batches))
        return totals

    @staticmethod
    def _apply(
        totals: _Totals,
        outcome: ProviderResult,
        batch: list[Coordinate],
        index: int,
        count: int,
    ) -> None:
        if outcome.ok:
            totals.succeeded += 1
            totals.distance_km += outcome.distance_km
            totals.duration_minutes += outcome.duration_minutes or 0.0
            return

        totals.failed += 1
        totals.distance_km += path_length_km(batch)
        totals.extend_geometry([p.as_pair() for p in batch])
        totals.warnings.append(
            f"Routing failed for segment {index + 1}/{count} ({outcome.error}); "
            "used great-circle distance"
        )
        logger.warning("Segment %d/%d fell back to great-circle: %s", index + 1, count, outcome.error)

    async def _pause(self, index: int, count: int) -> None:
        if self.inter_call_delay_seconds and index < count - 1:
            await asyncio.sleep(self.inter_call_delay_seconds)

    @staticmethod
    def _plain_result(
        points: list[Coordinate],
        analysis: RouteAnalysis,
        distance_km: float,
        method: CalculationMethod,
        accuracy: RouteAccuracy,
    ) -> DistanceResult:
        geometry = [p.as_pair() for p in points]
        return DistanceResult(
            distance_km=round_km(distance_km),
            method=method,
            accuracy=accuracy,
            coordinates_processed=len(points),
            segments_processed=max(len(points) - 1, 0),
            geometry=geometry,
            encoded_polyline=polyline.encode(geometry),
            analysis=analysis,
            warnings=[],
        )
