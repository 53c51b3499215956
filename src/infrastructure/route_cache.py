"""
In-process route cache.

Keys hash the origin and destination rounded to ``precision`` decimals
(4 decimals ~ 11 m, which absorbs GPS jitter) together with the point
count, so near-identical trips share an entry.

Return journeys
---------------
``find_reverse`` matches a request whose origin ~ a cached destination and
whose destination ~ that entry's origin, and hands back the cached route
travelled backwards.  This assumes route symmetry, which one-way streets
can violate; the reversed distance is an approximation and is flagged as
such (``method = return_journey_cached``).

Concurrency
-----------
One instance is shared by every request in the process, so all access
goes through a ``threading.Lock``.  The cache is not shared between
processes: horizontally scaled deployments each warm their own copy.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from src.domain import polyline
from src.domain.distance import haversine_km

logger = logging.getLogger(__name__)

LatLng = tuple[float, float]


@dataclass(frozen=True)
class CachedRoute:
    distance_km: float
    method: str
    accuracy: str
    duration_minutes: Optional[float] = None
    geometry: tuple[LatLng, ...] = ()
    encoded_polyline: str = ""
    api_calls_made: int = 0

    def reversed(self) -> "CachedRoute":
        geometry = tuple(reversed(self.geometry))
        return replace(
            self,
            geometry=geometry,
            encoded_polyline=polyline.encode(geometry) if geometry else "",
        )


@dataclass
class RouteCacheEntry:
    route_hash: str
    origin: LatLng
    destination: LatLng
    point_count: int
    route: CachedRoute
    created_at: float = field(default_factory=time.time)


class RouteCache:
    def __init__(
        self,
        ttl_seconds: float = 24 * 3600,
        max_entries: int = 50,
        precision: int = 4,
        match_tolerance_km: float = 0.011,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.precision = precision
        self.match_tolerance_km = match_tolerance_km
        self._clock = clock
        self._entries: OrderedDict[str, RouteCacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    # ── Keys ──────────────────────────────────────────────────────────

    def make_key(self, origin: LatLng, destination: LatLng, point_count: int) -> str:
        p = self.precision
        raw = (
            f"{origin[0]:.{p}f},{origin[1]:.{p}f}-"
            f"{destination[0]:.{p}f},{destination[1]:.{p}f}-{point_count}"
        )
        return hashlib.sha256(raw.encode()).hexdigest()[:16]

    # ── Public API ────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[RouteCacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_fresh(entry):
                del self._entries[key]
                return None
            return entry

    def put(
        self,
        key: str,
        origin: LatLng,
        destination: LatLng,
        point_count: int,
        route: CachedRoute,
    ) -> RouteCacheEntry:
        entry = RouteCacheEntry(
            route_hash=key,
            origin=origin,
            destination=destination,
            point_count=point_count,
            route=route,
            created_at=self._clock(),
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._cleanup()
        return entry

    def find_reverse(
        self, origin: LatLng, destination: LatLng
    ) -> Optional[RouteCacheEntry]:
        """Return a fresh entry for the opposite direction, with its route reversed."""
        with self._lock:
            candidates = list(reversed(self._entries.values()))
        for entry in candidates:
            if not self._is_fresh(entry):
                continue
            if (
                self._near(origin, entry.destination)
                and self._near(destination, entry.origin)
            ):
                logger.info("Return journey matches cached route %s", entry.route_hash)
                return replace(
                    entry,
                    origin=entry.destination,
                    destination=entry.origin,
                    route=entry.route.reversed(),
                )
        return None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Route cache cleared")

    def stats(self) -> dict:
        with self._lock:
            created = [e.created_at for e in self._entries.values()]
        return {
            "size": len(created),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "oldest_entry": min(created) if created else None,
            "newest_entry": max(created) if created else None,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── Internals ─────────────────────────────────────────────────────

    def _is_fresh(self, entry: RouteCacheEntry) -> bool:
        return self._clock() - entry.created_at < self.ttl_seconds

    def _near(self, a: LatLng, b: LatLng) -> bool:
        return haversine_km(a[0], a[1], b[0], b[1]) <= self.match_tolerance_km

    def _cleanup(self) -> None:
        """Drop expired entries, then keep the most recently inserted.  Lock held."""
        fresh = [(k, e) for k, e in self._entries.items() if self._is_fresh(e)]
        fresh.sort(key=lambda item: item[1].created_at)
        self._entries = OrderedDict(fresh[-self.max_entries:])
        logger.debug("Route cache cleanup: %d entries retained", len(self._entries))
