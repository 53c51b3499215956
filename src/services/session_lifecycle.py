"""
Session Lifecycle Manager
=========================

Owns the ``NONE -> OPEN -> CLOSED`` life of a GPS session.

Rules
-----
* A user has at most one OPEN session.  Checking in while one is open
  auto-closes it one second before the new check-in; its distance is
  computed offline (no provider quota is spent on abandoned sessions).
* Overlapping windows are allowed but reported as warnings.
* Check-out closes through a conditional UPDATE (``check_out IS NULL``):
  of two concurrent check-outs exactly one wins, the other observes
  ``AlreadyClosedError`` and writes nothing.
* Recalculation adjusts the daily summary by the km delta only, so
  running it repeatedly is idempotent.

Patterns used
-------------
- **State Pattern** via ``ensure_transition``.
- **Dependency Injection**: repositories, calculator, lock factory and
  clock are passed in, so the manager runs unchanged against SQLite in
  tests.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

from src.domain.entities import (
    Coordinate,
    DistanceResult,
    IngestOutcome,
    PolylineData,
    RecalculationReport,
    SessionOutcome,
    ensure_transition,
    ensure_utc,
    session_status,
)
from src.domain.enums import CalculationMethod, SessionStatus, UserRole
from src.domain.errors import (
    CheckInInProgressError,
    NotFoundError,
    PermissionDeniedError,
    SessionNotOpenError,
    SessionStillOpenError,
    TrackingError,
    ValidationError,
)
from src.domain.validation import (
    check_in_time_issues,
    check_out_time_issues,
    check_session_conflicts,
    coordinate_errors,
    timestamps_out_of_order,
)
from src.infrastructure.locks import LockNotAcquiredError
from src.infrastructure.repositories import (
    DailySummaryRepository,
    GPSLogRepository,
    GPSSessionRepository,
    UserRepository,
)
from src.services.distance_calculator import DistanceCalculator

logger = logging.getLogger(__name__)

AUTO_CLOSE_GAP = timedelta(seconds=1)
ZERO_KM = 0.001


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionLifecycleManager:
    def __init__(
        self,
        sessions: GPSSessionRepository,
        logs: GPSLogRepository,
        summaries: DailySummaryRepository,
        users: UserRepository,
        calculator: DistanceCalculator,
        lock_factory: Optional[Callable[[int], Any]] = None,
        clock: Callable[[], datetime] = _utcnow,
        elevated_roles: Sequence[str] = ("ADMIN", "LEAD_MR"),
        max_clock_skew_seconds: int = 300,
        accuracy_threshold_m: Optional[float] = 100.0,
    ):
        self.sessions = sessions
        self.logs = logs
        self.summaries = summaries
        self.users = users
        self.calculator = calculator
        self.lock_factory = lock_factory
        self.clock = clock
        self.elevated_roles = {UserRole(r) for r in elevated_roles}
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self.accuracy_threshold_m = accuracy_threshold_m

    # ── Check-in ──────────────────────────────────────────────────────

    async def check_in(
        self,
        user_id: int,
        coordinate: Optional[Coordinate] = None,
        check_in_time: Optional[datetime] = None,
    ) -> SessionOutcome:
        now = ensure_utc(self.clock())
        check_in = ensure_utc(check_in_time or now)

        errors, warnings = self._coordinate_issues(coordinate)
        time_errors, time_warnings = check_in_time_issues(
            check_in, now, self.max_clock_skew_seconds
        )
        errors += time_errors
        warnings += time_warnings
        if errors:
            raise ValidationError("Invalid check-in", errors)

        if await self.users.get_by_id(user_id) is None:
            raise NotFoundError("User", user_id)

        lock = (
            self.lock_factory(user_id)
            if self.lock_factory is not None
            else contextlib.nullcontext()
        )
        try:
            async with lock:
                return await self._open_session(user_id, coordinate, check_in, now, warnings)
        except LockNotAcquiredError as exc:
            raise CheckInInProgressError(user_id) from exc

    async def _open_session(
        self,
        user_id: int,
        coordinate: Optional[Coordinate],
        check_in: datetime,
        now: datetime,
        warnings: list[str],
    ) -> SessionOutcome:
        auto_closed: list[int] = []
        for stale in await self.sessions.get_open_for_user(user_id):
            if await self._auto_close(stale, check_in):
                auto_closed.append(stale.id)
                warnings.append(
                    f"Auto-closed previous session {stale.id} that was never checked out"
                )

        candidates = await self.sessions.get_overlapping_candidates(user_id, check_in)
        conflicts = check_session_conflicts(
            check_in,
            [(s.id, s.check_in, s.check_out) for s in candidates if s.id not in auto_closed],
            now,
        )
        warnings.extend(c.message for c in conflicts)

        gps_session = await self.sessions.create(
            user_id=user_id,
            check_in=check_in,
            start_lat=coordinate.latitude if coordinate else None,
            start_lng=coordinate.longitude if coordinate else None,
        )
        if coordinate is not None:
            await self.logs.add(gps_session.id, coordinate, check_in)

        logger.info("User %d checked in: session %d", user_id, gps_session.id)
        outcome = self._outcome(gps_session, warnings=warnings)
        outcome.auto_closed_session_ids = auto_closed
        outcome.coordinate_count = 1 if coordinate is not None else 0
        return outcome

    async def _auto_close(self, stale, new_check_in: datetime) -> bool:
        started = ensure_utc(stale.check_in)
        if new_check_in <= started:
            raise ValidationError(
                "Check-in time must be after the open session's check-in",
                [f"Session {stale.id} is open since {started.isoformat()}"],
            )
        close_at = new_check_in - AUTO_CLOSE_GAP
        if close_at <= started:
            close_at = started + (new_check_in - started) / 2

        coords = await self._session_coordinates(stale)
        result = self.calculator.compute_offline(coords, CalculationMethod.AUTO_CLOSED)
        last = coords[-1] if coords else None
        closed = await self.sessions.close(
            stale.id,
            check_out=close_at,
            total_km=result.distance_km,
            calculation_method=result.method.value,
            route_accuracy=result.accuracy.value,
            route_data=PolylineData.from_result(result, len(coords)).to_dict(),
            end_lat=last.latitude if last else None,
            end_lng=last.longitude if last else None,
        )
        if not closed:
            logger.info("Session %d was closed concurrently, skipping auto-close", stale.id)
            return False
        await self.sessions.refresh(stale)
        logger.info(
            "Auto-closed session %d at %s (%.3fkm)", stale.id, close_at.isoformat(), result.distance_km
        )
        return True

    # ── Log ingestion ─────────────────────────────────────────────────

    async def ingest_log(
        self, session_id: int, coordinate: Coordinate, actor_id: Optional[int] = None
    ) -> IngestOutcome:
        return await self.ingest_logs(session_id, [coordinate], actor_id)

    async def ingest_logs(
        self,
        session_id: int,
        coordinates: Sequence[Coordinate],
        actor_id: Optional[int] = None,
    ) -> IngestOutcome:
        """Append logs to an OPEN session.  The batch is validated as a whole."""
        gps_session = await self._get(session_id)
        if actor_id is not None:
            await self._authorize(gps_session, actor_id)
        if session_status(gps_session.check_out) != SessionStatus.OPEN:
            raise SessionNotOpenError(session_id)
        if not coordinates:
            raise ValidationError("No coordinates supplied")

        now = ensure_utc(self.clock())
        skew = timedelta(seconds=self.max_clock_skew_seconds)
        errors: list[str] = []
        warnings: list[str] = []
        for index, coord in enumerate(coordinates):
            prefix = f"Point {index + 1}: " if len(coordinates) > 1 else ""
            point_errors, point_warnings = self._coordinate_issues(coord)
            if coord.timestamp and ensure_utc(coord.timestamp) > now + skew:
                point_errors.append("GPS timestamp cannot be in the future")
            errors += [prefix + e for e in point_errors]
            warnings += [prefix + w for w in point_warnings]
        if errors:
            raise ValidationError("Invalid GPS log", errors)
        if timestamps_out_of_order(coordinates):
            warnings.append("GPS timestamps are out of order; stored in arrival order")

        created = await self.logs.add_many(session_id, coordinates, now)
        logger.debug("Session %d: stored %d logs", session_id, len(created))
        return IngestOutcome(
            session_id=session_id,
            accepted=len(created),
            log_ids=[log.id for log in created],
            warnings=warnings,
        )

    # ── Check-out ─────────────────────────────────────────────────────

    async def check_out(
        self,
        session_id: int,
        actor_id: int,
        coordinate: Optional[Coordinate] = None,
        check_out_time: Optional[datetime] = None,
    ) -> SessionOutcome:
        gps_session = await self._get(session_id)
        await self._authorize(gps_session, actor_id)
        ensure_transition(
            session_id, session_status(gps_session.check_out), SessionStatus.CLOSED
        )

        check_in = ensure_utc(gps_session.check_in)
        check_out = ensure_utc(check_out_time or self.clock())
        errors, warnings = self._coordinate_issues(coordinate)
        time_errors, time_warnings = check_out_time_issues(check_in, check_out)
        errors += time_errors
        warnings += time_warnings
        if errors:
            raise ValidationError("Invalid check-out", errors)

        if coordinate is not None:
            await self.logs.add(session_id, coordinate, check_out)

        coords = await self._session_coordinates(gps_session)
        result = await self.calculator.compute(coords, keep_last=coordinate is not None)
        warnings += result.warnings

        closed = await self.sessions.close(
            session_id,
            check_out=check_out,
            total_km=result.distance_km,
            calculation_method=result.method.value,
            route_accuracy=result.accuracy.value,
            estimated_duration=result.duration_minutes,
            route_data=PolylineData.from_result(result, len(coords)).to_dict(),
            end_lat=coordinate.latitude if coordinate else None,
            end_lng=coordinate.longitude if coordinate else None,
        )
        if not closed:
            # Lost the race: the other request's values stand.
            ensure_transition(session_id, SessionStatus.CLOSED, SessionStatus.CLOSED)
        await self.sessions.refresh(gps_session)

        hours = (check_out - check_in).total_seconds() / 3600
        await self.summaries.upsert(
            gps_session.user_id,
            check_out.date(),
            km=result.distance_km,
            hours=hours,
            check_ins=1,
        )

        logger.info(
            "Session %d checked out: %.3fkm via %s",
            session_id,
            result.distance_km,
            result.method.value,
        )
        return self._outcome(gps_session, result, warnings, len(coords))

    # ── Force close ───────────────────────────────────────────────────

    async def force_close(
        self, session_id: int, actor_id: int, reason: Optional[str] = None
    ) -> SessionOutcome:
        """Close a stuck session from its existing logs, without provider calls."""
        gps_session = await self._get(session_id)
        await self._authorize(gps_session, actor_id)
        ensure_transition(
            session_id, session_status(gps_session.check_out), SessionStatus.CLOSED
        )

        check_in = ensure_utc(gps_session.check_in)
        now = ensure_utc(self.clock())
        close_at = now if now > check_in else check_in + AUTO_CLOSE_GAP

        coords = await self._session_coordinates(gps_session)
        result = self.calculator.compute_offline(coords, CalculationMethod.FORCE_CLOSE)
        last = coords[-1] if coords else None
        closed = await self.sessions.close(
            session_id,
            check_out=close_at,
            total_km=result.distance_km,
            calculation_method=result.method.value,
            route_accuracy=result.accuracy.value,
            route_data=PolylineData.from_result(result, len(coords)).to_dict(),
            end_lat=last.latitude if last else None,
            end_lng=last.longitude if last else None,
        )
        if not closed:
            ensure_transition(session_id, SessionStatus.CLOSED, SessionStatus.CLOSED)
        await self.sessions.refresh(gps_session)

        message = f"Session force-closed by user {actor_id}"
        if reason:
            message += f": {reason}"
        logger.warning("Session %d: %s", session_id, message)
        return self._outcome(gps_session, result, [message], len(coords))

    # ── Recalculation ─────────────────────────────────────────────────

    async def recalculate(
        self, session_id: int, actor_id: int
    ) -> SessionOutcome:
        gps_session = await self._get(session_id)
        await self._authorize(gps_session, actor_id)
        if session_status(gps_session.check_out) != SessionStatus.CLOSED:
            raise SessionStillOpenError(session_id)

        previous_km = gps_session.total_km or 0.0
        coords = await self._session_coordinates(gps_session)
        result = await self.calculator.compute(
            coords, keep_last=gps_session.end_lat is not None
        )

        await self.sessions.update_distance(
            session_id,
            total_km=result.distance_km,
            calculation_method=result.method.value,
            route_accuracy=result.accuracy.value,
            estimated_duration=result.duration_minutes,
            route_data=PolylineData.from_result(result, len(coords)).to_dict(),
        )
        await self.sessions.refresh(gps_session)

        delta = round(result.distance_km - previous_km, 3)
        if delta:
            await self.summaries.upsert(
                gps_session.user_id, ensure_utc(gps_session.check_out).date(), km=delta
            )

        logger.info(
            "Session %d recalculated: %.3fkm -> %.3fkm via %s",
            session_id,
            previous_km,
            result.distance_km,
            result.method.value,
        )
        return self._outcome(gps_session, result, list(result.warnings), len(coords))

    async def recalculate_all(
        self, actor_id: int, force: bool = False, limit: int = 50
    ) -> RecalculationReport:
        actor = await self.users.get_by_id(actor_id)
        if actor is None or UserRole(actor.role) != UserRole.ADMIN:
            raise PermissionDeniedError("Only administrators can recalculate sessions in bulk")

        report = RecalculationReport()
        for gps_session in await self.sessions.list_for_recalculation(
            force=force, limit=limit, zero_km=ZERO_KM
        ):
            report.processed += 1
            try:
                outcome = await self.recalculate(gps_session.id, actor_id)
            except TrackingError as exc:
                logger.warning("Recalculation of session %d failed: %s", gps_session.id, exc.message)
                report.failures.append(
                    {"session_id": gps_session.id, "code": exc.code, "detail": exc.message}
                )
                continue
            report.updated += 1
            report.results.append(outcome)

        logger.info(
            "Bulk recalculation: %d processed, %d updated, %d failed",
            report.processed,
            report.updated,
            len(report.failures),
        )
        return report

    # ── Queries ───────────────────────────────────────────────────────

    async def active_session(self, user_id: int) -> Optional[SessionOutcome]:
        open_sessions = await self.sessions.get_open_for_user(user_id)
        if not open_sessions:
            return None
        gps_session = open_sessions[-1]
        count = await self.logs.count_for_session(gps_session.id)
        return self._outcome(gps_session, coordinate_count=count)

    async def get_session(self, session_id: int) -> SessionOutcome:
        gps_session = await self._get(session_id)
        count = await self.logs.count_for_session(session_id)
        outcome = self._outcome(gps_session, coordinate_count=count)
        outcome.route = PolylineData.from_dict(gps_session.route_data)
        return outcome

    # ── Helpers ───────────────────────────────────────────────────────

    async def _get(self, session_id: int):
        gps_session = await self.sessions.get_by_id(session_id)
        if gps_session is None:
            raise NotFoundError("Session", session_id)
        return gps_session

    async def _authorize(self, gps_session, actor_id: int) -> None:
        if gps_session.user_id == actor_id:
            return
        actor = await self.users.get_by_id(actor_id)
        if actor is None or UserRole(actor.role) not in self.elevated_roles:
            raise PermissionDeniedError(
                f"User {actor_id} may not modify session {gps_session.id}"
            )

    def _coordinate_issues(
        self, coordinate: Optional[Coordinate]
    ) -> tuple[list[str], list[str]]:
        if coordinate is None:
            return [], []
        warnings = []
        if (
            coordinate.accuracy is not None
            and self.accuracy_threshold_m is not None
            and coordinate.accuracy > self.accuracy_threshold_m
        ):
            warnings.append(
                f"Low GPS accuracy ({coordinate.accuracy}m, threshold {self.accuracy_threshold_m}m)"
            )
        return coordinate_errors(coordinate), warnings

    async def _session_coordinates(self, gps_session) -> list[Coordinate]:
        """Start + logs + end, in that order; duplicates collapse in the jitter filter."""
        coords: list[Coordinate] = []
        if gps_session.start_lat is not None and gps_session.start_lng is not None:
            coords.append(
                Coordinate(
                    gps_session.start_lat,
                    gps_session.start_lng,
                    timestamp=ensure_utc(gps_session.check_in),
                )
            )
        coords.extend(await self.logs.list_for_session(gps_session.id))
        if gps_session.end_lat is not None and gps_session.end_lng is not None:
            coords.append(
                Coordinate(
                    gps_session.end_lat,
                    gps_session.end_lng,
                    timestamp=ensure_utc(gps_session.check_out) if gps_session.check_out else None,
                )
            )
        return coords

    @staticmethod
    def _outcome(
        gps_session,
        result: Optional[DistanceResult] = None,
        warnings: Optional[list[str]] = None,
        coordinate_count: int = 0,
    ) -> SessionOutcome:
        check_in = ensure_utc(gps_session.check_in)
        check_out = ensure_utc(gps_session.check_out) if gps_session.check_out else None
        return SessionOutcome(
            session_id=gps_session.id,
            user_id=gps_session.user_id,
            status=session_status(check_out),
            check_in=check_in,
            check_out=check_out,
            total_km=gps_session.total_km or 0.0,
            calculation_method=gps_session.calculation_method,
            route_accuracy=gps_session.route_accuracy,
            duration_hours=(
                round((check_out - check_in).total_seconds() / 3600, 2) if check_out else None
            ),
            coordinate_count=coordinate_count,
            api_calls_made=result.api_calls_made if result else 0,
            start_lat=gps_session.start_lat,
            start_lng=gps_session.start_lng,
            end_lat=gps_session.end_lat,
            end_lng=gps_session.end_lng,
            warnings=list(warnings or []),
        )
