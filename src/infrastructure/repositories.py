"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  The mapped class is a class attribute
(``model``) so the same queries run against alternative mappings.

Write failures surface as ``PersistenceError``; the request-scoped session
rolls back, so a typed failure never leaves a partial commit.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DailySummaryModel, GPSLogModel, GPSSessionModel, UserModel
from src.domain.entities import Coordinate, ensure_utc
from src.domain.enums import UserRole
from src.domain.errors import PersistenceError


class _Repository:
    model: Any = None
    # Mappings without PostGIS columns set this to False.
    spatial = True

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write {self.model.__tablename__}: {exc}") from exc

    def _point(self, column: str, lat: Optional[float], lng: Optional[float]) -> dict:
        """Geometry value for *column* (PostGIS takes x=lng, y=lat)."""
        if not self.spatial or lat is None or lng is None:
            return {}
        from geoalchemy2.functions import ST_MakePoint, ST_SetSRID

        return {column: ST_SetSRID(ST_MakePoint(lng, lat), 4326)}


class UserRepository(_Repository):
    model = UserModel

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(self.model, user_id)

    async def create(
        self, *, name: str, email: str, role: UserRole = UserRole.MR
    ) -> UserModel:
        user = self.model(name=name, email=email, role=role)
        self.session.add(user)
        await self._flush()
        return user


class GPSSessionRepository(_Repository):
    model = GPSSessionModel

    async def create(
        self,
        *,
        user_id: int,
        check_in: datetime,
        start_lat: Optional[float] = None,
        start_lng: Optional[float] = None,
    ) -> GPSSessionModel:
        gps_session = self.model(
            user_id=user_id,
            check_in=ensure_utc(check_in),
            start_lat=start_lat,
            start_lng=start_lng,
            total_km=0.0,
            **self._point("start_point", start_lat, start_lng),
        )
        self.session.add(gps_session)
        await self._flush()
        return gps_session

    async def get_by_id(self, session_id: int) -> Optional[GPSSessionModel]:
        return await self.session.get(self.model, session_id)

    async def refresh(self, gps_session: GPSSessionModel) -> GPSSessionModel:
        await self.session.refresh(gps_session)
        return gps_session

    async def get_open_for_user(self, user_id: int) -> list[GPSSessionModel]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.user_id == user_id, self.model.check_out.is_(None))
            .order_by(self.model.check_in)
        )
        return list(result.scalars().all())

    async def get_overlapping_candidates(
        self, user_id: int, since: datetime
    ) -> list[GPSSessionModel]:
        """Closed sessions of *user_id* that ended after *since*."""
        result = await self.session.execute(
            select(self.model).where(
                self.model.user_id == user_id,
                self.model.check_out.is_not(None),
                self.model.check_out > ensure_utc(since),
            )
        )
        return list(result.scalars().all())

    async def close(
        self,
        session_id: int,
        *,
        check_out: datetime,
        total_km: float,
        calculation_method: str,
        route_accuracy: str,
        estimated_duration: Optional[float] = None,
        route_data: Optional[dict] = None,
        end_lat: Optional[float] = None,
        end_lng: Optional[float] = None,
    ) -> bool:
        """Conditional close: only a row that is still open is updated.

        Returns ``False`` when another request closed the session first.
        """
        values: dict[str, Any] = {
            "check_out": ensure_utc(check_out),
            "total_km": total_km,
            "calculation_method": calculation_method,
            "route_accuracy": route_accuracy,
            "estimated_duration": estimated_duration,
            "route_data": route_data,
        }
        if end_lat is not None and end_lng is not None:
            values.update(end_lat=end_lat, end_lng=end_lng)
            values.update(self._point("end_point", end_lat, end_lng))
        try:
            result = await self.session.execute(
                update(self.model)
                .where(self.model.id == session_id, self.model.check_out.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to close session {session_id}: {exc}") from exc
        return result.rowcount == 1

    async def update_distance(
        self,
        session_id: int,
        *,
        total_km: float,
        calculation_method: str,
        route_accuracy: str,
        estimated_duration: Optional[float] = None,
        route_data: Optional[dict] = None,
    ) -> None:
        try:
            await self.session.execute(
                update(self.model)
                .where(self.model.id == session_id, self.model.check_out.is_not(None))
                .values(
                    total_km=total_km,
                    calculation_method=calculation_method,
                    route_accuracy=route_accuracy,
                    estimated_duration=estimated_duration,
                    route_data=route_data,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update session {session_id}: {exc}") from exc

    async def list_for_recalculation(
        self, *, force: bool = False, limit: int = 50, zero_km: float = 0.001
    ) -> list[GPSSessionModel]:
        query = select(self.model).where(self.model.check_out.is_not(None))
        if not force:
            query = query.where(
                or_(self.model.total_km.is_(None), self.model.total_km <= zero_km)
            )
        result = await self.session.execute(
            query.order_by(self.model.check_out.desc()).limit(limit)
        )
        return list(result.scalars().all())


class GPSLogRepository(_Repository):
    model = GPSLogModel

    def _build(self, session_id: int, coord: Coordinate, default_time: datetime):
        return self.model(
            session_id=session_id,
            latitude=coord.latitude,
            longitude=coord.longitude,
            timestamp=ensure_utc(coord.timestamp or default_time),
            device_timestamp=coord.timestamp is not None,
            accuracy=coord.accuracy,
            speed=coord.speed,
            altitude=coord.altitude,
            **self._point("point", coord.latitude, coord.longitude),
        )

    async def add(
        self, session_id: int, coord: Coordinate, default_time: datetime
    ) -> GPSLogModel:
        log = self._build(session_id, coord, default_time)
        self.session.add(log)
        await self._flush()
        return log

    async def add_many(
        self, session_id: int, coords: Sequence[Coordinate], default_time: datetime
    ) -> list[GPSLogModel]:
        logs = [self._build(session_id, c, default_time) for c in coords]
        self.session.add_all(logs)
        await self._flush()
        return logs

    async def list_for_session(self, session_id: int) -> list[Coordinate]:
        """Coordinates in arrival order.

        Rows stored with arrival time carry no timestamp, so speed checks
        only ever compare times reported by the device.
        """
        result = await self.session.execute(
            select(self.model)
            .where(self.model.session_id == session_id)
            .order_by(self.model.id)
        )
        return [
            Coordinate(
                latitude=log.latitude,
                longitude=log.longitude,
                timestamp=ensure_utc(log.timestamp) if log.device_timestamp else None,
                accuracy=log.accuracy,
                speed=log.speed,
                altitude=log.altitude,
            )
            for log in result.scalars().all()
        ]

    async def count_for_session(self, session_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model)
            .where(self.model.session_id == session_id)
        )
        return result.scalar() or 0


class DailySummaryRepository(_Repository):
    model = DailySummaryModel

    async def get(self, user_id: int, day: date) -> Optional[DailySummaryModel]:
        result = await self.session.execute(
            select(self.model).where(self.model.user_id == user_id, self.model.date == day)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        user_id: int,
        day: date,
        *,
        km: float = 0.0,
        hours: float = 0.0,
        check_ins: int = 0,
    ) -> DailySummaryModel:
        """Add the given deltas to the user's row for *day*, creating it if needed."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.user_id == user_id, self.model.date == day)
            .with_for_update()
        )
        summary = result.scalar_one_or_none()
        if summary is None:
            summary = self.model(
                user_id=user_id,
                date=day,
                total_km=0.0,
                total_hours=0.0,
                check_in_count=0,
            )
            self.session.add(summary)
        summary.total_km = round(max((summary.total_km or 0.0) + km, 0.0), 3)
        summary.total_hours = round(max((summary.total_hours or 0.0) + hours, 0.0), 2)
        summary.check_in_count = (summary.check_in_count or 0) + check_ins
        await self._flush()
        return summary
