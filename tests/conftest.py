"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  PostGIS-specific features (Geometry columns)
are left out of the test models and the repositories are subclassed to
point at them.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from src.domain.distance import path_length_km
from src.domain.entities import Coordinate
from src.infrastructure.providers import (
    PointPairProvider,
    ProviderResult,
    ShapedRouteProvider,
)
from src.infrastructure.repositories import (
    DailySummaryRepository,
    GPSLogRepository,
    GPSSessionRepository,
    UserRepository,
)
from src.infrastructure.route_cache import RouteCache
from src.services.distance_calculator import DistanceCalculator
from src.services.session_lifecycle import SessionLifecycleManager

# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class TestBase(DeclarativeBase):
    pass


# Mirror the production models but without PostGIS Geometry columns
# (SQLite doesn't support them).

class TestUserModel(TestBase):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(20), default="MR", nullable=False)


class TestGPSSessionModel(TestBase):
    __tablename__ = "gps_sessions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    check_in = Column(DateTime(timezone=True), nullable=False)
    check_out = Column(DateTime(timezone=True), nullable=True)
    start_lat = Column(Float, nullable=True)
    start_lng = Column(Float, nullable=True)
    end_lat = Column(Float, nullable=True)
    end_lng = Column(Float, nullable=True)
    total_km = Column(Float, default=0.0, nullable=False)
    calculation_method = Column(String(40), nullable=True)
    route_accuracy = Column(String(20), nullable=True)
    estimated_duration = Column(Float, nullable=True)
    route_data = Column(JSON, nullable=True)


class TestGPSLogModel(TestBase):
    __tablename__ = "gps_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer, ForeignKey("gps_sessions.id", ondelete="CASCADE"), nullable=False
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    device_timestamp = Column(Boolean, nullable=False, default=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)


class TestDailySummaryModel(TestBase):
    __tablename__ = "daily_summaries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    total_km = Column(Float, default=0.0, nullable=False)
    total_hours = Column(Float, default=0.0, nullable=False)
    check_in_count = Column(Integer, default=0, nullable=False)
    __table_args__ = (UniqueConstraint("user_id", "date"),)


class TestUserRepository(UserRepository):
    model = TestUserModel
    spatial = False


class TestGPSSessionRepository(GPSSessionRepository):
    model = TestGPSSessionModel
    spatial = False


class TestGPSLogRepository(GPSLogRepository):
    model = TestGPSLogModel
    spatial = False


class TestDailySummaryRepository(DailySummaryRepository):
    model = TestDailySummaryModel
    spatial = False


# ── Fakes ─────────────────────────────────────────────────────────────


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePairProvider(PointPairProvider):
    """Road distance = great-circle x ``factor``; batches listed in ``fail_on`` fail."""

    def __init__(self, factor: float = 1.25, fail_on: Sequence[int] = (), enabled: bool = True):
        self.factor = factor
        self.fail_on = set(fail_on)
        self._enabled = enabled
        self.calls: list[list[Coordinate]] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def pair_distances(self, points):
        self.calls.append(list(points))
        if len(self.calls) - 1 in self.fail_on:
            return ProviderResult.failure("OVER_QUERY_LIMIT")
        km = path_length_km(points) * self.factor
        return ProviderResult(ok=True, distance_km=km, duration_minutes=km * 2)


class FakeShapedProvider(ShapedRouteProvider):
    def __init__(self, factor: float = 1.3, fail_on: Sequence[int] = (), enabled: bool = True):
        self.factor = factor
        self.fail_on = set(fail_on)
        self._enabled = enabled
        self.calls: list[tuple[Coordinate, Coordinate, list[Coordinate]]] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def shaped_route(self, origin, destination, waypoints):
        self.calls.append((origin, destination, list(waypoints)))
        if len(self.calls) - 1 in self.fail_on:
            return ProviderResult.failure("directions timed out")
        path = [origin, *waypoints, destination]
        km = path_length_km(path) * self.factor
        return ProviderResult(
            ok=True,
            distance_km=km,
            duration_minutes=km * 2,
            geometry=[p.as_pair() for p in path],
        )


# ── Coordinate builders ───────────────────────────────────────────────

BASE_LAT, BASE_LNG = 19.0760, 72.8777  # Andheri
KM_PER_DEG_LAT = 111.195
T0 = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)


def straight_path(n: int, step_km: float, start: Optional[datetime] = None, minutes: float = 2):
    """*n* points heading due north, ``step_km`` apart."""
    start = start or T0
    return [
        Coordinate(
            BASE_LAT + i * step_km / KM_PER_DEG_LAT,
            BASE_LNG,
            timestamp=start + timedelta(minutes=minutes * i),
        )
        for i in range(n)
    ]


def zigzag_path(n: int, step_km: float = 0.3):
    """Alternating north / east legs: every vertex is a 90 degree turn."""
    points = []
    lat, lng = BASE_LAT, BASE_LNG
    for i in range(n):
        points.append(Coordinate(lat, lng))
        if i % 2 == 0:
            lat += step_km / KM_PER_DEG_LAT
        else:
            lng += step_km / 105.1  # km per degree of longitude near 19N
    return points


def static_cluster(n: int = 1468, hours: float = 3.0):
    """GPS noise around one spot, every fix within a few metres."""
    step = timedelta(seconds=hours * 3600 / n)
    return [
        Coordinate(
            BASE_LAT + ((i % 7) - 3) * 0.00001,
            BASE_LNG + ((i % 5) - 2) * 0.00001,
            timestamp=T0 + step * i,
            accuracy=8.0,
        )
        for i in range(n)
    ]


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield a session, then drop everything."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def users(db_session):
    """admin, lead, rep, other_rep."""
    rows = {
        "admin": TestUserModel(name="Anita", email="anita@example.com", role="ADMIN"),
        "lead": TestUserModel(name="Rahul", email="rahul@example.com", role="LEAD_MR"),
        "rep": TestUserModel(name="Aarav", email="aarav@example.com", role="MR"),
        "other_rep": TestUserModel(name="Priya", email="priya@example.com", role="MR"),
    }
    db_session.add_all(rows.values())
    await db_session.flush()
    return rows


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def pair_provider():
    return FakePairProvider()


@pytest.fixture
def shaped_provider():
    return FakeShapedProvider()


@pytest.fixture
def calculator(pair_provider, shaped_provider):
    return DistanceCalculator(
        cache=RouteCache(),
        shaped_provider=shaped_provider,
        pair_provider=pair_provider,
        inter_call_delay_seconds=0,
    )


def build_manager(db_session, calculator, clock, lock_factory=None) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        sessions=TestGPSSessionRepository(db_session),
        logs=TestGPSLogRepository(db_session),
        summaries=TestDailySummaryRepository(db_session),
        users=TestUserRepository(db_session),
        calculator=calculator,
        lock_factory=lock_factory,
        clock=clock,
    )


@pytest.fixture
def manager(db_session, calculator, clock):
    return build_manager(db_session, calculator, clock)
