"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``users``           -- field reps and their managers (role-based access)
* ``gps_sessions``    -- one check-in -> check-out window per user
* ``gps_logs``        -- append-only GPS fixes owned by a session
* ``daily_summaries`` -- per user, per day totals (km, hours, check-ins)

Indexes
-------
* **GIST** on geometry columns (start_point, end_point, point).
* **B-Tree** on ``(user_id, check_out)`` for the "open session" look-up
  that every check-in performs, and on ``(session_id, timestamp)`` for
  replaying a session's logs in order.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship
from geoalchemy2 import Geometry

from .database import Base
from src.domain.enums import UserRole


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.MR, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GPSSessionModel(Base):
    __tablename__ = "gps_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    check_in = Column(DateTime(timezone=True), nullable=False)
    check_out = Column(DateTime(timezone=True), nullable=True)

    # Plain floats for fast reads, geometry for spatial queries
    start_lat = Column(Float, nullable=True)
    start_lng = Column(Float, nullable=True)
    end_lat = Column(Float, nullable=True)
    end_lng = Column(Float, nullable=True)
    start_point = Column(Geometry("POINT", srid=4326), nullable=True)
    end_point = Column(Geometry("POINT", srid=4326), nullable=True)

    total_km = Column(Float, default=0.0, nullable=False)
    calculation_method = Column(String(40), nullable=True)
    route_accuracy = Column(String(20), nullable=True)
    estimated_duration = Column(Float, nullable=True)  # minutes
    route_data = Column(JSON, nullable=True)  # PolylineData

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    logs = relationship(
        "GPSLogModel",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GPSLogModel.id",
    )

    __table_args__ = (
        Index("idx_gps_sessions_user_open", "user_id", "check_out"),
        Index("idx_gps_sessions_check_in", "check_in"),
        Index("idx_gps_sessions_start", "start_point", postgresql_using="gist"),
        Index("idx_gps_sessions_end", "end_point", postgresql_using="gist"),
    )


class GPSLogModel(Base):
    __tablename__ = "gps_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer, ForeignKey("gps_sessions.id", ondelete="CASCADE"), nullable=False
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    point = Column(Geometry("POINT", srid=4326), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    # False when the client sent no fix time and arrival time was stored
    device_timestamp = Column(Boolean, nullable=False, default=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)

    session = relationship("GPSSessionModel", back_populates="logs")

    __table_args__ = (
        Index("idx_gps_logs_session_time", "session_id", "timestamp"),
        Index("idx_gps_logs_point", "point", postgresql_using="gist"),
    )


class DailySummaryModel(Base):
    __tablename__ = "daily_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    total_km = Column(Float, default=0.0, nullable=False)
    total_hours = Column(Float, default=0.0, nullable=False)
    check_in_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_summaries_user_date"),
    )
