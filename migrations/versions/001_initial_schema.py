"""Initial schema with PostGIS extension and the tracking tables.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _point(name: str) -> sa.Column:
    return sa.Column(
        name, Geometry("POINT", srid=4326, spatial_index=False), nullable=True
    )


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "LEAD_MR", "MR", name="userrole"),
            default="MR",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── gps_sessions ──────────────────────────────────────────────────
    op.create_table(
        "gps_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("check_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_lat", sa.Float, nullable=True),
        sa.Column("start_lng", sa.Float, nullable=True),
        sa.Column("end_lat", sa.Float, nullable=True),
        sa.Column("end_lng", sa.Float, nullable=True),
        _point("start_point"),
        _point("end_point"),
        sa.Column("total_km", sa.Float, default=0.0, nullable=False),
        sa.Column("calculation_method", sa.String(40), nullable=True),
        sa.Column("route_accuracy", sa.String(20), nullable=True),
        sa.Column("estimated_duration", sa.Float, nullable=True),
        sa.Column("route_data", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("total_km >= 0", name="ck_gps_sessions_total_km"),
        sa.CheckConstraint(
            "check_out IS NULL OR check_out > check_in",
            name="ck_gps_sessions_window",
        ),
    )
    op.create_index(
        "idx_gps_sessions_user_open", "gps_sessions", ["user_id", "check_out"]
    )
    op.create_index("idx_gps_sessions_check_in", "gps_sessions", ["check_in"])
    op.create_index(
        "idx_gps_sessions_start",
        "gps_sessions",
        ["start_point"],
        postgresql_using="gist",
    )
    op.create_index(
        "idx_gps_sessions_end", "gps_sessions", ["end_point"], postgresql_using="gist"
    )
    # At most one open session per user.
    op.create_index(
        "uq_gps_sessions_one_open",
        "gps_sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("check_out IS NULL"),
    )

    # ── gps_logs ──────────────────────────────────────────────────────
    op.create_table(
        "gps_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.Integer,
            sa.ForeignKey("gps_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        _point("point"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "device_timestamp", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("accuracy", sa.Float, nullable=True),
        sa.Column("speed", sa.Float, nullable=True),
        sa.Column("altitude", sa.Float, nullable=True),
    )
    op.create_index(
        "idx_gps_logs_session_time", "gps_logs", ["session_id", "timestamp"]
    )
    op.create_index(
        "idx_gps_logs_point", "gps_logs", ["point"], postgresql_using="gist"
    )

    # ── daily_summaries ───────────────────────────────────────────────
    op.create_table(
        "daily_summaries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("total_km", sa.Float, default=0.0, nullable=False),
        sa.Column("total_hours", sa.Float, default=0.0, nullable=False),
        sa.Column("check_in_count", sa.Integer, default=0, nullable=False),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_summaries_user_date"),
    )


def downgrade() -> None:
    op.drop_table("daily_summaries")
    op.drop_table("gps_logs")
    op.drop_table("gps_sessions")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS userrole")
