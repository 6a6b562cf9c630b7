"""Initial schema: riders, drivers, live rides, ride history and queue ledgers.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    # stored as VARCHAR + CHECK, matching the ORM's non-native enums
    return sa.Enum(*values, name=name, native_enum=False, length=20)


VEHICLE_TYPE = ("bike", "auto", "car")
RIDE_STATUS = (
    "pending",
    "driver_assigned",
    "ride_started",
    "ride_ended",
    "completed",
    "cancelled",
)
QUEUE_STATUS = ("queued", "in_progress", "completed")
PAYMENT_STATUS = ("pending", "collected")
CANCELLED_BY = ("rider", "driver", "admin", "system")
BOOKING_SOURCE = ("app", "manual")


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("total_rides", sa.Integer, server_default="0", nullable=False),
        sa.Column("completed_rides", sa.Integer, server_default="0", nullable=False),
        sa.Column("cancelled_rides", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_spent", sa.Float, server_default="0", nullable=False),
        sa.Column("favorite_vehicle_type", _enum("vehicle_type", *VEHICLE_TYPE), nullable=True),
        sa.Column("last_ride_at", sa.DateTime, nullable=True),
        sa.Column("longest_ride_km", sa.Float, nullable=True),
        sa.Column("longest_ride_fare", sa.Float, nullable=True),
        sa.Column("longest_ride_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("vehicle_no", sa.String(20), nullable=True),
        sa.Column("vehicle_type", _enum("vehicle_type", *VEHICLE_TYPE), nullable=False),
        sa.Column("rating", sa.Float, server_default="4.5"),
        sa.Column("is_online", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("current_pickup_point", sa.String(120), nullable=True),
        sa.Column("current_ride_id", sa.Integer, nullable=True),
        sa.Column("last_lat", sa.Float, nullable=True),
        sa.Column("last_lng", sa.Float, nullable=True),
        sa.Column("last_seen_at", sa.DateTime, nullable=True),
        sa.Column("total_rides", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_earnings", sa.Float, server_default="0", nullable=False),
        sa.Column("last_active_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_online", "drivers", ["is_online"])
    op.create_index("idx_drivers_current_ride", "drivers", ["current_ride_id"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_code", sa.String(40), unique=True, nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user_name", sa.String(120), nullable=False),
        sa.Column("user_phone", sa.String(20), nullable=False),
        sa.Column("pickup_point", sa.String(120), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("drop_address", sa.String(255), nullable=False),
        sa.Column("drop_lat", sa.Float, nullable=True),
        sa.Column("drop_lng", sa.Float, nullable=True),
        sa.Column("vehicle_type", _enum("vehicle_type", *VEHICLE_TYPE), nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("quoted_fare", sa.Float, nullable=False),
        sa.Column("driver_fare", sa.Float, nullable=False),
        sa.Column("actual_fare", sa.Float, nullable=True),
        sa.Column(
            "status",
            _enum("ride_status", *RIDE_STATUS),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("driver_id", sa.Integer, nullable=True),
        sa.Column("driver_name", sa.String(120), nullable=True),
        sa.Column("driver_phone", sa.String(20), nullable=True),
        sa.Column("driver_vehicle_no", sa.String(20), nullable=True),
        sa.Column("driver_rating", sa.Float, nullable=True),
        sa.Column("start_otp", sa.String(4), nullable=False),
        sa.Column("end_otp", sa.String(4), nullable=False),
        sa.Column("otp_failed_attempts", sa.Integer, server_default="0", nullable=False),
        sa.Column("queue_number", sa.String(40), nullable=True),
        sa.Column("queue_position", sa.Integer, nullable=True),
        sa.Column("queue_status", _enum("queue_status", *QUEUE_STATUS), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("accepted_at", sa.DateTime, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("ended_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("cancelled_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_by", _enum("cancelled_by", *CANCELLED_BY), nullable=True),
        sa.Column(
            "payment_status",
            _enum("payment_status", *PAYMENT_STATUS),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("payment_method", sa.String(20), server_default="cash", nullable=False),
        sa.Column("payment_collected_at", sa.DateTime, nullable=True),
        sa.Column(
            "booking_source",
            _enum("booking_source", *BOOKING_SOURCE),
            server_default="app",
            nullable=False,
        ),
        sa.Column("override_by", sa.String(64), nullable=True),
        sa.Column("override_reason", sa.String(255), nullable=True),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_user", "rides", ["user_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])
    op.create_index("idx_rides_accepted", "rides", ["accepted_at"])
    op.create_index("idx_rides_started", "rides", ["started_at"])
    op.create_index("idx_rides_ended", "rides", ["ended_at"])

    # ── ride_history ──────────────────────────────────────────────────
    op.create_table(
        "ride_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, unique=True, nullable=False),
        sa.Column("ride_code", sa.String(40), unique=True, nullable=False),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("user_name", sa.String(120), nullable=True),
        sa.Column("user_phone", sa.String(20), nullable=True),
        sa.Column("driver_id", sa.Integer, nullable=True),
        sa.Column("driver_name", sa.String(120), nullable=True),
        sa.Column("driver_phone", sa.String(20), nullable=True),
        sa.Column("driver_vehicle_no", sa.String(20), nullable=True),
        sa.Column("driver_rating", sa.Float, nullable=True),
        sa.Column("missing_driver_info", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("pickup_point", sa.String(120), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("drop_address", sa.String(255), nullable=False),
        sa.Column("drop_lat", sa.Float, nullable=True),
        sa.Column("drop_lng", sa.Float, nullable=True),
        sa.Column("vehicle_type", _enum("vehicle_type", *VEHICLE_TYPE), nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("quoted_fare", sa.Float, nullable=False),
        sa.Column("driver_fare", sa.Float, nullable=False),
        sa.Column("actual_fare", sa.Float, nullable=True),
        sa.Column("status", _enum("ride_status", *RIDE_STATUS), nullable=False),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_by", _enum("cancelled_by", *CANCELLED_BY), nullable=True),
        sa.Column("queue_number", sa.String(40), nullable=True),
        sa.Column("booking_source", _enum("booking_source", *BOOKING_SOURCE), nullable=False),
        sa.Column("requested_at", sa.DateTime, nullable=True),
        sa.Column("accepted_at", sa.DateTime, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("ended_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("cancelled_at", sa.DateTime, nullable=True),
        sa.Column("payment_status", _enum("payment_status", *PAYMENT_STATUS), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_collected_at", sa.DateTime, nullable=True),
        sa.Column("total_duration_min", sa.Integer, server_default="0", nullable=False),
        sa.Column("waiting_time_min", sa.Integer, server_default="0", nullable=False),
        sa.Column("ride_duration_min", sa.Integer, server_default="0", nullable=False),
        sa.Column("average_speed_kmh", sa.Float, server_default="0", nullable=False),
        sa.Column("closed_by", sa.String(64), nullable=True),
        sa.Column("close_reason", sa.String(255), nullable=True),
        sa.Column("auto_closed", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("archived_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_history_user", "ride_history", ["user_id"])
    op.create_index("idx_history_driver", "ride_history", ["driver_id"])
    op.create_index("idx_history_status", "ride_history", ["status"])

    # ── queue_ledgers ─────────────────────────────────────────────────
    op.create_table(
        "queue_ledgers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("pickup_point", sa.String(120), nullable=False),
        sa.Column("code", sa.String(4), nullable=False),
        sa.Column("ledger_date", sa.Date, nullable=False),
        sa.Column("daily_counter", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_today", sa.Integer, server_default="0", nullable=False),
        sa.Column("currently_serving", sa.Integer, server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("pickup_point", "ledger_date", name="uq_ledger_point_date"),
    )

    # ── queue_entries ─────────────────────────────────────────────────
    op.create_table(
        "queue_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ledger_id", sa.Integer, sa.ForeignKey("queue_ledgers.id"), nullable=False
        ),
        sa.Column("ride_id", sa.Integer, unique=True, nullable=False),
        sa.Column("queue_number", sa.String(40), nullable=False),
        sa.Column("queue_position", sa.Integer, nullable=False),
        sa.Column(
            "status",
            _enum("queue_status", *QUEUE_STATUS),
            server_default="queued",
            nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_queue_entries_ledger", "queue_entries", ["ledger_id"])
    op.create_index("idx_queue_entries_status", "queue_entries", ["status"])


def downgrade() -> None:
    op.drop_table("queue_entries")
    op.drop_table("queue_ledgers")
    op.drop_table("ride_history")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("users")
