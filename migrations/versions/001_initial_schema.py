"""Initial schema with PostGIS extension and all core tables.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy ``Enum(PyEnum)`` persists member names.
USAGE_DECLARATION = ("RENTAL_ONLY", "MIXED_USE", "COMMERCIAL")
FUEL_LEVEL = ("EMPTY", "QUARTER", "HALF", "THREE_QUARTERS", "FULL")
SEVERITY = ("NORMAL", "WARNING", "CRITICAL", "VIOLATION")


def _timestamps():
    return [
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
    ]


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("host_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("make", sa.String(60), nullable=False),
        sa.Column("model", sa.String(60), nullable=False),
        sa.Column("year", sa.Integer, nullable=True),
        sa.Column(
            "usage_declaration",
            sa.Enum(*USAGE_DECLARATION, name="usagedeclaration"),
            nullable=False,
        ),
        sa.Column("current_mileage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_rental_end_mileage", sa.Integer, nullable=True),
        sa.Column("last_rental_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parking_point", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("parking_lat", sa.Float, nullable=True),
        sa.Column("parking_lng", sa.Float, nullable=True),
        sa.Column("key_instructions", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "idx_vehicles_parking",
        "vehicles",
        ["parking_point"],
        postgresql_using="gist",
    )
    op.create_index("idx_vehicles_host", "vehicles", ["host_id"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_code", sa.String(32), unique=True, nullable=False),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column("guest_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("CONFIRMED", "ACTIVE", "COMPLETED", "CANCELLED", name="tripstatus"),
            nullable=False,
        ),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("number_of_days", sa.Integer, nullable=False),
        sa.Column("daily_mileage_allowance", sa.Integer, nullable=True),
        sa.Column(
            "handoff_status",
            sa.Enum(
                "NOT_STARTED", "GUEST_VERIFIED", "HANDOFF_COMPLETE",
                name="handoffstatus",
            ),
            nullable=False,
        ),
        sa.Column("guest_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("guest_verify_distance_meters", sa.Float, nullable=True),
        sa.Column("guest_verify_trust_score", sa.Integer, nullable=True),
        sa.Column("handoff_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("host_distance_meters", sa.Float, nullable=True),
        sa.Column("host_within_range", sa.Boolean, nullable=True),
        sa.Column("handoff_key_instructions", sa.Text, nullable=True),
        sa.Column("start_mileage", sa.Integer, nullable=True),
        sa.Column(
            "fuel_level_start",
            sa.Enum(*FUEL_LEVEL, name="fuellevel"),
            nullable=True,
        ),
        sa.Column("trip_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_mileage", sa.Integer, nullable=True),
        sa.Column(
            "fuel_level_end",
            postgresql.ENUM(*FUEL_LEVEL, name="fuellevel", create_type=False),
            nullable=True,
        ),
        sa.Column("actual_return_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_trips_vehicle", "trips", ["vehicle_id"])
    op.create_index("idx_trips_guest", "trips", ["guest_id"])
    op.create_index("idx_trips_status", "trips", ["status"])

    # ── gps_pings ─────────────────────────────────────────────────────
    op.create_table(
        "gps_pings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("party", sa.Enum("GUEST", "HOST", name="pingparty"), nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("distance_to_vehicle_meters", sa.Float, nullable=True),
        sa.Column("trust_score", sa.Integer, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_gps_pings_latest", "gps_pings", ["trip_id", "party", "recorded_at"]
    )

    # ── mileage_anomalies ─────────────────────────────────────────────
    op.create_table(
        "mileage_anomalies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("gap_miles", sa.Float, nullable=False),
        sa.Column(
            "severity",
            sa.Enum(*SEVERITY, name="anomalyseverity"),
            nullable=False,
        ),
        sa.Column(
            "usage_declaration",
            postgresql.ENUM(
                *USAGE_DECLARATION, name="usagedeclaration", create_type=False
            ),
            nullable=True,
        ),
        sa.Column("explanation", sa.Text, nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_note", sa.Text, nullable=True),
    )
    op.create_index(
        "idx_mileage_anomalies_vehicle", "mileage_anomalies", ["vehicle_id"]
    )
    op.create_index("idx_mileage_anomalies_open", "mileage_anomalies", ["resolved"])

    # ── trip_messages (notification outbox) ───────────────────────────
    op.create_table(
        "trip_messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "KEY_INSTRUCTIONS", "GUEST_ARRIVED", "TRIP_CHARGES",
                name="messagecategory",
            ),
            nullable=False,
        ),
        sa.Column(
            "recipient_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("dedupe_key", sa.String(64), unique=True, nullable=True),
        sa.Column(
            "delivery_status",
            sa.Enum("PENDING", "SENT", "FAILED", name="deliverystatus"),
            nullable=False,
        ),
        sa.Column(
            "delivery_attempts", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_trip_messages_trip", "trip_messages", ["trip_id"])
    op.create_index(
        "idx_trip_messages_delivery", "trip_messages", ["delivery_status"]
    )

    # ── trip_charges ──────────────────────────────────────────────────
    op.create_table(
        "trip_charges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "trip_id",
            sa.Integer,
            sa.ForeignKey("trips.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("mileage_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("fuel_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("time_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("damage_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("miles_driven", sa.Integer, nullable=False),
        sa.Column("included_miles", sa.Integer, nullable=False),
        sa.Column("overage_miles", sa.Integer, nullable=False),
        sa.Column("late_minutes", sa.Integer, nullable=False),
        sa.Column("billable_late_hours", sa.Integer, nullable=False),
        sa.Column("needs_refuel", sa.Boolean, nullable=False),
        sa.Column("damage_items", sa.JSON, nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("trip_charges")
    op.drop_table("trip_messages")
    op.drop_table("mileage_anomalies")
    op.drop_table("gps_pings")
    op.drop_table("trips")
    op.drop_table("vehicles")
    op.drop_table("users")
    for enum_type in (
        "deliverystatus",
        "messagecategory",
        "pingparty",
        "anomalyseverity",
        "fuellevel",
        "handoffstatus",
        "tripstatus",
        "usagedeclaration",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_type}")
