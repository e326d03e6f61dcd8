"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``users``              -- hosts and guests
* ``vehicles``           -- listed cars, usage declaration, odometer history
* ``trips``              -- one rental; carries the handoff state + audit
* ``gps_pings``          -- approach-window location reports
* ``mileage_anomalies``  -- odometer-gap findings (never deleted)
* ``trip_messages``      -- guest-facing messages, doubles as the
  notification outbox
* ``trip_charges``       -- immutable end-of-trip settlement

Indexes
-------
* **GIST** on ``vehicles.parking_point`` for spatial look-ups.
* **B-Tree** on ``(trip_id, party, recorded_at)`` so "latest ping" is an
  index scan, and on ``delivery_status`` for the dispatch worker.
* **Unique** ``trip_messages.dedupe_key`` and ``trip_charges.trip_id``
  back the check-before-write idempotency guards.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from tripguard.domain.enums import (
    AnomalySeverity,
    DeliveryStatus,
    FuelLevel,
    HandoffStatus,
    MessageCategory,
    PingParty,
    TripStatus,
    UsageDeclaration,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    make = Column(String(60), nullable=False)
    model = Column(String(60), nullable=False)
    year = Column(Integer, nullable=True)

    usage_declaration = Column(
        Enum(UsageDeclaration),
        default=UsageDeclaration.RENTAL_ONLY,
        nullable=False,
    )
    current_mileage = Column(Integer, default=0, nullable=False)
    last_rental_end_mileage = Column(Integer, nullable=True)
    last_rental_end_date = Column(DateTime(timezone=True), nullable=True)

    # Where the car waits for handoff
    parking_point = Column(Geometry("POINT", srid=4326), nullable=True)
    parking_lat = Column(Float, nullable=True)
    parking_lng = Column(Float, nullable=True)

    key_instructions = Column(Text, nullable=True)  # saved default

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_vehicles_parking", "parking_point", postgresql_using="gist"),
        Index("idx_vehicles_host", "host_id"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.year or ''} {self.make} {self.model}".strip()


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_code = Column(String(32), unique=True, nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    guest_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    status = Column(Enum(TripStatus), default=TripStatus.CONFIRMED, nullable=False)
    scheduled_start = Column(DateTime(timezone=True), nullable=False)
    scheduled_end = Column(DateTime(timezone=True), nullable=False)
    number_of_days = Column(Integer, nullable=False)
    daily_mileage_allowance = Column(Integer, nullable=True)

    # Handoff state + audit
    handoff_status = Column(
        Enum(HandoffStatus), default=HandoffStatus.NOT_STARTED, nullable=False
    )
    guest_verified_at = Column(DateTime(timezone=True), nullable=True)
    guest_verify_distance_meters = Column(Float, nullable=True)
    guest_verify_trust_score = Column(Integer, nullable=True)
    handoff_completed_at = Column(DateTime(timezone=True), nullable=True)
    host_distance_meters = Column(Float, nullable=True)
    host_within_range = Column(Boolean, nullable=True)
    handoff_key_instructions = Column(Text, nullable=True)

    # Trip start
    start_mileage = Column(Integer, nullable=True)
    fuel_level_start = Column(Enum(FuelLevel), nullable=True)
    trip_started_at = Column(DateTime(timezone=True), nullable=True)

    # Trip end
    end_mileage = Column(Integer, nullable=True)
    fuel_level_end = Column(Enum(FuelLevel), nullable=True)
    actual_return_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trips_vehicle", "vehicle_id"),
        Index("idx_trips_guest", "guest_id"),
        Index("idx_trips_status", "status"),
    )


class GpsPingModel(Base):
    __tablename__ = "gps_pings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    party = Column(Enum(PingParty), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    distance_to_vehicle_meters = Column(Float, nullable=True)
    trust_score = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_gps_pings_latest", "trip_id", "party", "recorded_at"),
    )


class MileageAnomalyModel(Base):
    __tablename__ = "mileage_anomalies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True)
    gap_miles = Column(Float, nullable=False)
    severity = Column(Enum(AnomalySeverity), nullable=False)
    usage_declaration = Column(Enum(UsageDeclaration), nullable=True)
    explanation = Column(Text, nullable=True)
    detected_at = Column(DateTime(timezone=True), nullable=False)
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_note = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_mileage_anomalies_vehicle", "vehicle_id"),
        Index("idx_mileage_anomalies_open", "resolved"),
    )


class TripMessageModel(Base):
    __tablename__ = "trip_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    category = Column(Enum(MessageCategory), nullable=False)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    body = Column(Text, nullable=False)
    dedupe_key = Column(String(64), unique=True, nullable=True)

    delivery_status = Column(
        Enum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False
    )
    delivery_attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_trip_messages_trip", "trip_id"),
        Index("idx_trip_messages_delivery", "delivery_status"),
    )


class TripChargeModel(Base):
    __tablename__ = "trip_charges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), unique=True, nullable=False)

    mileage_charge = Column(Numeric(10, 2), nullable=False)
    fuel_charge = Column(Numeric(10, 2), nullable=False)
    time_charge = Column(Numeric(10, 2), nullable=False)
    damage_charge = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    miles_driven = Column(Integer, nullable=False)
    included_miles = Column(Integer, nullable=False)
    overage_miles = Column(Integer, nullable=False)
    late_minutes = Column(Integer, nullable=False)
    billable_late_hours = Column(Integer, nullable=False)
    needs_refuel = Column(Boolean, nullable=False)
    damage_items = Column(JSON, nullable=False, default=list)

    calculated_at = Column(DateTime(timezone=True), nullable=False)
