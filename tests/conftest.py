"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  PostGIS-specific features (Geometry columns)
are mocked by using plain String columns in the test models, and the
production repositories are re-bound to those models.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

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
from tripguard.domain.policy import TripPolicy
from tripguard.infrastructure import repositories as repos
from tripguard.services.reconciliation import ReconciliationOrchestrator


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
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class TestVehicleModel(TestBase):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, autoincrement=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    make = Column(String(60), nullable=False)
    model = Column(String(60), nullable=False)
    year = Column(Integer, nullable=True)
    usage_declaration = Column(
        Enum(UsageDeclaration), default=UsageDeclaration.RENTAL_ONLY, nullable=False
    )
    current_mileage = Column(Integer, default=0, nullable=False)
    last_rental_end_mileage = Column(Integer, nullable=True)
    last_rental_end_date = Column(DateTime(timezone=True), nullable=True)
    parking_point = Column(String, nullable=True)  # stub for Geometry
    parking_lat = Column(Float, nullable=True)
    parking_lng = Column(Float, nullable=True)
    key_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self) -> str:
        return f"{self.year or ''} {self.make} {self.model}".strip()


class TestTripModel(TestBase):
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
    start_mileage = Column(Integer, nullable=True)
    fuel_level_start = Column(Enum(FuelLevel), nullable=True)
    trip_started_at = Column(DateTime(timezone=True), nullable=True)
    end_mileage = Column(Integer, nullable=True)
    fuel_level_end = Column(Enum(FuelLevel), nullable=True)
    actual_return_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class TestGpsPingModel(TestBase):
    __tablename__ = "gps_pings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    party = Column(Enum(PingParty), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    distance_to_vehicle_meters = Column(Float, nullable=True)
    trust_score = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class TestMileageAnomalyModel(TestBase):
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


class TestTripMessageModel(TestBase):
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
    created_at = Column(DateTime, server_default=func.now())


class TestTripChargeModel(TestBase):
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


# ── Repositories bound to the test models ─────────────────────────────


class TestUserRepository(repos.UserRepository):
    model = TestUserModel


class TestVehicleRepository(repos.VehicleRepository):
    model = TestVehicleModel


class TestTripRepository(repos.TripRepository):
    model = TestTripModel


class TestGpsPingRepository(repos.GpsPingRepository):
    model = TestGpsPingModel


class TestMileageAnomalyRepository(repos.MileageAnomalyRepository):
    model = TestMileageAnomalyModel


class TestTripMessageRepository(repos.TripMessageRepository):
    model = TestTripMessageModel


class TestTripChargeRepository(repos.TripChargeRepository):
    model = TestTripChargeModel


class TestOrchestrator(ReconciliationOrchestrator):
    user_repository = TestUserRepository
    vehicle_repository = TestVehicleRepository
    trip_repository = TestTripRepository
    ping_repository = TestGpsPingRepository
    anomaly_repository = TestMileageAnomalyRepository
    message_repository = TestTripMessageRepository
    charge_repository = TestTripChargeRepository


# ── Sample data ───────────────────────────────────────────────────────

# Vehicle parked in San Francisco; 0.0004 deg of latitude is ~44 m.
PARK_LAT, PARK_LNG = 37.7749, -122.4194
NEAR_LAT = PARK_LAT + 0.0004
FAR_LAT = PARK_LAT + 0.0100  # ~1.1 km

SCHEDULED_START = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


async def seed_trip(
    session: AsyncSession,
    *,
    usage_declaration: UsageDeclaration = UsageDeclaration.RENTAL_ONLY,
    current_mileage: int = 10_000,
    last_rental_end_mileage=10_000,
    key_instructions=None,
    number_of_days: int = 2,
    handoff_status: HandoffStatus = HandoffStatus.NOT_STARTED,
    status: TripStatus = TripStatus.CONFIRMED,
    booking_code: str = "TG-1001",
):
    """Insert a host, a guest, a vehicle and one trip; returns the trip."""
    host = TestUserModel(name="Host", email=f"host-{booking_code}@example.com")
    guest = TestUserModel(name="Guest", email=f"guest-{booking_code}@example.com")
    session.add_all([host, guest])
    await session.flush()

    vehicle = TestVehicleModel(
        host_id=host.id,
        make="Toyota",
        model="Prius",
        year=2021,
        usage_declaration=usage_declaration,
        current_mileage=current_mileage,
        last_rental_end_mileage=last_rental_end_mileage,
        parking_point=f"POINT({PARK_LNG} {PARK_LAT})",
        parking_lat=PARK_LAT,
        parking_lng=PARK_LNG,
        key_instructions=key_instructions,
    )
    session.add(vehicle)
    await session.flush()

    trip = TestTripModel(
        booking_code=booking_code,
        vehicle_id=vehicle.id,
        guest_id=guest.id,
        status=status,
        scheduled_start=SCHEDULED_START,
        scheduled_end=SCHEDULED_START + timedelta(days=number_of_days),
        number_of_days=number_of_days,
        handoff_status=handoff_status,
    )
    session.add(trip)
    await session.flush()
    return trip


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def policy() -> TripPolicy:
    return TripPolicy()


@pytest_asyncio.fixture
async def orchestrator(db_session, policy) -> TestOrchestrator:
    return TestOrchestrator(db_session, policy)
