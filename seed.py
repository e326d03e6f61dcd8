"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 hosts and 5 guests
  - 6 vehicles parked around the Bay Area, across all usage declarations,
    with odometer history from a previous rental
  - 5 trips (confirmed, guest verified, handoff complete, active)
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from geoalchemy2.functions import ST_MakePoint

from tripguard.infrastructure.database import async_session_factory, engine
from tripguard.infrastructure.models import TripModel, UserModel, VehicleModel
from tripguard.domain.enums import (
    FuelLevel,
    HandoffStatus,
    TripStatus,
    UsageDeclaration,
)


HOSTS = [
    {"name": "Maria Lopez", "email": "maria.host@example.com", "phone": "+14155550101"},
    {"name": "Daniel Okafor", "email": "daniel.host@example.com", "phone": "+14155550102"},
    {"name": "Hana Sato", "email": "hana.host@example.com", "phone": "+14155550103"},
]

GUESTS = [
    {"name": "Chris Walker", "email": "chris@example.com", "phone": "+14155550201"},
    {"name": "Fatima Khan", "email": "fatima@example.com", "phone": "+14155550202"},
    {"name": "Leo Martin", "email": "leo@example.com", "phone": "+14155550203"},
    {"name": "Nina Rossi", "email": "nina@example.com", "phone": "+14155550204"},
    {"name": "Omar Haddad", "email": "omar@example.com", "phone": "+14155550205"},
]

VEHICLES = [
    # (host index, make, model, year, declaration, current, last end, lat, lng, keys)
    (0, "Toyota", "Prius", 2021, UsageDeclaration.RENTAL_ONLY, 42_110, 42_104,
     37.7749, -122.4194, "Lockbox on the driver-side mirror, code 4471."),
    (0, "Honda", "Civic", 2020, UsageDeclaration.RENTAL_ONLY, 58_300, 58_020,
     37.7793, -122.4192, None),
    (1, "Ford", "Transit", 2019, UsageDeclaration.COMMERCIAL, 91_400, 91_150,
     37.7680, -122.4310, "Keys with the front desk at 12 Valencia St."),
    (1, "Tesla", "Model 3", 2022, UsageDeclaration.MIXED_USE, 23_900, 23_300,
     37.7599, -122.4148, None),
    (2, "Subaru", "Outback", 2018, UsageDeclaration.MIXED_USE, 77_020, 76_800,
     37.8044, -122.2712, "Meet me at the cafe on the corner."),
    (2, "Mazda", "CX-5", 2021, UsageDeclaration.RENTAL_ONLY, 30_050, 29_200,
     37.8715, -122.2730, None),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        hosts = [UserModel(**h) for h in HOSTS]
        guests = [UserModel(**g) for g in GUESTS]
        session.add_all(hosts + guests)
        await session.flush()
        print(f"  Created {len(hosts)} hosts and {len(guests)} guests")

        # ── Vehicles ──────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        vehicles = []
        for host_idx, make, model, year, decl, current, last_end, lat, lng, keys in VEHICLES:
            v = VehicleModel(
                host_id=hosts[host_idx].id,
                make=make,
                model=model,
                year=year,
                usage_declaration=decl,
                current_mileage=current,
                last_rental_end_mileage=last_end,
                last_rental_end_date=now - timedelta(days=6),
                parking_point=ST_MakePoint(lng, lat),
                parking_lat=lat,
                parking_lng=lng,
                key_instructions=keys,
            )
            session.add(v)
            vehicles.append(v)
        await session.flush()
        print(f"  Created {len(vehicles)} vehicles")

        # ── Trips ─────────────────────────────────────────────────────
        trips_data = [
            (0, 0, TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, 3),
            (1, 1, TripStatus.CONFIRMED, HandoffStatus.GUEST_VERIFIED, 2),
            (2, 2, TripStatus.CONFIRMED, HandoffStatus.HANDOFF_COMPLETE, 1),
            (3, 3, TripStatus.ACTIVE, HandoffStatus.HANDOFF_COMPLETE, 4),
            (4, 4, TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, 2),
        ]
        for i, (vehicle_idx, guest_idx, status, handoff, days) in enumerate(trips_data):
            start = now + timedelta(hours=1) if status == TripStatus.CONFIRMED else now - timedelta(days=1)
            trip = TripModel(
                booking_code=f"TG-{1001 + i}",
                vehicle_id=vehicles[vehicle_idx].id,
                guest_id=guests[guest_idx].id,
                status=status,
                scheduled_start=start,
                scheduled_end=start + timedelta(days=days),
                number_of_days=days,
                handoff_status=handoff,
            )
            if handoff != HandoffStatus.NOT_STARTED:
                trip.guest_verified_at = now - timedelta(minutes=10)
                trip.guest_verify_distance_meters = 42.0
                trip.guest_verify_trust_score = 96
            if handoff == HandoffStatus.HANDOFF_COMPLETE:
                trip.handoff_completed_at = now - timedelta(minutes=5)
                trip.host_distance_meters = 12.0
                trip.host_within_range = True
            if status == TripStatus.ACTIVE:
                trip.start_mileage = vehicles[vehicle_idx].current_mileage
                trip.fuel_level_start = FuelLevel.FULL
                trip.trip_started_at = start
            session.add(trip)
        await session.flush()
        print(f"  Created {len(trips_data)} trips")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
