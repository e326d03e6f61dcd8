"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  The ORM class is a ``model`` class attribute,
so a subclass can bind the same queries to a different mapping.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    GpsPingModel,
    MileageAnomalyModel,
    TripChargeModel,
    TripMessageModel,
    TripModel,
    UserModel,
    VehicleModel,
)
from tripguard.domain.enums import (
    DeliveryStatus,
    HandoffStatus,
    MessageCategory,
    PingParty,
)


class _Repository:
    model: Any = None

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, record_id: int):
        return await self.session.get(self.model, record_id)

    async def create(self, **fields):
        record = self.model(**fields)
        self.session.add(record)
        await self.session.flush()
        return record


class UserRepository(_Repository):
    model = UserModel


class VehicleRepository(_Repository):
    model = VehicleModel

    async def get_for_host(self, host_id: int) -> list:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.host_id == host_id)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())


class TripRepository(_Repository):
    model = TripModel

    async def compare_and_set_handoff(
        self,
        trip_id: int,
        expected: HandoffStatus,
        new: HandoffStatus,
        **audit_fields,
    ) -> bool:
        """
        Atomic conditional update: move to *new* only if the row is still
        at *expected*.  Returns True iff this call won the transition.
        """
        result = await self.session.execute(
            update(self.model)
            .where(
                self.model.id == trip_id,
                self.model.handoff_status == expected,
            )
            .values(handoff_status=new, **audit_fields)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1

    async def refresh(self, trip):
        await self.session.refresh(trip)
        return trip


class GpsPingRepository(_Repository):
    model = GpsPingModel

    async def get_latest(self, trip_id: int, party: PingParty):
        """Most recent ping by report time (last-write-wins on timestamp)."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.trip_id == trip_id, self.model.party == party)
            .order_by(self.model.recorded_at.desc(), self.model.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class MileageAnomalyRepository(_Repository):
    model = MileageAnomalyModel

    async def count_open_for_vehicles(self, vehicle_ids: list[int]) -> dict[int, int]:
        if not vehicle_ids:
            return {}
        result = await self.session.execute(
            select(self.model.vehicle_id).where(
                self.model.vehicle_id.in_(vehicle_ids),
                self.model.resolved.is_(False),
            )
        )
        counts: dict[int, int] = {}
        for vehicle_id in result.scalars().all():
            counts[vehicle_id] = counts.get(vehicle_id, 0) + 1
        return counts


class TripMessageRepository(_Repository):
    model = TripMessageModel

    @staticmethod
    def natural_key(trip_id: int, category: MessageCategory) -> str:
        return f"{trip_id}:{MessageCategory(category).value}"

    async def get_by_natural_key(self, trip_id: int, category: MessageCategory):
        result = await self.session.execute(
            select(self.model).where(
                self.model.dedupe_key == self.natural_key(trip_id, category)
            )
        )
        return result.scalar_one_or_none()

    async def create_once(
        self,
        *,
        trip_id: int,
        category: MessageCategory,
        body: str,
        recipient_id: Optional[int] = None,
    ):
        """Check-before-write on (trip id, category); returns (msg, created)."""
        existing = await self.get_by_natural_key(trip_id, category)
        if existing:
            return existing, False
        message = await self.create(
            trip_id=trip_id,
            category=category,
            body=body,
            recipient_id=recipient_id,
            dedupe_key=self.natural_key(trip_id, category),
            delivery_status=DeliveryStatus.PENDING,
            delivery_attempts=0,
        )
        return message, True

    async def get_for_trip(self, trip_id: int) -> list:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.trip_id == trip_id)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())

    async def get_pending_for_update(self, limit: int) -> list:
        """SELECT ... FOR UPDATE SKIP LOCKED on the outbox."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.delivery_status == DeliveryStatus.PENDING)
            .order_by(self.model.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())


class TripChargeRepository(_Repository):
    model = TripChargeModel

    async def get_for_trip(self, trip_id: int):
        result = await self.session.execute(
            select(self.model).where(self.model.trip_id == trip_id)
        )
        return result.scalar_one_or_none()
