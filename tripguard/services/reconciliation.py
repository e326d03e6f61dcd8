"""
Reconciliation Orchestrator
===========================

Sequences the pure domain components against the repositories:

* **Approach** -- guest pings feed the trust scorer and the handoff hard
  gate; the host confirm runs the soft gate and the key-instruction
  side effect.
* **Trip start** -- records the odometer and runs the odometer-gap check.
* **Trip end**  -- computes and persists the settlement, once per trip.

Concurrency
-----------
The handoff row is the only shared mutable state.  Every transition is a
conditional ``UPDATE ... WHERE handoff_status = :expected``; a caller that
loses the race re-reads the row and returns the state the winner reached.
Side effects (messages) are written only by the winner, and only as
``PENDING`` outbox rows, so delivery failures can never undo a transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tripguard.config import settings
from tripguard.domain.charges import (
    ChargeBreakdown,
    TripChargeCalculator,
    build_tips,
    parse_fuel_level,
    to_money,
)
from tripguard.domain.clock import as_utc, utcnow
from tripguard.domain.distance import haversine_m
from tripguard.domain.entities import (
    DamageItem,
    DomainValidationError,
    GpsPing,
    GpsUnavailable,
    InvalidStateTransition,
    Location,
    NotFound,
    PreconditionFailed,
    VehicleMileage,
)
from tripguard.domain.enums import (
    AnomalySeverity,
    FuelLevel,
    HandoffStatus,
    MessageCategory,
    PingParty,
    TripStatus,
    UsageDeclaration,
)
from tripguard.domain.gps_trust import is_low_trust, score_ping
from tripguard.domain.handoff import HandoffStateMachine, resolve_key_instructions
from tripguard.domain.mileage import (
    FleetMileageSummary,
    MileageAssessment,
    analyze_fleet,
    assess_vehicle,
    classify_gap,
    explain,
    gap_threshold,
    summarize_fleet,
)
from tripguard.domain.policy import TripPolicy
from tripguard.infrastructure.repositories import (
    GpsPingRepository,
    MileageAnomalyRepository,
    TripChargeRepository,
    TripMessageRepository,
    TripRepository,
    UserRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)


# ── Results ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GuestPingResult:
    distance_meters: Optional[float]
    within_range: bool
    location_trust: int
    low_trust: bool
    eta_message: Optional[str]
    handoff_status: HandoffStatus


@dataclass(frozen=True)
class HostConfirmResult:
    handoff_status: HandoffStatus
    host_distance_meters: Optional[float]
    host_within_range: bool
    already_complete: bool


@dataclass(frozen=True)
class HandoffStatusView:
    trip_id: int
    trip_status: TripStatus
    handoff_status: HandoffStatus
    handoff_radius_meters: float
    guest_verified_at: Optional[datetime]
    guest_last_distance_meters: Optional[float]
    handoff_completed_at: Optional[datetime]
    host_distance_meters: Optional[float]
    host_within_range: Optional[bool]


@dataclass(frozen=True)
class TripStartResult:
    trip: object
    mileage: MileageAssessment
    anomaly: Optional[object]


@dataclass(frozen=True)
class FleetMileageReport:
    summary: FleetMileageSummary
    analysis: dict
    open_anomalies: dict[int, int]


@dataclass(frozen=True)
class SettlementResult:
    trip: object
    breakdown: ChargeBreakdown
    tips: list[str]
    calculated_at: datetime
    created: bool


@dataclass(frozen=True)
class SettlementAudit:
    trip_id: int
    stored: ChargeBreakdown
    recomputed: ChargeBreakdown
    consistent: bool


MONEY_FIELDS = ("mileage_charge", "fuel_charge", "time_charge", "damage_charge", "total")


def breakdown_from_record(record) -> ChargeBreakdown:
    """Rebuild the immutable settlement from its persisted row."""
    return ChargeBreakdown(
        mileage_charge=to_money(record.mileage_charge),
        fuel_charge=to_money(record.fuel_charge),
        time_charge=to_money(record.time_charge),
        damage_charge=to_money(record.damage_charge),
        total=to_money(record.total),
        miles_driven=record.miles_driven,
        included_miles=record.included_miles,
        overage_miles=record.overage_miles,
        needs_refuel=record.needs_refuel,
        late_minutes=record.late_minutes,
        billable_late_hours=record.billable_late_hours,
        damage_items=tuple(
            DamageItem(item["description"], Decimal(item["cost"]))
            for item in (record.damage_items or [])
        ),
    )


# ── Orchestrator ──────────────────────────────────────────────────────


class ReconciliationOrchestrator:
    user_repository = UserRepository
    vehicle_repository = VehicleRepository
    trip_repository = TripRepository
    ping_repository = GpsPingRepository
    anomaly_repository = MileageAnomalyRepository
    message_repository = TripMessageRepository
    charge_repository = TripChargeRepository

    def __init__(self, session: AsyncSession, policy: Optional[TripPolicy] = None):
        self.session = session
        self.policy = policy or settings.trip_policy()
        self.users = self.user_repository(session)
        self.vehicles = self.vehicle_repository(session)
        self.trips = self.trip_repository(session)
        self.pings = self.ping_repository(session)
        self.anomalies = self.anomaly_repository(session)
        self.messages = self.message_repository(session)
        self.charges = self.charge_repository(session)
        self.handoff = HandoffStateMachine(self.policy)
        self.calculator = TripChargeCalculator(self.policy)

    # ── Look-ups ──────────────────────────────────────────────────

    async def _get_trip(self, trip_id: int):
        trip = await self.trips.get_by_id(trip_id)
        if not trip:
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    async def _get_vehicle(self, vehicle_id: int):
        vehicle = await self.vehicles.get_by_id(vehicle_id)
        if not vehicle:
            raise NotFound(f"Vehicle {vehicle_id} not found")
        return vehicle

    @staticmethod
    def _distance_to_vehicle(vehicle, location: Location) -> Optional[float]:
        if vehicle.parking_lat is None or vehicle.parking_lng is None:
            logger.warning("Vehicle %d has no parking location", vehicle.id)
            return None
        return round(
            haversine_m(
                location.latitude, location.longitude,
                vehicle.parking_lat, vehicle.parking_lng,
            ),
            1,
        )

    async def _score_and_record(
        self,
        trip_id: int,
        party: PingParty,
        location: Location,
        distance: Optional[float],
        now: datetime,
        record: bool = True,
    ) -> int:
        previous = await self.pings.get_latest(trip_id, party)
        previous_ping = (
            GpsPing(
                previous.latitude,
                previous.longitude,
                previous.recorded_at,
                previous.distance_to_vehicle_meters,
            )
            if previous else None
        )
        current = GpsPing(location.latitude, location.longitude, now, distance)
        trust = score_ping(current, previous_ping, self.policy)
        if not record:
            return trust
        await self.pings.create(
            trip_id=trip_id,
            party=party,
            latitude=location.latitude,
            longitude=location.longitude,
            recorded_at=now,
            distance_to_vehicle_meters=distance,
            trust_score=trust,
        )
        return trust

    # ── Approach / handoff ────────────────────────────────────────

    async def record_guest_ping(
        self,
        trip_id: int,
        latitude: float,
        longitude: float,
        now: Optional[datetime] = None,
    ) -> GuestPingResult:
        now = as_utc(now or utcnow())
        location = Location(latitude, longitude)
        if location.is_null_island:
            raise GpsUnavailable("GPS unavailable: device reported (0, 0)")

        trip = await self._get_trip(trip_id)
        vehicle = await self._get_vehicle(trip.vehicle_id)
        distance = self._distance_to_vehicle(vehicle, location)
        current_status = HandoffStatus(trip.handoff_status)
        # Pings are kept only for the approach window.
        approaching = (
            TripStatus(trip.status) == TripStatus.CONFIRMED
            and current_status != HandoffStatus.HANDOFF_COMPLETE
        )
        trust = await self._score_and_record(
            trip.id, PingParty.GUEST, location, distance, now, record=approaching
        )

        decision = self.handoff.on_guest_ping(
            TripStatus(trip.status), current_status, distance
        )
        if decision.transitions:
            won = await self.trips.compare_and_set_handoff(
                trip.id,
                HandoffStatus.NOT_STARTED,
                HandoffStatus.GUEST_VERIFIED,
                guest_verified_at=now,
                guest_verify_distance_meters=distance,
                guest_verify_trust_score=trust,
            )
            if won:
                logger.info(
                    "Trip %d: guest verified at %.1fm (trust=%d)",
                    trip.id, distance, trust,
                )
                await self.messages.create_once(
                    trip_id=trip.id,
                    category=MessageCategory.GUEST_ARRIVED,
                    body="Your guest has arrived at the vehicle.",
                    recipient_id=vehicle.host_id,
                )
            await self.trips.refresh(trip)
            current_status = HandoffStatus(trip.handoff_status)

        return GuestPingResult(
            distance_meters=distance,
            within_range=decision.within_range,
            location_trust=trust,
            low_trust=is_low_trust(trust, self.policy),
            eta_message=self.handoff.eta_message(distance),
            handoff_status=current_status,
        )

    async def confirm_host_handoff(
        self,
        trip_id: int,
        latitude: Optional[float],
        longitude: Optional[float],
        key_instructions: Optional[str] = None,
        save_key_instructions: bool = False,
        now: Optional[datetime] = None,
    ) -> HostConfirmResult:
        now = as_utc(now or utcnow())
        trip = await self._get_trip(trip_id)
        status = HandoffStatus(trip.handoff_status)

        if status == HandoffStatus.HANDOFF_COMPLETE:
            return self._terminal_result(trip)

        vehicle = await self._get_vehicle(trip.vehicle_id)
        location = (
            Location(latitude, longitude)
            if latitude is not None and longitude is not None else None
        )
        distance = None
        if location is not None and not location.is_null_island:
            distance = self._distance_to_vehicle(vehicle, location)
        else:
            logger.info("Trip %d: host confirm without a GPS fix", trip.id)

        # Raises InvalidStateTransition while still NOT_STARTED
        decision = self.handoff.on_host_confirm(status, distance)

        if location is not None and not location.is_null_island:
            await self._score_and_record(
                trip.id, PingParty.HOST, location, distance, now
            )

        instructions = resolve_key_instructions(
            key_instructions, vehicle.key_instructions
        )
        won = await self.trips.compare_and_set_handoff(
            trip.id,
            HandoffStatus.GUEST_VERIFIED,
            HandoffStatus.HANDOFF_COMPLETE,
            handoff_completed_at=now,
            host_distance_meters=distance,
            host_within_range=decision.host_within_range,
            handoff_key_instructions=instructions,
        )
        await self.trips.refresh(trip)

        if not won:
            if HandoffStatus(trip.handoff_status) == HandoffStatus.HANDOFF_COMPLETE:
                logger.info("Trip %d: duplicate host confirm lost the race", trip.id)
                return self._terminal_result(trip)
            raise InvalidStateTransition(
                f"Cannot complete handoff from {trip.handoff_status}"
            )

        logger.info(
            "Trip %d: handoff complete (host distance=%s, within range=%s)",
            trip.id, distance, decision.host_within_range,
        )
        if save_key_instructions and key_instructions and key_instructions.strip():
            vehicle.key_instructions = key_instructions.strip()
        if instructions:
            await self.messages.create_once(
                trip_id=trip.id,
                category=MessageCategory.KEY_INSTRUCTIONS,
                body=f"Key pickup instructions: {instructions}",
                recipient_id=trip.guest_id,
            )

        return HostConfirmResult(
            handoff_status=HandoffStatus.HANDOFF_COMPLETE,
            host_distance_meters=distance,
            host_within_range=decision.host_within_range,
            already_complete=False,
        )

    @staticmethod
    def _terminal_result(trip) -> HostConfirmResult:
        return HostConfirmResult(
            handoff_status=HandoffStatus.HANDOFF_COMPLETE,
            host_distance_meters=trip.host_distance_meters,
            host_within_range=bool(trip.host_within_range),
            already_complete=True,
        )

    async def handoff_status(self, trip_id: int) -> HandoffStatusView:
        trip = await self._get_trip(trip_id)
        latest = await self.pings.get_latest(trip.id, PingParty.GUEST)
        return HandoffStatusView(
            trip_id=trip.id,
            trip_status=TripStatus(trip.status),
            handoff_status=HandoffStatus(trip.handoff_status),
            handoff_radius_meters=self.policy.handoff_radius_meters,
            guest_verified_at=trip.guest_verified_at,
            guest_last_distance_meters=(
                latest.distance_to_vehicle_meters if latest else None
            ),
            handoff_completed_at=trip.handoff_completed_at,
            host_distance_meters=trip.host_distance_meters,
            host_within_range=trip.host_within_range,
        )

    # ── Trip start / mileage ──────────────────────────────────────

    async def record_trip_start(
        self,
        trip_id: int,
        start_mileage: int,
        fuel_level_start: FuelLevel | str,
        now: Optional[datetime] = None,
    ) -> TripStartResult:
        now = as_utc(now or utcnow())
        if start_mileage < 0:
            raise DomainValidationError("Start mileage must be non-negative")
        fuel = parse_fuel_level(fuel_level_start)

        trip = await self._get_trip(trip_id)
        if HandoffStatus(trip.handoff_status) != HandoffStatus.HANDOFF_COMPLETE:
            raise PreconditionFailed(
                "Handoff must be complete before the trip can start"
            )
        if TripStatus(trip.status) != TripStatus.CONFIRMED:
            raise PreconditionFailed(
                f"Trip cannot start from status {TripStatus(trip.status).value}"
            )

        vehicle = await self._get_vehicle(trip.vehicle_id)
        assessment = assess_vehicle(
            VehicleMileage(
                vehicle_id=vehicle.id,
                usage_declaration=UsageDeclaration(vehicle.usage_declaration),
                current_mileage=start_mileage,
                last_rental_end_mileage=vehicle.last_rental_end_mileage,
                last_rental_end_date=vehicle.last_rental_end_date,
                name=vehicle.display_name,
            ),
            self.policy,
        )

        anomaly = None
        if assessment.severity != AnomalySeverity.NORMAL:
            anomaly = await self.anomalies.create(
                vehicle_id=vehicle.id,
                trip_id=trip.id,
                gap_miles=assessment.gap_miles,
                severity=assessment.severity,
                usage_declaration=assessment.usage_declaration,
                explanation=assessment.explanation,
                detected_at=now,
                resolved=False,
            )
            logger.warning(
                "Vehicle %d: %s mileage gap of %s miles at trip %d start",
                vehicle.id, assessment.severity.value,
                assessment.gap_miles, trip.id,
            )

        trip.start_mileage = start_mileage
        trip.fuel_level_start = fuel
        trip.trip_started_at = now
        trip.status = TripStatus.ACTIVE
        vehicle.current_mileage = start_mileage
        await self.session.flush()
        return TripStartResult(trip=trip, mileage=assessment, anomaly=anomaly)

    async def fleet_mileage_report(self, host_id: int) -> FleetMileageReport:
        if not await self.users.get_by_id(host_id):
            raise NotFound(f"Host {host_id} not found")
        vehicles = await self.vehicles.get_for_host(host_id)
        summary = summarize_fleet(
            [
                VehicleMileage(
                    vehicle_id=v.id,
                    usage_declaration=UsageDeclaration(v.usage_declaration),
                    current_mileage=v.current_mileage,
                    last_rental_end_mileage=v.last_rental_end_mileage,
                    last_rental_end_date=v.last_rental_end_date,
                    name=v.display_name,
                )
                for v in vehicles
            ],
            self.policy,
        )
        open_anomalies = await self.anomalies.count_open_for_vehicles(
            [v.id for v in vehicles]
        )
        return FleetMileageReport(
            summary=summary,
            analysis=analyze_fleet(summary, self.policy),
            open_anomalies=open_anomalies,
        )

    async def log_mileage_anomaly(
        self,
        vehicle_id: int,
        gap_miles: float,
        severity: AnomalySeverity | str,
        explanation: Optional[str] = None,
        trip_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ):
        now = as_utc(now or utcnow())
        try:
            severity = AnomalySeverity(severity)
        except ValueError:
            raise DomainValidationError(f"Unknown severity {severity!r}") from None

        vehicle = await self._get_vehicle(vehicle_id)
        if trip_id is not None:
            await self._get_trip(trip_id)
        declaration = UsageDeclaration(vehicle.usage_declaration)
        classified = classify_gap(declaration, gap_miles, self.policy)
        if classified != severity:
            logger.info(
                "Vehicle %d: logged severity %s differs from classified %s",
                vehicle.id, severity.value, classified.value,
            )

        anomaly = await self.anomalies.create(
            vehicle_id=vehicle.id,
            trip_id=trip_id,
            gap_miles=gap_miles,
            severity=severity,
            usage_declaration=declaration,
            explanation=explanation or explain(
                declaration, gap_miles, severity,
                gap_threshold(declaration, self.policy),
            ),
            detected_at=now,
            resolved=False,
        )
        logger.info(
            "Vehicle %d: mileage anomaly %d logged (%s, %s miles)",
            vehicle.id, anomaly.id, severity.value, gap_miles,
        )
        return anomaly

    async def resolve_mileage_anomaly(
        self,
        anomaly_id: int,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        anomaly = await self.anomalies.get_by_id(anomaly_id)
        if not anomaly:
            raise NotFound(f"Mileage anomaly {anomaly_id} not found")
        if anomaly.resolved:
            return anomaly
        anomaly.resolved = True
        anomaly.resolved_at = as_utc(now or utcnow())
        anomaly.resolution_note = note
        await self.session.flush()
        logger.info("Mileage anomaly %d resolved", anomaly.id)
        return anomaly

    # ── Trip end / settlement ─────────────────────────────────────

    async def end_trip(
        self,
        trip_id: int,
        end_mileage: int,
        fuel_level_end: FuelLevel | str,
        damage_items: Iterable[DamageItem],
        return_time: datetime,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        now = as_utc(now or utcnow())
        trip = await self._get_trip(trip_id)

        # Idempotency key: the trip id.  One settlement per trip.
        existing = await self.charges.get_for_trip(trip.id)
        if existing:
            return self._stored_settlement(trip, existing)

        if trip.trip_started_at is None or trip.start_mileage is None:
            raise PreconditionFailed("Trip has not been started")
        if TripStatus(trip.status) != TripStatus.ACTIVE:
            raise PreconditionFailed(
                f"Trip cannot end from status {TripStatus(trip.status).value}"
            )

        return_time = as_utc(return_time)
        breakdown = self.calculator.calculate(
            start_mileage=trip.start_mileage,
            end_mileage=end_mileage,
            fuel_level_start=trip.fuel_level_start or FuelLevel.FULL,
            fuel_level_end=fuel_level_end,
            scheduled_start=trip.scheduled_start,
            scheduled_end=trip.scheduled_end,
            actual_return_time=return_time,
            number_of_rental_days=trip.number_of_days,
            damage_items=damage_items,
            daily_allowance=trip.daily_mileage_allowance,
        )

        try:
            async with self.session.begin_nested():
                await self.charges.create(
                    trip_id=trip.id,
                    mileage_charge=breakdown.mileage_charge,
                    fuel_charge=breakdown.fuel_charge,
                    time_charge=breakdown.time_charge,
                    damage_charge=breakdown.damage_charge,
                    total=breakdown.total,
                    miles_driven=breakdown.miles_driven,
                    included_miles=breakdown.included_miles,
                    overage_miles=breakdown.overage_miles,
                    late_minutes=breakdown.late_minutes,
                    billable_late_hours=breakdown.billable_late_hours,
                    needs_refuel=breakdown.needs_refuel,
                    damage_items=[
                        {
                            "description": item.description,
                            "cost": str(to_money(item.cost)),
                        }
                        for item in breakdown.damage_items
                    ],
                    calculated_at=now,
                )
        except IntegrityError:
            # A concurrent end call settled the trip first.
            existing = await self.charges.get_for_trip(trip.id)
            if existing is None:
                raise
            logger.info("Trip %d already settled by a concurrent request", trip.id)
            await self.trips.refresh(trip)
            return self._stored_settlement(trip, existing)

        vehicle = await self._get_vehicle(trip.vehicle_id)
        trip.end_mileage = end_mileage
        trip.fuel_level_end = parse_fuel_level(fuel_level_end)
        trip.actual_return_at = return_time
        trip.status = TripStatus.COMPLETED
        vehicle.current_mileage = end_mileage
        vehicle.last_rental_end_mileage = end_mileage
        vehicle.last_rental_end_date = return_time

        await self.messages.create_once(
            trip_id=trip.id,
            category=MessageCategory.TRIP_CHARGES,
            body=self._charges_message(breakdown),
            recipient_id=trip.guest_id,
        )
        await self.session.flush()
        logger.info(
            "Trip %d settled: total=%s (mileage=%s fuel=%s time=%s damage=%s)",
            trip.id, breakdown.total, breakdown.mileage_charge,
            breakdown.fuel_charge, breakdown.time_charge, breakdown.damage_charge,
        )
        return SettlementResult(
            trip=trip,
            breakdown=breakdown,
            tips=build_tips(breakdown, self.policy),
            calculated_at=now,
            created=True,
        )

    def _stored_settlement(self, trip, record) -> SettlementResult:
        breakdown = breakdown_from_record(record)
        return SettlementResult(
            trip=trip,
            breakdown=breakdown,
            tips=build_tips(breakdown, self.policy),
            calculated_at=record.calculated_at,
            created=False,
        )

    @staticmethod
    def _charges_message(breakdown: ChargeBreakdown) -> str:
        if not breakdown.has_charges:
            return "Trip completed with no additional charges."
        lines = "\n".join(
            f"- {line.label}: ${line.amount}" for line in breakdown.line_items()
        )
        return f"Trip completed with additional charges:\n{lines}\nTotal: ${breakdown.total}"

    async def get_settlement(self, trip_id: int) -> SettlementResult:
        trip = await self._get_trip(trip_id)
        record = await self.charges.get_for_trip(trip.id)
        if not record:
            raise NotFound(f"Trip {trip_id} has no settlement yet")
        return self._stored_settlement(trip, record)

    async def recompute_settlement(self, trip_id: int) -> SettlementAudit:
        """Re-derive the bill from stored inputs; never overwrites it."""
        trip = await self._get_trip(trip_id)
        record = await self.charges.get_for_trip(trip.id)
        if not record:
            raise NotFound(f"Trip {trip_id} has no settlement yet")

        stored = breakdown_from_record(record)
        recomputed = self.calculator.calculate(
            start_mileage=trip.start_mileage,
            end_mileage=trip.end_mileage,
            fuel_level_start=trip.fuel_level_start or FuelLevel.FULL,
            fuel_level_end=trip.fuel_level_end,
            scheduled_start=trip.scheduled_start,
            scheduled_end=trip.scheduled_end,
            actual_return_time=trip.actual_return_at,
            number_of_rental_days=trip.number_of_days,
            damage_items=stored.damage_items,
            daily_allowance=trip.daily_mileage_allowance,
        )
        consistent = all(
            getattr(stored, name) == getattr(recomputed, name)
            for name in MONEY_FIELDS
        )
        if not consistent:
            logger.warning(
                "Trip %d settlement drift: stored total=%s recomputed total=%s",
                trip.id, stored.total, recomputed.total,
            )
        return SettlementAudit(
            trip_id=trip.id,
            stored=stored,
            recomputed=recomputed,
            consistent=consistent,
        )
