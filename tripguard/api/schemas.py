"""Pydantic request / response schemas for the REST API.

Money fields are ``Decimal`` and serialize as JSON strings (``"112.50"``).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from tripguard.domain.enums import (
    AnomalySeverity,
    FuelLevel,
    HandoffStatus,
    TripStatus,
    UsageDeclaration,
)


# ── Requests ──────────────────────────────────────────────────────────

# Odometer readings are stored in int4 columns.
MAX_ODOMETER = 2_147_483_647


class GuestPingRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class HostConfirmRequest(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    key_instructions: Optional[str] = Field(None, max_length=2000)
    save_key_instructions: bool = Field(
        False, description="Store these instructions as the vehicle default."
    )


class TripStartRequest(BaseModel):
    start_mileage: int = Field(..., ge=0, le=MAX_ODOMETER)
    fuel_level_start: FuelLevel


class DamageItemRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    cost: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class TripEndRequest(BaseModel):
    end_mileage: int = Field(..., ge=0, le=MAX_ODOMETER)
    fuel_level_end: FuelLevel
    damage_items: list[DamageItemRequest] = []
    return_time: Optional[datetime] = Field(
        None, description="Actual return time; defaults to now."
    )


class MileageAnomalyCreateRequest(BaseModel):
    vehicle_id: int
    trip_id: Optional[int] = None
    gap_miles: float
    severity: AnomalySeverity
    explanation: Optional[str] = Field(None, max_length=2000)


class MileageAnomalyResolveRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=2000)


# ── Responses ─────────────────────────────────────────────────────────


class GuestPingResponse(BaseModel):
    distance_meters: Optional[float] = None
    within_range: bool
    location_trust: int
    low_trust: bool
    eta_message: Optional[str] = None
    handoff_status: HandoffStatus

    model_config = {"from_attributes": True}


class HostConfirmResponse(BaseModel):
    handoff_status: HandoffStatus
    host_distance_meters: Optional[float] = None
    host_within_range: bool
    already_complete: bool

    model_config = {"from_attributes": True}


class HandoffStatusResponse(BaseModel):
    trip_id: int
    trip_status: TripStatus
    handoff_status: HandoffStatus
    handoff_radius_meters: float
    guest_verified_at: Optional[datetime] = None
    guest_last_distance_meters: Optional[float] = None
    handoff_completed_at: Optional[datetime] = None
    host_distance_meters: Optional[float] = None
    host_within_range: Optional[bool] = None

    model_config = {"from_attributes": True}


class MileageAssessmentResponse(BaseModel):
    vehicle_id: int
    name: str
    usage_declaration: UsageDeclaration
    gap_miles: float
    threshold_miles: float
    severity: AnomalySeverity
    explanation: str

    model_config = {"from_attributes": True}


class MileageAnomalyResponse(BaseModel):
    id: int
    vehicle_id: int
    trip_id: Optional[int] = None
    gap_miles: float
    severity: AnomalySeverity
    usage_declaration: Optional[UsageDeclaration] = None
    explanation: Optional[str] = None
    detected_at: datetime
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None

    model_config = {"from_attributes": True}


class TripStartResponse(BaseModel):
    trip_id: int
    trip_status: TripStatus
    start_mileage: int
    fuel_level_start: FuelLevel
    trip_started_at: datetime
    mileage: MileageAssessmentResponse
    anomaly: Optional[MileageAnomalyResponse] = None


class FleetVehicleResponse(MileageAssessmentResponse):
    open_anomalies: int = 0


class FleetSummaryResponse(BaseModel):
    total_vehicles: int
    normal: int
    warning: int
    critical: int
    violation: int
    compliance_rate: float
    top_issues: list[MileageAssessmentResponse]


class FleetMileageResponse(BaseModel):
    host_id: int
    vehicles: list[FleetVehicleResponse]
    summary: FleetSummaryResponse
    alerts: list[str]
    analysis: dict


class ChargeLineResponse(BaseModel):
    label: str
    amount: Decimal
    percentage: Decimal
    details: str

    model_config = {"from_attributes": True}


class ChargesResponse(BaseModel):
    mileage_charge: Decimal
    fuel_charge: Decimal
    time_charge: Decimal
    damage_charge: Decimal
    total: Decimal
    miles_driven: int
    included_miles: int
    overage_miles: int
    needs_refuel: bool
    late_minutes: int
    billable_late_hours: int

    model_config = {"from_attributes": True}


class BookingEchoResponse(BaseModel):
    trip_id: int
    booking_code: str
    vehicle_id: int
    guest_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    number_of_days: int
    actual_return_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    charges: ChargesResponse
    breakdown: list[ChargeLineResponse]
    tips: list[str]
    booking_echo: BookingEchoResponse
    calculated_at: datetime
    created: bool


class SettlementAuditResponse(BaseModel):
    trip_id: int
    consistent: bool
    stored: ChargesResponse
    recomputed: ChargesResponse


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
