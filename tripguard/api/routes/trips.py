"""
Trip lifecycle endpoints
========================

POST /api/v1/trips/{trip_id}/start   -- odometer + fuel at pickup
POST /api/v1/trips/{trip_id}/end     -- settle the trip (once)
GET  /api/v1/trips/{trip_id}/charges -- the persisted settlement
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from tripguard.api.dependencies import get_orchestrator
from tripguard.api.middleware import limiter
from tripguard.api.schemas import (
    BookingEchoResponse,
    ChargeLineResponse,
    ChargesResponse,
    ErrorResponse,
    MileageAnomalyResponse,
    MileageAssessmentResponse,
    SettlementResponse,
    TripEndRequest,
    TripStartRequest,
    TripStartResponse,
)
from tripguard.domain.charges import ChargeBreakdown
from tripguard.domain.clock import utcnow
from tripguard.domain.entities import DamageItem
from tripguard.services.reconciliation import (
    ReconciliationOrchestrator,
    SettlementResult,
)

router = APIRouter(prefix="/trips", tags=["trips"])


def charges_response(breakdown: ChargeBreakdown) -> ChargesResponse:
    return ChargesResponse.model_validate(breakdown)


def settlement_response(result: SettlementResult) -> SettlementResponse:
    trip = result.trip
    return SettlementResponse(
        charges=charges_response(result.breakdown),
        breakdown=[
            ChargeLineResponse.model_validate(line)
            for line in result.breakdown.line_items()
        ],
        tips=result.tips,
        booking_echo=BookingEchoResponse(
            trip_id=trip.id,
            booking_code=trip.booking_code,
            vehicle_id=trip.vehicle_id,
            guest_id=trip.guest_id,
            scheduled_start=trip.scheduled_start,
            scheduled_end=trip.scheduled_end,
            number_of_days=trip.number_of_days,
            actual_return_at=trip.actual_return_at,
        ),
        calculated_at=result.calculated_at,
        created=result.created,
    )


@router.post(
    "/{trip_id}/start",
    response_model=TripStartResponse,
    summary="Record odometer and fuel at pickup",
    description=(
        "Requires a completed handoff.  Runs the odometer-gap check against "
        "the end of the vehicle's previous rental and returns the finding; "
        "non-normal findings are also stored as mileage anomalies."
    ),
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def start_trip(
    request: Request,
    trip_id: int,
    body: TripStartRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.record_trip_start(
        trip_id, body.start_mileage, body.fuel_level_start
    )
    return TripStartResponse(
        trip_id=result.trip.id,
        trip_status=result.trip.status,
        start_mileage=result.trip.start_mileage,
        fuel_level_start=result.trip.fuel_level_start,
        trip_started_at=result.trip.trip_started_at,
        mileage=MileageAssessmentResponse.model_validate(result.mileage),
        anomaly=(
            MileageAnomalyResponse.model_validate(result.anomaly)
            if result.anomaly else None
        ),
    )


@router.post(
    "/{trip_id}/end",
    response_model=SettlementResponse,
    summary="End the trip and compute charges",
    description=(
        "Idempotent per trip: once a settlement exists it is returned "
        "unchanged (200) instead of being recomputed."
    ),
    responses={
        201: {"description": "Settlement created"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
@limiter.limit("100/minute")
async def end_trip(
    request: Request,
    response: Response,
    trip_id: int,
    body: TripEndRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.end_trip(
        trip_id,
        body.end_mileage,
        body.fuel_level_end,
        [DamageItem(item.description, item.cost) for item in body.damage_items],
        body.return_time or utcnow(),
    )
    if result.created:
        response.status_code = 201
    return settlement_response(result)


@router.get(
    "/{trip_id}/charges",
    response_model=SettlementResponse,
    summary="Get the trip's settlement",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_charges(
    request: Request,
    trip_id: int,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return settlement_response(await orchestrator.get_settlement(trip_id))
