"""
Handoff endpoints
=================

POST /api/v1/trips/{trip_id}/handoff/guest-ping   -- guest approach ping
POST /api/v1/trips/{trip_id}/handoff/host-confirm -- host releases the keys
GET  /api/v1/trips/{trip_id}/handoff/status       -- resume after a refresh
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from tripguard.api.dependencies import get_orchestrator
from tripguard.api.middleware import limiter
from tripguard.api.schemas import (
    ErrorResponse,
    GuestPingRequest,
    GuestPingResponse,
    HandoffStatusResponse,
    HostConfirmRequest,
    HostConfirmResponse,
)
from tripguard.services.reconciliation import ReconciliationOrchestrator

router = APIRouter(prefix="/trips/{trip_id}/handoff", tags=["handoff"])


@router.post(
    "/guest-ping",
    response_model=GuestPingResponse,
    summary="Report the guest's position while approaching the vehicle",
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "GPS unavailable"},
    },
)
@limiter.limit("100/minute")
async def guest_ping(
    request: Request,
    trip_id: int,
    body: GuestPingRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.record_guest_ping(
        trip_id, body.latitude, body.longitude
    )


@router.post(
    "/host-confirm",
    response_model=HostConfirmResponse,
    summary="Host confirms the handoff",
    description=(
        "Requires a verified guest.  The host's own position is recorded "
        "but never blocks the confirm.  Repeat calls return the completed "
        "state without re-sending key instructions."
    ),
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def host_confirm(
    request: Request,
    trip_id: int,
    body: HostConfirmRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.confirm_host_handoff(
        trip_id,
        body.latitude,
        body.longitude,
        key_instructions=body.key_instructions,
        save_key_instructions=body.save_key_instructions,
    )


@router.get(
    "/status",
    response_model=HandoffStatusResponse,
    summary="Current handoff state",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def handoff_status(
    request: Request,
    trip_id: int,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.handoff_status(trip_id)
