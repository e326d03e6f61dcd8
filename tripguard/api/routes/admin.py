"""
Admin / audit endpoints
=======================

POST /api/v1/admin/trips/{trip_id}/charges/recompute -- audit a settlement
GET  /api/v1/admin/health                            -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from tripguard.api.dependencies import get_orchestrator
from tripguard.api.middleware import limiter
from tripguard.api.routes.trips import charges_response
from tripguard.api.schemas import (
    ErrorResponse,
    HealthResponse,
    SettlementAuditResponse,
)
from tripguard.services.reconciliation import ReconciliationOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/trips/{trip_id}/charges/recompute",
    response_model=SettlementAuditResponse,
    summary="Recompute a settlement from its stored inputs",
    description=(
        "Reports whether the stored charges still match what the current "
        "policy computes.  The stored settlement is never modified."
    ),
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def recompute_charges(
    request: Request,
    trip_id: int,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    audit = await orchestrator.recompute_settlement(trip_id)
    return SettlementAuditResponse(
        trip_id=audit.trip_id,
        consistent=audit.consistent,
        stored=charges_response(audit.stored),
        recomputed=charges_response(audit.recomputed),
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
