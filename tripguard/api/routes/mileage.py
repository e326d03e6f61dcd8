"""
Mileage integrity endpoints
===========================

GET   /api/v1/hosts/{host_id}/mileage-integrity      -- fleet odometer-gap report
POST  /api/v1/mileage-anomalies                      -- log an anomaly by hand
PATCH /api/v1/mileage-anomalies/{anomaly_id}/resolve -- mark reviewed
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from tripguard.api.dependencies import get_orchestrator
from tripguard.api.middleware import limiter
from tripguard.api.schemas import (
    ErrorResponse,
    FleetMileageResponse,
    FleetSummaryResponse,
    FleetVehicleResponse,
    MileageAnomalyCreateRequest,
    MileageAnomalyResolveRequest,
    MileageAnomalyResponse,
    MileageAssessmentResponse,
)
from tripguard.domain.enums import AnomalySeverity
from tripguard.services.reconciliation import ReconciliationOrchestrator

router = APIRouter(tags=["mileage"])


@router.get(
    "/hosts/{host_id}/mileage-integrity",
    response_model=FleetMileageResponse,
    summary="Odometer-gap report for a host's fleet",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def mileage_integrity(
    request: Request,
    host_id: int,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    report = await orchestrator.fleet_mileage_report(host_id)
    summary = report.summary
    return FleetMileageResponse(
        host_id=host_id,
        vehicles=[
            FleetVehicleResponse(
                **MileageAssessmentResponse.model_validate(a).model_dump(),
                open_anomalies=report.open_anomalies.get(a.vehicle_id, 0),
            )
            for a in summary.assessments
        ],
        summary=FleetSummaryResponse(
            total_vehicles=summary.total_vehicles,
            normal=summary.counts.get(AnomalySeverity.NORMAL, 0),
            warning=summary.counts.get(AnomalySeverity.WARNING, 0),
            critical=summary.counts.get(AnomalySeverity.CRITICAL, 0),
            violation=summary.counts.get(AnomalySeverity.VIOLATION, 0),
            compliance_rate=summary.compliance_rate,
            top_issues=[
                MileageAssessmentResponse.model_validate(a)
                for a in summary.top_issues
            ],
        ),
        alerts=summary.alerts,
        analysis=report.analysis,
    )


@router.post(
    "/mileage-anomalies",
    status_code=201,
    response_model=MileageAnomalyResponse,
    summary="Log a mileage anomaly",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def log_anomaly(
    request: Request,
    body: MileageAnomalyCreateRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.log_mileage_anomaly(
        body.vehicle_id,
        body.gap_miles,
        body.severity,
        explanation=body.explanation,
        trip_id=body.trip_id,
    )


@router.patch(
    "/mileage-anomalies/{anomaly_id}/resolve",
    response_model=MileageAnomalyResponse,
    summary="Mark a mileage anomaly as resolved",
    description="Anomalies are never deleted; resolving twice is a no-op.",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def resolve_anomaly(
    request: Request,
    anomaly_id: int,
    body: MileageAnomalyResolveRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.resolve_mileage_anomaly(anomaly_id, body.note)
