"""
Mileage Anomaly Detector
========================

Compares the odometer gap between rentals with the owner's usage
declaration to spot undisclosed driving.

    gap = current_mileage - last_rental_end_mileage

Severity by multiple of the declaration's tolerance ``T``
----------------------------------------------------------
* ``gap <= T``          -> NORMAL
* ``T < gap < 2T``      -> WARNING
* ``gap >= 2T``         -> CRITICAL
* ``gap >= 3T``         -> VIOLATION (RENTAL_ONLY only)
* ``gap < 0``           -> CRITICAL for every declaration (rollback,
  odometer fault or tampering)

Everything here is pure.  Persisting a ``MileageAnomaly`` is a separate,
explicit caller action, so the same classification feeds read-only
dashboards and the write path.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .entities import VehicleMileage
from .enums import AnomalySeverity, UsageDeclaration
from .policy import DEFAULT_POLICY, TripPolicy


@dataclass(frozen=True)
class MileageAssessment:
    vehicle_id: int
    name: str
    usage_declaration: UsageDeclaration
    gap_miles: float
    threshold_miles: float
    severity: AnomalySeverity
    explanation: str


@dataclass(frozen=True)
class FleetMileageSummary:
    total_vehicles: int
    counts: dict[AnomalySeverity, int]
    compliance_rate: float
    top_issues: list[MileageAssessment]
    alerts: list[str]
    assessments: list[MileageAssessment] = field(default_factory=list)


def gap_threshold(
    declaration: UsageDeclaration, policy: TripPolicy = DEFAULT_POLICY
) -> float:
    thresholds = {
        UsageDeclaration.RENTAL_ONLY: policy.rental_only_gap_miles,
        UsageDeclaration.MIXED_USE: policy.mixed_use_gap_miles,
        UsageDeclaration.COMMERCIAL: policy.commercial_gap_miles,
    }
    return thresholds[UsageDeclaration(declaration)]


def compute_gap(
    current_mileage: int, last_rental_end_mileage: Optional[int]
) -> float:
    """Miles driven since the last rental ended; 0 with no rental history."""
    if last_rental_end_mileage is None:
        return 0
    return current_mileage - last_rental_end_mileage


def classify_gap(
    declaration: UsageDeclaration,
    gap_miles: float,
    policy: TripPolicy = DEFAULT_POLICY,
) -> AnomalySeverity:
    if gap_miles < 0:
        return AnomalySeverity.CRITICAL

    threshold = gap_threshold(declaration, policy)
    if gap_miles <= threshold:
        return AnomalySeverity.NORMAL
    if (
        declaration == UsageDeclaration.RENTAL_ONLY
        and gap_miles >= 3 * threshold
    ):
        return AnomalySeverity.VIOLATION
    if gap_miles >= 2 * threshold:
        return AnomalySeverity.CRITICAL
    return AnomalySeverity.WARNING


def explain(
    declaration: UsageDeclaration,
    gap_miles: float,
    severity: AnomalySeverity,
    threshold: float,
) -> str:
    label = declaration.value.replace("_", " ").lower()
    if gap_miles < 0:
        return (
            f"Odometer went backwards by {abs(gap_miles):g} miles since the "
            f"last rental; check for an odometer fault or tampering"
        )
    if severity == AnomalySeverity.NORMAL:
        return (
            f"{gap_miles:g} miles between rentals is within the "
            f"{threshold:g}-mile tolerance for {label}"
        )
    if severity == AnomalySeverity.VIOLATION:
        return (
            f"{gap_miles:g} miles between rentals contradicts the rental-only "
            f"declaration ({threshold:g}-mile tolerance)"
        )
    return (
        f"{gap_miles:g} miles between rentals exceeds the {threshold:g}-mile "
        f"tolerance for {label}"
    )


def assess_vehicle(
    vehicle: VehicleMileage, policy: TripPolicy = DEFAULT_POLICY
) -> MileageAssessment:
    gap = compute_gap(vehicle.current_mileage, vehicle.last_rental_end_mileage)
    threshold = gap_threshold(vehicle.usage_declaration, policy)
    severity = classify_gap(vehicle.usage_declaration, gap, policy)
    return MileageAssessment(
        vehicle_id=vehicle.vehicle_id,
        name=vehicle.name,
        usage_declaration=UsageDeclaration(vehicle.usage_declaration),
        gap_miles=gap,
        threshold_miles=threshold,
        severity=severity,
        explanation=explain(
            UsageDeclaration(vehicle.usage_declaration), gap, severity, threshold
        ),
    )


def rank_issues(
    assessments: Iterable[MileageAssessment], limit: int
) -> list[MileageAssessment]:
    """Non-normal vehicles ordered by (severity desc, gap desc)."""
    issues = [a for a in assessments if a.severity != AnomalySeverity.NORMAL]
    issues.sort(key=lambda a: (a.severity.rank, a.gap_miles), reverse=True)
    return issues[:limit]


def build_alerts(counts: dict[AnomalySeverity, int]) -> list[str]:
    alerts: list[str] = []
    violations = counts[AnomalySeverity.VIOLATION]
    critical = counts[AnomalySeverity.CRITICAL]
    warnings = counts[AnomalySeverity.WARNING]
    if violations:
        alerts.append(
            f"{violations} vehicle{'s' if violations != 1 else ''} violating "
            f"rental-only declaration"
        )
    if critical:
        alerts.append(
            f"{critical} vehicle{'s' if critical != 1 else ''} with critical "
            f"mileage gaps"
        )
    if warnings:
        alerts.append(
            f"{warnings} vehicle{'s' if warnings != 1 else ''} approaching "
            f"declared mileage limits"
        )
    return alerts


def summarize_fleet(
    vehicles: Iterable[VehicleMileage],
    policy: TripPolicy = DEFAULT_POLICY,
    limit: Optional[int] = None,
) -> FleetMileageSummary:
    assessments = [assess_vehicle(v, policy) for v in vehicles]
    tally = Counter(a.severity for a in assessments)
    counts = {severity: tally.get(severity, 0) for severity in AnomalySeverity}

    total = len(assessments)
    compliance = counts[AnomalySeverity.NORMAL] / total if total else 1.0

    return FleetMileageSummary(
        total_vehicles=total,
        counts=counts,
        compliance_rate=compliance,
        top_issues=rank_issues(
            assessments, policy.top_issue_limit if limit is None else limit
        ),
        alerts=build_alerts(counts),
        assessments=assessments,
    )


def suggest_declaration(
    gap_miles: float, policy: TripPolicy = DEFAULT_POLICY
) -> Optional[UsageDeclaration]:
    """Tightest declaration under which *gap_miles* would be NORMAL."""
    if gap_miles < 0:
        return None
    candidates = sorted(
        UsageDeclaration, key=lambda d: gap_threshold(d, policy)
    )
    for declaration in candidates:
        if gap_miles <= gap_threshold(declaration, policy):
            return declaration
    return None


def analyze_fleet(
    summary: FleetMileageSummary, policy: TripPolicy = DEFAULT_POLICY
) -> dict:
    """Fleet-level gap statistics and declaration change suggestions."""
    gaps = [a.gap_miles for a in summary.assessments if a.gap_miles >= 0]
    by_declaration: dict[str, dict] = {}
    for declaration in UsageDeclaration:
        group = [
            a for a in summary.assessments
            if a.usage_declaration == declaration
        ]
        group_gaps = [a.gap_miles for a in group if a.gap_miles >= 0]
        by_declaration[declaration.value] = {
            "vehicles": len(group),
            "threshold_miles": gap_threshold(declaration, policy),
            "average_gap_miles": (
                round(sum(group_gaps) / len(group_gaps), 1) if group_gaps else 0.0
            ),
            "non_compliant": sum(
                1 for a in group if a.severity != AnomalySeverity.NORMAL
            ),
        }

    suggestions = []
    for a in summary.assessments:
        if a.severity == AnomalySeverity.NORMAL:
            continue
        suggested = suggest_declaration(a.gap_miles, policy)
        if suggested is not None and suggested != a.usage_declaration:
            suggestions.append(
                {
                    "vehicle_id": a.vehicle_id,
                    "current_declaration": a.usage_declaration.value,
                    "suggested_declaration": suggested.value,
                    "gap_miles": a.gap_miles,
                }
            )

    return {
        "average_gap_miles": round(sum(gaps) / len(gaps), 1) if gaps else 0.0,
        "max_gap_miles": max(gaps) if gaps else 0.0,
        "by_declaration": by_declaration,
        "suggested_declaration_changes": suggestions,
    }
