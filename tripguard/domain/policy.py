"""
Trip policy
===========

Every tunable number the handoff, trust, mileage and charge components use
lives here, in one immutable object.  ``Settings.trip_policy()`` builds it
from the environment; tests build it directly with overrides.

The GPS plausibility values (speed ceiling, near-zero window, score levels)
are policy defaults to be validated against field data, not physical
constants.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TripPolicy:
    # Handoff
    handoff_radius_meters: float = 100.0

    # GPS trust scoring
    trust_baseline_score: int = 70
    max_plausible_speed_kmh: float = 150.0
    near_zero_elapsed_seconds: float = 1.0
    stationary_tolerance_meters: float = 5.0
    burst_trust_score: int = 20
    teleport_trust_score: int = 10
    trust_at_ceiling_score: int = 60
    low_trust_threshold: int = 40
    walking_speed_mps: float = 1.4

    # Mileage anomaly tolerances (miles)
    rental_only_gap_miles: float = 15.0
    mixed_use_gap_miles: float = 500.0
    commercial_gap_miles: float = 300.0
    top_issue_limit: int = 5

    # Trip charges
    daily_mileage_allowance: int = 200
    per_mile_overage_rate: Decimal = Decimal("0.45")
    flat_refuel_fee: Decimal = Decimal("75.00")
    late_grace_period_minutes: int = 30
    per_hour_late_rate: Decimal = Decimal("25.00")

    @property
    def max_plausible_speed_mps(self) -> float:
        return self.max_plausible_speed_kmh * 1000.0 / 3600.0


DEFAULT_POLICY = TripPolicy()
