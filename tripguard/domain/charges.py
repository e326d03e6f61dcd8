"""
Trip Charge Calculator
======================

Formula
-------
    included  = rental_days x daily_allowance
    overage   = max(0, (end_mileage - start_mileage) - included)
    mileage   = overage x per_mile_rate
    fuel      = flat_refuel_fee  if ordinal(fuel_end) < ordinal(fuel_start)
    late_min  = max(0, minutes(return - scheduled_end) - grace)
    time      = ceil(late_min / 60) x per_hour_late_rate
    damage    = sum(item.cost)
    total     = mileage + fuel + time + damage

Partial late hours always round **up**: predictable bills over per-minute
fairness.

Money is ``Decimal`` quantized to cents per sub-charge, so ``total`` is an
exact sum of its parts.  The calculator never reads the clock; the return
time is an argument, which makes an audit recompute reproduce the original
result bit for bit.

Complexity: O(d) where d = number of damage items.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from .clock import as_utc
from .entities import DamageItem, DomainValidationError
from .enums import FuelLevel
from .policy import DEFAULT_POLICY, TripPolicy

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_fuel_level(value: Union[FuelLevel, str]) -> FuelLevel:
    try:
        return FuelLevel(value)
    except ValueError:
        allowed = ", ".join(level.value for level in FuelLevel)
        raise DomainValidationError(
            f"Unrecognised fuel level {value!r}; expected one of: {allowed}"
        ) from None


@dataclass(frozen=True)
class ChargeLine:
    label: str
    amount: Decimal
    percentage: Decimal
    details: str


@dataclass(frozen=True)
class ChargeBreakdown:
    mileage_charge: Decimal
    fuel_charge: Decimal
    time_charge: Decimal
    damage_charge: Decimal
    total: Decimal

    # Inputs echoed back for the bill and audit trail
    miles_driven: int
    included_miles: int
    overage_miles: int
    needs_refuel: bool
    late_minutes: int
    billable_late_hours: int
    damage_items: tuple[DamageItem, ...] = ()

    @property
    def has_charges(self) -> bool:
        return self.total > 0

    def percentage_of_total(self, amount: Decimal) -> Decimal:
        if self.total <= 0:
            return ZERO
        return (amount / self.total * HUNDRED).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )

    def line_items(self) -> list[ChargeLine]:
        """Display lines for the non-zero sub-charges."""
        lines: list[ChargeLine] = []
        if self.mileage_charge > 0:
            lines.append(ChargeLine(
                "Mileage Overage",
                self.mileage_charge,
                self.percentage_of_total(self.mileage_charge),
                f"{self.overage_miles} miles over the {self.included_miles}-mile allowance",
            ))
        if self.fuel_charge > 0:
            lines.append(ChargeLine(
                "Fuel Refill",
                self.fuel_charge,
                self.percentage_of_total(self.fuel_charge),
                "Returned with less fuel than at pickup",
            ))
        if self.time_charge > 0:
            hours = self.billable_late_hours
            lines.append(ChargeLine(
                "Late Return",
                self.time_charge,
                self.percentage_of_total(self.time_charge),
                f"{self.late_minutes} minutes late after grace period "
                f"({hours} hour{'s' if hours != 1 else ''} billed)",
            ))
        if self.damage_charge > 0:
            lines.append(ChargeLine(
                "Damage",
                self.damage_charge,
                self.percentage_of_total(self.damage_charge),
                "; ".join(item.description for item in self.damage_items)
                or "Reported damage",
            ))
        return lines


class TripChargeCalculator:
    """Pure end-of-trip bill computation."""

    def __init__(self, policy: TripPolicy = DEFAULT_POLICY):
        self.policy = policy

    # ── Sub-charges ───────────────────────────────────────────────

    def mileage(
        self,
        start_mileage: int,
        end_mileage: int,
        rental_days: int,
        daily_allowance: Optional[int] = None,
    ) -> tuple[int, int, int, Decimal]:
        allowance = (
            self.policy.daily_mileage_allowance
            if daily_allowance is None else daily_allowance
        )
        driven = end_mileage - start_mileage
        included = rental_days * allowance
        overage = max(0, driven - included)
        charge = to_money(overage * self.policy.per_mile_overage_rate)
        return driven, included, overage, charge

    def fuel(
        self, fuel_start: FuelLevel, fuel_end: FuelLevel
    ) -> tuple[bool, Decimal]:
        needs_refuel = fuel_end.ordinal < fuel_start.ordinal
        return needs_refuel, (
            to_money(self.policy.flat_refuel_fee) if needs_refuel else ZERO
        )

    def lateness(
        self, scheduled_end: datetime, actual_return: datetime
    ) -> tuple[int, int, Decimal]:
        overdue_seconds = (
            as_utc(actual_return) - as_utc(scheduled_end)
        ).total_seconds()
        late_seconds = max(
            0.0, overdue_seconds - self.policy.late_grace_period_minutes * 60
        )
        if late_seconds <= 0:
            return 0, 0, ZERO
        late_minutes = math.ceil(late_seconds / 60)
        hours = math.ceil(late_seconds / 3600)
        return late_minutes, hours, to_money(hours * self.policy.per_hour_late_rate)

    @staticmethod
    def damage(items: Iterable[DamageItem]) -> Decimal:
        return sum((to_money(item.cost) for item in items), ZERO)

    # ── Validation ────────────────────────────────────────────────

    @staticmethod
    def _validate(
        start_mileage: int,
        end_mileage: int,
        scheduled_start: datetime,
        scheduled_end: datetime,
        rental_days: int,
        damage_items: list[DamageItem],
    ) -> None:
        if start_mileage < 0 or end_mileage < 0:
            raise DomainValidationError("Mileage readings must be non-negative")
        if end_mileage < start_mileage:
            raise DomainValidationError(
                f"End mileage {end_mileage} is below start mileage {start_mileage}"
            )
        if rental_days < 1:
            raise DomainValidationError("Number of rental days must be at least 1")
        if as_utc(scheduled_end) < as_utc(scheduled_start):
            raise DomainValidationError("Scheduled end precedes scheduled start")
        for item in damage_items:
            try:
                cost = Decimal(str(item.cost))
            except InvalidOperation:
                raise DomainValidationError(
                    f"Damage item {item.description!r} has an invalid cost"
                ) from None
            if not cost.is_finite() or cost < 0:
                raise DomainValidationError(
                    f"Damage item {item.description!r} has a negative cost"
                )

    # ── Facade ────────────────────────────────────────────────────

    def calculate(
        self,
        start_mileage: int,
        end_mileage: int,
        fuel_level_start: Union[FuelLevel, str],
        fuel_level_end: Union[FuelLevel, str],
        scheduled_start: datetime,
        scheduled_end: datetime,
        actual_return_time: datetime,
        number_of_rental_days: int,
        damage_items: Iterable[DamageItem] = (),
        daily_allowance: Optional[int] = None,
    ) -> ChargeBreakdown:
        """Validate everything first, then compute; never a partial result."""
        items = list(damage_items)
        fuel_start = parse_fuel_level(fuel_level_start)
        fuel_end = parse_fuel_level(fuel_level_end)
        self._validate(
            start_mileage, end_mileage, scheduled_start, scheduled_end,
            number_of_rental_days, items,
        )

        driven, included, overage, mileage_charge = self.mileage(
            start_mileage, end_mileage, number_of_rental_days, daily_allowance
        )
        needs_refuel, fuel_charge = self.fuel(fuel_start, fuel_end)
        late_minutes, late_hours, time_charge = self.lateness(
            scheduled_end, actual_return_time
        )
        damage_charge = self.damage(items)

        return ChargeBreakdown(
            mileage_charge=mileage_charge,
            fuel_charge=fuel_charge,
            time_charge=time_charge,
            damage_charge=damage_charge,
            total=mileage_charge + fuel_charge + time_charge + damage_charge,
            miles_driven=driven,
            included_miles=included,
            overage_miles=overage,
            needs_refuel=needs_refuel,
            late_minutes=late_minutes,
            billable_late_hours=late_hours,
            damage_items=tuple(items),
        )


def build_tips(breakdown: ChargeBreakdown, policy: TripPolicy = DEFAULT_POLICY) -> list[str]:
    """Guidance shown next to the bill; one tip per avoidable charge."""
    tips: list[str] = []
    if breakdown.fuel_charge > 0:
        tips.append(
            "Return the vehicle with the same fuel level as at pickup to "
            "avoid the refuel fee."
        )
    if breakdown.time_charge > 0:
        tips.append(
            f"Returns within {policy.late_grace_period_minutes} minutes of "
            f"the scheduled end are not charged; every started hour after "
            f"that is."
        )
    if breakdown.mileage_charge > 0:
        tips.append(
            f"Trips include {policy.daily_mileage_allowance} miles per day; "
            f"book extra days for longer drives to avoid overage charges."
        )
    if breakdown.damage_charge > 0:
        tips.append(
            "Photograph the vehicle at pickup and return so damage claims "
            "can be reviewed quickly."
        )
    if not tips:
        tips.append("No additional charges. Thanks for returning the vehicle on time.")
    return tips
