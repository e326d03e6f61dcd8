"""Domain enumerations and state-transition rules."""

import enum


class HandoffStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    GUEST_VERIFIED = "GUEST_VERIFIED"
    HANDOFF_COMPLETE = "HANDOFF_COMPLETE"


# State machine: maps current status -> set of valid next statuses.
# Monotonic, no skip edge from NOT_STARTED straight to HANDOFF_COMPLETE.
HANDOFF_TRANSITIONS: dict[HandoffStatus, set[HandoffStatus]] = {
    HandoffStatus.NOT_STARTED: {HandoffStatus.GUEST_VERIFIED},
    HandoffStatus.GUEST_VERIFIED: {HandoffStatus.HANDOFF_COMPLETE},
    HandoffStatus.HANDOFF_COMPLETE: set(),
}


class TripStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class UsageDeclaration(str, enum.Enum):
    RENTAL_ONLY = "RENTAL_ONLY"
    MIXED_USE = "MIXED_USE"
    COMMERCIAL = "COMMERCIAL"


class AnomalySeverity(str, enum.Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    VIOLATION = "VIOLATION"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[AnomalySeverity, int] = {
    AnomalySeverity.NORMAL: 0,
    AnomalySeverity.WARNING: 1,
    AnomalySeverity.CRITICAL: 2,
    AnomalySeverity.VIOLATION: 3,
}


class FuelLevel(str, enum.Enum):
    EMPTY = "Empty"
    QUARTER = "1/4"
    HALF = "1/2"
    THREE_QUARTERS = "3/4"
    FULL = "Full"

    @property
    def ordinal(self) -> int:
        return FUEL_ORDINALS[self]


FUEL_ORDINALS: dict[FuelLevel, int] = {
    FuelLevel.EMPTY: 0,
    FuelLevel.QUARTER: 1,
    FuelLevel.HALF: 2,
    FuelLevel.THREE_QUARTERS: 3,
    FuelLevel.FULL: 4,
}


class PingParty(str, enum.Enum):
    GUEST = "GUEST"
    HOST = "HOST"


class MessageCategory(str, enum.Enum):
    KEY_INSTRUCTIONS = "KEY_INSTRUCTIONS"
    GUEST_ARRIVED = "GUEST_ARRIVED"
    TRIP_CHARGES = "TRIP_CHARGES"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
