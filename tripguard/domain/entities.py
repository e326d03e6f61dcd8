"""
Domain entities, value objects and errors.

Error classes
-------------
Callers need to tell three failure kinds apart:

* ``DomainValidationError`` -- malformed input, reject outright.
* ``PreconditionFailed``    -- valid input at the wrong time (e.g. host
  confirm before the guest is verified); may succeed if retried later.
* ``NotFound``              -- the referenced record does not exist.

GPS plausibility problems are deliberately *not* errors: they lower a trust
score or clear an advisory flag.  The single exception is a fix at exactly
(0, 0), which is rejected before scoring as ``GpsUnavailable``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import UsageDeclaration


class TripGuardError(Exception):
    """Base class for all domain errors."""

    code = "trip_guard_error"


class DomainValidationError(TripGuardError):
    """Input is malformed; nothing was computed or stored."""

    code = "validation_error"


class GpsUnavailable(DomainValidationError):
    """The device reported (0, 0) -- treat as no fix at all."""

    code = "gps_unavailable"


class PreconditionFailed(TripGuardError):
    """The operation is valid but not allowed in the current state."""

    code = "precondition_failed"


class InvalidStateTransition(PreconditionFailed):
    """Raised when a handoff status change violates the state machine."""

    code = "invalid_state_transition"


class NotFound(TripGuardError):
    code = "not_found"


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    @property
    def is_null_island(self) -> bool:
        return self.latitude == 0 and self.longitude == 0


@dataclass(frozen=True)
class GpsPing:
    latitude: float
    longitude: float
    timestamp: datetime
    distance_to_vehicle_meters: Optional[float] = None

    @property
    def location(self) -> Location:
        return Location(self.latitude, self.longitude)


@dataclass(frozen=True)
class DamageItem:
    description: str
    cost: Decimal


@dataclass(frozen=True)
class VehicleMileage:
    """Odometer snapshot of one vehicle, as the anomaly detector sees it."""

    vehicle_id: int
    usage_declaration: UsageDeclaration
    current_mileage: int
    last_rental_end_mileage: Optional[int] = None
    last_rental_end_date: Optional[datetime] = None
    name: str = ""
