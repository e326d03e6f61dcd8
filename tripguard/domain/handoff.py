"""
Handoff State Machine
=====================

    NOT_STARTED --(guest within radius)--> GUEST_VERIFIED
    GUEST_VERIFIED --(host confirms)-----> HANDOFF_COMPLETE

Gate asymmetry
--------------
* **Guest = hard gate.**  The guest's distance to the vehicle must be within
  ``handoff_radius_meters`` and the trip must still be CONFIRMED.
* **Host = soft gate.**  The host's distance is measured, logged and returned
  as ``host_within_range`` but never blocks the confirm.

This module decides *what* should happen.  Persisting the decision with an
atomic compare-and-set is the orchestrator's job.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .entities import InvalidStateTransition
from .enums import HANDOFF_TRANSITIONS, HandoffStatus, TripStatus
from .policy import DEFAULT_POLICY, TripPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuestPingDecision:
    within_range: bool
    next_status: HandoffStatus

    @property
    def transitions(self) -> bool:
        return self.next_status == HandoffStatus.GUEST_VERIFIED


@dataclass(frozen=True)
class HostConfirmDecision:
    next_status: HandoffStatus
    host_within_range: bool
    already_complete: bool

    @property
    def fires_side_effects(self) -> bool:
        return not self.already_complete


def ensure_transition(current: HandoffStatus, new: HandoffStatus) -> None:
    if new not in HANDOFF_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(
            f"Cannot transition handoff from {current.value} to {new.value}"
        )


class HandoffStateMachine:
    def __init__(self, policy: TripPolicy = DEFAULT_POLICY):
        self.policy = policy

    def within_radius(self, distance_meters: Optional[float]) -> bool:
        if distance_meters is None or not math.isfinite(distance_meters):
            return False
        return distance_meters <= self.policy.handoff_radius_meters

    def on_guest_ping(
        self,
        trip_status: TripStatus,
        handoff_status: HandoffStatus,
        distance_meters: Optional[float],
    ) -> GuestPingDecision:
        """Hard gate: verify the guest only when physically at the vehicle."""
        within = self.within_radius(distance_meters)
        if (
            within
            and trip_status == TripStatus.CONFIRMED
            and handoff_status == HandoffStatus.NOT_STARTED
        ):
            return GuestPingDecision(within, HandoffStatus.GUEST_VERIFIED)
        return GuestPingDecision(within, handoff_status)

    def on_host_confirm(
        self,
        handoff_status: HandoffStatus,
        host_distance_meters: Optional[float],
    ) -> HostConfirmDecision:
        """
        Soft gate: the host's position is advisory only.

        Raises ``InvalidStateTransition`` if the guest has not been
        verified.  A repeat confirm after completion is a no-op.
        """
        within = self.within_radius(host_distance_meters)
        if handoff_status == HandoffStatus.HANDOFF_COMPLETE:
            return HostConfirmDecision(handoff_status, within, True)

        ensure_transition(handoff_status, HandoffStatus.HANDOFF_COMPLETE)
        if not within:
            logger.info(
                "Host confirming handoff outside radius (distance=%s m)",
                "unknown" if host_distance_meters is None
                else f"{host_distance_meters:.0f}",
            )
        return HostConfirmDecision(HandoffStatus.HANDOFF_COMPLETE, within, False)

    def eta_message(self, distance_meters: Optional[float]) -> Optional[str]:
        """Walking ETA hint for a guest who is still approaching."""
        if distance_meters is None or self.within_radius(distance_meters):
            return None
        if not math.isfinite(distance_meters):
            return None
        minutes = math.ceil(distance_meters / self.policy.walking_speed_mps / 60)
        if minutes <= 1:
            return "About 1 minute from the vehicle"
        if minutes > 60:
            return f"About {distance_meters / 1609.34:.1f} miles from the vehicle"
        return f"About {minutes} minutes from the vehicle"


def resolve_key_instructions(
    host_supplied: Optional[str], vehicle_default: Optional[str]
) -> Optional[str]:
    """Host text for this handoff wins over the vehicle's saved default."""
    for candidate in (host_supplied, vehicle_default):
        if candidate and candidate.strip():
            return candidate.strip()
    return None
