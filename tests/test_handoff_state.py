"""Unit tests for the handoff state machine."""

import math

import pytest

from tripguard.domain.entities import InvalidStateTransition, PreconditionFailed
from tripguard.domain.enums import HandoffStatus, TripStatus
from tripguard.domain.handoff import (
    HandoffStateMachine,
    ensure_transition,
    resolve_key_instructions,
)
from tripguard.domain.policy import TripPolicy


class TestTransitions:
    def test_not_started_to_guest_verified(self):
        ensure_transition(HandoffStatus.NOT_STARTED, HandoffStatus.GUEST_VERIFIED)

    def test_guest_verified_to_complete(self):
        ensure_transition(HandoffStatus.GUEST_VERIFIED, HandoffStatus.HANDOFF_COMPLETE)

    def test_no_skip_edge(self):
        with pytest.raises(InvalidStateTransition):
            ensure_transition(HandoffStatus.NOT_STARTED, HandoffStatus.HANDOFF_COMPLETE)

    def test_never_moves_backwards(self):
        with pytest.raises(InvalidStateTransition):
            ensure_transition(HandoffStatus.HANDOFF_COMPLETE, HandoffStatus.GUEST_VERIFIED)
        with pytest.raises(InvalidStateTransition):
            ensure_transition(HandoffStatus.GUEST_VERIFIED, HandoffStatus.NOT_STARTED)

    def test_invalid_transition_is_a_precondition_error(self):
        assert issubclass(InvalidStateTransition, PreconditionFailed)


class TestGuestGate:
    def setup_method(self):
        self.machine = HandoffStateMachine(TripPolicy(handoff_radius_meters=100.0))

    def test_within_radius_verifies_guest(self):
        decision = self.machine.on_guest_ping(
            TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, 45.0
        )
        assert decision.within_range
        assert decision.transitions
        assert decision.next_status == HandoffStatus.GUEST_VERIFIED

    def test_boundary_is_inclusive(self):
        decision = self.machine.on_guest_ping(
            TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, 100.0
        )
        assert decision.transitions

    def test_outside_radius_stays_put(self):
        decision = self.machine.on_guest_ping(
            TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, 100.1
        )
        assert not decision.within_range
        assert decision.next_status == HandoffStatus.NOT_STARTED

    def test_unknown_distance_is_out_of_range(self):
        for distance in (None, math.nan, math.inf):
            decision = self.machine.on_guest_ping(
                TripStatus.CONFIRMED, HandoffStatus.NOT_STARTED, distance
            )
            assert not decision.within_range
            assert not decision.transitions

    def test_started_trip_does_not_verify(self):
        decision = self.machine.on_guest_ping(
            TripStatus.ACTIVE, HandoffStatus.NOT_STARTED, 10.0
        )
        assert not decision.transitions

    def test_later_state_is_not_regressed(self):
        for status in (HandoffStatus.GUEST_VERIFIED, HandoffStatus.HANDOFF_COMPLETE):
            decision = self.machine.on_guest_ping(TripStatus.CONFIRMED, status, 10.0)
            assert decision.next_status == status
            assert not decision.transitions


class TestHostGate:
    def setup_method(self):
        self.machine = HandoffStateMachine(TripPolicy(handoff_radius_meters=100.0))

    def test_host_in_range_completes(self):
        decision = self.machine.on_host_confirm(HandoffStatus.GUEST_VERIFIED, 20.0)
        assert decision.next_status == HandoffStatus.HANDOFF_COMPLETE
        assert decision.host_within_range
        assert decision.fires_side_effects

    def test_host_out_of_range_still_completes(self):
        decision = self.machine.on_host_confirm(HandoffStatus.GUEST_VERIFIED, 5_000.0)
        assert decision.next_status == HandoffStatus.HANDOFF_COMPLETE
        assert not decision.host_within_range

    def test_host_without_gps_still_completes(self):
        decision = self.machine.on_host_confirm(HandoffStatus.GUEST_VERIFIED, None)
        assert decision.next_status == HandoffStatus.HANDOFF_COMPLETE
        assert not decision.host_within_range

    def test_confirm_before_guest_verified_is_rejected(self):
        with pytest.raises(InvalidStateTransition):
            self.machine.on_host_confirm(HandoffStatus.NOT_STARTED, 10.0)

    def test_repeat_confirm_is_a_no_op(self):
        decision = self.machine.on_host_confirm(HandoffStatus.HANDOFF_COMPLETE, 10.0)
        assert decision.already_complete
        assert not decision.fires_side_effects
        assert decision.next_status == HandoffStatus.HANDOFF_COMPLETE


class TestEtaMessage:
    def setup_method(self):
        self.machine = HandoffStateMachine(TripPolicy(walking_speed_mps=1.4))

    def test_no_message_inside_radius(self):
        assert self.machine.eta_message(50.0) is None

    def test_no_message_without_distance(self):
        assert self.machine.eta_message(None) is None

    def test_minutes_away(self):
        # 700 m at 1.4 m/s is 8m20s, rounded up
        assert self.machine.eta_message(700.0) == "About 9 minutes from the vehicle"

    def test_far_away_reports_miles(self):
        assert "miles" in self.machine.eta_message(20_000.0)


class TestKeyInstructions:
    def test_host_text_wins(self):
        assert resolve_key_instructions("  Under the mat ", "Lockbox") == "Under the mat"

    def test_falls_back_to_vehicle_default(self):
        assert resolve_key_instructions("   ", "Lockbox 4471") == "Lockbox 4471"
        assert resolve_key_instructions(None, "Lockbox 4471") == "Lockbox 4471"

    def test_nothing_to_send(self):
        assert resolve_key_instructions(None, None) is None
        assert resolve_key_instructions("", "  ") is None
