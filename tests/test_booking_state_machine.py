"""
Booking state machine: transition table and actor rules
"""

from datetime import datetime

import pytest

from models import Booking, BookingStatus
from utils.booking_state_machine import BookingActor, BookingStateValidator, BookingTransition
from utils.error_handler import PermissionDeniedError, StateConflictError


def _booking(status):
    return Booking(id="b-1", user_id="booker", partner_id="partner", status=status)


class TestTransitionTable:

    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "accepted"),
            ("pending", "rejected"),
            ("pending", "cancelled"),
            ("accepted", "arrived"),
            ("arrived", "in_progress"),
            ("in_progress", "completed_pending"),
            ("completed_pending", "completed"),
            ("completed", "disputed"),
        ],
    )
    def test_allowed(self, current, target):
        assert BookingStateValidator.is_valid_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("pending", "completed"),
            ("pending", "disputed"),
            ("accepted", "completed"),
            ("in_progress", "cancelled"),
            ("completed", "cancelled"),
            ("rejected", "accepted"),
            ("cancelled", "pending"),
            ("disputed", "completed"),
        ],
    )
    def test_refused(self, current, target):
        assert not BookingStateValidator.is_valid_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in ("rejected", "cancelled", "disputed"):
            assert BookingStateValidator.get_valid_transitions(status) == set()

    def test_escrow_holding_states(self):
        assert BookingStateValidator.holds_escrow("completed_pending")
        assert not BookingStateValidator.holds_escrow("completed")
        assert not BookingStateValidator.holds_escrow("cancelled")


class TestActorRules:

    def test_actor_resolution(self):
        booking = _booking("pending")
        assert BookingStateValidator.actor_for(booking, "booker") == BookingActor.BOOKER
        assert BookingStateValidator.actor_for(booking, "partner") == BookingActor.PARTNER

    def test_third_party_is_refused(self):
        with pytest.raises(PermissionDeniedError):
            BookingStateValidator.actor_for(_booking("pending"), "stranger")

    def test_only_partner_accepts(self):
        with pytest.raises(PermissionDeniedError):
            BookingStateValidator.validate_transition(
                _booking("pending"), BookingTransition.ACCEPT, BookingActor.BOOKER
            )

    def test_only_booker_or_system_confirms(self):
        booking = _booking("completed_pending")
        with pytest.raises(PermissionDeniedError):
            BookingStateValidator.validate_transition(booking, BookingTransition.CONFIRM, BookingActor.PARTNER)
        assert (
            BookingStateValidator.validate_transition(booking, BookingTransition.CONFIRM, BookingActor.SYSTEM)
            == BookingStatus.COMPLETED.value
        )

    def test_wrong_source_status_is_a_conflict(self):
        with pytest.raises(StateConflictError) as exc_info:
            BookingStateValidator.validate_transition(
                _booking("pending"), BookingTransition.START, BookingActor.PARTNER
            )
        assert exc_info.value.details["currentStatus"] == "pending"


class TestApplyStatus:

    def test_apply_rechecks_table(self):
        booking = _booking("pending")
        with pytest.raises(StateConflictError):
            BookingStateValidator.apply_status(booking, "completed")
        assert booking.status == "pending"

    def test_release_from_dispute_requires_disputed(self):
        booking = _booking("accepted")
        with pytest.raises(StateConflictError):
            BookingStateValidator.release_from_dispute(booking, "completed")

    def test_release_from_dispute_clears_pause(self):
        booking = _booking("disputed")
        booking.dispute_paused_at = datetime.utcnow()
        BookingStateValidator.release_from_dispute(booking, "accepted")
        assert booking.status == "accepted"
        assert booking.dispute_paused_at is None
