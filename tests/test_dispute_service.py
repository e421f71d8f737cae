"""
Dispute filing and administrative resolution
Covers escrow-held bookings and bookings that had already settled
"""

from decimal import Decimal

import pytest

from models import Dispute, IdempotencyKey, Notification
from services.dispute_service import DisputeService
from utils.error_handler import (
    InsufficientFundsError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)


@pytest.fixture
def file_dispute(db_session):
    def _file(booking, caller_id=None, reason="poor_service", description="Partner left after 20 minutes"):
        return DisputeService.file_dispute(
            db_session, booking.id, caller_id or booking.user_id, reason, description, ["https://img.example/1.jpg"]
        )

    return _file


class TestFiling:

    def test_freezes_booking(self, db_session, partner, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "in_progress")

        dispute = file_dispute(booking)

        assert booking.status == "disputed"
        assert booking.dispute_paused_at is not None
        assert dispute.previous_status == "in_progress"
        assert dispute.status == "pending"
        assert dispute.evidence_urls == ["https://img.example/1.jpg"]
        assert db_session.query(Notification).filter_by(user_id=partner.id, type="dispute").count() == 1
        assert db_session.query(Notification).filter_by(user_id=admin.id, type="admin_dispute").count() == 1

    def test_partner_may_file(self, db_session, booker, partner, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        file_dispute(booking, caller_id=partner.id, reason="other")
        assert db_session.query(Notification).filter_by(user_id=booker.id, type="dispute").count() == 1

    def test_one_dispute_per_booking(self, db_session, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        file_dispute(booking)

        with pytest.raises(ValidationError) as exc_info:
            file_dispute(booking, caller_id=booking.partner_id)

        assert exc_info.value.kind == "duplicate_dispute"
        assert db_session.query(Dispute).count() == 1

    def test_non_party_is_refused(self, db_session, outsider, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        with pytest.raises(PermissionDeniedError):
            file_dispute(booking, caller_id=outsider.id)

    def test_pending_booking_cannot_be_disputed(self, db_session, create_booking, file_dispute):
        booking = create_booking()
        with pytest.raises(StateConflictError):
            file_dispute(booking)
        assert db_session.query(Dispute).count() == 0

    @pytest.mark.parametrize(
        "reason,description,evidence",
        [
            ("refund_me", "Bad", []),
            ("poor_service", "   ", []),
            ("poor_service", "x" * 2001, []),
            ("poor_service", "Bad", [f"https://img.example/{i}.jpg" for i in range(6)]),
        ],
    )
    def test_input_validation(self, db_session, create_booking, drive_booking, reason, description, evidence):
        booking = drive_booking(create_booking(), "accepted")
        with pytest.raises(ValidationError):
            DisputeService.file_dispute(db_session, booking.id, booking.user_id, reason, description, evidence)

    def test_disputed_booking_cannot_settle(self, db_session, booker, create_booking, drive_booking, file_dispute):
        from services.booking_service import BookingService

        booking = drive_booking(create_booking(), "completed_pending")
        file_dispute(booking)

        with pytest.raises(StateConflictError):
            BookingService.confirm_completion(db_session, booking.id, booker.id)
        assert BookingService.auto_complete_booking(db_session, booking.id) is False


class TestResolveWhileHeld:
    """Escrow still holds the booking total"""

    def test_full_refund(self, db_session, booker, partner, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "in_progress")
        dispute = file_dispute(booking)

        result = DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")

        assert result.booking_status == "cancelled"
        assert result.refund_amount == Decimal("300000")
        assert booking.payout_status == "refunded"
        assert booking.refund_amount == Decimal("300000")
        db_session.refresh(booker)
        db_session.refresh(partner)
        assert booker.balance == Decimal("1000000")
        assert booker.escrow == Decimal("0")
        assert partner.balance == Decimal("0")
        db_session.refresh(dispute)
        assert dispute.status == "resolved"
        assert dispute.resolved_by == admin.id

    def test_partial_refund_splits_at_booking_fee_ratio(
        self, db_session, booker, partner, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "in_progress")
        dispute = file_dispute(booking)

        result = DisputeService.resolve_dispute(
            db_session, dispute.id, admin.id, "refund_partial", amount=Decimal("100000")
        )

        assert result.booking_status == "completed"
        assert booking.payout_status == "paid"
        assert booking.refund_amount == Decimal("100000")
        db_session.refresh(booker)
        db_session.refresh(partner)
        assert booker.balance == Decimal("800000")
        assert booker.escrow == Decimal("0")
        assert partner.balance == Decimal("152000"), "200,000 settled at the 24% gold fee"
        assert booker.total_spending == Decimal("200000")

    def test_partial_refund_needs_amount(self, db_session, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "in_progress")
        dispute = file_dispute(booking)
        with pytest.raises(ValidationError):
            DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_partial")

    def test_no_action_returns_to_previous_status(
        self, db_session, booker, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "completed_pending")
        dispute = file_dispute(booking)

        result = DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "no_action")

        assert result.booking_status == "completed_pending"
        assert booking.dispute_paused_at is None
        db_session.refresh(booker)
        assert booker.escrow == Decimal("300000")

    def test_resolution_notifies_both_parties(
        self, db_session, booker, partner, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "accepted")
        dispute = file_dispute(booking)
        DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")

        for user in (booker, partner):
            assert db_session.query(Notification).filter_by(user_id=user.id, type="dispute_resolved").count() == 1


class TestResolveAfterSettlement:
    """Refunds on a completed booking come back out of the partner's earning"""

    def test_full_refund_claws_back_earning(
        self, db_session, booker, partner, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "completed")
        dispute = file_dispute(booking)

        result = DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")

        assert result.booking_status == "cancelled"
        assert result.partner_clawback == Decimal("228000")
        db_session.refresh(booker)
        db_session.refresh(partner)
        assert booker.balance == Decimal("1000000")
        assert partner.balance == Decimal("0")

    def test_partial_refund_returns_to_completed(
        self, db_session, booker, partner, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "completed")
        dispute = file_dispute(booking)

        result = DisputeService.resolve_dispute(
            db_session, dispute.id, admin.id, "refund_partial", amount=Decimal("150000")
        )

        assert result.booking_status == "completed"
        assert result.partner_clawback == Decimal("114000")
        db_session.refresh(partner)
        assert partner.balance == Decimal("114000")

    def test_partner_balance_must_cover_clawback(
        self, db_session, partner, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "completed")
        dispute = file_dispute(booking)
        partner.balance = Decimal("0")
        db_session.commit()

        with pytest.raises(InsufficientFundsError):
            DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")

        db_session.refresh(dispute)
        db_session.refresh(booking)
        assert dispute.status == "pending"
        assert booking.status == "disputed"


class TestAdministration:

    def test_admin_required(self, db_session, booker, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        dispute = file_dispute(booking)

        with pytest.raises(PermissionDeniedError):
            DisputeService.resolve_dispute(db_session, dispute.id, booker.id, "refund_full")
        with pytest.raises(PermissionDeniedError):
            DisputeService.investigate_dispute(db_session, dispute.id, booker.id)

    def test_investigate_then_resolve(self, db_session, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        dispute = file_dispute(booking)

        assert DisputeService.investigate_dispute(db_session, dispute.id, admin.id).status == "investigating"
        with pytest.raises(StateConflictError):
            DisputeService.investigate_dispute(db_session, dispute.id, admin.id)

        DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "no_action")
        db_session.refresh(booking)
        assert booking.status == "accepted"

    def test_resolves_exactly_once(self, db_session, booker, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        dispute = file_dispute(booking)
        DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")

        with pytest.raises(StateConflictError):
            DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "refund_full")
        db_session.refresh(booker)
        assert booker.balance == Decimal("1000000")

    def test_retry_with_idempotency_key_replays_resolution(
        self, db_session, booker, admin, create_booking, drive_booking, file_dispute
    ):
        booking = drive_booking(create_booking(), "in_progress")
        dispute = file_dispute(booking)

        first = DisputeService.resolve_dispute(
            db_session, dispute.id, admin.id, "refund_partial", amount=Decimal("100000"), idempotency_key="resolve-1"
        )
        second = DisputeService.resolve_dispute(
            db_session, dispute.id, admin.id, "refund_partial", amount=Decimal("100000"), idempotency_key="resolve-1"
        )

        assert second == first
        assert second.booking_id == booking.id
        assert db_session.query(IdempotencyKey).filter_by(operation_type="resolve_dispute").count() == 1
        db_session.refresh(booker)
        assert booker.balance == Decimal("800000")

    def test_idempotency_key_bound_to_one_dispute(
        self, db_session, admin, create_booking, drive_booking, file_dispute
    ):
        first = file_dispute(drive_booking(create_booking(), "accepted"))
        second = file_dispute(drive_booking(create_booking(), "accepted"))
        DisputeService.resolve_dispute(db_session, first.id, admin.id, "no_action", idempotency_key="resolve-2")

        with pytest.raises(ValidationError):
            DisputeService.resolve_dispute(db_session, second.id, admin.id, "no_action", idempotency_key="resolve-2")
        db_session.refresh(second)
        assert second.status == "pending"

    def test_invalid_resolution(self, db_session, admin, create_booking, drive_booking, file_dispute):
        booking = drive_booking(create_booking(), "accepted")
        dispute = file_dispute(booking)
        with pytest.raises(ValidationError):
            DisputeService.resolve_dispute(db_session, dispute.id, admin.id, "split_the_difference")
