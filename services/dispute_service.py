"""
Dispute Service
Filing freezes a booking's settlement; an admin resolution completes or
reverses the frozen money exactly once.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    Booking,
    BookingStatus,
    Dispute,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    PayoutStatus,
    User,
)
from services.escrow_ledger import EscrowLedger
from services.idempotency_service import IdempotencyService, OperationType
from services.notification_service import format_vnd, notification_service
from services.settlement_service import SettlementEngine
from utils.atomic_transactions import atomic_transaction, lock_dispute, locked_booking_operation
from utils.booking_state_machine import BookingActor, BookingStateValidator, BookingTransition
from utils.error_handler import PermissionDeniedError, StateConflictError, ValidationError
from utils.fee_calculator import FeeCalculator

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000
MAX_EVIDENCE_URLS = 5

VALID_REASONS = {reason.value for reason in DisputeReason}
VALID_RESOLUTIONS = {resolution.value for resolution in DisputeResolution}


class ResolutionResult(NamedTuple):
    """Result of a dispute resolution"""

    dispute_id: str
    booking_id: str
    resolution: str
    refund_amount: Decimal
    booking_status: str
    partner_clawback: Decimal = Decimal("0")

    def to_dict(self):
        return {
            "success": True,
            "disputeId": self.dispute_id,
            "bookingStatus": self.booking_status,
            "resolution": self.resolution,
            "refundAmount": int(self.refund_amount),
        }

    def to_record(self):
        record = self.to_dict()
        record["bookingId"] = self.booking_id
        record["partnerClawback"] = int(self.partner_clawback)
        return record

    @classmethod
    def from_record(cls, record):
        return cls(
            record["disputeId"],
            record["bookingId"],
            record["resolution"],
            Decimal(record["refundAmount"]),
            record["bookingStatus"],
            Decimal(record.get("partnerClawback", 0)),
        )


def require_admin(session: Session, user_id: str) -> User:
    user = session.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_admin:
        logger.warning(f"🚫 ADMIN_REQUIRED: user {user_id} attempted an admin dispute action")
        raise PermissionDeniedError("Admin access required")
    return user


class DisputeService:
    """Dispute filing and administrative resolution"""

    @staticmethod
    def _validate_filing(reason: str, description: str, evidence_urls: Optional[List[str]]) -> List[str]:
        if reason not in VALID_REASONS:
            raise ValidationError("Invalid dispute reason", details={"allowed": sorted(VALID_REASONS)})
        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
        evidence = [url for url in (evidence_urls or []) if url]
        if len(evidence) > MAX_EVIDENCE_URLS:
            raise ValidationError(f"At most {MAX_EVIDENCE_URLS} evidence URLs are allowed")
        return evidence

    @classmethod
    def file_dispute(
        cls,
        session: Session,
        booking_id: str,
        caller_id: str,
        reason: str,
        description: str,
        evidence_urls: Optional[List[str]] = None,
    ) -> Dispute:
        """
        Open a dispute for a booking the caller is a party to.

        The existence check and the insert run under the booking row lock;
        the unique constraint on disputes.booking_id backs it up.
        """
        evidence = cls._validate_filing(reason, description, evidence_urls)

        with locked_booking_operation(booking_id, session) as booking:
            actor = BookingStateValidator.actor_for(booking, caller_id)

            existing = session.query(Dispute.id).filter(Dispute.booking_id == booking.id).first()
            if existing:
                raise ValidationError("A dispute already exists for this booking", kind="duplicate_dispute")

            target = BookingStateValidator.validate_transition(booking, BookingTransition.DISPUTE, actor)

            dispute = Dispute(
                booking_id=booking.id,
                user_id=caller_id,
                reason=reason,
                description=description.strip(),
                evidence_urls=evidence,
                status=DisputeStatus.PENDING.value,
                previous_status=booking.status,
            )
            try:
                with session.begin_nested():
                    session.add(dispute)
            except IntegrityError:
                raise ValidationError("A dispute already exists for this booking", kind="duplicate_dispute")

            BookingStateValidator.apply_status(booking, target)
            booking.dispute_paused_at = datetime.utcnow()

            counterparty_id = booking.counterparty_of(caller_id)
            filed_by = "booker" if actor == BookingActor.BOOKER else "partner"
            notification_service.notify(
                session, counterparty_id, "dispute", "A dispute was opened",
                f"The {filed_by} opened a dispute on your booking. Payment is on hold until it is resolved.",
                {"bookingId": booking.id, "disputeId": dispute.id},
            )
            notification_service.notify_admins(
                session, "admin_dispute", "New dispute",
                f"Dispute on booking {booking.id} ({reason}), {format_vnd(booking.total_amount)} on hold.",
                {"bookingId": booking.id, "disputeId": dispute.id, "reason": reason},
            )

        logger.info(f"⚖️ DISPUTE_FILED: {dispute.id} on booking {booking_id} by {caller_id} ({reason})")
        return dispute

    @classmethod
    def investigate_dispute(cls, session: Session, dispute_id: str, admin_id: str) -> Dispute:
        require_admin(session, admin_id)
        with atomic_transaction(session):
            dispute = lock_dispute(dispute_id, session)
            if dispute.status != DisputeStatus.PENDING.value:
                raise StateConflictError(
                    "Dispute is not pending", details={"currentStatus": dispute.status}
                )
            dispute.status = DisputeStatus.INVESTIGATING.value
        logger.info(f"🔎 DISPUTE_INVESTIGATING: {dispute_id} by admin {admin_id}")
        return dispute

    @classmethod
    def resolve_dispute(
        cls,
        session: Session,
        dispute_id: str,
        admin_id: str,
        resolution: str,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Close a dispute and move the frozen money.

        While escrow is still held the escrow is refunded, split or handed
        back to the normal flow. When the booking had already settled, a
        refund is taken back from the partner in proportion to their share
        and the platform funds the fee share. A retried request carrying the
        same Idempotency-Key gets the first resolution back.
        """
        require_admin(session, admin_id)
        if resolution not in VALID_RESOLUTIONS:
            raise ValidationError("Invalid resolution", details={"allowed": sorted(VALID_RESOLUTIONS)})

        if idempotency_key:
            cached = IdempotencyService.get_cached_result(
                session, idempotency_key, OperationType.RESOLVE_DISPUTE, admin_id, dispute_id
            )
            if cached is not None:
                logger.info(f"🔁 DISPUTE_RESOLVE: replay of key {idempotency_key[:12]} for {dispute_id}")
                return ResolutionResult.from_record(cached)

        with atomic_transaction(session):
            dispute = lock_dispute(dispute_id, session)
            if dispute.status == DisputeStatus.RESOLVED.value:
                raise StateConflictError("Dispute already resolved")

            with locked_booking_operation(dispute.booking_id, session) as booking:
                total = Decimal(booking.total_amount)
                refund = cls._resolve_refund_amount(resolution, amount, total)

                clawback = Decimal("0")
                if dispute.previous_status == BookingStatus.COMPLETED.value:
                    clawback = cls._resolve_settled(session, booking, resolution, refund)
                else:
                    cls._resolve_held(session, booking, dispute, resolution, refund)

                dispute.status = DisputeStatus.RESOLVED.value
                dispute.resolution = resolution
                dispute.resolution_amount = refund
                dispute.resolution_notes = notes
                dispute.resolved_by = admin_id
                dispute.resolved_at = datetime.utcnow()

                message = cls._resolution_message(resolution, refund)
                for party_id in (booking.user_id, booking.partner_id):
                    notification_service.notify(
                        session, party_id, "dispute_resolved", "Dispute resolved", message,
                        {"bookingId": booking.id, "disputeId": dispute.id, "resolution": resolution},
                    )

                result = ResolutionResult(dispute.id, booking.id, resolution, refund, booking.status, clawback)
                if idempotency_key:
                    IdempotencyService.store_result(
                        session, idempotency_key, OperationType.RESOLVE_DISPUTE,
                        admin_id, dispute.id, result.to_record(),
                    )

        logger.info(
            f"⚖️ DISPUTE_RESOLVED: {dispute_id} {resolution} refund={refund} "
            f"booking={booking.id} status={booking.status} by admin {admin_id}"
        )
        return result

    @staticmethod
    def _resolve_refund_amount(resolution: str, amount: Optional[Decimal], total: Decimal) -> Decimal:
        if resolution == DisputeResolution.REFUND_FULL.value:
            return total
        if resolution == DisputeResolution.NO_ACTION.value:
            return Decimal("0")
        if amount is None or Decimal(amount) <= 0:
            raise ValidationError("A positive amount is required for a partial refund")
        return min(FeeCalculator.round_amount(Decimal(amount)), total)

    @staticmethod
    def _resolve_held(
        session: Session, booking: Booking, dispute: Dispute, resolution: str, refund: Decimal
    ) -> None:
        total = Decimal(booking.total_amount)
        now = datetime.utcnow()

        if resolution == DisputeResolution.NO_ACTION.value:
            BookingStateValidator.release_from_dispute(booking, dispute.previous_status)
            return

        if refund >= total:
            if total > 0:
                EscrowLedger.refund_escrow(session, booking, description="Refund after dispute resolution")
            BookingStateValidator.release_from_dispute(booking, BookingStatus.CANCELLED.value)
            booking.payout_status = PayoutStatus.REFUNDED.value
            booking.refund_amount = total
            booking.cancelled_at = now
            booking.cancel_reason = "Refunded after dispute"
            return

        remaining = total - refund
        fee, earning = FeeCalculator.split_settlement(remaining, total, Decimal(booking.platform_fee))
        EscrowLedger.split_escrow(session, booking, refund, fee, earning)
        BookingStateValidator.release_from_dispute(booking, BookingStatus.COMPLETED.value)
        booking.refund_amount = refund
        booking.payout_status = PayoutStatus.PAID.value
        booking.completed_at = now
        session.flush()
        SettlementEngine.apply_enrichments(session, booking, spend_amount=remaining)

    @staticmethod
    def _resolve_settled(session: Session, booking: Booking, resolution: str, refund: Decimal) -> Decimal:
        if resolution == DisputeResolution.NO_ACTION.value:
            BookingStateValidator.release_from_dispute(booking, BookingStatus.COMPLETED.value)
            return Decimal("0")

        total = Decimal(booking.total_amount)
        refund = min(refund, total - Decimal(booking.refund_amount or 0))
        partner_share = (
            FeeCalculator.round_amount(refund * Decimal(booking.partner_earning) / total)
            if total > 0 else Decimal("0")
        )
        if refund > 0:
            EscrowLedger.clawback_refund(session, booking, refund, partner_share)

        booking.refund_amount = Decimal(booking.refund_amount or 0) + refund
        if booking.refund_amount >= total:
            BookingStateValidator.release_from_dispute(booking, BookingStatus.CANCELLED.value)
            booking.payout_status = PayoutStatus.REFUNDED.value
        else:
            BookingStateValidator.release_from_dispute(booking, BookingStatus.COMPLETED.value)
        return partner_share

    @staticmethod
    def _resolution_message(resolution: str, refund: Decimal) -> str:
        if resolution == DisputeResolution.NO_ACTION.value:
            return "The dispute was closed without changes. The booking continues as before."
        if resolution == DisputeResolution.REFUND_FULL.value:
            return f"The dispute was resolved with a full refund of {format_vnd(refund)}."
        return f"The dispute was resolved with a partial refund of {format_vnd(refund)}."
