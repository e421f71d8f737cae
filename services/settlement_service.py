"""
Settlement & Reward Engine

Runs once per booking at confirmed completion:
1. release escrow to the partner (platform keeps the fee)
2. payer lifetime spending and VIP tier
3. partner Pro auto-upgrade
4. referral reward on the payer's first completed booking

Step 1 commits with the status change. Steps 2-4 run inside a SAVEPOINT:
if they fail the payment stays settled, rewards_processed_at stays NULL and
the reconciliation job re-runs them later.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import Config
from models import Booking, BookingStatus, PayoutStatus, User, VipTier
from services.escrow_ledger import EscrowLedger
from services.notification_service import format_vnd, notification_service
from services.referral_service import ReferralService
from utils.atomic_transactions import atomic_transaction, lock_user_wallet
from utils.booking_state_machine import BookingStateValidator

logger = logging.getLogger(__name__)

TIER_RANK = {
    VipTier.FREE.value: 0,
    VipTier.VIP.value: 1,
    VipTier.SVIP.value: 2,
}

DEFAULT_AVERAGE_RATING = Decimal("5.0")


class EnrichmentOutcome(NamedTuple):
    processed: bool
    tier_changed: bool = False
    new_tier: Optional[str] = None
    pro_upgraded: bool = False
    referral_paid: bool = False
    error: Optional[str] = None


class SettlementResult(NamedTuple):
    booking_id: str
    status: str
    already_completed: bool
    enrichment: Optional[EnrichmentOutcome] = None

    def to_dict(self):
        return {"success": True, "status": self.status, "bookingId": self.booking_id}


def compute_vip_tier(total_spending: Decimal, current_tier: Optional[str]) -> str:
    """Threshold tier, never lower than the current tier"""
    total_spending = Decimal(total_spending)
    if total_spending >= Config.SVIP_THRESHOLD:
        earned = VipTier.SVIP.value
    elif total_spending >= Config.VIP_THRESHOLD:
        earned = VipTier.VIP.value
    else:
        earned = VipTier.FREE.value

    current = current_tier if current_tier in TIER_RANK else VipTier.FREE.value
    return earned if TIER_RANK[earned] > TIER_RANK[current] else current


class SettlementEngine:
    """Moves a booking to completed and applies its side effects exactly once"""

    @classmethod
    def settle_booking(
        cls,
        session: Session,
        booking: Booking,
        auto_completed: bool = False,
    ) -> SettlementResult:
        """
        Release escrow and complete a booking the caller has already locked
        and validated as completed_pending.
        """
        with atomic_transaction(session):
            EscrowLedger.release_escrow(session, booking)
            BookingStateValidator.apply_status(booking, BookingStatus.COMPLETED.value)
            booking.completed_at = datetime.utcnow()
            booking.payout_status = PayoutStatus.PAID.value
            booking.auto_completed = auto_completed
            session.flush()

            enrichment = cls.apply_enrichments(session, booking)

        logger.info(
            f"✅ SETTLEMENT: booking {booking.id} completed "
            f"(auto={auto_completed}, rewards={'ok' if enrichment.processed else 'deferred'})"
        )
        return SettlementResult(booking.id, booking.status, False, enrichment)

    @classmethod
    def apply_enrichments(
        cls,
        session: Session,
        booking: Booking,
        spend_amount: Optional[Decimal] = None,
    ) -> EnrichmentOutcome:
        """
        Steps 2-4 in one savepoint. A failure rolls back only the savepoint
        and is reported, never raised.
        """
        if booking.rewards_processed_at is not None:
            return EnrichmentOutcome(processed=True)

        spend = Decimal(booking.total_amount if spend_amount is None else spend_amount)
        try:
            with session.begin_nested():
                tier_changed, new_tier = cls.record_spending(session, booking.user_id, spend, booking.id)
                pro_upgraded = cls.check_pro_upgrade(session, booking.partner_id)
                referral = ReferralService.process_referral_reward(session, booking.user_id)
                booking.rewards_processed_at = datetime.utcnow()
                session.flush()
        except Exception as e:
            logger.exception(f"⚠️ SETTLEMENT_REWARDS: deferred for booking {booking.id}: {e}")
            return EnrichmentOutcome(processed=False, error=str(e))

        return EnrichmentOutcome(
            processed=True,
            tier_changed=tier_changed,
            new_tier=new_tier,
            pro_upgraded=pro_upgraded,
            referral_paid=referral.paid,
        )

    @staticmethod
    def record_spending(session: Session, user_id: str, amount: Decimal, booking_id: str):
        """total_spending += amount; upgrade tier on threshold crossing and notify"""
        payer = lock_user_wallet(user_id, session)
        payer.total_spending = Decimal(payer.total_spending or 0) + amount
        old_tier = payer.vip_tier or VipTier.FREE.value
        new_tier = compute_vip_tier(payer.total_spending, old_tier)
        if new_tier == old_tier:
            return False, new_tier

        payer.vip_tier = new_tier
        notification_service.notify(
            session, payer.id, "vip_upgrade", f"Congratulations! You are now {new_tier.upper()}",
            f"Your lifetime spending reached {format_vnd(payer.total_spending)}. "
            f"Enjoy your {new_tier.upper()} benefits.",
            {"tier": new_tier, "bookingId": booking_id},
        )
        logger.info(f"🌟 VIP_TIER: user {payer.id} {old_tier} -> {new_tier}")
        return True, new_tier

    @staticmethod
    def check_pro_upgrade(session: Session, partner_id: str) -> bool:
        """completed >= 5 and rating >= 4.8 and not already Pro"""
        partner = lock_user_wallet(partner_id, session)
        if partner.is_pro:
            return False

        completed = (
            session.query(func.count(Booking.id))
            .filter(Booking.partner_id == partner_id, Booking.status == BookingStatus.COMPLETED.value)
            .scalar()
            or 0
        )
        rating = Decimal(partner.average_rating) if partner.average_rating is not None else DEFAULT_AVERAGE_RATING
        if completed < Config.PRO_MIN_COMPLETED_BOOKINGS or rating < Config.PRO_MIN_AVERAGE_RATING:
            return False

        partner.is_pro = True
        notification_service.notify(
            session, partner.id, "pro_upgrade", "You are now a Pro partner!",
            f"With {completed} completed bookings and a {rating} rating you unlocked Pro status.",
            {"completedBookings": completed, "averageRating": str(rating)},
        )
        logger.info(f"🏅 PRO_UPGRADE: partner {partner.id} ({completed} bookings, rating {rating})")
        return True

    @classmethod
    def reconcile_pending_rewards(cls, session: Session, limit: int = 100) -> int:
        """Re-run deferred enrichments for completed bookings; returns how many succeeded"""
        booking_ids = [
            row[0]
            for row in session.query(Booking.id)
            .filter(
                Booking.status == BookingStatus.COMPLETED.value,
                Booking.rewards_processed_at.is_(None),
            )
            .order_by(Booking.completed_at)
            .limit(limit)
            .all()
        ]

        processed = 0
        for booking_id in booking_ids:
            with atomic_transaction(session):
                booking = (
                    session.query(Booking)
                    .filter(Booking.id == booking_id)
                    .with_for_update()
                    .populate_existing()
                    .first()
                )
                if booking is None or booking.rewards_processed_at is not None:
                    continue
                spend = Decimal(booking.total_amount) - Decimal(booking.refund_amount or 0)
                outcome = cls.apply_enrichments(session, booking, spend_amount=spend)
                if outcome.processed:
                    processed += 1

        if booking_ids:
            logger.info(f"🔁 SETTLEMENT_RECONCILE: {processed}/{len(booking_ids)} deferred reward runs completed")
        return processed
