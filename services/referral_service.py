"""Referral bonus payout, gated on the referred user's first completed booking"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import Config
from models import Booking, BookingStatus, ReferralReward, ReferralStatus, TransactionType
from services.escrow_ledger import EscrowLedger
from services.notification_service import format_vnd, notification_service
from utils.atomic_transactions import lock_user_wallets

logger = logging.getLogger(__name__)


class ReferralOutcome(NamedTuple):
    paid: bool
    reason: str
    referrer_id: Optional[str] = None
    referrer_reward: Decimal = Decimal("0")
    referred_reward: Decimal = Decimal("0")


class ReferralService:
    """Pays both sides of a referral exactly once"""

    @staticmethod
    def count_completed_bookings(session: Session, user_id: str) -> int:
        return (
            session.query(func.count(Booking.id))
            .filter(Booking.user_id == user_id, Booking.status == BookingStatus.COMPLETED.value)
            .scalar()
            or 0
        )

    @staticmethod
    def _lock_pending_reward(session: Session, referred_user_id: str) -> Optional[ReferralReward]:
        session.flush()
        return (
            session.query(ReferralReward)
            .filter(ReferralReward.referred_id == referred_user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @classmethod
    def process_referral_reward(cls, session: Session, referred_user_id: str) -> ReferralOutcome:
        """
        Pay the referrer and the referred user if a pending reward exists and
        the referred user has completed a booking. The reward row is locked
        and flipped to completed in the same transaction as the credits, so
        a second call always sees it completed.
        """
        if cls.count_completed_bookings(session, referred_user_id) < 1:
            return ReferralOutcome(False, "no_completed_booking")

        reward = cls._lock_pending_reward(session, referred_user_id)
        if reward is None:
            return ReferralOutcome(False, "not_referred")
        if reward.status != ReferralStatus.PENDING.value:
            logger.info(f"🎁 REFERRAL: reward for {referred_user_id} already {reward.status}")
            return ReferralOutcome(False, "already_completed", reward.referrer_id)

        referrer_amount = Decimal(Config.REFERRER_REWARD)
        referred_amount = Decimal(Config.REFERRED_REWARD)
        referrer, referred = lock_user_wallets([reward.referrer_id, referred_user_id], session)

        referrer.balance = Decimal(referrer.balance) + referrer_amount
        referred.balance = Decimal(referred.balance) + referred_amount

        reward.status = ReferralStatus.COMPLETED.value
        reward.referrer_reward = referrer_amount
        reward.referred_reward = referred_amount
        reward.completed_at = datetime.utcnow()

        EscrowLedger.record_transaction(
            session, referrer.id, TransactionType.REFERRAL_BONUS, referrer_amount, reward.id,
            "Referral bonus: your friend completed their first booking",
        )
        EscrowLedger.record_transaction(
            session, referred.id, TransactionType.REFERRAL_BONUS, referred_amount, reward.id,
            "Welcome bonus for your first completed booking",
        )
        notification_service.notify(
            session, referrer.id, "referral_reward", "Referral bonus received",
            f"You received {format_vnd(referrer_amount)} because your friend completed their first booking.",
            {"referralRewardId": reward.id, "amount": int(referrer_amount)},
        )
        notification_service.notify(
            session, referred.id, "referral_reward", "Welcome bonus received",
            f"You received {format_vnd(referred_amount)} for completing your first booking.",
            {"referralRewardId": reward.id, "amount": int(referred_amount)},
        )

        logger.info(
            f"🎁 REFERRAL_PAID: referrer {referrer.id} +{referrer_amount}, "
            f"referred {referred.id} +{referred_amount}"
        )
        return ReferralOutcome(True, "paid", referrer.id, referrer_amount, referred_amount)
