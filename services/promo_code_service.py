"""
Promo code validation and usage accounting

Validation order matters: the first failing check is the reason reported.
Per-user usage is counted from promo_code_usages rows, never from a
denormalized counter.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Booking, BookingStatus, PromoCode, PromoCodeUsage
from utils.atomic_transactions import atomic_transaction, lock_promo_code
from utils.error_handler import NotFoundError, ValidationError
from utils.fee_calculator import FeeCalculator

logger = logging.getLogger(__name__)

# Bookings that never happened do not count against first-booking-only codes
NON_COUNTING_BOOKING_STATUSES = (
    BookingStatus.REJECTED.value,
    BookingStatus.CANCELLED.value,
)


@dataclass
class PromoValidation:
    valid: bool
    discount: Decimal = Decimal("0")
    reason: Optional[str] = None
    promo: Optional[PromoCode] = None

    def to_dict(self):
        return {
            "valid": self.valid,
            "discount": int(self.discount),
            "reason": self.reason,
            "promoCodeId": self.promo.id if self.promo else None,
        }


class PromoCodeService:
    """Checks promo eligibility and records usage under the promo row lock"""

    @staticmethod
    def find_by_code(session: Session, code: str) -> PromoCode:
        promo = (
            session.query(PromoCode)
            .filter(func.upper(PromoCode.code) == (code or "").strip().upper())
            .first()
        )
        if not promo:
            raise NotFoundError("Promo code not found")
        return promo

    @staticmethod
    def count_user_usages(session: Session, promo_code_id: str, user_id: str) -> int:
        return (
            session.query(func.count(PromoCodeUsage.id))
            .filter(PromoCodeUsage.promo_code_id == promo_code_id, PromoCodeUsage.user_id == user_id)
            .scalar()
            or 0
        )

    @staticmethod
    def count_prior_bookings(session: Session, user_id: str, exclude_booking_id: Optional[str] = None) -> int:
        query = session.query(func.count(Booking.id)).filter(
            Booking.user_id == user_id,
            Booking.status.notin_(NON_COUNTING_BOOKING_STATUSES),
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.scalar() or 0

    @classmethod
    def evaluate(
        cls,
        session: Session,
        promo: PromoCode,
        user_id: str,
        subtotal: Decimal,
        now: Optional[datetime] = None,
    ) -> PromoValidation:
        """Apply every eligibility check in order and price the discount"""
        now = now or datetime.utcnow()

        if not promo.is_active:
            return PromoValidation(False, reason="Promo code is not active", promo=promo)
        if promo.valid_from and now < promo.valid_from:
            return PromoValidation(False, reason="Promo code is not yet valid", promo=promo)
        if promo.valid_until and now > promo.valid_until:
            return PromoValidation(False, reason="Promo code has expired", promo=promo)
        if promo.usage_limit and promo.usage_limit > 0 and promo.used_count >= promo.usage_limit:
            return PromoValidation(False, reason="Promo code usage limit reached", promo=promo)
        if subtotal < Decimal(promo.min_order_amount or 0):
            return PromoValidation(
                False,
                reason=f"Minimum order amount is {int(Decimal(promo.min_order_amount))}",
                promo=promo,
            )
        if promo.user_limit and promo.user_limit > 0:
            used = cls.count_user_usages(session, promo.id, user_id)
            if used >= promo.user_limit:
                return PromoValidation(False, reason="You have already used this promo code", promo=promo)
        if promo.first_booking_only and cls.count_prior_bookings(session, user_id) > 0:
            return PromoValidation(False, reason="Promo code is only valid for your first booking", promo=promo)

        discount = FeeCalculator.calculate_promo_discount(promo, subtotal)
        return PromoValidation(True, discount=discount, promo=promo)

    @classmethod
    def validate_code(cls, session: Session, code: str, user_id: str, subtotal: Decimal) -> PromoValidation:
        """Read-only preview used by the validate-promo endpoint"""
        if not (code or "").strip():
            raise ValidationError("Promo code is required")
        if subtotal <= 0:
            raise ValidationError("Subtotal must be positive")
        try:
            promo = cls.find_by_code(session, code)
        except NotFoundError:
            return PromoValidation(False, reason="Promo code not found")
        return cls.evaluate(session, promo, user_id, subtotal)

    @classmethod
    def lock_and_evaluate(
        cls, session: Session, promo_code_id: str, user_id: str, subtotal: Decimal
    ) -> PromoValidation:
        """
        Booking path: lock the promo row first so the usage-limit check and
        the later used_count increment cannot interleave with another booking.
        """
        promo = lock_promo_code(promo_code_id, session)
        result = cls.evaluate(session, promo, user_id, subtotal)
        if not result.valid:
            logger.info(f"🎟️ PROMO_REJECTED: {promo.code} for user {user_id}: {result.reason}")
        return result

    @staticmethod
    def record_usage(
        session: Session,
        promo: PromoCode,
        user_id: str,
        booking_id: str,
        discount: Decimal,
    ) -> PromoCodeUsage:
        """Append the usage row and bump used_count (caller holds the promo lock)"""
        usage = PromoCodeUsage(
            promo_code_id=promo.id,
            user_id=user_id,
            booking_id=booking_id,
            discount_amount=discount,
        )
        session.add(usage)
        promo.used_count = (promo.used_count or 0) + 1
        logger.info(f"🎟️ PROMO_USED: {promo.code} by {user_id} on booking {booking_id} (-{discount})")
        return usage

    @staticmethod
    def reconcile_used_counts(session: Optional[Session] = None) -> int:
        """Recompute used_count from usage rows; returns how many codes were corrected"""
        corrected = 0
        with atomic_transaction(session) as db:
            counts = dict(
                db.query(PromoCodeUsage.promo_code_id, func.count(PromoCodeUsage.id))
                .group_by(PromoCodeUsage.promo_code_id)
                .all()
            )
            for promo in db.query(PromoCode).with_for_update().all():
                actual = counts.get(promo.id, 0)
                if promo.used_count != actual:
                    logger.warning(
                        f"🎟️ PROMO_RECONCILE: {promo.code} used_count {promo.used_count} -> {actual}"
                    )
                    promo.used_count = actual
                    corrected += 1
        return corrected
