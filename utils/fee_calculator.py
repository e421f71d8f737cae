"""Fee and discount calculation for bookings"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, NamedTuple, Optional

from config import Config
from models import PartnerTier, PromoCode, PromoDiscountType, ServiceDuration
from utils.error_handler import ValidationError

logger = logging.getLogger(__name__)


class BookingFeeBreakdown(NamedTuple):
    """Monetary breakdown stored on a booking"""

    original_amount: Decimal
    promo_discount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    partner_earning: Decimal
    effective_fee_rate: Decimal


class FeeCalculator:
    """Handles all fee-related calculations with mathematical precision"""

    # VND has no minor unit
    VND_PRECISION = Decimal("1")

    # Discount on the platform's cut, not on the price
    PARTNER_TIER_FEE_DISCOUNTS: Dict[str, Decimal] = {
        PartnerTier.FREE.value: Decimal("0"),
        PartnerTier.BRONZE.value: Decimal("0.05"),
        PartnerTier.SILVER.value: Decimal("0.10"),
        PartnerTier.GOLD.value: Decimal("0.20"),
        PartnerTier.PLATINUM.value: Decimal("0.30"),
    }

    @classmethod
    def round_amount(cls, amount: Decimal) -> Decimal:
        return Decimal(amount).quantize(cls.VND_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def get_platform_fee_rate(cls) -> Decimal:
        return Decimal(str(Config.PLATFORM_FEE_RATE))

    @classmethod
    def get_partner_fee_discount(cls, partner_tier: Optional[str]) -> Decimal:
        """Unknown or missing tiers get no discount"""
        return cls.PARTNER_TIER_FEE_DISCOUNTS.get((partner_tier or "").lower(), Decimal("0"))

    @classmethod
    def effective_fee_rate(cls, partner_tier: Optional[str]) -> Decimal:
        """platform rate x (1 - tier discount)"""
        return cls.get_platform_fee_rate() * (Decimal("1") - cls.get_partner_fee_discount(partner_tier))

    @classmethod
    def resolve_duration_hours(cls, duration: Optional[str], override_hours: Optional[int] = None) -> int:
        """
        Sessions are fixed length. Day bookings default to a working day unless
        the caller supplies a positive override.
        """
        if duration == ServiceDuration.DAY.value:
            if override_hours and override_hours > 0:
                return int(override_hours)
            return Config.DEFAULT_DAY_HOURS
        return Config.SESSION_HOURS

    @classmethod
    def calculate_subtotal(cls, price) -> Decimal:
        """One booking is one unit (one session or one day)"""
        if price is None:
            raise ValidationError("Invalid service price")
        subtotal = cls.round_amount(Decimal(str(price)))
        if subtotal <= 0:
            raise ValidationError("Invalid service price")
        return subtotal

    @classmethod
    def calculate_promo_discount(cls, promo: PromoCode, subtotal: Decimal) -> Decimal:
        """
        Percentage codes: round(subtotal * value / 100), capped at
        max_discount_amount when that cap is non-zero. Fixed codes: the value.
        The result never exceeds the subtotal.
        """
        value = Decimal(str(promo.discount_value or 0))
        if promo.discount_type == PromoDiscountType.PERCENTAGE.value:
            discount = cls.round_amount(subtotal * value / Decimal("100"))
            cap = Decimal(str(promo.max_discount_amount or 0))
            if cap > 0 and discount > cap:
                discount = cap
        elif promo.discount_type == PromoDiscountType.FIXED.value:
            discount = cls.round_amount(value)
        else:
            logger.warning(f"Unknown promo discount type '{promo.discount_type}' on {promo.code}")
            discount = Decimal("0")

        return max(Decimal("0"), min(discount, subtotal))

    @classmethod
    def calculate_booking_breakdown(
        cls,
        subtotal: Decimal,
        partner_tier: Optional[str],
        promo_discount: Decimal = Decimal("0"),
    ) -> BookingFeeBreakdown:
        """
        The payer is charged the discounted subtotal. The platform fee is
        carved out of that amount, never added on top.
        """
        discount = max(Decimal("0"), min(Decimal(promo_discount), subtotal))
        discounted_subtotal = subtotal - discount
        rate = cls.effective_fee_rate(partner_tier)
        platform_fee = cls.round_amount(discounted_subtotal * rate)
        partner_earning = discounted_subtotal - platform_fee

        return BookingFeeBreakdown(
            original_amount=subtotal,
            promo_discount=discount,
            total_amount=discounted_subtotal,
            platform_fee=platform_fee,
            partner_earning=partner_earning,
            effective_fee_rate=rate,
        )

    @classmethod
    def split_settlement(cls, amount: Decimal, booking_total: Decimal, booking_fee: Decimal):
        """
        Split a partial amount of a booking at the booking's own fee ratio.
        Returns (platform_fee, partner_earning).
        """
        if booking_total <= 0 or amount <= 0:
            return Decimal("0"), Decimal("0")
        fee = cls.round_amount(amount * booking_fee / booking_total)
        return fee, amount - fee
