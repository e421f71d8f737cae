"""
Fee and discount calculation tests
The platform fee is carved out of the discounted subtotal, never added on top
"""

from decimal import Decimal

import pytest

from models import PromoCode, PromoDiscountType
from utils.error_handler import ValidationError
from utils.fee_calculator import FeeCalculator


def _promo(discount_type, value, cap=0):
    return PromoCode(
        code="TEST",
        discount_type=discount_type,
        discount_value=Decimal(value),
        max_discount_amount=Decimal(cap),
    )


class TestBookingBreakdown:
    """Money breakdown stored on every booking"""

    def test_gold_partner_without_promo(self):
        breakdown = FeeCalculator.calculate_booking_breakdown(Decimal("300000"), "gold")

        assert breakdown.total_amount == Decimal("300000")
        assert breakdown.platform_fee == Decimal("72000"), "30% reduced by the 20% gold discount"
        assert breakdown.partner_earning == Decimal("228000")
        assert breakdown.promo_discount == Decimal("0")

    def test_gold_partner_with_capped_percentage_promo(self):
        promo = _promo(PromoDiscountType.PERCENTAGE.value, 10, cap=20000)
        discount = FeeCalculator.calculate_promo_discount(promo, Decimal("300000"))
        breakdown = FeeCalculator.calculate_booking_breakdown(Decimal("300000"), "gold", discount)

        assert discount == Decimal("20000"), "10% of 300,000 is capped at 20,000"
        assert breakdown.total_amount == Decimal("280000")
        assert breakdown.platform_fee == Decimal("67200")
        assert breakdown.partner_earning == Decimal("212800")

    @pytest.mark.parametrize(
        "tier,expected_fee",
        [("free", "90000"), ("bronze", "85500"), ("silver", "81000"), ("gold", "72000"), ("platinum", "63000")],
    )
    def test_partner_tier_discounts_the_fee(self, tier, expected_fee):
        breakdown = FeeCalculator.calculate_booking_breakdown(Decimal("300000"), tier)
        assert breakdown.platform_fee == Decimal(expected_fee)

    def test_higher_tier_never_earns_less(self):
        for subtotal in (Decimal("1"), Decimal("12345"), Decimal("300000"), Decimal("9999999")):
            earnings = [
                FeeCalculator.calculate_booking_breakdown(subtotal, tier).partner_earning
                for tier in ("free", "bronze", "silver", "gold", "platinum")
            ]
            assert earnings == sorted(earnings), f"earnings not monotonic for {subtotal}"

    def test_unknown_tier_gets_no_discount(self):
        assert FeeCalculator.get_partner_fee_discount("diamond") == Decimal("0")
        assert FeeCalculator.get_partner_fee_discount(None) == Decimal("0")

    def test_parts_always_add_up_to_total(self):
        for subtotal in (Decimal("1"), Decimal("99999"), Decimal("150001"), Decimal("7777777")):
            for tier in ("free", "silver", "platinum"):
                breakdown = FeeCalculator.calculate_booking_breakdown(subtotal, tier)
                assert breakdown.platform_fee + breakdown.partner_earning == breakdown.total_amount
                assert breakdown.platform_fee >= 0
                assert breakdown.partner_earning >= 0

    def test_fee_is_monotonic_in_subtotal(self):
        previous = Decimal("-1")
        for subtotal in range(100000, 400001, 25000):
            fee = FeeCalculator.calculate_booking_breakdown(Decimal(subtotal), "bronze").platform_fee
            assert fee >= previous
            previous = fee

    def test_discount_larger_than_subtotal_is_clamped(self):
        breakdown = FeeCalculator.calculate_booking_breakdown(Decimal("50000"), "free", Decimal("80000"))
        assert breakdown.promo_discount == Decimal("50000")
        assert breakdown.total_amount == Decimal("0")
        assert breakdown.platform_fee == Decimal("0")
        assert breakdown.partner_earning == Decimal("0")

    def test_amounts_are_whole_dong(self):
        breakdown = FeeCalculator.calculate_booking_breakdown(Decimal("100001"), "bronze")
        assert breakdown.platform_fee == breakdown.platform_fee.to_integral_value()


class TestPromoDiscount:
    """Percentage and fixed promo pricing"""

    def test_percentage_without_cap(self):
        promo = _promo(PromoDiscountType.PERCENTAGE.value, 15)
        assert FeeCalculator.calculate_promo_discount(promo, Decimal("200000")) == Decimal("30000")

    def test_percentage_rounds_half_up(self):
        promo = _promo(PromoDiscountType.PERCENTAGE.value, 5)
        assert FeeCalculator.calculate_promo_discount(promo, Decimal("10010")) == Decimal("501")

    def test_fixed_amount(self):
        promo = _promo(PromoDiscountType.FIXED.value, 25000)
        assert FeeCalculator.calculate_promo_discount(promo, Decimal("200000")) == Decimal("25000")

    def test_fixed_amount_never_exceeds_subtotal(self):
        promo = _promo(PromoDiscountType.FIXED.value, 500000)
        assert FeeCalculator.calculate_promo_discount(promo, Decimal("200000")) == Decimal("200000")

    def test_unknown_type_gives_nothing(self):
        promo = _promo("bogus", 50)
        assert FeeCalculator.calculate_promo_discount(promo, Decimal("200000")) == Decimal("0")


class TestDurationAndSubtotal:

    def test_session_is_fixed_length(self):
        assert FeeCalculator.resolve_duration_hours("session") == 3
        assert FeeCalculator.resolve_duration_hours("session", 10) == 3

    def test_day_defaults_to_working_day(self):
        assert FeeCalculator.resolve_duration_hours("day") == 8

    def test_day_accepts_positive_override(self):
        assert FeeCalculator.resolve_duration_hours("day", 12) == 12
        assert FeeCalculator.resolve_duration_hours("day", 0) == 8

    def test_subtotal_rejects_non_positive_price(self):
        with pytest.raises(ValidationError):
            FeeCalculator.calculate_subtotal(Decimal("0"))
        with pytest.raises(ValidationError):
            FeeCalculator.calculate_subtotal(None)


class TestSplitSettlement:
    """Partial dispute payouts keep the booking's own fee ratio"""

    def test_split_keeps_fee_ratio(self):
        fee, earning = FeeCalculator.split_settlement(Decimal("200000"), Decimal("300000"), Decimal("72000"))
        assert fee == Decimal("48000")
        assert earning == Decimal("152000")

    def test_nothing_to_split(self):
        assert FeeCalculator.split_settlement(Decimal("0"), Decimal("300000"), Decimal("72000")) == (
            Decimal("0"),
            Decimal("0"),
        )
