"""
Booking Marketplace - Transactional Database Schema
==================================================

Schema for the money-moving core of the booking marketplace:
- Wallets embedded in user rows (spendable balance + escrow)
- Bookings and their escrowed monetary breakdown
- Promo codes with append-only usage rows
- Append-only ledger transactions
- Disputes, referral rewards, moderation reports
- Bank transfer top-up requests and paid featured slots
- Persisted token buckets for rate limiting

Amounts are whole VND stored as NUMERIC.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text, Float,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, func, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def generate_id() -> str:
    return str(uuid.uuid4())


MONEY = Numeric(20, 2)


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class UserRole(Enum):
    """Account role"""
    USER = "user"
    PARTNER = "partner"
    ADMIN = "admin"


class VipTier(Enum):
    """Payer-side tier driven by lifetime spending"""
    FREE = "free"
    VIP = "vip"
    SVIP = "svip"


class PartnerTier(Enum):
    """Partner-side tier, discounts the platform's cut"""
    FREE = "free"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class ServiceDuration(Enum):
    """Pricing unit of a partner service"""
    SESSION = "session"
    DAY = "day"


class BookingStatus(Enum):
    """Booking lifecycle states"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED_PENDING = "completed_pending"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PayoutStatus(Enum):
    """Partner payout state of a booking"""
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class TransactionType(Enum):
    """Ledger entry types"""
    ESCROW_HOLD = "escrow_hold"
    BOOKING_PAYMENT = "booking_payment"
    BOOKING_EARNING = "booking_earning"
    REFUND = "refund"
    DISPUTE_CLAWBACK = "dispute_clawback"
    REFERRAL_BONUS = "referral_bonus"
    TOP_UP = "top_up"
    FEATURED_SLOT_PAYMENT = "featured_slot_payment"


class TransactionStatus(Enum):
    """Ledger entry status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PromoDiscountType(Enum):
    """Promo code discount kinds"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DisputeReason(Enum):
    """Closed set of dispute reasons"""
    PARTNER_NO_SHOW = "partner_no_show"
    POOR_SERVICE = "poor_service"
    BAD_ATTITUDE = "bad_attitude"
    OTHER = "other"


class DisputeStatus(Enum):
    """Dispute lifecycle"""
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class DisputeResolution(Enum):
    """Administrative dispute outcomes"""
    REFUND_FULL = "refund_full"
    REFUND_PARTIAL = "refund_partial"
    NO_ACTION = "no_action"


class ReferralStatus(Enum):
    """Referral reward payout state"""
    PENDING = "pending"
    COMPLETED = "completed"


class ReportReason(Enum):
    """User report reasons"""
    INAPPROPRIATE_BEHAVIOR = "inappropriate_behavior"
    FAKE_PHOTOS = "fake_photos"
    SCAM = "scam"
    HARASSMENT = "harassment"
    OTHER = "other"


class ReportStatus(Enum):
    """Moderation report state"""
    PENDING = "pending"
    REVIEWED = "reviewed"
    DISMISSED = "dismissed"


class TopupStatus(Enum):
    """Bank transfer top-up request state"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class FeaturedSlotType(Enum):
    """Paid placement surfaces for partners"""
    HOMEPAGE_TOP = "homepage_top"
    SEARCH_TOP = "search_top"
    CATEGORY_TOP = "category_top"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class User(Base):
    """User account with embedded wallet"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False, index=True)

    # Wallet
    balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    escrow: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_spending: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    vip_tier: Mapped[str] = mapped_column(String(10), default=VipTier.FREE.value, nullable=False)

    # Partner profile
    partner_tier: Mapped[str] = mapped_column(String(10), default=PartnerTier.FREE.value, nullable=False)
    is_pro: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    average_rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)

    # Referral
    referred_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('users.id'), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_users_balance_non_negative'),
        CheckConstraint('escrow >= 0', name='ck_users_escrow_non_negative'),
        CheckConstraint('total_spending >= 0', name='ck_users_total_spending_non_negative'),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self):
        return f"<User(id={self.id}, role={self.role}, balance={self.balance}, escrow={self.escrow})>"


class Service(Base):
    """Partner-offered service (catalog row maintained upstream)"""
    __tablename__ = 'services'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    activity: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    duration: Mapped[str] = mapped_column(String(20), default=ServiceDuration.SESSION.value, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Booking(Base):
    """A priced, escrowed booking between a booker and a partner"""
    __tablename__ = 'bookings'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    partner_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('services.id'), nullable=True)

    activity: Mapped[str] = mapped_column(String(50), nullable=False)
    duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    booking_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    meeting_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Monetary breakdown
    original_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    promo_discount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    promo_code_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('promo_codes.id'), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    partner_earning: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    status: Mapped[str] = mapped_column(String(30), default=BookingStatus.PENDING.value, nullable=False, index=True)
    payout_status: Mapped[str] = mapped_column(String(20), default=PayoutStatus.PENDING.value, nullable=False)

    # Check-in
    booker_checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    partner_checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    booker_checkin_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    booker_checkin_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    partner_checkin_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    partner_checkin_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Lifecycle timestamps
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispute_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rewards_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    auto_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_rejected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    booker = relationship("User", foreign_keys=[user_id])
    partner = relationship("User", foreign_keys=[partner_id])

    __table_args__ = (
        CheckConstraint('original_amount >= 0', name='ck_bookings_original_amount'),
        CheckConstraint('promo_discount >= 0', name='ck_bookings_promo_discount'),
        CheckConstraint('total_amount >= 0', name='ck_bookings_total_amount'),
        CheckConstraint('platform_fee >= 0', name='ck_bookings_platform_fee'),
        CheckConstraint('partner_earning >= 0', name='ck_bookings_partner_earning'),
        Index('ix_bookings_status_updated', 'status', 'updated_at'),
    )

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.user_id, self.partner_id)

    def counterparty_of(self, user_id: str) -> str:
        return self.partner_id if user_id == self.user_id else self.user_id

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, total={self.total_amount})>"


class PromoCode(Base):
    """Discount voucher applied at booking creation"""
    __tablename__ = 'promo_codes'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    min_order_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    max_discount_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    first_booking_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('discount_value >= 0', name='ck_promo_codes_discount_value'),
        CheckConstraint('used_count >= 0', name='ck_promo_codes_used_count'),
    )


class PromoCodeUsage(Base):
    """Append-only promo usage row, source of truth for per-user counts"""
    __tablename__ = 'promo_code_usages'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    promo_code_id: Mapped[str] = mapped_column(String(36), ForeignKey('promo_codes.id'), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey('bookings.id'), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_promo_code_usages_promo_user', 'promo_code_id', 'user_id'),
    )


class Transaction(Base):
    """Append-only ledger entry"""
    __tablename__ = 'transactions'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TransactionStatus.COMPLETED.value, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    related_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    payment_method: Mapped[str] = mapped_column(String(20), default="wallet", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_transactions_user_type', 'user_id', 'type'),
    )

    def __repr__(self):
        return f"<Transaction(user_id={self.user_id}, type={self.type}, amount={self.amount})>"


class Dispute(Base):
    """One dispute per booking"""
    __tablename__ = 'disputes'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey('bookings.id'), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_urls: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=DisputeStatus.PENDING.value, nullable=False, index=True)
    previous_status: Mapped[str] = mapped_column(String(30), nullable=False)

    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    resolution_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('users.id'), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class ReferralReward(Base):
    """Referral bonus, paid once on the referred user's first completed booking"""
    __tablename__ = 'referral_rewards'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    referrer_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    referred_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, unique=True)
    referrer_reward: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    referred_reward: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ReferralStatus.PENDING.value, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Notification(Base):
    """In-app notification row; delivery happens elsewhere"""
    __tablename__ = 'notifications'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Report(Base):
    """User-submitted moderation report"""
    __tablename__ = 'reports'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    reporter_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False)
    reported_user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ReportStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class PhoneVerification(Base):
    """Pending or completed phone OTP challenge"""
    __tablename__ = 'phone_verifications'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    otp_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class TopupRequest(Base):
    """Wallet top-up awaiting a matching bank transfer"""
    __tablename__ = 'topup_requests'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # "DD" + digits, written by the payer into the transfer note
    transfer_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TopupStatus.PENDING.value, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_topup_requests_amount'),
    )


class FeaturedSlot(Base):
    """Paid partner placement; repurchasing an active slot extends it"""
    __tablename__ = 'featured_slots'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    slot_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_featured_slots_user_type', 'user_id', 'slot_type'),
    )


class RateLimitBucket(Base):
    """Persisted token bucket keyed by (identifier, endpoint class)"""
    __tablename__ = 'rate_limit_buckets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(30), nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    # epoch seconds
    last_refill: Mapped[float] = mapped_column(Float, nullable=False)
    last_seen: Mapped[float] = mapped_column(Float, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('identifier', 'endpoint', name='uq_rate_limit_buckets_identifier_endpoint'),
        CheckConstraint('tokens >= 0', name='ck_rate_limit_buckets_tokens'),
    )


class IdempotencyKey(Base):
    """Prevent duplicate financial operations across client retries"""
    __tablename__ = "idempotency_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)  # 'confirm_booking', ...
    entity_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Operation result for replay protection
    result_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index('ix_idempotency_keys_user', 'user_id'),
        Index('ix_idempotency_keys_expires', 'expires_at'),
    )

    def __repr__(self):
        return f"<IdempotencyKey(operation_key={self.operation_key}, operation_type={self.operation_type})>"
