"""
Booking Routes
create-booking, complete-booking, accept/reject/cancel, validate-promo and
process-referral-reward
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limiter import rate_limited
from schemas.booking import (
    BookingDecisionRequest,
    BookingStatusResponse,
    CompleteBookingRequest,
    CreateBookingRequest,
    CreateBookingResponse,
    ReferralRewardResponse,
    ValidatePromoRequest,
    ValidatePromoResponse,
)
from services import booking_service
from services.booking_service import BookingService
from services.promo_code_service import PromoCodeService
from services.referral_service import ReferralService
from utils.atomic_transactions import atomic_transaction

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


@router.post("/create-booking", response_model=CreateBookingResponse)
def create_booking(
    body: CreateBookingRequest,
    _limit=Depends(rate_limited("booking")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    request = booking_service.CreateBookingRequest(
        provider_id=body.provider_id,
        service_id=body.service_id,
        date=body.date,
        time=body.time,
        location=body.location,
        message=body.message,
        duration_hours=body.duration_hours,
        promo_code_id=body.promo_code_id,
    )
    return BookingService.create_booking(db, user_id, request).to_dict()


@router.post("/complete-booking", response_model=BookingStatusResponse)
def complete_booking(
    body: CompleteBookingRequest,
    _limit=Depends(rate_limited("booking")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """Multi-purpose transition; the action is inferred when omitted"""
    return BookingService.complete_booking(
        db, body.booking_id, user_id,
        action=body.action, lat=body.lat, lng=body.lng, idempotency_key=idempotency_key,
    )


@router.post("/accept-booking", response_model=BookingStatusResponse)
def accept_booking(
    body: BookingDecisionRequest,
    _limit=Depends(rate_limited("booking")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BookingService.accept_booking(db, body.booking_id, user_id)


@router.post("/reject-booking", response_model=BookingStatusResponse)
def reject_booking(
    body: BookingDecisionRequest,
    _limit=Depends(rate_limited("booking")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BookingService.reject_booking(db, body.booking_id, user_id, reason=body.reason)


@router.post("/cancel-booking", response_model=BookingStatusResponse)
def cancel_booking(
    body: BookingDecisionRequest,
    _limit=Depends(rate_limited("booking")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BookingService.cancel_booking(db, body.booking_id, user_id, reason=body.reason)


@router.post("/validate-promo", response_model=ValidatePromoResponse)
def validate_promo(
    body: ValidatePromoRequest,
    _limit=Depends(rate_limited("general")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return PromoCodeService.validate_code(db, body.code, user_id, body.subtotal).to_dict()


@router.post("/process-referral-reward", response_model=ReferralRewardResponse)
def process_referral_reward(
    _limit=Depends(rate_limited("wallet")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """The caller is always the referred user; rewards are never paid on someone else's behalf"""
    with atomic_transaction(db):
        outcome = ReferralService.process_referral_reward(db, user_id)
    return {
        "success": True,
        "paid": outcome.paid,
        "reason": outcome.reason,
        "referrerReward": int(outcome.referrer_reward),
        "referredReward": int(outcome.referred_reward),
    }
