"""
Wallet Routes
Top-up requests, the SePay bank transfer webhook and featured slot purchases
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.orm import Session

from config import Config
from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limiter import rate_limited
from schemas.wallet import (
    CancelTopupRequest,
    CreateTopupRequest,
    PurchaseFeaturedSlotRequest,
    PurchaseFeaturedSlotResponse,
    TopupRequestResponse,
    TopupWebhookResponse,
)
from services.wallet_service import WalletService
from utils.error_handler import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet"])


def _topup_payload(request) -> Dict[str, Any]:
    return {
        "success": True,
        "requestId": request.id,
        "transferCode": request.transfer_code,
        "amount": int(request.amount),
        "status": request.status,
        "expiresAt": request.expires_at.isoformat(),
    }


def verify_sepay_api_key(authorization: Optional[str]) -> None:
    """
    Require `Authorization: Apikey <SEPAY_WEBHOOK_SECRET>`.

    Without a configured secret, production refuses every delivery while
    development processes them with a warning.
    """
    secret = Config.SEPAY_WEBHOOK_SECRET
    if not secret:
        if Config.IS_PRODUCTION:
            logger.critical("🚨 SEPAY_SECURITY: webhook secret missing in production")
            raise AuthenticationError("Missing or invalid Authorization Apikey")
        logger.warning("⚠️ DEV_SECURITY: SePay webhook secret not configured - processing anyway")
        return

    parts = (authorization or "").strip().split(None, 1)
    provided = parts[1].strip() if len(parts) == 2 and parts[0].lower() == "apikey" else ""
    if not provided or not hmac.compare_digest(provided, secret):
        logger.warning("🚨 SEPAY_SECURITY: webhook rejected, bad Apikey")
        raise AuthenticationError("Missing or invalid Authorization Apikey")


@router.post("/create-topup-request", response_model=TopupRequestResponse)
def create_topup_request(
    body: CreateTopupRequest,
    _limit=Depends(rate_limited("wallet")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    request = WalletService.create_topup_request(db, user_id, body.amount)
    return _topup_payload(request)


@router.post("/cancel-topup-request", response_model=TopupRequestResponse)
def cancel_topup_request(
    body: CancelTopupRequest,
    _limit=Depends(rate_limited("wallet")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    request = WalletService.cancel_topup_request(db, user_id, body.request_id)
    return _topup_payload(request)


@router.post("/sepay-webhook", response_model=TopupWebhookResponse, response_model_exclude_none=True)
def sepay_webhook(
    payload: Dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Provider callback; unmatched transfers are acknowledged so they are not redelivered"""
    verify_sepay_api_key(authorization)
    logger.info(f"📥 SEPAY_WEBHOOK: received transfer {payload.get('id', 'unknown')}")
    return WalletService.confirm_bank_transfer(db, payload).to_dict()


@router.post("/purchase-featured-slot", response_model=PurchaseFeaturedSlotResponse)
def purchase_featured_slot(
    body: PurchaseFeaturedSlotRequest,
    _limit=Depends(rate_limited("wallet")),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return WalletService.purchase_featured_slot(db, user_id, body.slot_type, body.duration_days)
