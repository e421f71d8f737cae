"""
Wallet Funding Service
Bank transfer top-ups confirmed by the SePay webhook, and partner purchases
of featured placement paid from the wallet balance.

Money only enters a wallet through confirm_bank_transfer: the payer creates
a top-up request, writes its DD transfer code into the bank transfer note,
and the provider webhook credits the requested amount exactly once.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import (
    FeaturedSlot,
    FeaturedSlotType,
    TopupRequest,
    TopupStatus,
    TransactionType,
    User,
    UserRole,
)
from services.escrow_ledger import EscrowLedger
from services.notification_service import format_vnd, notification_service
from utils.atomic_transactions import atomic_transaction, locked_wallet_operation
from utils.error_handler import (
    InsufficientFundsError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TRANSFER_CODE_PATTERN = re.compile(r"(DD[0-9]{8,})", re.IGNORECASE)
TRANSFER_CODE_DIGITS = 10
MAX_CODE_ATTEMPTS = 5

# Provider payloads carry the transfer note under varying keys
NOTE_FIELDS = ("content", "description", "addInfo", "contentStr", "referenceCode", "code")
AMOUNT_FIELDS = ("transferAmount", "amount", "transAmount")

# Featured slot price by duration in days, VND
FEATURED_SLOT_PRICING: Dict[int, Decimal] = {
    1: Decimal("50000"),
    3: Decimal("120000"),
    7: Decimal("250000"),
}
VALID_SLOT_TYPES = {slot.value for slot in FeaturedSlotType}


def find_transfer_code(payload: Dict[str, Any]) -> Optional[str]:
    """First DD code found in the payload's note fields, upper-cased"""
    for field in NOTE_FIELDS:
        value = payload.get(field)
        if isinstance(value, str):
            match = TRANSFER_CODE_PATTERN.search(value)
            if match:
                return match.group(1).upper()
    return None


def find_transfer_amount(payload: Dict[str, Any]) -> Optional[Decimal]:
    for field in AMOUNT_FIELDS:
        value = payload.get(field)
        if value is None or isinstance(value, bool):
            continue
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            continue
        if amount.is_finite():
            return amount
    return None


def generate_transfer_code() -> str:
    digits = "".join(str(secrets.randbelow(10)) for _ in range(TRANSFER_CODE_DIGITS))
    return f"DD{digits}"


@dataclass
class TopupResult:
    """Outcome of one webhook delivery"""
    credited: bool
    message: str
    request_id: Optional[str] = None
    amount: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": True, "message": self.message}
        if self.credited:
            body["requestId"] = self.request_id
            body["amount"] = int(self.amount)
        return body


class WalletService:
    """Top-ups and wallet-paid partner purchases"""

    @staticmethod
    def create_topup_request(session: Session, user_id: str, amount: Decimal) -> TopupRequest:
        """Open a pending top-up with a fresh transfer code"""
        amount = Decimal(amount)
        if amount != amount.to_integral_value():
            raise ValidationError("Top-up amount must be a whole number of VND")
        if amount < Config.TOPUP_MIN_AMOUNT or amount > Config.TOPUP_MAX_AMOUNT:
            raise ValidationError(
                "Top-up amount out of range",
                details={"min": int(Config.TOPUP_MIN_AMOUNT), "max": int(Config.TOPUP_MAX_AMOUNT)},
            )

        with atomic_transaction(session):
            if session.get(User, user_id) is None:
                raise NotFoundError("User not found")

            now = datetime.utcnow()
            for _ in range(MAX_CODE_ATTEMPTS):
                request = TopupRequest(
                    user_id=user_id,
                    amount=amount,
                    transfer_code=generate_transfer_code(),
                    status=TopupStatus.PENDING.value,
                    created_at=now,
                    expires_at=now + timedelta(minutes=Config.TOPUP_EXPIRY_MINUTES),
                )
                try:
                    with session.begin_nested():
                        session.add(request)
                except IntegrityError:
                    logger.warning("⚠️ TOPUP_CODE_COLLISION: regenerating transfer code")
                    continue
                break
            else:
                raise StateConflictError("Could not allocate a transfer code, please retry")

        logger.info(f"🏦 TOPUP_REQUESTED: {request.transfer_code} {amount} for user {user_id}")
        return request

    @staticmethod
    def cancel_topup_request(session: Session, user_id: str, request_id: str) -> TopupRequest:
        with atomic_transaction(session):
            session.flush()
            request = (
                session.query(TopupRequest)
                .filter(TopupRequest.id == request_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if request is None or request.user_id != user_id:
                raise NotFoundError("Top-up request not found")
            if request.status != TopupStatus.PENDING.value:
                raise StateConflictError(
                    "Only pending top-ups can be cancelled", details={"currentStatus": request.status}
                )
            request.status = TopupStatus.CANCELLED.value

        logger.info(f"🏦 TOPUP_CANCELLED: {request.transfer_code} by user {user_id}")
        return request

    @staticmethod
    def confirm_bank_transfer(session: Session, payload: Dict[str, Any]) -> TopupResult:
        """
        Credit the wallet behind a matching top-up request.

        Payloads without a known open code, or with an amount below the
        requested one, are acknowledged and ignored so the provider does not
        retry them. A redelivered payload finds the request already
        confirmed and is ignored too. Late transfers against an expired
        request still credit: the money has left the payer's bank.
        """
        code = find_transfer_code(payload)
        if code is None:
            logger.info("🏦 TOPUP_WEBHOOK: no transfer code in payload, ignored")
            return TopupResult(False, "Ignored: No matching pending request found")

        with atomic_transaction(session):
            session.flush()
            request = (
                session.query(TopupRequest)
                .filter(
                    TopupRequest.transfer_code == code,
                    TopupRequest.status.in_([TopupStatus.PENDING.value, TopupStatus.EXPIRED.value]),
                )
                .with_for_update()
                .populate_existing()
                .first()
            )
            if request is None:
                logger.info(f"🏦 TOPUP_WEBHOOK: no open request for {code}, ignored")
                return TopupResult(False, "Ignored: No matching pending request found")

            paid = find_transfer_amount(payload)
            if paid is None or paid < Decimal(request.amount):
                logger.warning(
                    f"⚠️ TOPUP_AMOUNT_MISMATCH: {code} expected {request.amount}, got {paid}"
                )
                return TopupResult(False, "Ignored: No matching pending request found")

            amount = Decimal(request.amount)
            with locked_wallet_operation(request.user_id, session) as user:
                user.balance = Decimal(user.balance) + amount
                EscrowLedger.record_transaction(
                    session, user.id, TransactionType.TOP_UP, amount, request.id,
                    f"Bank transfer top-up ({code})", payment_method="banking",
                )
            request.status = TopupStatus.CONFIRMED.value
            request.confirmed_at = datetime.utcnow()
            notification_service.notify(
                session, request.user_id, "topup_confirmed", "Top-up received",
                f"{format_vnd(amount)} was added to your wallet.",
                {"requestId": request.id},
            )

        logger.info(f"✅ TOPUP_CONFIRMED: {code} credited {amount} to user {request.user_id}")
        return TopupResult(True, "Topup confirmed", request.id, amount)

    @staticmethod
    def expire_stale_topups(session: Optional[Session] = None) -> int:
        """Mark pending top-ups past their deadline as expired"""
        with atomic_transaction(session) as db:
            expired = (
                db.query(TopupRequest)
                .filter(
                    TopupRequest.status == TopupStatus.PENDING.value,
                    TopupRequest.expires_at < datetime.utcnow(),
                )
                .update({TopupRequest.status: TopupStatus.EXPIRED.value}, synchronize_session=False)
            )
        if expired:
            logger.info(f"⏰ Expired {expired} stale top-up requests")
        return expired

    @staticmethod
    def purchase_featured_slot(
        session: Session, user_id: str, slot_type: str, duration_days: int
    ) -> Dict[str, Any]:
        """
        Debit the partner's balance for featured placement.

        An active slot of the same type is extended from its current end
        date rather than duplicated.
        """
        if slot_type not in VALID_SLOT_TYPES:
            raise ValidationError("Invalid slot type", details={"allowed": sorted(VALID_SLOT_TYPES)})
        price = FEATURED_SLOT_PRICING.get(duration_days)
        if price is None:
            raise ValidationError("Invalid duration. Choose 1, 3, or 7 days.")

        with locked_wallet_operation(user_id, session) as user:
            if user.role != UserRole.PARTNER.value:
                raise PermissionDeniedError("Only partners can purchase featured slots")
            if Decimal(user.balance) < price:
                logger.info(f"💸 FEATURED_SLOT: user {user_id} balance {user.balance} < {price}")
                raise InsufficientFundsError()

            now = datetime.utcnow()
            slot = (
                session.query(FeaturedSlot)
                .filter(
                    FeaturedSlot.user_id == user_id,
                    FeaturedSlot.slot_type == slot_type,
                    FeaturedSlot.status == "active",
                    FeaturedSlot.end_date >= now,
                )
                .order_by(FeaturedSlot.end_date.desc())
                .first()
            )
            if slot is not None:
                slot.end_date = slot.end_date + timedelta(days=duration_days)
                slot.amount_paid = Decimal(slot.amount_paid) + price
            else:
                slot = FeaturedSlot(
                    user_id=user_id,
                    slot_type=slot_type,
                    start_date=now,
                    end_date=now + timedelta(days=duration_days),
                    amount_paid=price,
                    status="active",
                )
                session.add(slot)
                session.flush()

            user.balance = Decimal(user.balance) - price
            EscrowLedger.record_transaction(
                session, user_id, TransactionType.FEATURED_SLOT_PAYMENT, price, slot.id,
                f"Featured slot {slot_type} for {duration_days} days",
            )
            new_balance = Decimal(user.balance)
            end_date = slot.end_date

        logger.info(f"⭐ FEATURED_SLOT: {slot_type} +{duration_days}d for {user_id} until {end_date}")
        return {
            "success": True,
            "slotId": slot.id,
            "endDate": end_date.isoformat(),
            "newBalance": int(new_balance),
        }
