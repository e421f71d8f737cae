"""
Phone verification by one-time code

Codes are 6 digits, stored only as a SHA-256 hash, expire after
OTP_EXPIRY_MINUTES and allow OTP_MAX_VERIFY_ATTEMPTS guesses. SMS delivery
belongs to an external provider; SmsSender is the seam it plugs into.
"""

import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import Config
from models import PhoneVerification, User
from utils.atomic_transactions import atomic_transaction, lock_user_wallet
from utils.error_handler import NotFoundError, RateLimitExceededError, ValidationError

logger = logging.getLogger(__name__)

VN_PHONE_PATTERN = re.compile(r"(84|0[3|5|7|8|9])+([0-9]{8})\b")
OTP_LENGTH = 6


def normalize_phone(phone: str) -> str:
    """Digits only; 84xxxxxxxxx becomes 0xxxxxxxxx"""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("84") and len(digits) == 11:
        digits = "0" + digits[2:]
    return digits


def is_valid_vn_phone(phone: str) -> bool:
    return bool(VN_PHONE_PATTERN.search(phone))


def hash_otp(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def _mask_phone(phone: str) -> str:
    return f"{phone[:3]}****{phone[-3:]}" if len(phone) > 6 else "****"


class SmsSender:
    """Default sender only logs; production wires a real provider"""

    def send(self, phone: str, message: str) -> None:
        logger.info(f"📱 SMS to {_mask_phone(phone)}: {message}")


class OTPService:

    def __init__(self, sms_sender: Optional[SmsSender] = None):
        self.sms_sender = sms_sender or SmsSender()

    @staticmethod
    def generate_code() -> str:
        return f"{secrets.randbelow(900000) + 100000}"

    def send_otp(self, session: Session, user_id: str, raw_phone: str) -> Dict[str, Any]:
        if not raw_phone:
            raise ValidationError("Phone number is required")
        phone = normalize_phone(raw_phone)
        if not is_valid_vn_phone(phone):
            raise ValidationError("Invalid Vietnamese phone number")

        now = datetime.utcnow()
        with atomic_transaction(session):
            # serializes concurrent sends for the same user
            lock_user_wallet(user_id, session)

            taken = (
                session.query(User.id)
                .filter(User.phone == phone, User.phone_verified.is_(True), User.id != user_id)
                .first()
            )
            if taken:
                raise ValidationError("This phone number is already verified by another account")

            recent = (
                session.query(func.count(PhoneVerification.id))
                .filter(
                    PhoneVerification.user_id == user_id,
                    PhoneVerification.created_at >= now - timedelta(hours=1),
                )
                .scalar()
                or 0
            )
            if recent >= Config.OTP_MAX_REQUESTS_PER_HOUR:
                logger.warning(f"📱 OTP_SEND: user {user_id} hit {recent} requests in the last hour")
                raise RateLimitExceededError(retry_after=3600, limit=Config.OTP_MAX_REQUESTS_PER_HOUR, endpoint="otp")

            # Older codes stop working; the rows stay so the hourly cap keeps counting them
            session.query(PhoneVerification).filter(
                PhoneVerification.user_id == user_id,
                PhoneVerification.verified.is_(False),
                PhoneVerification.expires_at > now,
            ).update({PhoneVerification.expires_at: now}, synchronize_session=False)

            code = self.generate_code()
            expires_at = now + timedelta(minutes=Config.OTP_EXPIRY_MINUTES)
            session.add(PhoneVerification(
                user_id=user_id,
                phone=phone,
                otp_hash=hash_otp(code),
                attempts=0,
                verified=False,
                expires_at=expires_at,
                created_at=now,
            ))

        self.sms_sender.send(phone, f"Your verification code is {code}. It expires in {Config.OTP_EXPIRY_MINUTES} minutes.")
        logger.info(f"📱 OTP_SEND: code issued to user {user_id} for {_mask_phone(phone)}")

        result = {
            "success": True,
            "message": f"OTP has been sent to {phone}",
            "expiresAt": expires_at.isoformat() + "Z",
        }
        if Config.ENVIRONMENT == "development":
            result["_devOtp"] = code
        return result

    def verify_otp(self, session: Session, user_id: str, raw_phone: str, otp_code: str) -> Dict[str, Any]:
        if not raw_phone or not otp_code:
            raise ValidationError("Phone and OTP code are required")
        phone = normalize_phone(raw_phone)
        code = re.sub(r"\D", "", otp_code)
        if len(code) != OTP_LENGTH:
            raise ValidationError("OTP must be 6 digits")

        now = datetime.utcnow()
        error: Optional[ValidationError] = None
        with atomic_transaction(session):
            record = (
                session.query(PhoneVerification)
                .filter(
                    PhoneVerification.user_id == user_id,
                    PhoneVerification.phone == phone,
                    PhoneVerification.verified.is_(False),
                )
                .order_by(PhoneVerification.created_at.desc())
                .with_for_update()
                .first()
            )
            if record is None:
                raise NotFoundError("No OTP request found. Please request a new OTP.")

            if now > record.expires_at:
                session.delete(record)
                error = ValidationError("OTP has expired. Please request a new one.", kind="otp_expired")
            elif record.attempts >= Config.OTP_MAX_VERIFY_ATTEMPTS:
                session.delete(record)
                error = ValidationError("Too many failed attempts. Please request a new OTP.", kind="otp_locked")
            elif not hmac.compare_digest(record.otp_hash, hash_otp(code)):
                record.attempts += 1
                remaining = Config.OTP_MAX_VERIFY_ATTEMPTS - record.attempts
                error = ValidationError(
                    f"Invalid OTP. {remaining} attempts remaining.",
                    kind="otp_invalid",
                    details={"remainingAttempts": remaining},
                )
            else:
                record.verified = True
                record.verified_at = now
                user = lock_user_wallet(user_id, session)
                user.phone = phone
                user.phone_verified = True

        # the deletion and attempt counter must commit before the rejection is raised
        if error is not None:
            logger.info(f"📱 OTP_VERIFY: user {user_id} rejected ({error.kind})")
            raise error

        logger.info(f"✅ OTP_VERIFY: user {user_id} verified {_mask_phone(phone)}")
        return {"success": True, "message": "Phone verified successfully", "verified": True}


otp_service = OTPService()
