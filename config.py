"""Configuration management for the booking backend"""

import os
import logging
from decimal import Decimal
from typing import List

logger = logging.getLogger(__name__)


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
    SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

    # HTTP surface
    ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", "https://www.dinedate.vn")

    # Identity provider (token issuance is external, we only verify)
    AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "booking-dev-secret")
    AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
    AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE") or None

    # Fees and booking durations
    PLATFORM_FEE_RATE = Decimal(os.getenv("PLATFORM_FEE_RATE", "0.30"))
    SESSION_HOURS = int(os.getenv("SESSION_HOURS", "3"))
    DEFAULT_DAY_HOURS = int(os.getenv("DEFAULT_DAY_HOURS", "8"))

    # Payer VIP tier thresholds (lifetime completed spend, VND)
    VIP_THRESHOLD = Decimal(os.getenv("VIP_THRESHOLD", "1000000"))
    SVIP_THRESHOLD = Decimal(os.getenv("SVIP_THRESHOLD", "100000000"))

    # Partner Pro auto-upgrade
    PRO_MIN_COMPLETED_BOOKINGS = int(os.getenv("PRO_MIN_COMPLETED_BOOKINGS", "5"))
    PRO_MIN_AVERAGE_RATING = Decimal(os.getenv("PRO_MIN_AVERAGE_RATING", "4.8"))

    # Referral program
    REFERRER_REWARD = Decimal(os.getenv("REFERRER_REWARD", "50000"))
    REFERRED_REWARD = Decimal(os.getenv("REFERRED_REWARD", "30000"))

    # Background jobs
    DISABLE_SCHEDULER = os.getenv("DISABLE_SCHEDULER", "false").lower() == "true"
    AUTO_COMPLETE_HOURS = int(os.getenv("AUTO_COMPLETE_HOURS", "24"))
    PENDING_BOOKING_EXPIRY_HOURS = int(os.getenv("PENDING_BOOKING_EXPIRY_HOURS", "24"))

    # Rate limiter housekeeping
    RATE_LIMIT_IDLE_EVICT_SECONDS = int(os.getenv("RATE_LIMIT_IDLE_EVICT_SECONDS", "600"))
    RATE_LIMIT_SWEEP_SECONDS = int(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "300"))

    # Idempotency
    IDEMPOTENCY_TTL_HOURS = int(os.getenv("IDEMPOTENCY_TTL_HOURS", "24"))

    # Bank transfer top-ups (SePay webhook)
    SEPAY_WEBHOOK_SECRET = os.getenv("SEPAY_WEBHOOK_SECRET", "").strip()
    TOPUP_MIN_AMOUNT = Decimal(os.getenv("TOPUP_MIN_AMOUNT", "10000"))
    TOPUP_MAX_AMOUNT = Decimal(os.getenv("TOPUP_MAX_AMOUNT", "100000000"))
    TOPUP_EXPIRY_MINUTES = int(os.getenv("TOPUP_EXPIRY_MINUTES", "30"))

    # Phone verification
    OTP_EXPIRY_MINUTES = int(os.getenv("OTP_EXPIRY_MINUTES", "5"))
    OTP_MAX_REQUESTS_PER_HOUR = int(os.getenv("OTP_MAX_REQUESTS_PER_HOUR", "5"))
    OTP_MAX_VERIFY_ATTEMPTS = int(os.getenv("OTP_MAX_VERIFY_ATTEMPTS", "5"))

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Booking backend configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Database: {Config.DATABASE_URL.split('@')[-1]}")
        logger.info(f"   Allowed origins: {', '.join(Config.ALLOWED_ORIGINS)}")
        logger.info(f"   Platform fee rate: {Config.PLATFORM_FEE_RATE}")
        logger.info(f"   Scheduler enabled: {not Config.DISABLE_SCHEDULER}")
        if Config.IS_PRODUCTION and Config.AUTH_JWT_SECRET == "booking-dev-secret":
            logger.error("❌ Production environment detected but AUTH_JWT_SECRET is the development default!")
        if not Config.SEPAY_WEBHOOK_SECRET:
            if Config.IS_PRODUCTION:
                logger.error("❌ SEPAY_WEBHOOK_SECRET is not set; top-up webhooks will be refused")
            else:
                logger.warning("⚠️ SEPAY_WEBHOOK_SECRET is not set; top-up webhooks are accepted unauthenticated")
