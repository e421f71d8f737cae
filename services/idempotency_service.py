"""
Idempotency Key Service
Replays the stored result when a client retries a money-moving request
with the same Idempotency-Key header.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import IdempotencyKey
from utils.atomic_transactions import atomic_transaction
from utils.error_handler import ValidationError

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


class OperationType(Enum):
    """Operations that accept an Idempotency-Key"""
    CONFIRM_BOOKING = "confirm_booking"
    RESOLVE_DISPUTE = "resolve_dispute"


class IdempotencyService:
    """Database-backed exactly-once replay protection"""

    @staticmethod
    def _validate_key(key: str) -> str:
        key = (key or "").strip()
        if not key or len(key) > MAX_KEY_LENGTH:
            raise ValidationError("Invalid Idempotency-Key header")
        return key

    @classmethod
    def get_cached_result(
        cls,
        session: Session,
        key: str,
        operation_type: OperationType,
        user_id: str,
        entity_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Stored result for a completed operation, or None.

        A key already used by another user, for another operation or against
        another entity is rejected rather than replayed.
        """
        key = cls._validate_key(key)
        record = session.query(IdempotencyKey).filter(IdempotencyKey.operation_key == key).first()
        if record is None:
            return None
        if record.expires_at < datetime.utcnow():
            logger.debug(f"🔑 IDEMPOTENCY: key {key[:12]} expired, treating as new")
            return None
        if (
            record.user_id != user_id
            or record.operation_type != operation_type.value
            or (entity_id is not None and record.entity_id != entity_id)
        ):
            logger.warning(
                f"🚨 IDEMPOTENCY_MISMATCH: key {key[:12]} reused by {user_id} "
                f"for {operation_type.value} on {entity_id}"
            )
            raise ValidationError("Idempotency-Key was already used for a different request")
        if not record.success:
            return None
        return record.result_data

    @classmethod
    def store_result(
        cls,
        session: Session,
        key: str,
        operation_type: OperationType,
        user_id: str,
        entity_id: Optional[str],
        result: Dict[str, Any],
        success: bool = True,
    ) -> Optional[IdempotencyKey]:
        """
        Save the result in the caller's transaction. Returns None if a
        live result for the same key is already stored.
        """
        key = cls._validate_key(key)
        now = datetime.utcnow()
        existing = session.query(IdempotencyKey).filter(IdempotencyKey.operation_key == key).first()
        if existing is not None:
            if existing.success and existing.expires_at >= now:
                logger.info(f"🔑 IDEMPOTENCY_DUPLICATE: key {key[:12]} already holds a result")
                return None
            # expired or failed record is taken over
            existing.user_id = user_id
            existing.operation_type = operation_type.value
            existing.entity_id = entity_id
            existing.result_data = result
            existing.success = success
            existing.created_at = now
            existing.expires_at = now + timedelta(hours=Config.IDEMPOTENCY_TTL_HOURS)
            return existing

        record = IdempotencyKey(
            operation_key=key,
            user_id=user_id,
            operation_type=operation_type.value,
            entity_id=entity_id,
            result_data=result,
            success=success,
            created_at=now,
            expires_at=now + timedelta(hours=Config.IDEMPOTENCY_TTL_HOURS),
        )
        try:
            with session.begin_nested():
                session.add(record)
        except IntegrityError:
            logger.info(f"🔑 IDEMPOTENCY_DUPLICATE: key {key[:12]} stored concurrently")
            return None
        logger.debug(f"🔑 IDEMPOTENCY_STORED: {operation_type.value} key {key[:12]}")
        return record

    @staticmethod
    def cleanup_expired(session: Optional[Session] = None) -> int:
        """Delete expired keys; returns how many were removed"""
        with atomic_transaction(session) as db:
            removed = (
                db.query(IdempotencyKey)
                .filter(IdempotencyKey.expires_at < datetime.utcnow())
                .delete(synchronize_session=False)
            )
        if removed:
            logger.info(f"🧹 Cleaned up {removed} expired idempotency keys")
        return removed
