"""
Booking lifecycle jobs
- auto-complete bookings the booker never confirmed
- auto-reject pending bookings the partner never answered
- re-run deferred settlement rewards
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from config import Config
from database import job_session
from models import Booking, BookingStatus
from services.booking_service import BookingService
from services.settlement_service import SettlementEngine

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


def auto_complete_bookings(session: Optional[Session] = None, batch_size: int = BATCH_SIZE) -> Dict[str, Any]:
    """Settle completed_pending bookings older than AUTO_COMPLETE_HOURS"""
    cutoff = datetime.utcnow() - timedelta(hours=Config.AUTO_COMPLETE_HOURS)
    results = {"checked": 0, "completed": 0, "failed": 0}

    with job_session(session) as db:
        booking_ids = [
            row[0]
            for row in db.query(Booking.id)
            .filter(
                Booking.status == BookingStatus.COMPLETED_PENDING.value,
                Booking.dispute_paused_at.is_(None),
                or_(
                    Booking.finished_at <= cutoff,
                    and_(Booking.finished_at.is_(None), Booking.updated_at <= cutoff),
                ),
            )
            .order_by(Booking.finished_at)
            .limit(batch_size)
            .all()
        ]
        results["checked"] = len(booking_ids)

        for booking_id in booking_ids:
            try:
                if BookingService.auto_complete_booking(db, booking_id):
                    results["completed"] += 1
            except Exception as e:
                results["failed"] += 1
                logger.exception(f"❌ AUTO_COMPLETE: booking {booking_id} failed: {e}")

    if booking_ids:
        logger.info(
            f"⏰ AUTO_COMPLETE: {results['completed']}/{results['checked']} bookings settled "
            f"({results['failed']} failed)"
        )
    return results


def expire_pending_bookings(session: Optional[Session] = None, batch_size: int = BATCH_SIZE) -> Dict[str, Any]:
    """Auto-reject pending bookings older than PENDING_BOOKING_EXPIRY_HOURS and refund the booker"""
    cutoff = datetime.utcnow() - timedelta(hours=Config.PENDING_BOOKING_EXPIRY_HOURS)
    results = {"checked": 0, "expired": 0, "failed": 0}

    with job_session(session) as db:
        booking_ids = [
            row[0]
            for row in db.query(Booking.id)
            .filter(Booking.status == BookingStatus.PENDING.value, Booking.created_at <= cutoff)
            .order_by(Booking.created_at)
            .limit(batch_size)
            .all()
        ]
        results["checked"] = len(booking_ids)

        for booking_id in booking_ids:
            try:
                if BookingService.expire_pending_booking(db, booking_id):
                    results["expired"] += 1
            except Exception as e:
                results["failed"] += 1
                logger.exception(f"❌ EXPIRE_PENDING: booking {booking_id} failed: {e}")

    if booking_ids:
        logger.info(f"⌛ EXPIRE_PENDING: {results['expired']}/{results['checked']} bookings auto-rejected")
    return results


def reconcile_settlements(session: Optional[Session] = None, batch_size: int = BATCH_SIZE) -> int:
    """Completed bookings whose reward steps were deferred get another attempt"""
    with job_session(session) as db:
        return SettlementEngine.reconcile_pending_rewards(db, limit=batch_size)
