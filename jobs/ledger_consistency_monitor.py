"""
Ledger Consistency Monitor
Detects wallets whose escrow column disagrees with the bookings still holding
funds against it. Findings are logged and reported to admins; nothing is
corrected automatically.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import job_session
from models import Booking, PayoutStatus, User
from services.notification_service import format_vnd, notification_service
from utils.atomic_transactions import atomic_transaction

logger = logging.getLogger(__name__)


class LedgerConsistencyResult:
    """Result object for one monitoring run"""

    def __init__(self):
        self.wallets_checked = 0
        self.inconsistencies: List[Dict[str, Any]] = []
        self.admin_alerts_sent = 0
        self.execution_time_ms = 0

    def add_inconsistency(self, user_id: str, wallet_escrow: Decimal, expected_escrow: Decimal):
        issue = {
            "user_id": user_id,
            "wallet_escrow": str(wallet_escrow),
            "expected_escrow": str(expected_escrow),
            "difference": str(wallet_escrow - expected_escrow),
            "detected_at": datetime.utcnow().isoformat(),
        }
        self.inconsistencies.append(issue)
        logger.error(
            f"🚨 LEDGER_INCONSISTENCY: user {user_id} escrow={wallet_escrow} "
            f"but open bookings hold {expected_escrow}"
        )

    def get_summary(self) -> Dict[str, Any]:
        return {
            "wallets_checked": self.wallets_checked,
            "inconsistencies_found": len(self.inconsistencies),
            "admin_alerts_sent": self.admin_alerts_sent,
            "execution_time_ms": self.execution_time_ms,
        }


class LedgerConsistencyMonitor:

    @staticmethod
    def expected_escrow_by_user(session: Session) -> Dict[str, Decimal]:
        """Sum of total_amount over bookings whose escrow has not been paid out or refunded"""
        rows = (
            session.query(Booking.user_id, func.coalesce(func.sum(Booking.total_amount), 0))
            .filter(Booking.payout_status == PayoutStatus.PENDING.value)
            .group_by(Booking.user_id)
            .all()
        )
        return {user_id: Decimal(total) for user_id, total in rows}

    @classmethod
    def run_consistency_check(cls, session: Optional[Session] = None) -> LedgerConsistencyResult:
        start_time = datetime.utcnow()
        result = LedgerConsistencyResult()

        with job_session(session) as db:
            expected = cls.expected_escrow_by_user(db)
            wallets = (
                db.query(User.id, User.escrow)
                .filter((User.escrow != 0) | User.id.in_(list(expected)))
                .all()
            )
            for user_id, escrow in wallets:
                result.wallets_checked += 1
                wallet_escrow = Decimal(escrow or 0)
                expected_escrow = expected.get(user_id, Decimal("0"))
                if wallet_escrow != expected_escrow:
                    result.add_inconsistency(user_id, wallet_escrow, expected_escrow)

            if result.inconsistencies:
                with atomic_transaction(db):
                    total_gap = sum(
                        (Decimal(issue["difference"]) for issue in result.inconsistencies), Decimal("0")
                    )
                    result.admin_alerts_sent = notification_service.notify_admins(
                        db, "admin_ledger_alert", "Escrow ledger inconsistency",
                        f"{len(result.inconsistencies)} wallet(s) disagree with open bookings "
                        f"(net difference {format_vnd(total_gap)}). Manual review required.",
                        {"userIds": [issue["user_id"] for issue in result.inconsistencies]},
                    )

        result.execution_time_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        logger.info(f"🔍 LEDGER_MONITOR: {result.get_summary()}")
        return result
