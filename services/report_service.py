"""User moderation reports"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import Report, ReportReason, ReportStatus, User
from services.notification_service import notification_service
from utils.atomic_transactions import atomic_transaction
from utils.error_handler import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000

REASON_LABELS = {
    ReportReason.INAPPROPRIATE_BEHAVIOR.value: "Inappropriate behavior",
    ReportReason.FAKE_PHOTOS.value: "Fake photos",
    ReportReason.SCAM.value: "Scam",
    ReportReason.HARASSMENT.value: "Harassment",
    ReportReason.OTHER.value: "Other",
}


class ReportService:

    @staticmethod
    def report_user(
        session: Session,
        reporter_id: str,
        reported_user_id: str,
        reason: str,
        description: Optional[str] = None,
    ) -> Report:
        if not reported_user_id or not reason:
            raise ValidationError("Missing required fields")
        if reason not in REASON_LABELS:
            raise ValidationError("Invalid report reason", details={"allowed": sorted(REASON_LABELS)})
        if reporter_id == reported_user_id:
            raise ValidationError("Cannot report yourself")
        description = (description or "").strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")

        with atomic_transaction(session):
            reported = session.query(User).filter(User.id == reported_user_id).first()
            if not reported:
                raise NotFoundError("Reported user not found")
            reporter = session.query(User).filter(User.id == reporter_id).first()

            report = Report(
                reporter_id=reporter_id,
                reported_user_id=reported_user_id,
                reason=reason,
                description=description,
                status=ReportStatus.PENDING.value,
            )
            session.add(report)
            session.flush()

            reporter_name = reporter.name if reporter and reporter.name else "A user"
            notification_service.notify_admins(
                session, "report", "New user report",
                f"{reporter_name} reported {reported.name or reported.id}: {REASON_LABELS[reason]}",
                {"reportId": report.id, "reportedUserId": reported_user_id, "reporterId": reporter_id},
            )

        logger.info(f"🚩 REPORT: {reporter_id} reported {reported_user_id} ({reason}) as {report.id}")
        return report
