"""
In-app notification writer
Rows are inserted inside the caller's transaction; push/SMS delivery reads them elsewhere
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import Notification, User, UserRole

logger = logging.getLogger(__name__)


def format_vnd(amount) -> str:
    """300000 -> '300,000 VND'"""
    return f"{int(Decimal(amount)):,} VND"


class NotificationService:
    """Creates notification rows for users and admins"""

    def notify(
        self,
        session: Session,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
            is_read=False,
        )
        session.add(notification)
        logger.debug(f"🔔 NOTIFY: {notification_type} -> {user_id}")
        return notification

    def admin_ids(self, session: Session) -> List[str]:
        rows = session.query(User.id).filter(User.role == UserRole.ADMIN.value).all()
        return [row[0] for row in rows]

    def notify_admins(
        self,
        session: Session,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Fan out to every admin; returns how many rows were written"""
        admin_ids = self.admin_ids(session)
        for admin_id in admin_ids:
            self.notify(session, admin_id, notification_type, title, message, data)
        if not admin_ids:
            logger.warning(f"⚠️ NOTIFY: no admin users to receive {notification_type}")
        return len(admin_ids)


notification_service = NotificationService()
