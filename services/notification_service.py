import logging
from typing import List, Optional

from sqlalchemy import delete as delete_rows, select, update

from constant.enum import NotificationType
from core.database import session_scope
from models.notification import Notification
from schemas.notification import NotificationSnapshot

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification sink plus the owner-facing inbox operations."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, user_id: str, type: NotificationType, title: str, content: str,
               source_id: Optional[str] = None, source_name: Optional[str] = None) -> NotificationSnapshot:
        with session_scope(self.session_factory) as session:
            notification = Notification(
                user_id=user_id,
                type=NotificationType(type).value,
                title=title,
                content=content,
                source_id=source_id,
                source_name=source_name,
            )
            session.add(notification)
            session.flush()
            logger.info(f"Notification {notification.id} ({notification.type}) created for user {user_id}")
            return NotificationSnapshot.model_validate(notification)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationSnapshot]:
        with session_scope(self.session_factory) as session:
            query = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                query = query.where(Notification.is_read.is_(False))
            rows = session.scalars(
                query.order_by(Notification.created_at.desc(), Notification.id.desc())).all()
            return [NotificationSnapshot.model_validate(row) for row in rows]

    def _owned(self, session, user_id: str, notification_id: int) -> Notification:
        notification = session.get(Notification, notification_id)
        if notification is None:
            raise LookupError("Notification not found")
        if notification.user_id != user_id:
            raise PermissionError("Not authorized to access this notification")
        return notification

    def mark_read(self, user_id: str, notification_id: int) -> NotificationSnapshot:
        with session_scope(self.session_factory) as session:
            notification = self._owned(session, user_id, notification_id)
            notification.is_read = True
            session.flush()
            return NotificationSnapshot.model_validate(notification)

    def mark_all_read(self, user_id: str) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True)
            )
            return result.rowcount

    def delete(self, user_id: str, notification_id: int) -> None:
        with session_scope(self.session_factory) as session:
            session.delete(self._owned(session, user_id, notification_id))

    def clear_all(self, user_id: str) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(delete_rows(Notification).where(Notification.user_id == user_id))
            return result.rowcount
