# services/notifications.py
"""
Persisted user notifications, pushed to the user's socket room once stored
"""

import logging
from typing import Any, Dict, Optional

from core.database_models import db, Notification, NotificationType
from api.realtime import send_notification_to_user

logger = logging.getLogger(__name__)


def create_notification(user_id: str, title: str, message: str,
                        type: NotificationType = NotificationType.GENERAL,
                        data: Optional[Dict[str, Any]] = None) -> Notification:
    """Store a notification and push it to ``user_<id>``"""
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type.value,
        data=data,
    )
    db.session.add(notification)
    db.session.commit()

    send_notification_to_user(user_id, notification.to_dict())
    logger.debug(f"Notification {notification.id} created for user {user_id}")
    return notification


def unread_count(user_id: str) -> int:
    return Notification.query.filter_by(user_id=user_id, is_read=False).count()


def mark_read(user_id: str, notification_id: str) -> Optional[Notification]:
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if notification is None:
        return None
    notification.is_read = True
    db.session.commit()
    return notification


def mark_all_read(user_id: str) -> int:
    updated = Notification.query.filter_by(user_id=user_id, is_read=False).update(
        {'is_read': True}, synchronize_session=False
    )
    db.session.commit()
    return updated
