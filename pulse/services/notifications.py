"""In-app notifications shown to users (confirmations, payment results)."""

from __future__ import annotations

import logging

from pulse.domain.errors import ForbiddenError, NotFoundError
from pulse.domain.models import Notification, NotificationType, User
from pulse.repos.memory import NotificationRepository

logger = logging.getLogger(__name__)


class UserNotifier:
    def __init__(self, repo: NotificationRepository) -> None:
        self._repo = repo

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
    ) -> Notification | None:
        """Best-effort write; a failure is logged and reported as ``None``."""
        try:
            notification = Notification(user_id=user_id, title=title, message=message, type=type)
            self._repo.add(notification)
        except Exception:
            logger.exception(f"Could not create notification '{title}' for user {user_id}")
            return None
        return notification

    def list_for_user(self, user_id: str) -> list[Notification]:
        return self._repo.list_for_user(user_id)

    def mark_read(self, notification_id: str, actor: User, read: bool = True) -> Notification:
        self._get_owned(notification_id, actor)
        updated = self._repo.set_read(notification_id, read)
        if updated is None:
            raise NotFoundError("Notification not found")
        return updated

    def delete(self, notification_id: str, actor: User) -> None:
        self._get_owned(notification_id, actor)
        self._repo.delete(notification_id)

    def _get_owned(self, notification_id: str, actor: User) -> Notification:
        notification = self._repo.get(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        # Only the owner or an admin may touch a notification
        if notification.user_id != actor.id and not actor.is_admin:
            raise ForbiddenError("Access denied")
        return notification
