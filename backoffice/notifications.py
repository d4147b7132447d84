"""
Notification Dispatcher Module

User-visible notification records. ``alert`` notifications are shown one at a
time as blocking modals until acknowledged; every other type is a passive
feed entry.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .errors import BackofficeError, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


class NotificationType(Enum):
    """Types of notifications"""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    ALERT = "alert"  # blocking modal until marked read


@dataclass
class Notification(StorageRecord):
    """Individual notification; ``read`` only ever goes False -> True"""
    user_id: str
    title: str
    message: str
    notification_type: NotificationType
    read: bool = False
    read_at: Optional[datetime] = None


def parse_notification_type(value: Any) -> NotificationType:
    """Accept an enum member or its string value"""
    if isinstance(value, NotificationType):
        return value
    try:
        return NotificationType(str(value).lower())
    except ValueError:
        raise ValidationError(f"Unknown notification type {value!r}")


class NotificationDispatcher:
    """
    Writes and queries notifications
    """

    def __init__(self, storage: StorageInterface, users_table: str = "users"):
        self.storage = storage
        self.table_name = "notifications"
        self.users_table = users_table
        self.logger = get_logger("backoffice.notifications")

    def send(self, user_id: str, title: str, message: str,
             notification_type: Any = NotificationType.INFO) -> Notification:
        """
        Create an unread notification for a user

        Raises:
            NotFoundError: unknown user
            ValidationError: unknown type or empty title
        """
        notification_type = parse_notification_type(notification_type)
        if not title:
            raise ValidationError("title is required")
        if not self.storage.exists(self.users_table, user_id):
            raise NotFoundError("user", user_id)

        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            title=title,
            message=message or "",
            notification_type=notification_type
        )
        self.storage.save(self.table_name, notification.id, notification.to_dict())

        log_action(
            self.logger, "info", f"Notification sent: {title}",
            user_id=user_id, action="send_notification",
            entity="notification", entity_id=notification.id,
            details={"type": notification_type.value}
        )
        return notification

    def send_quietly(self, user_id: str, title: str, message: str,
                     notification_type: Any = NotificationType.INFO) -> Optional[Notification]:
        """Best-effort send for lifecycle side effects; failures are logged only"""
        try:
            return self.send(user_id, title, message, notification_type)
        except BackofficeError as e:
            self.logger.warning(f"Notification '{title}' for user {user_id} not delivered: {e}")
            return None

    def broadcast(self, title: str, message: str,
                  notification_type: Any = NotificationType.INFO,
                  role: Any = "USER") -> List[Notification]:
        """Send the same notification to every user with the given role"""
        notification_type = parse_notification_type(notification_type)
        role_value = getattr(role, "value", role)

        with self.storage.atomic():
            users = self.storage.find(self.users_table, {"role": role_value})
            sent = [
                self.send(user["id"], title, message, notification_type)
                for user in users
            ]

        self.logger.info(f"Broadcast '{title}' delivered to {len(sent)} users")
        return sent

    def mark_read(self, notification_id: str) -> Notification:
        """Mark as read; calling it again on a read notification changes nothing"""
        with self.storage.atomic():
            notification = self.require_notification(notification_id)
            if not notification.read:
                notification.read = True
                notification.read_at = datetime.now(timezone.utc)
                notification.updated_at = notification.read_at
                self.storage.save(self.table_name, notification.id, notification.to_dict())
            return notification

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.table_name, notification_id)
        if data:
            return self._notification_from_dict(data)
        return None

    def require_notification(self, notification_id: str) -> Notification:
        notification = self.get_notification(notification_id)
        if not notification:
            raise NotFoundError("notification", notification_id)
        return notification

    def list_for_user(self, user_id: str) -> List[Notification]:
        """All notifications for a user, newest first"""
        rows = self.storage.find(self.table_name, {"user_id": user_id})
        return [self._notification_from_dict(row) for row in reversed(rows)]

    def unread_alerts(self, user_id: str) -> List[Notification]:
        """Unacknowledged alerts, oldest first, the order the client shows them in"""
        rows = self.storage.find(self.table_name, {
            "user_id": user_id,
            "notification_type": NotificationType.ALERT.value,
            "read": False
        })
        return [self._notification_from_dict(row) for row in rows]

    def unread_count(self, user_id: str) -> int:
        return len(self.storage.find(self.table_name, {"user_id": user_id, "read": False}))

    def _notification_from_dict(self, data: Dict) -> Notification:
        """Convert dictionary to notification"""
        data["notification_type"] = NotificationType(data["notification_type"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        if data.get("read_at"):
            data["read_at"] = datetime.fromisoformat(data["read_at"])
        return Notification(**data)
