"""
Tests for the notification dispatcher
"""

import pytest

from backoffice.audit import AuditTrail
from backoffice.storage import InMemoryStorage
from backoffice.errors import NotFoundError, ValidationError
from backoffice.notifications import NotificationDispatcher, NotificationType
from backoffice.users import UserManager, UserRole


class TestNotificationDispatcher:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.dispatcher = NotificationDispatcher(self.storage)
        self.user_manager = UserManager(self.storage, self.audit_trail, self.dispatcher)
        self.user = self.user_manager.create_user("Farah Amine", "farah@example.com", "secret123")
        self.other = self.user_manager.create_user("Gael Roux", "gael@example.com", "secret123")

    def test_send_creates_unread_notification(self):
        notification = self.dispatcher.send(self.user.id, "Hello", "First message", "info")

        assert notification.id
        assert notification.read is False
        assert notification.notification_type == NotificationType.INFO
        assert self.dispatcher.unread_count(self.user.id) == 1

    def test_send_validates_input(self):
        with pytest.raises(ValidationError):
            self.dispatcher.send(self.user.id, "Hello", "msg", "shout")
        with pytest.raises(ValidationError):
            self.dispatcher.send(self.user.id, "", "msg")
        with pytest.raises(NotFoundError):
            self.dispatcher.send("missing", "Hello", "msg")

    def test_alert_dismissal_is_one_at_a_time_and_monotonic(self):
        alerts = [
            self.dispatcher.send(self.user.id, f"Alert {i}", "Act now", NotificationType.ALERT)
            for i in range(3)
        ]

        unread = self.dispatcher.unread_alerts(self.user.id)
        assert [a.id for a in unread] == [a.id for a in alerts]

        self.dispatcher.mark_read(unread[0].id)

        remaining = self.dispatcher.unread_alerts(self.user.id)
        assert [a.id for a in remaining] == [alerts[1].id, alerts[2].id]
        assert all(not a.read for a in remaining)

        self.dispatcher.mark_read(alerts[0].id)
        assert alerts[0].id not in [a.id for a in self.dispatcher.unread_alerts(self.user.id)]
        assert self.dispatcher.require_notification(alerts[0].id).read is True

    def test_mark_read_is_idempotent(self):
        notification = self.dispatcher.send(self.user.id, "Hello", "msg")

        first = self.dispatcher.mark_read(notification.id)
        second = self.dispatcher.mark_read(notification.id)

        assert first.read and second.read
        assert second.read_at == first.read_at

    def test_mark_read_unknown(self):
        with pytest.raises(NotFoundError):
            self.dispatcher.mark_read("missing")

    def test_non_alert_types_are_not_alerts(self):
        for notification_type in ["info", "success", "warning", "error"]:
            self.dispatcher.send(self.user.id, "Feed", "entry", notification_type)

        assert self.dispatcher.unread_alerts(self.user.id) == []
        assert self.dispatcher.unread_count(self.user.id) == 4

    def test_list_for_user_newest_first(self):
        first = self.dispatcher.send(self.user.id, "One", "")
        second = self.dispatcher.send(self.user.id, "Two", "")
        self.dispatcher.send(self.other.id, "Other", "")

        assert [n.id for n in self.dispatcher.list_for_user(self.user.id)] == [second.id, first.id]

    def test_broadcast_reaches_every_user_of_role(self):
        admin = self.user_manager.create_user(
            "Admin", "admin@example.com", "secret123", role=UserRole.ADMIN
        )

        sent = self.dispatcher.broadcast("Maintenance", "Tonight at 22:00", "warning")

        assert {n.user_id for n in sent} == {self.user.id, self.other.id}
        assert self.dispatcher.list_for_user(admin.id) == []
        assert self.dispatcher.list_for_user(self.user.id)[0].title == "Maintenance"

    def test_send_quietly_swallows_failures(self):
        assert self.dispatcher.send_quietly("missing", "Hello", "msg") is None
        assert self.dispatcher.send_quietly(self.user.id, "Hello", "msg") is not None
