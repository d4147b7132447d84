"""
Back office system container

Wires storage, audit trail, webhook notifier and every manager/engine from
configuration. The HTTP adapter and ``run.py`` share one instance.
"""

from dataclasses import dataclass
from typing import List, Optional

from .config import BackofficeConfig, get_config
from .currency import currency_from_code
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .webhooks import WebhookNotifier
from .users import Beneficiary, User, UserManager
from .notifications import Notification, NotificationDispatcher
from .transactions import Transaction, TransactionEngine
from .loans import LoanEngine
from .institutions import InstitutionChangeManager
from .admin import AdminOverrides
from .logging_config import get_logger


logger = get_logger("backoffice.system")


@dataclass
class AccountView:
    """Everything a client re-reads after an operation"""
    user: User
    transactions: List[Transaction]  # newest first
    notifications: List[Notification]  # newest first
    beneficiaries: List[Beneficiary]


class BankingSystem:
    """Back office with all components initialized"""

    def __init__(
        self,
        config: Optional[BackofficeConfig] = None,
        storage: Optional[StorageInterface] = None,
        webhooks: Optional[WebhookNotifier] = None
    ):
        self.config = config or get_config()
        self.currency = currency_from_code(self.config.currency)

        self.storage = storage or create_storage(
            self.config.storage_backend, self.config.database_path
        )
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.webhooks = webhooks or WebhookNotifier(
            url=self.config.webhook_url,
            timeout=self.config.webhook_timeout,
            async_delivery=self.config.webhook_async
        )

        self.notifications = NotificationDispatcher(self.storage)
        self.user_manager = UserManager(
            self.storage, self.audit_trail, self.notifications,
            password_min_length=self.config.password_min_length
        )
        self.transaction_engine = TransactionEngine(
            self.storage, self.user_manager, self.audit_trail,
            self.notifications, self.webhooks, self.currency
        )
        self.loan_engine = LoanEngine(
            self.storage, self.user_manager, self.transaction_engine,
            self.audit_trail, self.notifications, self.webhooks, self.currency
        )
        self.institution_manager = InstitutionChangeManager(
            self.storage, self.user_manager, self.audit_trail, self.notifications
        )
        self.admin = AdminOverrides(
            self.storage, self.user_manager, self.transaction_engine,
            self.audit_trail, self.webhooks, self.currency
        )

        if self.config.bootstrap_admin_password:
            admin = self.user_manager.bootstrap_admin(
                self.config.bootstrap_admin_email,
                self.config.bootstrap_admin_password,
                name=self.config.bootstrap_admin_name
            )
            logger.info(f"Bootstrap administrator available: {admin.email}")

    def get_account_view(self, user_id: str) -> AccountView:
        """Full account view, read from storage in one consistent snapshot"""
        with self.storage.atomic():
            user = self.user_manager.require_user(user_id)
            return AccountView(
                user=user,
                transactions=self.transaction_engine.list_user_transactions(user_id),
                notifications=self.notifications.list_for_user(user_id),
                beneficiaries=self.user_manager.list_beneficiaries(user_id)
            )

    def close(self) -> None:
        self.webhooks.close()
        self.storage.close()
