"""
Administrative Override Layer

Direct corrections performed by administrators.

``set_exact_balance`` is an escape hatch: it overwrites the balance without
writing any transaction row, so afterwards the balance no longer equals the
sum of the user's transactions. Each override is recorded as a
``balance_overridden`` audit event carrying the previous and new balance;
that event, not the transaction history, is the record of the adjustment.
"""

from decimal import Decimal
from typing import Any, Optional

from .currency import Currency, parse_amount
from .errors import ValidationError
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .users import AccountStatus, User, UserManager
from .transactions import Transaction, TransactionEngine, TransactionType
from .webhooks import WebhookNotifier
from .logging_config import get_logger, log_action


def parse_account_status(value: Any) -> AccountStatus:
    if isinstance(value, AccountStatus):
        return value
    try:
        return AccountStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown account status {value!r}")


class AdminOverrides:
    """Balance and status corrections outside the normal approval queue"""

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        transaction_engine: TransactionEngine,
        audit_trail: AuditTrail,
        webhooks: Optional[WebhookNotifier] = None,
        currency: Currency = Currency.EUR
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.transaction_engine = transaction_engine
        self.audit_trail = audit_trail
        self.webhooks = webhooks
        self.currency = currency
        self.logger = get_logger("backoffice.admin")

    def set_exact_balance(self, user_id: str, new_balance: Any,
                          actor_id: Optional[str] = None) -> User:
        """Overwrite the balance. No transaction row is created."""
        new_balance = parse_amount(new_balance, self.currency, field_name="balance")

        with self.storage.atomic():
            previous_balance = self.user_manager.require_user(user_id).balance
            user = self.user_manager.set_balance(user_id, new_balance)
            self.audit_trail.log_event(
                event_type=AuditEventType.BALANCE_OVERRIDDEN,
                entity_type="user",
                entity_id=user_id,
                metadata={
                    "previous_balance": previous_balance,
                    "new_balance": new_balance,
                    "difference": new_balance - previous_balance
                },
                actor_id=actor_id
            )
            if self.webhooks:
                webhooks = self.webhooks
                payload = {
                    "user_id": user_id,
                    "previous_balance": str(previous_balance),
                    "new_balance": str(new_balance)
                }
                self.storage.after_commit(lambda: webhooks.emit("balance.overridden", payload))

        log_action(
            self.logger, "warning", "Balance overridden without ledger entry",
            user_id=user_id, action="set_exact_balance", entity="user", entity_id=user_id,
            amount=new_balance, details={"previous_balance": str(previous_balance)}
        )
        return user

    def adjust_by_delta(
        self,
        user_id: str,
        amount: Any,
        transaction_type: Any = None,
        description: str = "Admin Adjustment"
    ) -> Transaction:
        """
        Manual correction that shows up in the history: a transaction is
        created and completed at once. The type defaults to DEPOSIT for
        non-negative amounts and WITHDRAWAL otherwise.
        """
        amount = parse_amount(amount, self.currency)
        if transaction_type is None:
            transaction_type = (
                TransactionType.DEPOSIT if amount >= Decimal('0') else TransactionType.WITHDRAWAL
            )

        transaction = self.transaction_engine.create_completed(
            user_id, amount, transaction_type, description=description or "Admin Adjustment"
        )

        log_action(
            self.logger, "info", "Admin balance adjustment",
            user_id=user_id, action="adjust_by_delta",
            entity="transaction", entity_id=transaction.id,
            amount=transaction.amount, status=transaction.status
        )
        return transaction

    def set_status(self, user_id: str, status: Any, actor_id: Optional[str] = None) -> User:
        """Any status may follow any other"""
        status = parse_account_status(status)

        with self.storage.atomic():
            previous_status = self.user_manager.require_user(user_id).status
            user = self.user_manager.set_status(user_id, status)
            self.audit_trail.log_event(
                event_type=AuditEventType.USER_STATUS_CHANGED,
                entity_type="user",
                entity_id=user_id,
                metadata={"previous_status": previous_status, "new_status": status},
                actor_id=actor_id
            )

        log_action(
            self.logger, "info", f"User status set to {status.value}",
            user_id=user_id, action="set_status", entity="user", entity_id=user_id,
            status=status
        )
        return user
