"""
Transaction Lifecycle Module

Creates transactions, applies their amount to the owner's balance at creation
time and moves them exactly once from PENDING to COMPLETED or REJECTED.
Rejection reverses the optimistic balance effect.

Sign convention: positive amounts credit the balance (deposits, incoming
transfers, loan disbursements), negative amounts debit it.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .currency import Currency, Money, parse_amount
from .errors import ConflictError, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .users import UserManager
from .notifications import NotificationDispatcher, NotificationType
from .webhooks import WebhookNotifier
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of ledger transactions"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    PAYMENT = "PAYMENT"


class TransactionStatus(Enum):
    """PENDING -> COMPLETED | REJECTED, terminal states are final"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


@dataclass
class Transaction(StorageRecord):
    """
    Signed balance movement owned by one user
    """
    user_id: str
    transaction_type: TransactionType
    amount: Decimal
    description: str
    status: TransactionStatus = TransactionStatus.PENDING
    counterparty: Optional[str] = None
    admin_reason: Optional[str] = None
    payment_link: Optional[str] = None  # deposit instructions, PENDING DEPOSIT only
    admin_message: Optional[str] = None
    decided_at: Optional[datetime] = None

    @property
    def date(self) -> datetime:
        return self.created_at

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING


@dataclass
class DecisionResult:
    """Outcome of an admin decision on a transaction"""
    transaction: Transaction
    refunded: bool


def parse_transaction_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown transaction type {value!r}")


def parse_decision(value: Any) -> TransactionStatus:
    """Only the two terminal statuses are valid decisions"""
    if not isinstance(value, TransactionStatus):
        try:
            value = TransactionStatus(str(value).upper())
        except ValueError:
            raise ValidationError(f"Unknown transaction status {value!r}")
    if not value.is_terminal:
        raise ValidationError("Decision must be COMPLETED or REJECTED")
    return value


class TransactionEngine:
    """
    Owns the transaction lifecycle and its pairing with the user balance.

    Every mutation runs in one unit of work: the balance write and the
    transaction row write commit together or not at all. Notifications and
    webhooks are queued to run only after that unit commits.
    """

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        audit_trail: AuditTrail,
        notifications: Optional[NotificationDispatcher] = None,
        webhooks: Optional[WebhookNotifier] = None,
        currency: Currency = Currency.EUR
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.audit_trail = audit_trail
        self.notifications = notifications
        self.webhooks = webhooks
        self.currency = currency
        self.table_name = "transactions"
        self.logger = get_logger("backoffice.transactions")

    def create(
        self,
        user_id: str,
        amount: Any,
        transaction_type: Any,
        description: str = "",
        counterparty: Optional[str] = None,
        require_funds: bool = False
    ) -> Transaction:
        """
        Create a PENDING transaction and apply its amount to the balance

        Args:
            user_id: Owning user
            amount: Signed amount, positive credits and negative debits
            transaction_type: TransactionType or its name
            description: Free text shown in the history
            counterparty: Display-only name of the other party
            require_funds: Refuse when the resulting balance would be negative

        Returns:
            Created Transaction in PENDING state

        Raises:
            ValidationError: malformed amount or type, or insufficient funds
            NotFoundError: unknown user
        """
        transaction_type = parse_transaction_type(transaction_type)
        amount = parse_amount(amount, self.currency)

        with self.storage.atomic():
            user = self.user_manager.require_user(user_id)
            if require_funds and user.balance + amount < 0:
                raise ValidationError(
                    f"Insufficient funds: balance {self._money(user.balance).to_string()}, "
                    f"requested {self._money(abs(amount)).to_string()}"
                )

            now = datetime.now(timezone.utc)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                transaction_type=transaction_type,
                amount=amount,
                description=description or "",
                counterparty=counterparty
            )

            self.user_manager.apply_balance_delta(user_id, amount)
            self._save_transaction(transaction)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CREATED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "user_id": user_id,
                    "transaction_type": transaction_type.value,
                    "amount": amount,
                    "counterparty": counterparty
                }
            )
            self._emit_after_commit("transaction.created", transaction)

        log_action(
            self.logger, "info", f"Transaction created: {transaction_type.value}",
            user_id=user_id, action="create_transaction",
            entity="transaction", entity_id=transaction.id,
            amount=self._money(amount).to_string(), status=transaction.status,
            details={"transaction_type": transaction_type.value}
        )
        return transaction

    def decide(self, transaction_id: str, decision: Any,
               admin_reason: Optional[str] = None, notify: bool = True) -> DecisionResult:
        """
        Move a PENDING transaction to COMPLETED or REJECTED

        Rejection subtracts the transaction amount from the balance, undoing
        exactly what creation applied. Completion leaves the balance alone.

        Raises:
            NotFoundError: unknown transaction
            ConflictError: the transaction is already terminal, including when
                a concurrent decision won the compare-and-swap
        """
        decision = parse_decision(decision)

        with self.storage.atomic():
            transaction = self.require_transaction(transaction_id)
            if transaction.status.is_terminal:
                raise ConflictError(
                    f"Transaction {transaction_id} is already {transaction.status.value}",
                    current_status=transaction.status.value
                )

            transaction.status = decision
            transaction.admin_reason = admin_reason
            transaction.decided_at = datetime.now(timezone.utc)
            transaction.updated_at = transaction.decided_at
            self._compare_and_swap(transaction)

            refunded = decision == TransactionStatus.REJECTED
            if refunded:
                self.user_manager.apply_balance_delta(transaction.user_id, -transaction.amount)

            self.audit_trail.log_event(
                event_type=(
                    AuditEventType.TRANSACTION_REJECTED if refunded
                    else AuditEventType.TRANSACTION_COMPLETED
                ),
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "user_id": transaction.user_id,
                    "amount": transaction.amount,
                    "admin_reason": admin_reason,
                    "refunded": refunded
                }
            )

            if notify:
                self._notify_decision_after_commit(transaction)
            self._emit_after_commit(
                "transaction.rejected" if refunded else "transaction.completed", transaction
            )

        log_action(
            self.logger, "info", f"Transaction {decision.value.lower()}: {transaction.id}",
            user_id=transaction.user_id, action="decide_transaction",
            entity="transaction", entity_id=transaction.id,
            status=decision, details={"refunded": refunded}
        )
        return DecisionResult(transaction=transaction, refunded=refunded)

    def approve(self, transaction_id: str, admin_reason: Optional[str] = None) -> DecisionResult:
        return self.decide(transaction_id, TransactionStatus.COMPLETED, admin_reason)

    def reject(self, transaction_id: str, admin_reason: Optional[str] = None) -> DecisionResult:
        return self.decide(transaction_id, TransactionStatus.REJECTED, admin_reason)

    def create_completed(
        self,
        user_id: str,
        amount: Any,
        transaction_type: Any,
        description: str = "",
        admin_reason: Optional[str] = None
    ) -> Transaction:
        """Create and immediately complete, as one unit of work"""
        with self.storage.atomic():
            transaction = self.create(user_id, amount, transaction_type, description)
            result = self.decide(transaction.id, TransactionStatus.COMPLETED, admin_reason,
                                 notify=False)
            return result.transaction

    def attach_deposit_instructions(self, transaction_id: str, payment_link: str,
                                    admin_message: str) -> Transaction:
        """
        Store payment instructions on a PENDING deposit and alert its owner

        Raises:
            NotFoundError: unknown transaction
            ValidationError: not a DEPOSIT
            ConflictError: no longer PENDING
        """
        with self.storage.atomic():
            transaction = self.require_transaction(transaction_id)
            if transaction.transaction_type != TransactionType.DEPOSIT:
                raise ValidationError(
                    f"Deposit instructions apply to DEPOSIT transactions, "
                    f"not {transaction.transaction_type.value}"
                )
            if transaction.status.is_terminal:
                raise ConflictError(
                    f"Transaction {transaction_id} is already {transaction.status.value}",
                    current_status=transaction.status.value
                )

            transaction.payment_link = payment_link
            transaction.admin_message = admin_message
            transaction.updated_at = datetime.now(timezone.utc)
            self._compare_and_swap(transaction)

            self.audit_trail.log_event(
                event_type=AuditEventType.DEPOSIT_INSTRUCTIONS_ATTACHED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={"user_id": transaction.user_id, "payment_link": payment_link}
            )

            if self.notifications:
                message = admin_message or ""
                if payment_link:
                    message = f"{message}\n{payment_link}".strip()
                self._notify_after_commit(
                    transaction.user_id, "Deposit Instructions", message, NotificationType.ALERT
                )

        log_action(
            self.logger, "info", "Deposit instructions attached",
            user_id=transaction.user_id, action="attach_deposit_instructions",
            entity="transaction", entity_id=transaction.id
        )
        return transaction

    # Client paths: positive magnitudes, sign applied here, debits require funds

    def deposit(self, user_id: str, amount: Any, description: str = "Deposit") -> Transaction:
        magnitude = self._positive(amount)
        return self.create(user_id, magnitude, TransactionType.DEPOSIT, description)

    def withdraw(self, user_id: str, amount: Any, description: str = "Withdrawal") -> Transaction:
        magnitude = self._positive(amount)
        return self.create(user_id, -magnitude, TransactionType.WITHDRAWAL, description,
                           require_funds=True)

    def transfer_out(self, user_id: str, amount: Any, description: str = "Transfer",
                     counterparty: Optional[str] = None) -> Transaction:
        magnitude = self._positive(amount)
        return self.create(user_id, -magnitude, TransactionType.TRANSFER_OUT, description,
                           counterparty=counterparty, require_funds=True)

    # Queries

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        transaction_dict = self.storage.load(self.table_name, transaction_id)
        if transaction_dict:
            return self._transaction_from_dict(transaction_dict)
        return None

    def require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def list_user_transactions(self, user_id: str,
                               status: Optional[TransactionStatus] = None) -> List[Transaction]:
        """Transactions of one user, newest first"""
        filters = {"user_id": user_id}
        if status:
            filters["status"] = status.value
        rows = self.storage.find(self.table_name, filters)
        return [self._transaction_from_dict(row) for row in reversed(rows)]

    def list_pending(self) -> List[Transaction]:
        """The approval queue, oldest first"""
        rows = self.storage.find(self.table_name, {"status": TransactionStatus.PENDING.value})
        return [self._transaction_from_dict(row) for row in rows]

    def _positive(self, amount: Any) -> Decimal:
        magnitude = parse_amount(amount, self.currency)
        if magnitude <= 0:
            raise ValidationError("amount must be positive")
        return magnitude

    def _compare_and_swap(self, transaction: Transaction) -> None:
        """Write only if the stored row is still PENDING"""
        swapped = self.storage.update_where(
            self.table_name,
            transaction.id,
            {"status": TransactionStatus.PENDING.value},
            self._transaction_to_dict(transaction)
        )
        if not swapped:
            current = self.require_transaction(transaction.id)
            raise ConflictError(
                f"Transaction {transaction.id} was decided concurrently",
                current_status=current.status.value
            )

    def _notify_decision_after_commit(self, transaction: Transaction) -> None:
        if not self.notifications:
            return
        label = transaction.transaction_type.value.lower().replace("_", " ")
        money = self._money(abs(transaction.amount)).to_string()
        if transaction.status == TransactionStatus.COMPLETED:
            title = "Transaction Approved"
            message = f"Your {label} of {money} was approved."
            notification_type = NotificationType.SUCCESS
        else:
            title = "Transaction Rejected"
            message = f"Your {label} of {money} was rejected and its effect on your balance reversed."
            notification_type = NotificationType.WARNING
        if transaction.admin_reason:
            message = f"{message} Reason: {transaction.admin_reason}"
        self._notify_after_commit(transaction.user_id, title, message, notification_type)

    def _notify_after_commit(self, user_id: str, title: str, message: str,
                             notification_type: NotificationType) -> None:
        notifications = self.notifications
        self.storage.after_commit(
            lambda: notifications.send_quietly(user_id, title, message, notification_type)
        )

    def _emit_after_commit(self, event_type: str, transaction: Transaction) -> None:
        if not self.webhooks:
            return
        webhooks = self.webhooks
        payload = self._transaction_to_dict(transaction)
        self.storage.after_commit(lambda: webhooks.emit(event_type, payload))

    def _money(self, amount: Decimal) -> Money:
        return Money(amount, self.currency)

    def _save_transaction(self, transaction: Transaction) -> None:
        """Save transaction to storage"""
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        return transaction.to_dict()

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        decided_at = None
        if data.get('decided_at'):
            decided_at = datetime.fromisoformat(data['decided_at'])

        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            description=data.get('description', ""),
            status=TransactionStatus(data['status']),
            counterparty=data.get('counterparty'),
            admin_reason=data.get('admin_reason'),
            payment_link=data.get('payment_link'),
            admin_message=data.get('admin_message'),
            decided_at=decided_at
        )
