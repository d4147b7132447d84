"""
Loan Adjudication Module

Loan requests follow the same one-shot PENDING -> APPROVED | REJECTED
lifecycle as transactions. Approval disburses the loan amount as a DEPOSIT
that is created and completed in the same unit of work as the decision.
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
from .transactions import Transaction, TransactionEngine, TransactionType
from .notifications import NotificationDispatcher, NotificationType
from .webhooks import WebhookNotifier
from .logging_config import get_logger, log_action


class LoanStatus(Enum):
    """Loan request lifecycle states"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class Loan(StorageRecord):
    """
    Loan request. ``user_name`` is copied from the user when the request is
    made and is not updated afterwards.
    """
    user_id: str
    user_name: str
    amount: Decimal
    purpose: str
    status: LoanStatus = LoanStatus.PENDING
    admin_reason: Optional[str] = None
    disbursement_transaction_id: Optional[str] = None
    decided_at: Optional[datetime] = None

    @property
    def request_date(self) -> datetime:
        return self.created_at


@dataclass
class LoanDecision:
    """Decided loan plus the completed deposit created on approval"""
    loan: Loan
    disbursement: Optional[Transaction] = None


class LoanEngine:
    """
    Creates loan requests and applies admin decisions
    """

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        transaction_engine: TransactionEngine,
        audit_trail: AuditTrail,
        notifications: Optional[NotificationDispatcher] = None,
        webhooks: Optional[WebhookNotifier] = None,
        currency: Currency = Currency.EUR
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.transaction_engine = transaction_engine
        self.audit_trail = audit_trail
        self.notifications = notifications
        self.webhooks = webhooks
        self.currency = currency
        self.table_name = "loans"
        self.logger = get_logger("backoffice.loans")

    def request(self, user_id: str, user_name: Optional[str], amount: Any,
                purpose: str = "") -> Loan:
        """
        Create a PENDING loan request; no balance effect

        Args:
            user_id: Requesting user
            user_name: Display name to record; the user's current name when empty
            amount: Requested amount, must be positive
            purpose: Free text

        Raises:
            ValidationError: non-positive or malformed amount
            NotFoundError: unknown user
        """
        amount = parse_amount(amount, self.currency)
        if amount <= 0:
            raise ValidationError("Loan amount must be positive")

        with self.storage.atomic():
            user = self.user_manager.require_user(user_id)
            now = datetime.now(timezone.utc)
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                user_name=user_name or user.name,
                amount=amount,
                purpose=purpose or ""
            )
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_REQUESTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"user_id": user_id, "amount": amount, "purpose": loan.purpose}
            )
            self._notify_after_commit(
                user_id, "Loan Requested",
                f"Your loan request for {self._money(amount).to_string()} is under review.",
                NotificationType.INFO
            )

        log_action(
            self.logger, "info", "Loan requested",
            user_id=user_id, action="request_loan", entity="loan", entity_id=loan.id,
            amount=self._money(amount).to_string(), status=loan.status
        )
        return loan

    def decide(self, loan_id: str, approved: bool,
               admin_reason: Optional[str] = None) -> LoanDecision:
        """
        Approve or reject a PENDING loan

        On approval a DEPOSIT of the loan amount is created and completed for
        the borrower. The loan update and the disbursement share one unit of
        work, so a failed disbursement leaves the loan PENDING.

        Raises:
            NotFoundError: unknown loan
            ConflictError: loan already decided
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.PENDING:
                raise ConflictError(
                    f"Loan {loan_id} is already {loan.status.value}",
                    current_status=loan.status.value
                )

            loan.status = LoanStatus.APPROVED if approved else LoanStatus.REJECTED
            loan.admin_reason = admin_reason
            loan.decided_at = datetime.now(timezone.utc)
            loan.updated_at = loan.decided_at

            disbursement = None
            if approved:
                description = "Loan disbursement"
                if loan.purpose:
                    description = f"{description}: {loan.purpose}"
                disbursement = self.transaction_engine.create_completed(
                    loan.user_id,
                    loan.amount,
                    TransactionType.DEPOSIT,
                    description=description,
                    admin_reason=admin_reason
                )
                loan.disbursement_transaction_id = disbursement.id

            swapped = self.storage.update_where(
                self.table_name, loan.id,
                {"status": LoanStatus.PENDING.value},
                self._loan_to_dict(loan)
            )
            if not swapped:
                current = self.require_loan(loan_id)
                raise ConflictError(
                    f"Loan {loan_id} was decided concurrently",
                    current_status=current.status.value
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_APPROVED if approved else AuditEventType.LOAN_REJECTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "user_id": loan.user_id,
                    "amount": loan.amount,
                    "admin_reason": admin_reason,
                    "disbursement_transaction_id": loan.disbursement_transaction_id
                }
            )

            money = self._money(loan.amount).to_string()
            if approved:
                title, verb, notification_type = "Loan Approved", "approved", NotificationType.SUCCESS
            else:
                title, verb, notification_type = "Loan Rejected", "rejected", NotificationType.ERROR
            message = f"Your loan for {money} was {verb}."
            if admin_reason:
                message = f"{message} Reason: {admin_reason}"
            self._notify_after_commit(loan.user_id, title, message, notification_type)

            if self.webhooks:
                webhooks = self.webhooks
                payload = self._loan_to_dict(loan)
                event_type = "loan.approved" if approved else "loan.rejected"
                self.storage.after_commit(lambda: webhooks.emit(event_type, payload))

        log_action(
            self.logger, "info", f"Loan {loan.status.value.lower()}: {loan.id}",
            user_id=loan.user_id, action="decide_loan", entity="loan", entity_id=loan.id,
            status=loan.status, details={"disbursement": loan.disbursement_transaction_id}
        )
        return LoanDecision(loan=loan, disbursement=disbursement)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.table_name, loan_id)
        if loan_dict:
            return self._loan_from_dict(loan_dict)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError("loan", loan_id)
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, newest first"""
        if status:
            rows = self.storage.find(self.table_name, {"status": status.value})
        else:
            rows = self.storage.load_all(self.table_name)
        return [self._loan_from_dict(row) for row in reversed(rows)]

    def list_user_loans(self, user_id: str) -> List[Loan]:
        rows = self.storage.find(self.table_name, {"user_id": user_id})
        return [self._loan_from_dict(row) for row in reversed(rows)]

    def _notify_after_commit(self, user_id: str, title: str, message: str,
                             notification_type: NotificationType) -> None:
        if not self.notifications:
            return
        notifications = self.notifications
        self.storage.after_commit(
            lambda: notifications.send_quietly(user_id, title, message, notification_type)
        )

    def _money(self, amount: Decimal) -> Money:
        return Money(amount, self.currency)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.table_name, loan.id, self._loan_to_dict(loan))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        return loan.to_dict()

    def _loan_from_dict(self, data: Dict) -> Loan:
        """Convert dictionary to Loan"""
        decided_at = None
        if data.get('decided_at'):
            decided_at = datetime.fromisoformat(data['decided_at'])

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            user_name=data['user_name'],
            amount=Decimal(data['amount']),
            purpose=data.get('purpose', ""),
            status=LoanStatus(data['status']),
            admin_reason=data.get('admin_reason'),
            disbursement_transaction_id=data.get('disbursement_transaction_id'),
            decided_at=decided_at
        )
