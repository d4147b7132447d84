"""
Institution Change Requests

A user asks to move their account to another financial institution; an
admin approves or rejects once. Approval updates the user's
``financial_institution`` in the same unit of work.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .errors import ConflictError, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .users import UserManager
from .notifications import NotificationDispatcher, NotificationType
from .logging_config import get_logger, log_action


class RequestStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class InstitutionChangeRequest(StorageRecord):
    user_id: str
    user_name: str
    current_institution: Optional[str]
    requested_institution: str
    status: RequestStatus = RequestStatus.PENDING
    admin_reason: Optional[str] = None
    decided_at: Optional[datetime] = None


class InstitutionChangeManager:
    """Lifecycle of institution change requests"""

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        audit_trail: AuditTrail,
        notifications: Optional[NotificationDispatcher] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.audit_trail = audit_trail
        self.notifications = notifications
        self.table_name = "institution_requests"
        self.logger = get_logger("backoffice.institutions")

    def request(self, user_id: str, requested_institution: str) -> InstitutionChangeRequest:
        if not requested_institution or not requested_institution.strip():
            raise ValidationError("requested_institution is required")

        with self.storage.atomic():
            user = self.user_manager.require_user(user_id)
            now = datetime.now(timezone.utc)
            change_request = InstitutionChangeRequest(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                user_name=user.name,
                current_institution=user.financial_institution,
                requested_institution=requested_institution.strip()
            )
            self.storage.save(self.table_name, change_request.id, change_request.to_dict())

        log_action(
            self.logger, "info", "Institution change requested",
            user_id=user_id, action="request_institution_change",
            entity="institution_request", entity_id=change_request.id,
            details={"requested_institution": change_request.requested_institution}
        )
        return change_request

    def decide(self, request_id: str, approved: bool,
               admin_reason: Optional[str] = None) -> InstitutionChangeRequest:
        """
        Approve or reject a PENDING request

        Raises:
            NotFoundError: unknown request
            ConflictError: request already decided
        """
        with self.storage.atomic():
            change_request = self.require_request(request_id)
            if change_request.status != RequestStatus.PENDING:
                raise ConflictError(
                    f"Institution request {request_id} is already {change_request.status.value}",
                    current_status=change_request.status.value
                )

            change_request.status = RequestStatus.APPROVED if approved else RequestStatus.REJECTED
            change_request.admin_reason = admin_reason
            change_request.decided_at = datetime.now(timezone.utc)
            change_request.updated_at = change_request.decided_at

            swapped = self.storage.update_where(
                self.table_name, change_request.id,
                {"status": RequestStatus.PENDING.value},
                change_request.to_dict()
            )
            if not swapped:
                raise ConflictError(f"Institution request {request_id} was decided concurrently")

            if approved:
                self.user_manager.set_financial_institution(
                    change_request.user_id, change_request.requested_institution
                )
                self.audit_trail.log_event(
                    event_type=AuditEventType.INSTITUTION_CHANGED,
                    entity_type="user",
                    entity_id=change_request.user_id,
                    metadata={
                        "request_id": change_request.id,
                        "previous_institution": change_request.current_institution,
                        "new_institution": change_request.requested_institution
                    }
                )

            if self.notifications:
                notifications = self.notifications
                if approved:
                    title = "Institution Change Approved"
                    message = f"Your account now belongs to {change_request.requested_institution}."
                    notification_type = NotificationType.SUCCESS
                else:
                    title = "Institution Change Rejected"
                    message = f"Your request to move to {change_request.requested_institution} was rejected."
                    notification_type = NotificationType.ERROR
                if admin_reason:
                    message = f"{message} Reason: {admin_reason}"
                user_id = change_request.user_id
                self.storage.after_commit(
                    lambda: notifications.send_quietly(user_id, title, message, notification_type)
                )

        log_action(
            self.logger, "info", f"Institution request {change_request.status.value.lower()}",
            user_id=change_request.user_id, action="decide_institution_change",
            entity="institution_request", entity_id=change_request.id,
            status=change_request.status
        )
        return change_request

    def get_request(self, request_id: str) -> Optional[InstitutionChangeRequest]:
        data = self.storage.load(self.table_name, request_id)
        if data:
            return self._request_from_dict(data)
        return None

    def require_request(self, request_id: str) -> InstitutionChangeRequest:
        change_request = self.get_request(request_id)
        if not change_request:
            raise NotFoundError("institution request", request_id)
        return change_request

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[InstitutionChangeRequest]:
        """Requests, newest first"""
        if status:
            rows = self.storage.find(self.table_name, {"status": status.value})
        else:
            rows = self.storage.load_all(self.table_name)
        return [self._request_from_dict(row) for row in reversed(rows)]

    def _request_from_dict(self, data: Dict) -> InstitutionChangeRequest:
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        data["status"] = RequestStatus(data["status"])
        if data.get("decided_at"):
            data["decided_at"] = datetime.fromisoformat(data["decided_at"])
        return InstitutionChangeRequest(**data)
