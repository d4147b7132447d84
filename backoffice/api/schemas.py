"""
Pydantic schemas for API requests and response helpers
"""

from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..users import User
from ..transactions import Transaction
from ..loans import Loan
from ..notifications import Notification
from ..institutions import InstitutionChangeRequest
from ..system import AccountView


# User schemas
class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    date_of_birth: Optional[str] = None  # ISO date string
    address: Optional[str] = None
    financial_institution: Optional[str] = None


class CreateUserRequest(BaseModel):
    name: str
    email: str
    password: str
    role: str = "USER"
    balance: Decimal = Field(default=Decimal('0'), description="Opening balance")
    iban: Optional[str] = None
    financial_institution: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class BeneficiaryRequest(BaseModel):
    name: str
    account_number: str
    bank_name: str = ""


class StatusRequest(BaseModel):
    status: str = Field(..., description="ACTIVE, SUSPENDED or BLOCKED")


class BalanceRequest(BaseModel):
    balance: Decimal


class AdjustmentRequest(BaseModel):
    amount: Decimal = Field(..., description="Signed amount")
    type: Optional[str] = None
    description: str = "Admin Adjustment"


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    user_id: str
    amount: Decimal = Field(..., description="Signed amount, negative for debits")
    type: str
    description: str = ""
    counterparty: Optional[str] = None


class DepositRequest(BaseModel):
    user_id: str
    amount: Decimal = Field(..., description="Positive amount")
    description: str = "Deposit"


class WithdrawRequest(BaseModel):
    user_id: str
    amount: Decimal = Field(..., description="Positive amount")
    description: str = "Withdrawal"


class TransferRequest(BaseModel):
    user_id: str
    amount: Decimal = Field(..., description="Positive amount")
    description: str = "Transfer"
    counterparty: Optional[str] = None


class DecisionRequest(BaseModel):
    status: str
    admin_reason: Optional[str] = None


class DepositInstructionsRequest(BaseModel):
    payment_link: str
    admin_message: str = ""


# Loan schemas
class LoanRequest(BaseModel):
    user_id: str
    amount: Decimal
    purpose: str = ""
    user_name: Optional[str] = None


class InstitutionChangeRequestBody(BaseModel):
    user_id: str
    requested_institution: str


# Notification schemas
class SendNotificationRequest(BaseModel):
    user_id: str
    title: str
    message: str = ""
    type: str = "info"


class BroadcastRequest(BaseModel):
    title: str
    message: str = ""
    type: str = "info"
    role: str = "USER"


# Response helpers

def user_response(user: User) -> Dict[str, Any]:
    result = user.to_dict()
    result.pop("password_hash", None)
    result.pop("password_salt", None)
    return result


def transaction_response(transaction: Transaction) -> Dict[str, Any]:
    result = transaction.to_dict()
    result["date"] = result["created_at"]
    return result


def loan_response(loan: Loan) -> Dict[str, Any]:
    result = loan.to_dict()
    result["request_date"] = result["created_at"]
    return result


def notification_response(notification: Notification) -> Dict[str, Any]:
    result = notification.to_dict()
    result["date"] = result["created_at"]
    return result


def institution_request_response(change_request: InstitutionChangeRequest) -> Dict[str, Any]:
    result = change_request.to_dict()
    result["request_date"] = result["created_at"]
    return result


def account_view_response(view: AccountView) -> Dict[str, Any]:
    return {
        "user": user_response(view.user),
        "transactions": [transaction_response(t) for t in view.transactions],
        "notifications": [notification_response(n) for n in view.notifications],
        "beneficiaries": [b.to_dict() for b in view.beneficiaries]
    }
