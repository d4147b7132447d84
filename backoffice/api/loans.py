"""
Loan and institution change endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import get_banking_system
from .schemas import (
    LoanRequest, InstitutionChangeRequestBody, DecisionRequest,
    loan_response, transaction_response, institution_request_response
)
from ..errors import ValidationError
from ..system import BankingSystem
from ..loans import LoanStatus
from ..institutions import RequestStatus


router = APIRouter()
institution_router = APIRouter()


def parse_approval(status: str) -> bool:
    """APPROVED -> True, REJECTED -> False"""
    normalized = (status or "").upper()
    if normalized == "APPROVED":
        return True
    if normalized == "REJECTED":
        return False
    raise ValidationError("status must be APPROVED or REJECTED")


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """All loans, newest first"""
    loan_status = None
    if status:
        try:
            loan_status = LoanStatus(status.upper())
        except ValueError:
            raise ValidationError(f"Unknown loan status {status!r}")
    loans = system.loan_engine.list_loans(loan_status)
    return {"loans": [loan_response(loan) for loan in loans]}


@router.post("", status_code=201)
async def request_loan(
    request: LoanRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    loan = system.loan_engine.request(
        request.user_id, request.user_name, request.amount, request.purpose
    )
    return loan_response(loan)


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    return loan_response(system.loan_engine.require_loan(loan_id))


@router.patch("/{loan_id}")
async def decide_loan(
    loan_id: str,
    request: DecisionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Approve (and disburse) or reject a PENDING loan"""
    decision = system.loan_engine.decide(
        loan_id, parse_approval(request.status), request.admin_reason
    )
    disbursement = None
    if decision.disbursement:
        disbursement = transaction_response(decision.disbursement)
    return {
        "success": True,
        "loan": loan_response(decision.loan),
        "disbursement": disbursement
    }


@institution_router.get("")
async def list_institution_requests(
    status: Optional[str] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    request_status = None
    if status:
        try:
            request_status = RequestStatus(status.upper())
        except ValueError:
            raise ValidationError(f"Unknown request status {status!r}")
    requests = system.institution_manager.list_requests(request_status)
    return {"requests": [institution_request_response(r) for r in requests]}


@institution_router.post("", status_code=201)
async def request_institution_change(
    request: InstitutionChangeRequestBody,
    system: BankingSystem = Depends(get_banking_system)
):
    change_request = system.institution_manager.request(
        request.user_id, request.requested_institution
    )
    return institution_request_response(change_request)


@institution_router.patch("/{request_id}")
async def decide_institution_change(
    request_id: str,
    request: DecisionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    change_request = system.institution_manager.decide(
        request_id, parse_approval(request.status), request.admin_reason
    )
    return {"success": True, "request": institution_request_response(change_request)}
