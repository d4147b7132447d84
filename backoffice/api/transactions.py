"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends

from .deps import get_banking_system
from .schemas import (
    CreateTransactionRequest, DepositRequest, WithdrawRequest, TransferRequest,
    DecisionRequest, DepositInstructionsRequest, transaction_response
)
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=201)
async def create_transaction(
    request: CreateTransactionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a PENDING transaction with a signed amount"""
    transaction = system.transaction_engine.create(
        user_id=request.user_id,
        amount=request.amount,
        transaction_type=request.type,
        description=request.description,
        counterparty=request.counterparty
    )
    return transaction_response(transaction)


@router.post("/deposit", status_code=201)
async def deposit(
    request: DepositRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Request a deposit"""
    transaction = system.transaction_engine.deposit(
        request.user_id, request.amount, request.description
    )
    return transaction_response(transaction)


@router.post("/withdraw", status_code=201)
async def withdraw(
    request: WithdrawRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Request a withdrawal; refused when funds are insufficient"""
    transaction = system.transaction_engine.withdraw(
        request.user_id, request.amount, request.description
    )
    return transaction_response(transaction)


@router.post("/transfer", status_code=201)
async def transfer(
    request: TransferRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Outgoing transfer to a counterparty"""
    transaction = system.transaction_engine.transfer_out(
        request.user_id, request.amount, request.description, request.counterparty
    )
    return transaction_response(transaction)


@router.get("/pending")
async def list_pending(system: BankingSystem = Depends(get_banking_system)):
    """Approval queue, oldest first, with the owner's current name"""
    results = []
    for transaction in system.transaction_engine.list_pending():
        item = transaction_response(transaction)
        user = system.user_manager.get_user(transaction.user_id)
        item["user_name"] = user.name if user else None
        results.append(item)
    return {"transactions": results}


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    transaction = system.transaction_engine.require_transaction(transaction_id)
    return transaction_response(transaction)


@router.patch("/{transaction_id}")
async def decide_transaction(
    transaction_id: str,
    request: DecisionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Complete or reject a PENDING transaction"""
    result = system.transaction_engine.decide(
        transaction_id, request.status, request.admin_reason
    )
    return {
        "success": True,
        "refunded": result.refunded,
        "transaction": transaction_response(result.transaction)
    }


@router.post("/{transaction_id}/deposit-instructions")
async def attach_deposit_instructions(
    transaction_id: str,
    request: DepositInstructionsRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Attach payment instructions to a PENDING deposit"""
    transaction = system.transaction_engine.attach_deposit_instructions(
        transaction_id, request.payment_link, request.admin_message
    )
    return {"success": True, "transaction": transaction_response(transaction)}
