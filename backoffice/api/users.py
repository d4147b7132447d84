"""
User endpoints: registration, login, account view and admin overrides
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from .deps import get_banking_system
from .schemas import (
    RegisterRequest, CreateUserRequest, LoginRequest, BeneficiaryRequest,
    StatusRequest, BalanceRequest, AdjustmentRequest,
    user_response, transaction_response, account_view_response
)
from ..errors import ValidationError
from ..system import BankingSystem
from ..users import UserRole


router = APIRouter()


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Self-registration of an account holder"""
    user = system.user_manager.register(
        name=request.name,
        email=request.email,
        password=request.password,
        date_of_birth=request.date_of_birth,
        address=request.address,
        financial_institution=request.financial_institution
    )
    return user_response(user)


@router.post("", status_code=201)
async def create_user(
    request: CreateUserRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a user or administrator"""
    try:
        role = UserRole(request.role.upper())
    except ValueError:
        raise ValidationError(f"Unknown role {request.role!r}")

    user = system.user_manager.create_user(
        name=request.name,
        email=request.email,
        password=request.password,
        role=role,
        balance=request.balance,
        iban=request.iban,
        financial_institution=request.financial_institution
    )
    return user_response(user)


@router.post("/login")
async def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Verify credentials and return the account view"""
    user = system.user_manager.authenticate(request.email, request.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return account_view_response(system.get_account_view(user.id))


@router.get("")
async def list_users(
    role: Optional[str] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """List users, optionally by role"""
    user_role = None
    if role:
        try:
            user_role = UserRole(role.upper())
        except ValueError:
            raise ValidationError(f"Unknown role {role!r}")
    users = system.user_manager.list_users(user_role)
    return {"users": [user_response(user) for user in users]}


@router.get("/{user_id}")
async def get_account_view(
    user_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Full account view: user, transactions, notifications, beneficiaries"""
    return account_view_response(system.get_account_view(user_id))


@router.post("/{user_id}/beneficiaries", status_code=201)
async def add_beneficiary(
    user_id: str,
    request: BeneficiaryRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    beneficiary = system.user_manager.add_beneficiary(
        user_id, request.name, request.account_number, request.bank_name
    )
    return beneficiary.to_dict()


@router.patch("/{user_id}/status")
async def set_status(
    user_id: str,
    request: StatusRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Change account status; any status may follow any other"""
    user = system.admin.set_status(user_id, request.status)
    return {"success": True, "user": user_response(user)}


@router.put("/{user_id}/balance")
async def set_exact_balance(
    user_id: str,
    request: BalanceRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Overwrite the balance without a transaction record"""
    user = system.admin.set_exact_balance(user_id, request.balance)
    return user_response(user)


@router.post("/{user_id}/adjustments", status_code=201)
async def adjust_balance(
    user_id: str,
    request: AdjustmentRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Completed adjustment transaction that appears in the history"""
    transaction = system.admin.adjust_by_delta(
        user_id, request.amount, request.type, request.description
    )
    return transaction_response(transaction)
