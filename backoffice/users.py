"""
User Management Module

Manages account holders and administrators: identity, credentials, the
balance field every lifecycle engine writes to, account status and
beneficiaries.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import hashlib
import hmac
import re
import secrets
import uuid

from .currency import parse_amount
from .errors import ConflictError, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .notifications import NotificationDispatcher, NotificationType
from .logging_config import get_logger, log_action


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class UserRole(Enum):
    """Fixed at creation, never transitioned"""
    USER = "USER"
    ADMIN = "ADMIN"


class AccountStatus(Enum):
    """Persisted and observable; enforcement happens outside the core"""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BLOCKED = "BLOCKED"


@dataclass
class User(StorageRecord):
    """
    Account holder or administrator. ``balance`` is the single source of
    truth for spendable funds.
    """
    email: str
    name: str
    role: UserRole
    balance: Decimal
    status: AccountStatus = AccountStatus.ACTIVE
    iban: str = ""
    card_number: Optional[str] = None
    cvv: Optional[str] = None
    financial_institution: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Optional[str] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass
class Beneficiary(StorageRecord):
    """Transfer recipient saved by a user"""
    user_id: str
    name: str
    account_number: str
    bank_name: str


class UserManager:
    """
    Creates users, verifies credentials and owns every balance write.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 notifications: Optional[NotificationDispatcher] = None,
                 password_min_length: int = 6):
        self.storage = storage
        self.audit_trail = audit_trail
        self.notifications = notifications
        self.password_min_length = password_min_length
        self.table_name = "users"
        self.beneficiaries_table = "beneficiaries"
        self.logger = get_logger("backoffice.users")

    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        role: UserRole = UserRole.USER,
        balance: Any = Decimal('0'),
        iban: Optional[str] = None,
        financial_institution: Optional[str] = None,
        date_of_birth: Optional[str] = None,
        address: Optional[str] = None
    ) -> User:
        """
        Create a new user

        Args:
            name: Display name
            email: Login e-mail, unique across users
            password: Plain password, stored only as a salted scrypt hash
            role: USER or ADMIN
            balance: Opening balance
            iban: Account IBAN; generated when omitted

        Returns:
            Created User object

        Raises:
            ValidationError: missing name, malformed e-mail or short password
            ConflictError: e-mail already registered
        """
        if not name or not name.strip():
            raise ValidationError("name is required")
        email = (email or "").strip().lower()
        if not re.match(EMAIL_PATTERN, email):
            raise ValidationError("Invalid email format")
        if not password or len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters"
            )
        opening_balance = parse_amount(balance, field_name="balance")

        now = datetime.now(timezone.utc)
        salt = secrets.token_hex(16)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=email,
            name=name.strip(),
            role=role,
            balance=opening_balance,
            iban=iban if iban is not None else self._generate_iban(),
            card_number=self._generate_card_number(),
            cvv=f"{secrets.randbelow(900) + 100}",
            financial_institution=financial_institution,
            date_of_birth=date_of_birth,
            address=address,
            password_hash=self._hash_password(password, salt),
            password_salt=salt
        )

        with self.storage.atomic():
            if self.storage.find(self.table_name, {"email": email}):
                raise ConflictError(f"Email {email} is already registered")
            self._save_user(user)
            self.audit_trail.log_event(
                event_type=AuditEventType.USER_CREATED,
                entity_type="user",
                entity_id=user.id,
                metadata={
                    "email": email,
                    "role": role.value,
                    "opening_balance": opening_balance
                }
            )

        log_action(
            self.logger, "info", f"User created: {email}",
            user_id=user.id, action="create_user", entity="user", entity_id=user.id,
            amount=user.balance, details={"role": role.value}
        )
        return user

    def register(
        self,
        name: str,
        email: str,
        password: str,
        date_of_birth: Optional[str] = None,
        address: Optional[str] = None,
        financial_institution: Optional[str] = None
    ) -> User:
        """Self-registration: a USER with zero balance and a welcome notification"""
        with self.storage.atomic():
            user = self.create_user(
                name=name,
                email=email,
                password=password,
                date_of_birth=date_of_birth,
                address=address,
                financial_institution=financial_institution
            )
            if self.notifications:
                notifications = self.notifications
                self.storage.after_commit(lambda: notifications.send_quietly(
                    user.id, "Welcome", "Welcome to Fortress Bank.", NotificationType.INFO
                ))
        return user

    def bootstrap_admin(self, email: str, password: str, name: str = "Admin System") -> User:
        """Seed an administrator once; returns the existing one on later calls"""
        existing = self.get_user_by_email(email)
        if existing:
            return existing
        return self.create_user(name=name, email=email, password=password,
                                role=UserRole.ADMIN, iban="")

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user when the password matches, None otherwise"""
        user = self.get_user_by_email(email)
        if not user or not user.password_hash or not user.password_salt:
            return None
        candidate = self._hash_password(password, user.password_salt)
        if hmac.compare_digest(candidate, user.password_hash):
            return user
        return None

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        user_dict = self.storage.load(self.table_name, user_id)
        if user_dict:
            return self._user_from_dict(user_dict)
        return None

    def require_user(self, user_id: str) -> User:
        """Get user by ID or raise NotFoundError"""
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("user", user_id)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address"""
        users = self.storage.find(self.table_name, {"email": (email or "").strip().lower()})
        if users:
            return self._user_from_dict(users[0])
        return None

    def list_users(self, role: Optional[UserRole] = None) -> List[User]:
        """List users in creation order, optionally restricted to one role"""
        if role:
            rows = self.storage.find(self.table_name, {"role": role.value})
        else:
            rows = self.storage.load_all(self.table_name)
        return [self._user_from_dict(row) for row in rows]

    def apply_balance_delta(self, user_id: str, delta: Decimal) -> User:
        """
        Add ``delta`` to the user's balance.

        Read, compute and write happen inside the caller's unit of work so the
        paired transaction-row mutation commits or rolls back with it.
        """
        with self.storage.atomic():
            user = self.require_user(user_id)
            user.balance = user.balance + delta
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            return user

    def set_balance(self, user_id: str, new_balance: Decimal) -> User:
        """Overwrite the balance; returns the user with its previous balance replaced"""
        with self.storage.atomic():
            user = self.require_user(user_id)
            user.balance = new_balance
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            return user

    def set_status(self, user_id: str, status: AccountStatus) -> User:
        with self.storage.atomic():
            user = self.require_user(user_id)
            user.status = status
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            return user

    def set_financial_institution(self, user_id: str, institution: str) -> User:
        with self.storage.atomic():
            user = self.require_user(user_id)
            user.financial_institution = institution
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            return user

    def add_beneficiary(self, user_id: str, name: str, account_number: str,
                        bank_name: str) -> Beneficiary:
        """Save a transfer recipient for a user"""
        if not name or not account_number:
            raise ValidationError("Beneficiary name and account number are required")
        self.require_user(user_id)

        now = datetime.now(timezone.utc)
        beneficiary = Beneficiary(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            name=name,
            account_number=account_number,
            bank_name=bank_name or ""
        )
        self.storage.save(self.beneficiaries_table, beneficiary.id, beneficiary.to_dict())
        return beneficiary

    def list_beneficiaries(self, user_id: str) -> List[Beneficiary]:
        rows = self.storage.find(self.beneficiaries_table, {"user_id": user_id})
        return [self._beneficiary_from_dict(row) for row in rows]

    def _generate_iban(self) -> str:
        digits = "".join(str(secrets.randbelow(10)) for _ in range(20))
        return f"FR76 {digits[:10]} {digits[10:]}"

    def _generate_card_number(self) -> str:
        return " ".join(str(secrets.randbelow(9000) + 1000) for _ in range(4))

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _save_user(self, user: User) -> None:
        self.storage.save(self.table_name, user.id, user.to_dict())

    def _user_from_dict(self, data: Dict) -> User:
        """Convert dictionary to User"""
        return User(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            email=data['email'],
            name=data['name'],
            role=UserRole(data['role']),
            balance=Decimal(data['balance']),
            status=AccountStatus(data['status']),
            iban=data.get('iban', ""),
            card_number=data.get('card_number'),
            cvv=data.get('cvv'),
            financial_institution=data.get('financial_institution'),
            date_of_birth=data.get('date_of_birth'),
            address=data.get('address'),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt')
        )

    def _beneficiary_from_dict(self, data: Dict) -> Beneficiary:
        return Beneficiary(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            name=data['name'],
            account_number=data['account_number'],
            bank_name=data.get('bank_name', "")
        )
