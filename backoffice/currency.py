"""
Currency Support Module

ISO 4217 currency codes and Decimal precision for balance arithmetic.
NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """Supported ISO 4217 codes and their minor-unit precision"""
    EUR = ("EUR", 2)
    USD = ("USD", 2)
    GBP = ("GBP", 2)
    JPY = ("JPY", 0)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


def quantize(amount: Decimal, currency: Currency = Currency.EUR) -> Decimal:
    """Round an amount to the currency's minor unit"""
    return amount.quantize(Decimal('0.1') ** currency.precision, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, currency: Currency = Currency.EUR, field_name: str = "amount") -> Decimal:
    """
    Parse user input into a quantized Decimal.

    Accepts Decimal, int, or numeric strings. Floats are converted through
    their string form so 0.1 stays 0.1.

    Raises:
        ValidationError: missing, non-numeric or non-finite input
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be numeric, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    try:
        return quantize(amount, currency)
    except InvalidOperation:
        raise ValidationError(f"{field_name} is out of range")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    Used for display; balances themselves are stored as Decimal strings.
    """
    amount: Decimal
    currency: Currency = Currency.EUR

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'amount', quantize(self.amount, self.currency))

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def currency_from_code(code: str) -> Currency:
    """Look up a Currency by ISO code"""
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValidationError(f"Unsupported currency {code!r}")
