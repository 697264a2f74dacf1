from decimal import Decimal, InvalidOperation
from typing import Optional

from .config import get_settings
from .errors import LedgerValidationError, UnauthorizedError
from .models import Actor


def require_admin(actor: Actor, operation: str) -> None:
    if not actor.is_admin:
        raise UnauthorizedError(operation, actor.caller_id)


def require_positive(amount: object, field: str = "amount") -> Decimal:
    value = _as_decimal(amount, field)
    if value <= 0:
        raise LedgerValidationError(field, f"{field} must be greater than 0", value=value)
    return value


def require_non_negative(amount: object, field: str = "amount") -> Decimal:
    value = _as_decimal(amount, field)
    if value < 0:
        raise LedgerValidationError(field, f"{field} cannot be negative", value=value)
    return value


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _as_decimal(amount: object, field: str) -> Decimal:
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as error:
        raise LedgerValidationError(field, f"{field} must be a decimal amount", value=str(amount)) from error
    if not value.is_finite():
        raise LedgerValidationError(field, f"{field} must be a finite amount", value=str(value))
    ceiling = get_settings().max_amount
    if abs(value) > ceiling:
        raise LedgerValidationError(field, f"{field} cannot exceed {ceiling}", value=str(value))
    return value
