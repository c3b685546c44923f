from __future__ import annotations

from typing import Any


# Upper bound for a single money field: 999,999,999,999.99 in minor units.
# Keeps sums of line totals well inside a signed 64-bit column.
MAX_AMOUNT_CENTS = 99_999_999_999_999

# Units on a single line
MAX_QUANTITY = 1_000_000

# Tax rate stored in basis points (1100 = 11.00%)
MAX_TAX_RATE_BPS = 10_000

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ProcurementError(Exception):
    """
    Base class for domain errors raised by the workflow services.

    Every error knows the HTTP status it maps to and can render itself as a
    JSON body, so routes only need one except-clause per request.
    """
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(ProcurementError):
    """400-level input problem."""


class AuthorizationError(ProcurementError):
    """403: actor lacks the role, department or ownership the action requires."""
    status_code = 403


class NotFoundError(ProcurementError):
    """404: a referenced PR / PO / vendor / budget / user does not exist."""
    status_code = 404

    def __init__(self, entity: str, entity_id: Any, message: str | None = None):
        super().__init__(message or f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {"error": self.message, "entity": self.entity, "entity_id": self.entity_id}


class InvalidTransitionError(ProcurementError):
    """409: the (current status, attempted action) pair is not in the transition table."""
    status_code = 409

    def __init__(self, current_status: str, attempted: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {attempted} from status {current_status}"
        )
        self.current_status = current_status
        self.attempted = attempted

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "current_status": self.current_status,
            "attempted": self.attempted,
        }


class InsufficientBudgetError(ProcurementError):
    """409: a reservation would push reserved + used above the budget total."""
    status_code = 409

    def __init__(self, available_cents: int, requested_cents: int):
        super().__init__(
            f"Insufficient budget. Required: {requested_cents}, Available: {available_cents}"
        )
        self.available_cents = available_cents
        self.requested_cents = requested_cents

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "available_cents": self.available_cents,
            "requested_cents": self.requested_cents,
        }


class ConcurrencyConflictError(ProcurementError):
    """409: lost an optimistic-locking race after all retries; safe to retry."""
    status_code = 409

    def __init__(self, message: str = "The record was changed by another request, please retry"):
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "retryable": True}


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain-digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_amount(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """Money in minor units: integer, non-negative, bounded."""
    amount = coerce_int(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and amount == 0:
        raise ValidationError(f"{field} must be > 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    quantity = coerce_int(value, field)
    if quantity <= 0:
        raise ValidationError(f"{field} must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return quantity


def check_amount_limit(amount: int, field: str) -> int:
    """Computed money (line totals, order totals) must stay within MAX_AMOUNT_CENTS."""
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValidationError(f"{field} must be a boolean")


def coerce_tax_rate_bps(value: Any) -> int:
    rate = coerce_int(value, "tax_rate_bps")
    if rate < 0 or rate > MAX_TAX_RATE_BPS:
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}")
    return rate


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
