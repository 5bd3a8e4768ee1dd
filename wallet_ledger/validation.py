"""
Ledger Entry Validation

Constraint checks for candidate ledger entries. Each check returns a
ValidationResult instead of raising, so callers can run them before any
mutation and decide how to report the first failure.
"""

from decimal import Decimal, InvalidOperation
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .errors import ValidationError, InvalidStatusTransitionError
from .models import (
    MIN_AMOUNT, NOTE_MAX_LENGTH, DESCRIPTION_MAX_LENGTH, ALLOWED_TRANSITIONS,
    TransactionType, TransactionStatus,
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single check; ``value`` carries the normalized input"""
    ok: bool
    field: Optional[str] = None
    reason: Optional[str] = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> 'ValidationResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, field: str, reason: str) -> 'ValidationResult':
        return cls(ok=False, field=field, reason=reason)

    def raise_for_error(self) -> Any:
        """Raise ValidationError on failure, otherwise return the value"""
        if not self.ok:
            raise ValidationError(self.field, self.reason)
        return self.value

    def __bool__(self) -> bool:
        return self.ok


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a numeric input; None if it is not a finite number"""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not number.is_finite():
        return None
    return number


def _check_account(field: str, value: Any) -> ValidationResult:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationResult.failure(field, f"{field} account is required")
    if not isinstance(value, str):
        return ValidationResult.failure(field, f"{field} account must be a string identifier")
    return ValidationResult.success(value.strip())


def check_accounts(from_account_id: Any, to_account_id: Any) -> ValidationResult:
    """Both parties present and distinct"""
    source = _check_account("from", from_account_id)
    if not source:
        return source
    destination = _check_account("to", to_account_id)
    if not destination:
        return destination
    if source.value == destination.value:
        return ValidationResult.failure("to", "from and to must be different accounts")
    return ValidationResult.success((source.value, destination.value))


def check_amount(value: Any) -> ValidationResult:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationResult.failure("amount", "amount is required")
    amount = _to_decimal(value)
    if amount is None:
        return ValidationResult.failure("amount", "amount must be a number")
    if amount < MIN_AMOUNT:
        return ValidationResult.failure("amount", f"amount below minimum of {MIN_AMOUNT}")
    return ValidationResult.success(amount)


def check_type(value: Any) -> ValidationResult:
    if isinstance(value, TransactionType):
        return ValidationResult.success(value)
    try:
        return ValidationResult.success(TransactionType(value))
    except ValueError:
        allowed = ", ".join(t.value for t in TransactionType)
        return ValidationResult.failure("type", f"type must be one of: {allowed}")


def _check_text(field: str, value: Any, max_length: int) -> ValidationResult:
    if value is None:
        return ValidationResult.success(None)
    if not isinstance(value, str):
        return ValidationResult.failure(field, f"{field} must be a string")
    if len(value) > max_length:
        return ValidationResult.failure(field, f"{field} exceeds {max_length} characters")
    return ValidationResult.success(value)


def check_note(value: Any) -> ValidationResult:
    return _check_text("note", value, NOTE_MAX_LENGTH)


def check_description(value: Any) -> ValidationResult:
    return _check_text("description", value, DESCRIPTION_MAX_LENGTH)


def normalize_transaction_id(value: str) -> str:
    return value.strip().upper()


def check_transaction_id(value: Any) -> ValidationResult:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationResult.failure("transactionId", "transactionId is required")
    if not isinstance(value, str):
        return ValidationResult.failure("transactionId", "transactionId must be a string")
    return ValidationResult.success(normalize_transaction_id(value))


def check_fee(value: Any) -> ValidationResult:
    if value is None:
        return ValidationResult.success(Decimal("0"))
    fee = _to_decimal(value)
    if fee is None:
        return ValidationResult.failure("fee", "fee must be a number")
    if fee < 0:
        return ValidationResult.failure("fee", "fee must not be negative")
    return ValidationResult.success(fee)


def check_status(value: Any) -> ValidationResult:
    if isinstance(value, TransactionStatus):
        return ValidationResult.success(value)
    try:
        return ValidationResult.success(TransactionStatus(value))
    except ValueError:
        allowed = ", ".join(s.value for s in TransactionStatus)
        return ValidationResult.failure("status", f"status must be one of: {allowed}")


def check_status_transition(
    current: TransactionStatus,
    requested: TransactionStatus
) -> ValidationResult:
    """pending -> completed | failed; re-applying the current status is a no-op"""
    if requested == current or requested in ALLOWED_TRANSITIONS[current]:
        return ValidationResult.success(requested)
    return ValidationResult.failure(
        "status", f"cannot transition from {current.value} to {requested.value}"
    )


def ensure_status_transition(current: TransactionStatus, requested: TransactionStatus) -> None:
    if not check_status_transition(current, requested):
        raise InvalidStatusTransitionError(current.value, requested.value)


def validate_new_transaction(
    candidate: Mapping[str, Any],
    transaction_id_taken: Optional[Callable[[str], bool]] = None
) -> ValidationResult:
    """
    Run every field check in order and stop at the first violation.

    Order: amount, type, note, description, transactionId (presence, then
    uniqueness through ``transaction_id_taken``), fee, then the from/to
    pair. On success ``value`` is a dict of normalized fields ready for
    storage.
    """
    normalized: Dict[str, Union[str, Decimal, TransactionType, None]] = {}
    checks = (
        ("amount", check_amount),
        ("transaction_type", check_type),
        ("note", check_note),
        ("description", check_description),
        ("transaction_id", check_transaction_id),
        ("fee", check_fee),
    )
    for key, check in checks:
        result = check(candidate.get(key))
        if not result:
            return result
        if key == "transaction_id" and transaction_id_taken and transaction_id_taken(result.value):
            return ValidationResult.failure("transactionId", "duplicate transactionId")
        normalized[key] = result.value

    accounts = check_accounts(candidate.get("from_account_id"), candidate.get("to_account_id"))
    if not accounts:
        return accounts
    normalized["from_account_id"], normalized["to_account_id"] = accounts.value

    return ValidationResult.success(normalized)
