"""
Ledger Error Kinds

Every error raised by the ledger layer derives from LedgerError and is
returned to the caller; none of them is fatal to the process.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""


class ValidationError(LedgerError, ValueError):
    """A candidate record or update violates a field constraint"""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")

    def to_dict(self) -> dict:
        return {"field": self.field, "reason": self.reason}


class InvalidStatusTransitionError(ValidationError):
    """Status change not allowed from the record's current status"""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            "status",
            f"cannot transition from {current} to {requested}"
        )


class NotFoundError(LedgerError, LookupError):
    """Lookup by id or transactionId found nothing"""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")


class ConflictError(LedgerError):
    """Unique constraint violated at the storage layer"""

    def __init__(self, field: str, value: str, message: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(message or f"{field} {value} already exists")


class StorageError(LedgerError):
    """Underlying persistence failure; retry policy belongs to the caller"""


class StorageTimeoutError(StorageError, TimeoutError):
    """Storage call exceeded the caller-supplied deadline"""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} exceeded deadline of {timeout}s")


class DuplicateKeyError(StorageError):
    """Raised by storage backends when an insert hits an existing key"""

    def __init__(self, table: str, index: str, key: Optional[str] = None):
        self.table = table
        self.index = index
        self.key = key
        super().__init__(f"duplicate key in {table}.{index}: {key}")
