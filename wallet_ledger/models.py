"""
Ledger Entry Model

One TransactionRecord is one money movement between two accounts. Records
are stored as JSON documents keyed by an internal uuid; ``transaction_id``
is the external, case-normalized identifier.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, Optional, Any, FrozenSet
from enum import Enum

from .storage import StorageRecord, IndexSpec


MIN_AMOUNT = Decimal("0.01")
NOTE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 500


class TransactionType(Enum):
    """Direction tag from the perspective of the record owner"""
    SENT = "sent"
    RECEIVED = "received"


class TransactionStatus(Enum):
    """States of a ledger entry"""
    PENDING = "pending"      # Created on transfer initiation
    COMPLETED = "completed"
    FAILED = "failed"


class Direction(Enum):
    """Which side of an entry an account is matched against"""
    FROM = "from"
    TO = "to"
    ANY = "any"


ALLOWED_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


# The four access patterns the ledger is optimized for
TRANSACTION_INDEXES = (
    IndexSpec("from_created", (("from_account_id", False), ("created_at", True))),
    IndexSpec("to_created", (("to_account_id", False), ("created_at", True))),
    IndexSpec("transaction_id", (("transaction_id", False),), unique=True),
    IndexSpec("status", (("status", False),)),
)


@dataclass
class TransactionRecord(StorageRecord):
    """
    A single ledger entry.

    ``amount`` and ``fee`` are Decimals and are stored as strings;
    ``transaction_id`` is always upper case.
    """
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transaction_type: TransactionType
    transaction_id: str
    status: TransactionStatus = TransactionStatus.PENDING
    note: Optional[str] = None
    description: Optional[str] = None
    fee: Decimal = Decimal("0")

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def total_debit(self) -> Decimal:
        """Amount plus fee, as charged to the sender"""
        return self.amount + self.fee

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['transaction_type'] = self.transaction_type.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            from_account_id=data['from_account_id'],
            to_account_id=data['to_account_id'],
            amount=Decimal(data['amount']),
            transaction_type=TransactionType(data['transaction_type']),
            transaction_id=data['transaction_id'],
            status=TransactionStatus(data.get('status', TransactionStatus.PENDING.value)),
            note=data.get('note'),
            description=data.get('description'),
            fee=Decimal(data.get('fee', '0')),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        """External representation with the wallet API's field names"""
        return {
            "id": self.id,
            "from": self.from_account_id,
            "to": self.to_account_id,
            "amount": str(self.amount),
            "type": self.transaction_type.value,
            "status": self.status.value,
            "note": self.note,
            "description": self.description,
            "transactionId": self.transaction_id,
            "fee": str(self.fee),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
