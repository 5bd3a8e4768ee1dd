"""
Transaction Ledger Module

LedgerStore validates and persists ledger entries, one per money movement.
Candidates are checked field by field before any write; accepted entries are
stored with status ``pending`` and managed timestamps, and can then only be
advanced to ``completed`` or ``failed``. Lookups are served by the sender,
receiver, transactionId and status indexes.
"""

import csv
import io
import math
import secrets
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Union

from .accounts import AccountLookup
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    LedgerError, ValidationError, NotFoundError, ConflictError,
    StorageError, StorageTimeoutError, DuplicateKeyError,
)
from .logging_config import get_logger, log_action
from .models import (
    TransactionRecord, TransactionType, TransactionStatus, Direction,
    TRANSACTION_INDEXES,
)
from .storage import StorageInterface
from .validation import (
    validate_new_transaction, check_transaction_id, check_status,
    check_description, check_type, ensure_status_transition,
)


CSV_HEADERS = ["Date", "Transaction ID", "Type", "Amount", "Fee", "Status", "Note"]

_NEWEST_FIRST = [("created_at", True)]

# Sentinel for "use the configured deadline"
_DEFAULT_TIMEOUT = object()


@dataclass(frozen=True)
class Pagination:
    """1-based page number and page size"""
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError("page", "page must be at least 1")
        if self.limit < 1:
            raise ValidationError("limit", "limit must be at least 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class TransactionPage:
    """One page of an account's history plus totals for the whole query"""
    items: List[TransactionRecord]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [item.to_api_dict() for item in self.items],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }


class LedgerStore:
    """
    Validator and store for ledger entries.

    Construct one per storage backend and pass it to whatever needs it.
    Every public operation takes an optional ``timeout`` in seconds; omitted,
    the configured ``storage_timeout_seconds`` applies, and ``None`` waits
    indefinitely.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: Optional[AccountLookup] = None,
        audit_trail: Optional[AuditTrail] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.table_name = self.config.transactions_table
        self.logger = get_logger("wallet_ledger.transactions")
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.storage_workers,
            thread_name_prefix="ledger-storage"
        )
        # Serializes read-check-write of status updates within this process
        self._update_lock = threading.Lock()

        self.storage.ensure_indexes(self.table_name, TRANSACTION_INDEXES)

    # Storage access

    def _call(self, operation: str, fn: Callable, *args, timeout: Any = _DEFAULT_TIMEOUT):
        """Run a storage unit of work under the caller's deadline"""
        deadline = self.config.storage_timeout_seconds if timeout is _DEFAULT_TIMEOUT else timeout
        try:
            if deadline is None:
                return fn(*args)
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=deadline)
            except FutureTimeoutError:
                future.cancel()
                self.logger.warning(f"{operation} exceeded deadline of {deadline}s")
                raise StorageTimeoutError(operation, deadline) from None
        except LedgerError:
            raise
        except Exception as e:
            self.logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(f"{operation} failed: {e}") from e

    def _load_by_transaction_id(self, transaction_id: str) -> Optional[TransactionRecord]:
        found = self.storage.find(self.table_name, {"transaction_id": transaction_id}, limit=1)
        if found:
            return TransactionRecord.from_dict(found[0])
        return None

    def _transaction_id_taken(self, transaction_id: str) -> bool:
        return self.storage.count(self.table_name, {"transaction_id": transaction_id}) > 0

    def _audit(self, event_type: AuditEventType, record: TransactionRecord, metadata: Dict[str, Any]) -> None:
        if self.audit_trail and self.config.enable_audit_logging:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="transaction",
                entity_id=record.transaction_id,
                metadata=metadata
            )

    # Create

    def create(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Union[Decimal, int, float, str, None],
        transaction_type: Union[TransactionType, str, None],
        transaction_id: Optional[str],
        note: Optional[str] = None,
        description: Optional[str] = None,
        fee: Union[Decimal, int, float, str, None] = None,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> TransactionRecord:
        """
        Validate a candidate entry and persist it as pending.

        Raises:
            ValidationError: first violated field constraint, a duplicate
                transactionId, or an unknown account
            ConflictError: another writer stored the same transactionId
                between the uniqueness check and the insert
            StorageTimeoutError: the deadline passed
            StorageError: the backend failed
        """
        candidate = {
            "from_account_id": from_account_id,
            "to_account_id": to_account_id,
            "amount": amount,
            "transaction_type": transaction_type,
            "note": note,
            "description": description,
            "transaction_id": transaction_id,
            "fee": fee,
        }
        return self._call("create", self._create, candidate, timeout=timeout)

    def _create(self, candidate: Dict[str, Any]) -> TransactionRecord:
        fields = validate_new_transaction(
            candidate, transaction_id_taken=self._transaction_id_taken
        ).raise_for_error()

        if self.accounts is not None:
            for field, key in (("from", "from_account_id"), ("to", "to_account_id")):
                if not self.accounts.exists(fields[key]):
                    raise ValidationError(field, f"account {fields[key]} does not exist")

        now = datetime.now(timezone.utc)
        record = TransactionRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            status=TransactionStatus.PENDING,
            **fields
        )

        try:
            with self.storage.atomic():
                self.storage.insert(self.table_name, record.id, record.to_dict())
                self._audit(AuditEventType.TRANSACTION_CREATED, record, {
                    "from": record.from_account_id,
                    "to": record.to_account_id,
                    "amount": record.amount,
                    "fee": record.fee,
                    "type": record.transaction_type,
                })
        except DuplicateKeyError as e:
            log_action(
                self.logger, "warning", f"Duplicate transactionId on insert: {record.transaction_id}",
                action="create_transaction", resource=f"transaction:{record.transaction_id}"
            )
            raise ConflictError("transactionId", record.transaction_id) from e

        log_action(
            self.logger, "info", f"Transaction created: {record.transaction_id}",
            action="create_transaction", resource=f"transaction:{record.transaction_id}",
            extra={
                "from": record.from_account_id,
                "to": record.to_account_id,
                "amount": str(record.amount),
                "fee": str(record.fee),
                "type": record.transaction_type.value,
            }
        )
        return record

    # Lookups

    def find_by_transaction_id(
        self,
        transaction_id: str,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> Optional[TransactionRecord]:
        """Case-insensitive exact lookup; None if there is no such entry"""
        normalized = check_transaction_id(transaction_id).raise_for_error()
        return self._call("find_by_transaction_id", self._load_by_transaction_id, normalized, timeout=timeout)

    def get_by_transaction_id(
        self,
        transaction_id: str,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> TransactionRecord:
        record = self.find_by_transaction_id(transaction_id, timeout=timeout)
        if record is None:
            raise NotFoundError("transaction", str(transaction_id).upper())
        return record

    def find_by_id(self, record_id: str, timeout: Any = _DEFAULT_TIMEOUT) -> Optional[TransactionRecord]:
        """Lookup by internal storage id; None if there is no such entry"""

        def load():
            data = self.storage.load(self.table_name, record_id)
            return TransactionRecord.from_dict(data) if data else None

        return self._call("find_by_id", load, timeout=timeout)

    def get_by_id(self, record_id: str, timeout: Any = _DEFAULT_TIMEOUT) -> TransactionRecord:
        record = self.find_by_id(record_id, timeout=timeout)
        if record is None:
            raise NotFoundError("transaction", record_id)
        return record

    def find_by_status(
        self,
        status: Union[TransactionStatus, str],
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> List[TransactionRecord]:
        """All entries in a status, in storage order"""
        status = check_status(status).raise_for_error()

        def query():
            return [
                TransactionRecord.from_dict(data)
                for data in self.storage.find(self.table_name, {"status": status.value})
            ]

        return self._call("find_by_status", query, timeout=timeout)

    def find_by_account(
        self,
        account_id: str,
        direction: Union[Direction, str] = Direction.FROM,
        pagination: Optional[Pagination] = None,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> List[TransactionRecord]:
        """Entries where the account is the sender, receiver or either, newest first"""
        direction = self._direction(direction)
        items, _ = self._call(
            "find_by_account", self._query_account, account_id, direction, {}, pagination, False,
            timeout=timeout
        )
        return items

    def history(
        self,
        account_id: str,
        pagination: Optional[Pagination] = None,
        status: Union[TransactionStatus, str, None] = None,
        transaction_type: Union[TransactionType, str, None] = None,
        direction: Union[Direction, str] = Direction.ANY,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> TransactionPage:
        """Paginated account history with optional status and type filters"""
        direction = self._direction(direction)
        pagination = pagination or Pagination(limit=self.config.default_page_size)
        filters: Dict[str, str] = {}
        if status is not None:
            filters["status"] = check_status(status).raise_for_error().value
        if transaction_type is not None:
            filters["transaction_type"] = check_type(transaction_type).raise_for_error().value

        items, total = self._call(
            "history", self._query_account, account_id, direction, filters, pagination, True,
            timeout=timeout
        )
        return TransactionPage(
            items=items,
            total=total,
            page=pagination.page,
            limit=self._clamp(pagination).limit
        )

    @staticmethod
    def _direction(direction: Union[Direction, str]) -> Direction:
        if isinstance(direction, Direction):
            return direction
        try:
            return Direction(direction)
        except ValueError:
            allowed = ", ".join(d.value for d in Direction)
            raise ValidationError("direction", f"direction must be one of: {allowed}")

    def _clamp(self, pagination: Pagination) -> Pagination:
        """Same page with the limit capped at max_page_size"""
        if pagination.limit <= self.config.max_page_size:
            return pagination
        return Pagination(page=pagination.page, limit=self.config.max_page_size)

    def _query_account(
        self,
        account_id: str,
        direction: Direction,
        filters: Dict[str, str],
        pagination: Optional[Pagination],
        with_total: bool
    ):
        """
        Query one or both account indexes.

        For ``Direction.ANY`` each side is fetched up to the end of the
        requested page and the two newest-first lists are merged; an entry
        never has the same account on both sides, so the lists are disjoint.
        """
        keys = {
            Direction.FROM: ["from_account_id"],
            Direction.TO: ["to_account_id"],
            Direction.ANY: ["from_account_id", "to_account_id"],
        }[direction]

        if pagination is not None:
            pagination = self._clamp(pagination)
            limit, offset = pagination.limit, pagination.offset
        else:
            limit, offset = None, 0

        if len(keys) == 1:
            query = dict(filters, **{keys[0]: account_id})
            rows = self.storage.find(self.table_name, query, sort=_NEWEST_FIRST, limit=limit, offset=offset)
        else:
            window = offset + limit if limit is not None else None
            rows = []
            for key in keys:
                query = dict(filters, **{key: account_id})
                rows.extend(self.storage.find(self.table_name, query, sort=_NEWEST_FIRST, limit=window))
            rows.sort(key=lambda r: r["created_at"], reverse=True)
            rows = rows[offset:offset + limit] if limit is not None else rows

        total = None
        if with_total:
            total = sum(
                self.storage.count(self.table_name, dict(filters, **{key: account_id}))
                for key in keys
            )
        return [TransactionRecord.from_dict(row) for row in rows], total

    # Status changes

    def update_status(
        self,
        transaction_id: str,
        new_status: Union[TransactionStatus, str],
        description: Optional[str] = None,
        timeout: Any = _DEFAULT_TIMEOUT
    ) -> TransactionRecord:
        """
        Advance an entry's status.

        Only ``status``, ``updated_at`` and, when given, ``description``
        change. With ``enforce_status_transitions`` on, only
        pending -> completed | failed is accepted; re-applying the current
        status returns the entry untouched.

        Raises:
            ValidationError: unknown status, over-long description or an
                illegal transition
            NotFoundError: no entry with that transactionId
        """
        normalized = check_transaction_id(transaction_id).raise_for_error()
        status = check_status(new_status).raise_for_error()
        if description is not None:
            check_description(description).raise_for_error()
        return self._call(
            "update_status", self._update_status, normalized, status, description,
            timeout=timeout
        )

    def _update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        description: Optional[str]
    ) -> TransactionRecord:
        with self._update_lock:
            record = self._load_by_transaction_id(transaction_id)
            if record is None:
                raise NotFoundError("transaction", transaction_id)

            if status == record.status and description is None:
                return record
            if self.config.enforce_status_transitions:
                ensure_status_transition(record.status, status)

            previous = record.status
            record.status = status
            if description is not None:
                record.description = description
            record.updated_at = datetime.now(timezone.utc)

            with self.storage.atomic():
                self.storage.save(self.table_name, record.id, record.to_dict())
                self._audit(AuditEventType.TRANSACTION_STATUS_CHANGED, record, {
                    "from_status": previous,
                    "to_status": status,
                })

        log_action(
            self.logger, "info",
            f"Transaction {transaction_id} status {previous.value} -> {status.value}",
            action="update_transaction_status", resource=f"transaction:{transaction_id}"
        )
        return record

    # Helpers used by the transfer flow and exports

    @staticmethod
    def generate_transaction_id() -> str:
        """TXN followed by 16 upper-case hex characters"""
        return f"TXN{secrets.token_hex(8).upper()}"

    def calculate_fee(self, amount: Union[Decimal, int, float, str]) -> Decimal:
        """Transfer fee at the configured rate, rounded half-up to cents"""
        rate = Decimal(self.config.transfer_fee_rate)
        return (Decimal(str(amount)) * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def export_csv(self, account_id: str, timeout: Any = _DEFAULT_TIMEOUT) -> str:
        """All of an account's entries, newest first, as CSV"""
        records = self.find_by_account(account_id, Direction.ANY, timeout=timeout)

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=CSV_HEADERS)
        writer.writeheader()
        for record in records:
            writer.writerow({
                "Date": record.created_at.date().isoformat(),
                "Transaction ID": record.transaction_id,
                "Type": record.transaction_type.value,
                "Amount": str(record.amount),
                "Fee": str(record.fee),
                "Status": record.status.value,
                "Note": record.note or "",
            })
        csv_content = output.getvalue()
        output.close()
        return csv_content

    def close(self) -> None:
        """Stop the storage worker pool"""
        self._executor.shutdown(wait=True)
