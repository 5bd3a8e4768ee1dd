"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL. Records are stored as JSON documents; all
monetary values are stored as Decimal strings and timestamps as ISO-8601 strings.

Each backend maintains the secondary indexes declared through ``ensure_indexes``
and enforces unique indexes atomically with the write, so a uniqueness check
plus insert cannot race.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Sequence, Tuple, Iterable
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import json
import re
import threading

from .errors import DuplicateKeyError


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SortSpec = Sequence[Tuple[str, bool]]  # (key, descending)


def _check_identifier(name: str) -> str:
    """Table, index and document keys are interpolated into SQL"""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid storage identifier: {name!r}")
    return name


def _copy(data: Any) -> Any:
    """Deep copy through JSON so callers never share state with storage"""
    return json.loads(json.dumps(data, default=str))


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Fixed-width timestamps keep lexical order equal to time order
        result['created_at'] = self.created_at.isoformat(timespec='microseconds')
        result['updated_at'] = self.updated_at.isoformat(timespec='microseconds')
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


@dataclass(frozen=True)
class IndexSpec:
    """
    Secondary index declaration.

    ``fields`` holds ``(key, descending)`` pairs; the first key is the
    equality lookup key, the rest describe the order inside it.
    """
    name: str
    fields: Tuple[Tuple[str, bool], ...]
    unique: bool = False

    def __post_init__(self):
        _check_identifier(self.name)
        if not self.fields:
            raise ValueError(f"Index {self.name} must declare at least one field")
        for key, _ in self.fields:
            _check_identifier(key)

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self.fields)

    @property
    def leading_key(self) -> str:
        return self.fields[0][0]


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record, raising DuplicateKeyError on any key conflict"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(
        self,
        table: str,
        filters: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Find records whose keys equal the filter values"""
        pass

    @abstractmethod
    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table, optionally matching filters"""
        pass

    @abstractmethod
    def ensure_indexes(self, table: str, indexes: Iterable[IndexSpec]) -> None:
        """Declare secondary indexes on a table (idempotent)"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def _sort_records(records: List[Dict[str, Any]], sort: SortSpec) -> None:
    # Stable sorts applied from the least significant key
    for key, descending in reversed(list(sort)):
        records.sort(
            key=lambda r: (r.get(key) is not None, r.get(key) if r.get(key) is not None else ""),
            reverse=descending
        )


def _page(records: List[Any], limit: Optional[int], offset: int) -> List[Any]:
    if offset:
        records = records[offset:]
    if limit is not None:
        records = records[:limit]
    return records


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing and single-process use"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # table -> index name -> (spec, leading key value -> ordered ids)
        self._indexes: Dict[str, Dict[str, Tuple[IndexSpec, Dict[Any, Dict[str, None]]]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}
            self._indexes[table] = {}

    def _index_add(self, table: str, record_id: str, record: Dict[str, Any]) -> None:
        for spec, entries in self._indexes[table].values():
            bucket = entries.setdefault(record.get(spec.leading_key), {})
            bucket[record_id] = None

    def _index_remove(self, table: str, record_id: str, record: Dict[str, Any]) -> None:
        for spec, entries in self._indexes[table].values():
            key = record.get(spec.leading_key)
            bucket = entries.get(key)
            if bucket is not None:
                bucket.pop(record_id, None)
                if not bucket:
                    del entries[key]

    def _unique_violation(self, table: str, record_id: str, record: Dict[str, Any]) -> Optional[str]:
        """Return the name of the unique index the record would violate"""
        for name, (spec, entries) in self._indexes[table].items():
            if not spec.unique:
                continue
            full_key = tuple(record.get(k) for k in spec.keys)
            if any(part is None for part in full_key):
                continue
            for other_id in entries.get(full_key[0], {}):
                if other_id == record_id:
                    continue
                other = self._data[table][other_id]
                if tuple(other.get(k) for k in spec.keys) == full_key:
                    return name
        return None

    def _write(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        record = _copy(data)
        violated = self._unique_violation(table, record_id, record)
        if violated:
            key = ":".join(str(record.get(k)) for k in self._indexes[table][violated][0].keys)
            raise DuplicateKeyError(table, violated, key)
        previous = self._data[table].get(record_id)
        if previous is not None:
            self._index_remove(table, record_id, previous)
        self._data[table][record_id] = record
        self._index_add(table, record_id, record)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._write(table, record_id, data)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; the check and the write happen under one lock"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise DuplicateKeyError(table, "id", record_id)
            self._write(table, record_id, data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].pop(record_id, None)
            if record is None:
                return False
            self._index_remove(table, record_id, record)
            return True

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def _candidates(self, table: str, filters: Dict[str, Any]) -> Iterable[str]:
        """Narrow the scan with an index whose leading key is filtered on"""
        for spec, entries in self._indexes[table].values():
            if spec.leading_key in filters:
                return list(entries.get(filters[spec.leading_key], {}))
        return list(self._data[table])

    def find(
        self,
        table: str,
        filters: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record_id in self._candidates(table, filters):
                record = self._data[table][record_id]
                if _matches(record, filters):
                    results.append(record)
            if sort:
                _sort_records(results, sort)
            return [_copy(record) for record in _page(results, limit, offset)]

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            if not filters:
                return len(self._data[table])
            return sum(
                1 for record_id in self._candidates(table, filters)
                if _matches(self._data[table][record_id], filters)
            )

    def ensure_indexes(self, table: str, indexes: Iterable[IndexSpec]) -> None:
        """Build hash indexes over existing records"""
        with self._lock:
            self._ensure_table(table)
            for spec in indexes:
                if spec.name in self._indexes[table]:
                    continue
                self._indexes[table][spec.name] = (spec, {})
                for record_id, record in self._data[table].items():
                    if spec.unique and self._unique_violation(table, record_id, record) == spec.name:
                        del self._indexes[table][spec.name]
                        raise DuplicateKeyError(table, spec.name)
                    bucket = self._indexes[table][spec.name][1].setdefault(
                        record.get(spec.leading_key), {}
                    )
                    bucket[record_id] = None

    def clear_table(self, table: str) -> None:
        """Clear all records from a table, keeping its index declarations"""
        with self._lock:
            self._ensure_table(table)
            self._data[table] = {}
            for spec, entries in self._indexes[table].values():
                entries.clear()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


_SQLITE_INDEX_IN_MESSAGE = re.compile(r"index '([^']+)'")


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @staticmethod
    def _field(key: str) -> str:
        return f"json_extract(data, '$.{_check_identifier(key)}')"

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            _check_identifier(table)
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            if not self._in_transaction:
                self._connection.commit()
            self._tables.add(table)

    def _execute_write(self, table: str, sql: str, params: tuple) -> sqlite3.Cursor:
        """Run a write, translating unique violations into DuplicateKeyError"""
        try:
            cursor = self._connection.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if not self._in_transaction:
                self._connection.rollback()
            match = _SQLITE_INDEX_IN_MESSAGE.search(str(e))
            index = match.group(1) if match else "id"
            key = params[0] if index == "id" and params else None
            raise DuplicateKeyError(table, index, key) from e

        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()
        return cursor

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite (upsert keyed on id)"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat(timespec='microseconds')
            self._execute_write(table, f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; unique indexes are enforced by SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat(timespec='microseconds')
            self._execute_write(table, f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute_write(table, f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def _where(self, filters: Dict[str, Any]) -> Tuple[str, list]:
        if not filters:
            return "", []
        conditions = [f"{self._field(key)} = ?" for key in filters]
        return "WHERE " + " AND ".join(conditions), list(filters.values())

    def find(
        self,
        table: str,
        filters: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Find records matching filters; filtering, ordering and paging run in SQL"""
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters)
            if sort:
                order = ", ".join(
                    f"{self._field(key)} {'DESC' if descending else 'ASC'}"
                    for key, descending in sort
                )
            else:
                order = "created_at, rowid"
            sql = f"SELECT data FROM {table} {where} ORDER BY {order}"
            if limit is not None or offset:
                sql += " LIMIT ? OFFSET ?"
                params.extend([limit if limit is not None else -1, offset])
            cursor = self._connection.execute(sql, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters or {})
            cursor = self._connection.execute(
                f"SELECT COUNT(*) as count FROM {table} {where}", params
            )
            return cursor.fetchone()['count']

    def ensure_indexes(self, table: str, indexes: Iterable[IndexSpec]) -> None:
        """Create expression indexes over the JSON document"""
        with self._lock:
            self._ensure_table(table)
            for spec in indexes:
                columns = ", ".join(
                    f"{self._field(key)}{' DESC' if descending else ''}"
                    for key, descending in spec.fields
                )
                unique = "UNIQUE " if spec.unique else ""
                self._execute_write(table, f"""
                    CREATE {unique}INDEX IF NOT EXISTS idx_{table}_{spec.name}
                    ON {table}({columns})
                """, ())

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._execute_write(table, f"DELETE FROM {table}", ())

    @contextmanager
    def atomic(self):
        """Hold the shared connection for the whole unit of work"""
        with self._lock:
            with super().atomic():
                yield

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # SQLite with isolation_level='DEFERRED' automatically starts transactions
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend over JSONB documents"""

    def __init__(self, connection_string: str):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install wallet-ledger[postgres]")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._in_transaction = False
        self._tables: set = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    @staticmethod
    def _field(key: str) -> str:
        return f"(data->>'{_check_identifier(key)}')"

    @staticmethod
    def _sort_field(key: str) -> str:
        # jsonb ordering keeps numbers numeric
        return f"(data->'{_check_identifier(key)}')"

    @contextmanager
    def _cursor(self, table: str, write: bool = False):
        cursor = self._connection.cursor()
        try:
            yield cursor
            if write and not self._in_transaction:
                self._connection.commit()
        except self.psycopg2.IntegrityError as e:
            if not self._in_transaction:
                self._connection.rollback()
            constraint = getattr(getattr(e, 'diag', None), 'constraint_name', None)
            index = "id" if not constraint or constraint.endswith("_pkey") else constraint
            raise DuplicateKeyError(table, index) from e
        except self.psycopg2.Error:
            if not self._in_transaction:
                self._connection.rollback()
            raise
        finally:
            cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            _check_identifier(table)
            with self._cursor(table, write=True) as cursor:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMP DEFAULT NOW(),
                        updated_at TIMESTAMP DEFAULT NOW(),
                        seq BIGSERIAL
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                    ON {table}(created_at)
                """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            with self._cursor(table, write=True) as cursor:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                """, (record_id, json.dumps(data, default=str), now, now))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; unique indexes are enforced by PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            with self._cursor(table, write=True) as cursor:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor(table) as cursor:
                cursor.execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,))
                row = cursor.fetchone()
                return dict(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor(table, write=True) as cursor:
                cursor.execute(f"DELETE FROM {table} WHERE id = %s", (record_id,))
                return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor(table) as cursor:
                cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (record_id,))
                return cursor.fetchone() is not None

    def _where(self, filters: Dict[str, Any]) -> Tuple[str, list]:
        if not filters:
            return "", []
        conditions = [f"{self._field(key)} = %s" for key in filters]
        return "WHERE " + " AND ".join(conditions), [str(value) for value in filters.values()]

    def find(
        self,
        table: str,
        filters: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters)
            if sort:
                order = ", ".join(
                    f"{self._sort_field(key)} {'DESC' if descending else 'ASC'}"
                    for key, descending in sort
                )
            else:
                order = "seq"
            sql = f"SELECT data FROM {table} {where} ORDER BY {order}"
            if limit is not None:
                sql += " LIMIT %s"
                params.append(limit)
            if offset:
                sql += " OFFSET %s"
                params.append(offset)
            with self._cursor(table) as cursor:
                cursor.execute(sql, params)
                return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters or {})
            with self._cursor(table) as cursor:
                cursor.execute(f"SELECT COUNT(*) as count FROM {table} {where}", params)
                return cursor.fetchone()['count']

    def ensure_indexes(self, table: str, indexes: Iterable[IndexSpec]) -> None:
        """Create expression indexes over the JSONB document"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor(table, write=True) as cursor:
                for spec in indexes:
                    # Leading key serves equality lookups, the rest serve ordering
                    columns = ", ".join(
                        f"{self._field(key) if position == 0 else self._sort_field(key)}"
                        f"{' DESC' if descending else ''}"
                        for position, (key, descending) in enumerate(spec.fields)
                    )
                    unique = "UNIQUE " if spec.unique else ""
                    cursor.execute(f"""
                        CREATE {unique}INDEX IF NOT EXISTS idx_{table}_{spec.name}
                        ON {table} ({columns})
                    """)

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor(table, write=True) as cursor:
                cursor.execute(f"DELETE FROM {table}")

    @contextmanager
    def atomic(self):
        """Hold the shared connection for the whole unit of work"""
        with self._lock:
            with super().atomic():
                yield

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # PostgreSQL transactions start automatically
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported forms: ``memory://``, ``sqlite:///path/to.db``,
    ``sqlite:///:memory:`` and ``postgresql://...``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
