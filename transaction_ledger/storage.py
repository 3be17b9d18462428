"""
Storage Backend Module

Provides the abstract transaction store contract consumed by the ledger
service, plus implementations for in-memory (testing) and SQLite
(persistence). The store is the only shared mutable resource: it serializes
writes and enforces reference uniqueness at insert time.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from datetime import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from pathlib import Path
import sqlite3
import threading

from .exceptions import DuplicateError, NotFoundError
from .models import (
    Transaction, TransactionType, TransactionStatus, Page, PageRequest,
    utc_now, format_datetime, parse_datetime
)


class Operator(Enum):
    """Comparison operators understood by every backend"""
    EQ = "="
    GTE = ">="
    LTE = "<="


@dataclass(frozen=True)
class Condition:
    """A single comparison against one record field"""
    field: str
    operator: Operator
    value: Any

    def matches(self, record: Transaction) -> bool:
        actual = getattr(record, self.field)
        if self.operator is Operator.EQ:
            return actual == self.value
        if self.operator is Operator.GTE:
            return actual >= self.value
        return actual <= self.value


@dataclass(frozen=True)
class Predicate:
    """Conjunction of conditions; an empty predicate matches every record"""
    conditions: Tuple[Condition, ...] = ()

    def matches(self, record: Transaction) -> bool:
        return all(condition.matches(record) for condition in self.conditions)


MATCH_ALL = Predicate()


class TransactionStore(ABC):
    """Abstract interface for transaction storage backends"""

    @abstractmethod
    def create(self, record: Transaction) -> Transaction:
        """Insert a new record, assigning id and timestamps.

        Raises DuplicateError when the reference is already taken.
        """
        pass

    @abstractmethod
    def find_by_id(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def exists_by_id(self, transaction_id: int) -> bool:
        pass

    @abstractmethod
    def exists_by_reference(self, reference: str) -> bool:
        pass

    @abstractmethod
    def update(self, record: Transaction) -> Transaction:
        """Overwrite a stored record, keeping created_at and refreshing updated_at"""
        pass

    @abstractmethod
    def delete(self, transaction_id: int) -> bool:
        """Delete a record, returning False when it did not exist"""
        pass

    @abstractmethod
    def query(self, predicate: Predicate, page_request: PageRequest) -> Page:
        """Return one sorted page of records matching the predicate"""
        pass

    @abstractmethod
    def sum(self, account_number: str, transaction_type: TransactionType) -> Optional[Decimal]:
        """Sum of amounts for an account and type, None when nothing matches"""
        pass

    @abstractmethod
    def count_by_account(self, account_number: str) -> int:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def find_recent(self, limit: int) -> List[Transaction]:
        """Most recent records by transaction date, newest first"""
        pass

    @abstractmethod
    def search_by_keyword(self, keyword: str, page_request: PageRequest) -> Page:
        """Case-insensitive substring match over reference and description"""
        pass

    def close(self) -> None:
        """Release backend resources (default no-op)"""
        pass


def _sort_value(record: Transaction, field: str) -> Any:
    value = getattr(record, field)
    if isinstance(value, Enum):
        return value.value
    return value


class InMemoryTransactionStore(TransactionStore):
    """In-memory storage implementation for testing"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._records: Dict[int, Dict[str, Any]] = {}
        self._ids_by_reference: Dict[str, int] = {}
        self._next_id = 1
        self._clock = clock or utc_now
        self._lock = threading.RLock()

    def _load(self, transaction_id: int) -> Optional[Transaction]:
        data = self._records.get(transaction_id)
        # Rehydrate to prevent external mutation of stored state
        return Transaction.from_dict(dict(data)) if data else None

    def _all(self) -> List[Transaction]:
        return [Transaction.from_dict(dict(data)) for data in self._records.values()]

    def _sorted_page(self, records: List[Transaction], page_request: PageRequest) -> Page:
        descending = page_request.descending
        records.sort(key=lambda r: r.id, reverse=descending)
        records.sort(key=lambda r: _sort_value(r, page_request.sort_by), reverse=descending)
        start = page_request.offset
        return Page.of(records[start:start + page_request.size], page_request, len(records))

    def create(self, record: Transaction) -> Transaction:
        with self._lock:
            if record.reference in self._ids_by_reference:
                raise DuplicateError(record.reference)

            now = self._clock()
            stored = Transaction.from_dict(record.to_dict())
            stored.id = self._next_id
            stored.created_at = now
            stored.updated_at = now
            self._next_id += 1

            self._records[stored.id] = stored.to_dict()
            self._ids_by_reference[stored.reference] = stored.id
            return self._load(stored.id)

    def find_by_id(self, transaction_id: int) -> Optional[Transaction]:
        with self._lock:
            return self._load(transaction_id)

    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        with self._lock:
            transaction_id = self._ids_by_reference.get(reference)
            if transaction_id is None:
                return None
            return self._load(transaction_id)

    def exists_by_id(self, transaction_id: int) -> bool:
        with self._lock:
            return transaction_id in self._records

    def exists_by_reference(self, reference: str) -> bool:
        with self._lock:
            return reference in self._ids_by_reference

    def update(self, record: Transaction) -> Transaction:
        with self._lock:
            existing = self._records.get(record.id)
            if existing is None:
                raise NotFoundError(record.id)

            data = record.to_dict()
            data['created_at'] = existing['created_at']
            data['updated_at'] = format_datetime(self._clock())

            if data['reference'] != existing['reference']:
                if data['reference'] in self._ids_by_reference:
                    raise DuplicateError(data['reference'])
                del self._ids_by_reference[existing['reference']]
                self._ids_by_reference[data['reference']] = record.id

            self._records[record.id] = data
            return self._load(record.id)

    def delete(self, transaction_id: int) -> bool:
        with self._lock:
            data = self._records.pop(transaction_id, None)
            if data is None:
                return False
            del self._ids_by_reference[data['reference']]
            return True

    def query(self, predicate: Predicate, page_request: PageRequest) -> Page:
        with self._lock:
            matches = [record for record in self._all() if predicate.matches(record)]
        return self._sorted_page(matches, page_request)

    def sum(self, account_number: str, transaction_type: TransactionType) -> Optional[Decimal]:
        with self._lock:
            amounts = [
                record.amount for record in self._all()
                if record.account_number == account_number
                and record.transaction_type == transaction_type
            ]
        if not amounts:
            return None
        return sum(amounts, Decimal("0.00"))

    def count_by_account(self, account_number: str) -> int:
        with self._lock:
            return sum(
                1 for data in self._records.values()
                if data['account_number'] == account_number
            )

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def find_recent(self, limit: int) -> List[Transaction]:
        with self._lock:
            records = self._all()
        records.sort(key=lambda r: (r.transaction_date, r.id), reverse=True)
        return records[:limit]

    def search_by_keyword(self, keyword: str, page_request: PageRequest) -> Page:
        needle = keyword.casefold()
        with self._lock:
            matches = [
                record for record in self._all()
                if needle in record.reference.casefold()
                or needle in record.description.casefold()
            ]
        return self._sorted_page(matches, page_request)


# Record field -> SQL column
_COLUMNS: Dict[str, str] = {
    "id": "id",
    "reference": "reference",
    "account_number": "account_number",
    "amount": "amount_cents",
    "transaction_type": "transaction_type",
    "description": "description",
    "transaction_date": "transaction_date",
    "status": "status",
    "created_at": "created_at",
    "updated_at": "updated_at",
}

_CENTS = Decimal(100)


def _to_cents(amount: Decimal, rounding: str = ROUND_FLOOR) -> int:
    return int((Decimal(amount) * _CENTS).to_integral_value(rounding=rounding))


def _from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2)


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _column_value(condition: Condition) -> Any:
    value = condition.value
    if condition.field == "amount":
        # Round bounds inward so fractional cents never widen a range
        rounding = ROUND_CEILING if condition.operator is Operator.GTE else ROUND_FLOOR
        return _to_cents(value, rounding)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, Enum):
        return value.value
    return value


class SQLiteTransactionStore(TransactionStore):
    """SQLite storage implementation for persistence"""

    TABLE = "transactions"

    def __init__(self, db_path: Union[str, Path] = ":memory:",
                 clock: Optional[Callable[[], datetime]] = None):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        # LIKE and lower() only fold ASCII; search folds in Python like the in-memory store
        self._connection.create_function("casefold", 1, _casefold, deterministic=True)
        self._clock = clock or utc_now
        self._lock = threading.RLock()

        # Enable WAL mode for better concurrent access
        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._ensure_table()

    def _ensure_table(self) -> None:
        """Ensure table exists with proper schema"""
        # AUTOINCREMENT keeps ids of deleted rows from being reused
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reference TEXT NOT NULL UNIQUE,
                account_number TEXT NOT NULL,
                amount_cents INTEGER NOT NULL,
                transaction_type TEXT NOT NULL,
                description TEXT NOT NULL,
                transaction_date TEXT NOT NULL,
                status TEXT NOT NULL,
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        for column in ("account_number", "transaction_type", "transaction_date"):
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_{column}
                ON {self.TABLE}({column})
            """)
        self._connection.commit()

    def _row_to_record(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row['id'],
            reference=row['reference'],
            account_number=row['account_number'],
            amount=_from_cents(row['amount_cents']),
            transaction_type=TransactionType(row['transaction_type']),
            description=row['description'],
            transaction_date=parse_datetime(row['transaction_date']),
            status=TransactionStatus(row['status']),
            notes=row['notes'],
            created_at=parse_datetime(row['created_at']),
            updated_at=parse_datetime(row['updated_at']),
        )

    def _fetch_one(self, sql: str, params: Tuple[Any, ...]) -> Optional[Transaction]:
        with self._lock:
            row = self._connection.execute(sql, params).fetchone()
        return self._row_to_record(row) if row else None

    def _page(self, where: str, params: List[Any], page_request: PageRequest) -> Page:
        column = _COLUMNS[page_request.sort_by]
        direction = "DESC" if page_request.descending else "ASC"
        with self._lock:
            total = self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {self.TABLE} {where}", params
            ).fetchone()['count']
            rows = self._connection.execute(f"""
                SELECT * FROM {self.TABLE} {where}
                ORDER BY {column} {direction}, id {direction}
                LIMIT ? OFFSET ?
            """, params + [page_request.size, page_request.offset]).fetchall()
        return Page.of([self._row_to_record(row) for row in rows], page_request, total)

    def create(self, record: Transaction) -> Transaction:
        now = format_datetime(self._clock())
        with self._lock:
            try:
                cursor = self._connection.execute(f"""
                    INSERT INTO {self.TABLE} (
                        reference, account_number, amount_cents, transaction_type,
                        description, transaction_date, status, notes,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.reference, record.account_number, _to_cents(record.amount),
                    record.transaction_type.value, record.description,
                    format_datetime(record.transaction_date), record.status.value,
                    record.notes, now, now
                ))
                self._connection.commit()
            except sqlite3.IntegrityError as e:
                self._connection.rollback()
                if f"{self.TABLE}.reference" in str(e):
                    raise DuplicateError(record.reference) from e
                raise
            return self.find_by_id(cursor.lastrowid)

    def find_by_id(self, transaction_id: int) -> Optional[Transaction]:
        return self._fetch_one(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (transaction_id,)
        )

    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        return self._fetch_one(
            f"SELECT * FROM {self.TABLE} WHERE reference = ?", (reference,)
        )

    def exists_by_id(self, transaction_id: int) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT 1 FROM {self.TABLE} WHERE id = ? LIMIT 1", (transaction_id,)
            )
            return cursor.fetchone() is not None

    def exists_by_reference(self, reference: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT 1 FROM {self.TABLE} WHERE reference = ? LIMIT 1", (reference,)
            )
            return cursor.fetchone() is not None

    def update(self, record: Transaction) -> Transaction:
        now = format_datetime(self._clock())
        with self._lock:
            try:
                cursor = self._connection.execute(f"""
                    UPDATE {self.TABLE} SET
                        reference = ?, account_number = ?, amount_cents = ?,
                        transaction_type = ?, description = ?, transaction_date = ?,
                        status = ?, notes = ?, updated_at = ?
                    WHERE id = ?
                """, (
                    record.reference, record.account_number, _to_cents(record.amount),
                    record.transaction_type.value, record.description,
                    format_datetime(record.transaction_date), record.status.value,
                    record.notes, now, record.id
                ))
                self._connection.commit()
            except sqlite3.IntegrityError as e:
                self._connection.rollback()
                if f"{self.TABLE}.reference" in str(e):
                    raise DuplicateError(record.reference) from e
                raise
            if cursor.rowcount == 0:
                raise NotFoundError(record.id)
            return self.find_by_id(record.id)

    def delete(self, transaction_id: int) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                f"DELETE FROM {self.TABLE} WHERE id = ?", (transaction_id,)
            )
            self._connection.commit()
            return cursor.rowcount > 0

    def query(self, predicate: Predicate, page_request: PageRequest) -> Page:
        clauses = []
        params: List[Any] = []
        for condition in predicate.conditions:
            clauses.append(f"{_COLUMNS[condition.field]} {condition.operator.value} ?")
            params.append(_column_value(condition))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._page(where, params, page_request)

    def sum(self, account_number: str, transaction_type: TransactionType) -> Optional[Decimal]:
        with self._lock:
            row = self._connection.execute(f"""
                SELECT SUM(amount_cents) AS total FROM {self.TABLE}
                WHERE account_number = ? AND transaction_type = ?
            """, (account_number, transaction_type.value)).fetchone()
        if row['total'] is None:
            return None
        return _from_cents(row['total'])

    def count_by_account(self, account_number: str) -> int:
        with self._lock:
            return self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {self.TABLE} WHERE account_number = ?",
                (account_number,)
            ).fetchone()['count']

    def count(self) -> int:
        with self._lock:
            return self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {self.TABLE}"
            ).fetchone()['count']

    def find_recent(self, limit: int) -> List[Transaction]:
        with self._lock:
            rows = self._connection.execute(f"""
                SELECT * FROM {self.TABLE}
                ORDER BY transaction_date DESC, id DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def search_by_keyword(self, keyword: str, page_request: PageRequest) -> Page:
        needle = keyword.casefold()
        where = (
            "WHERE instr(casefold(reference), ?) > 0 "
            "OR instr(casefold(description), ?) > 0"
        )
        return self._page(where, [needle, needle], page_request)

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
