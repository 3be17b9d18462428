"""
Ledger Data Model

Transaction record, its enumerations, and the value types used to request and
return pages of records. All monetary values are Decimal with two places and
all timestamps are timezone-aware UTC.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Mapping, Tuple
from enum import Enum
import math

from .exceptions import ValidationError


MAX_AMOUNT = Decimal("999999999.99")
AMOUNT_QUANTUM = Decimal("0.01")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SORT_FIELD = "transaction_date"


class TransactionType(Enum):
    """Kinds of ledger transactions"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    FEE = "FEE"
    INTEREST = "INTEREST"
    EXCHANGE = "EXCHANGE"

    @property
    def display_name(self) -> str:
        return self.value.title()


class TransactionStatus(Enum):
    """Processing status; set at creation and not transitioned by the ledger"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class TypeLookup:
    """Result of resolving a transaction type name: a variant or an error"""
    variant: Optional[TransactionType] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.variant is not None


_TYPE_TABLE: Dict[str, TransactionType] = {t.name.lower(): t for t in TransactionType}


def lookup_transaction_type(value: Any) -> TypeLookup:
    """Resolve a transaction type name case-insensitively"""
    if isinstance(value, TransactionType):
        return TypeLookup(variant=value)
    if value is None or not str(value).strip():
        return TypeLookup(error="Transaction type is required")
    variant = _TYPE_TABLE.get(str(value).strip().lower())
    if variant is None:
        return TypeLookup(error=f"Invalid transaction type: {value}")
    return TypeLookup(variant=variant)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept a datetime or an ISO-8601 string and return aware UTC"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise TypeError(f"Cannot interpret {value!r} as a datetime")


def format_datetime(value: datetime) -> str:
    """Fixed-width ISO format so stored strings sort chronologically"""
    return to_utc(value).isoformat(timespec="microseconds")


@dataclass
class Transaction:
    """
    A single ledger entry for an account.

    Only description and notes change after creation; the store owns id,
    created_at and updated_at.
    """
    reference: str
    account_number: str
    amount: Decimal
    transaction_type: TransactionType
    description: str
    transaction_date: datetime
    status: TransactionStatus = TransactionStatus.COMPLETED
    notes: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary"""
        return {
            'id': self.id,
            'reference': self.reference,
            'account_number': self.account_number,
            'amount': str(self.amount),
            'transaction_type': self.transaction_type.value,
            'description': self.description,
            'transaction_date': format_datetime(self.transaction_date),
            'status': self.status.value,
            'notes': self.notes,
            'created_at': format_datetime(self.created_at) if self.created_at else None,
            'updated_at': format_datetime(self.updated_at) if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Create instance from a dictionary produced by to_dict"""
        return cls(
            id=data.get('id'),
            reference=data['reference'],
            account_number=data['account_number'],
            amount=Decimal(str(data['amount'])),
            transaction_type=TransactionType(data['transaction_type']),
            description=data['description'],
            transaction_date=parse_datetime(data['transaction_date']),
            status=TransactionStatus(data.get('status', TransactionStatus.COMPLETED.value)),
            notes=data.get('notes'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# Sort keys accepted from callers, normalized without underscores or case
_SORT_FIELDS: Dict[str, str] = {
    "id": "id",
    "reference": "reference",
    "accountnumber": "account_number",
    "amount": "amount",
    "type": "transaction_type",
    "transactiontype": "transaction_type",
    "description": "description",
    "transactiondate": "transaction_date",
    "status": "status",
    "createdat": "created_at",
    "updatedat": "updated_at",
}


def resolve_sort_field(name: str) -> str:
    key = (name or "").replace("_", "").strip().lower()
    resolved = _SORT_FIELDS.get(key)
    if resolved is None:
        raise ValidationError("sort", f"Cannot sort by unknown field: {name}")
    return resolved


@dataclass(frozen=True)
class PageRequest:
    """Zero-based page number, page size and sort order"""
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort_by: str = DEFAULT_SORT_FIELD
    direction: SortDirection = SortDirection.DESC

    @classmethod
    def of(
        cls,
        page: int = 0,
        size: int = DEFAULT_PAGE_SIZE,
        sort_by: Optional[str] = None,
        direction: Any = SortDirection.DESC,
        max_size: int = MAX_PAGE_SIZE
    ) -> 'PageRequest':
        """Validate caller-supplied paging parameters"""
        if page is None or int(page) < 0:
            raise ValidationError("page", "Page number must not be negative")
        if size is None or int(size) < 1:
            raise ValidationError("size", "Page size must be at least 1")
        if int(size) > max_size:
            raise ValidationError("size", f"Page size must not exceed {max_size}")

        if isinstance(direction, SortDirection):
            resolved_direction = direction
        else:
            text = str(direction or "desc").strip().lower()
            if text not in ("asc", "desc"):
                raise ValidationError("direction", f"Sort direction must be 'asc' or 'desc', got: {direction}")
            resolved_direction = SortDirection(text)

        return cls(
            page=int(page),
            size=int(size),
            sort_by=resolve_sort_field(sort_by or DEFAULT_SORT_FIELD),
            direction=resolved_direction,
        )

    @property
    def offset(self) -> int:
        return self.page * self.size

    @property
    def descending(self) -> bool:
        return self.direction == SortDirection.DESC

    def cache_key_parts(self) -> Tuple[Any, ...]:
        return (self.page, self.size, self.sort_by, self.direction.value)


@dataclass
class Page:
    """One page of query results with derived pagination flags"""
    content: List[Any]
    page_number: int
    page_size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_elements / self.page_size)

    @property
    def is_first(self) -> bool:
        return self.page_number == 0

    @property
    def is_last(self) -> bool:
        total_pages = self.total_pages
        return total_pages == 0 or self.page_number == total_pages - 1

    @classmethod
    def of(cls, content: List[Any], page_request: PageRequest, total_elements: int) -> 'Page':
        return cls(
            content=list(content),
            page_number=page_request.page,
            page_size=page_request.size,
            total_elements=total_elements,
        )


@dataclass(frozen=True)
class TransactionCriteria:
    """Optional filter dimensions; an unset dimension matches everything"""
    account_number: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None for value in (
                self.account_number, self.transaction_type, self.start_date,
                self.end_date, self.min_amount, self.max_amount
            )
        )

    def cache_key_parts(self) -> Tuple[Any, ...]:
        return (
            self.account_number,
            self.transaction_type.value if self.transaction_type else None,
            format_datetime(self.start_date) if self.start_date else None,
            format_datetime(self.end_date) if self.end_date else None,
            str(self.min_amount) if self.min_amount is not None else None,
            str(self.max_amount) if self.max_amount is not None else None,
        )


# camelCase names used on the wire by existing clients
_FIELD_ALIASES = {
    "accountNumber": "account_number",
    "type": "transaction_type",
    "transactionType": "transaction_type",
    "transactionDate": "transaction_date",
}


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}


@dataclass
class TransactionRequest:
    """Input for creating a transaction; validated by the service"""
    account_number: Optional[str] = None
    amount: Any = None
    transaction_type: Any = None
    description: Optional[str] = None
    transaction_date: Any = None
    notes: Optional[str] = None
    reference: Optional[str] = None  # ignored, references are always generated

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TransactionRequest':
        normalized = _normalize_keys(data)
        return cls(**{
            name: normalized[name]
            for name in cls.__dataclass_fields__
            if name in normalized
        })


@dataclass
class UpdateTransactionRequest:
    """Input for updating a transaction; only description and notes apply"""
    description: Optional[str] = None
    notes: Optional[str] = None
    ignored_fields: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'UpdateTransactionRequest':
        normalized = _normalize_keys(data)
        return cls(
            description=normalized.get("description"),
            notes=normalized.get("notes"),
            ignored_fields=sorted(
                key for key in normalized if key not in ("description", "notes")
            ),
        )
