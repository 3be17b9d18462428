"""
Ledger Service Module

Single entry point for reading and mutating the ledger. Writes validate their
input before touching the store, generate references with bounded collision
retry, and drop the affected cache namespaces. Reads go through the
read-through cache.
"""

from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union
import re

from .balances import BalanceAggregator
from .cache import (
    CacheLayer, TRANSACTIONS, RECENT_TRANSACTIONS, METADATA, WRITE_NAMESPACES, make_key
)
from .config import LedgerConfig, get_config
from .exceptions import (
    LedgerError, ValidationError, NotFoundError, DuplicateError, InternalError,
    ReferenceGenerationError
)
from .logging_config import get_logger, log_action
from .models import (
    Transaction, TransactionType, TransactionStatus, TransactionRequest,
    UpdateTransactionRequest, TransactionCriteria, Page, PageRequest,
    MAX_AMOUNT, AMOUNT_QUANTUM, lookup_transaction_type, parse_datetime, utc_now
)
from .queries import CriteriaQueryEngine
from .references import ReferenceGenerator
from .storage import TransactionStore


ACCOUNT_NUMBER_PATTERN = re.compile(r"[0-9]{8,12}")

DESCRIPTION_MIN_LENGTH = 5
DESCRIPTION_MAX_LENGTH = 200
NOTES_MAX_LENGTH = 1000


def _validate_description(description: Any) -> str:
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("description", "Description is required")
    description = description.strip()
    if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            "description",
            f"Description must be between {DESCRIPTION_MIN_LENGTH} and "
            f"{DESCRIPTION_MAX_LENGTH} characters"
        )
    return description


def _validate_notes(notes: Any) -> Optional[str]:
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise ValidationError("notes", "Notes must be text")
    if len(notes) > NOTES_MAX_LENGTH:
        raise ValidationError("notes", f"Notes cannot exceed {NOTES_MAX_LENGTH} characters")
    return notes


def _validate_amount(amount: Any) -> Decimal:
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        raise ValidationError("amount", "Amount is required")
    if isinstance(amount, bool):
        raise ValidationError("amount", "Amount must be a valid decimal")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValidationError("amount", f"Amount must be a valid decimal: {amount}") from e
    if not value.is_finite():
        raise ValidationError("amount", "Amount must be a valid decimal")
    if value <= 0:
        raise ValidationError("amount", "Amount must be > 0")
    if value > MAX_AMOUNT:
        raise ValidationError("amount", "Amount cannot exceed 999,999,999.99")
    if value != value.quantize(AMOUNT_QUANTUM):
        raise ValidationError("amount", "Amount must have at most 2 decimal places")
    return value.quantize(AMOUNT_QUANTUM)


class LedgerService:
    """
    Orchestrates reference generation, validation, queries, balances and the
    read-through cache on top of a transaction store.
    """

    def __init__(
        self,
        store: TransactionStore,
        cache: Optional[CacheLayer] = None,
        reference_generator: Optional[ReferenceGenerator] = None,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.store = store
        self.cache = cache or CacheLayer(enabled=self.config.cache_enabled)
        self.reference_generator = reference_generator or ReferenceGenerator(
            prefix=self.config.reference_prefix
        )
        self.query_engine = CriteriaQueryEngine(store)
        self.balances = BalanceAggregator(store, self.cache)
        self._clock = clock or utc_now
        self.logger = get_logger("ledger.service")

    @contextmanager
    def _store_errors(self, operation: str):
        """Surface unexpected store failures as InternalError"""
        try:
            yield
        except LedgerError:
            raise
        except Exception as e:
            self.logger.error(f"Store failure during {operation}: {e}", exc_info=True)
            raise InternalError(f"Store failure during {operation}: {e}") from e

    def _invalidate_after_write(self) -> None:
        self.cache.invalidate(*WRITE_NAMESPACES)

    def _page_request(
        self,
        page: int = 0,
        size: Optional[int] = None,
        sort_by: Optional[str] = None,
        direction: Any = "desc"
    ) -> PageRequest:
        return PageRequest.of(
            page=page,
            size=size if size is not None else self.config.default_page_size,
            sort_by=sort_by,
            direction=direction,
            max_size=self.config.max_page_size,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate_create(self, request: TransactionRequest) -> Tuple[str, Decimal, TransactionType, str, datetime, Optional[str]]:
        """Check every field in order, failing on the first violation"""
        account_number = request.account_number
        if not isinstance(account_number, str) or not account_number.strip():
            raise ValidationError("account_number", "Account number is required")
        if not ACCOUNT_NUMBER_PATTERN.fullmatch(account_number):
            raise ValidationError("account_number", "Account number must be 8-12 digits")

        amount = _validate_amount(request.amount)

        lookup = lookup_transaction_type(request.transaction_type)
        if not lookup.found:
            raise ValidationError("type", lookup.error)

        description = _validate_description(request.description)

        now = self._clock()
        if request.transaction_date is None:
            transaction_date = now
        else:
            try:
                transaction_date = parse_datetime(request.transaction_date)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    "transaction_date", f"Transaction date is not a valid timestamp: {request.transaction_date}"
                ) from e
            if transaction_date > now:
                raise ValidationError("transaction_date", "Transaction date cannot be in the future")

        notes = _validate_notes(request.notes)

        return account_number, amount, lookup.variant, description, transaction_date, notes

    def create(self, request: Union[TransactionRequest, Mapping[str, Any]]) -> Transaction:
        """
        Create a transaction with a freshly generated unique reference.

        Args:
            request: Create request or a mapping of its fields

        Returns:
            The stored transaction, including id and timestamps

        Raises:
            ValidationError: If any field is invalid; nothing is written
            ReferenceGenerationError: If no unused reference was found
        """
        if request is None:
            raise ValidationError("request", "Transaction request cannot be null")
        if isinstance(request, Mapping):
            request = TransactionRequest.from_dict(request)

        account_number, amount, transaction_type, description, transaction_date, notes = (
            self._validate_create(request)
        )

        max_attempts = self.config.reference_max_attempts
        saved = None
        with self._store_errors("create"):
            for attempt in range(1, max_attempts + 1):
                candidate = self.reference_generator.generate()
                if self.store.exists_by_reference(candidate):
                    self.logger.warning(f"Reference collision on attempt {attempt}: {candidate}")
                    continue

                record = Transaction(
                    reference=candidate,
                    account_number=account_number,
                    amount=amount,
                    transaction_type=transaction_type,
                    description=description,
                    transaction_date=transaction_date,
                    status=TransactionStatus.COMPLETED,
                    notes=notes,
                )
                try:
                    saved = self.store.create(record)
                except DuplicateError:
                    # Lost the race between the existence check and the insert
                    self.logger.warning(f"Reference taken at insert on attempt {attempt}: {candidate}")
                    continue
                break

        if saved is None:
            self.logger.error(f"Reference generation exhausted after {max_attempts} attempts")
            raise ReferenceGenerationError(max_attempts)

        self._invalidate_after_write()

        log_action(
            self.logger, "info", f"Transaction created: {saved.reference}",
            action="create_transaction", resource=f"transaction:{saved.id}",
            extra={
                "reference": saved.reference,
                "account_number": saved.account_number,
                "amount": str(saved.amount),
                "transaction_type": saved.transaction_type.value,
            }
        )
        return saved

    def update(self, transaction_id: int,
               request: Union[UpdateTransactionRequest, Mapping[str, Any]]) -> Transaction:
        """
        Update the description and notes of a transaction.

        Every other field in the request is ignored; reference, account number,
        amount, type and transaction date never change after creation.
        """
        if request is None:
            raise ValidationError("request", "Transaction request cannot be null")
        if isinstance(request, Mapping):
            request = UpdateTransactionRequest.from_dict(request)

        with self._store_errors("update"):
            existing = self.store.find_by_id(transaction_id)
            if existing is None:
                raise NotFoundError(transaction_id)

            existing.description = _validate_description(request.description)
            existing.notes = _validate_notes(request.notes)
            updated = self.store.update(existing)

        self._invalidate_after_write()

        ignored = getattr(request, "ignored_fields", None)
        log_action(
            self.logger, "info", f"Transaction updated: {updated.reference}",
            action="update_transaction", resource=f"transaction:{updated.id}",
            extra={"ignored_fields": ignored} if ignored else None
        )
        return updated

    def delete(self, transaction_id: int) -> None:
        """Permanently remove a transaction"""
        with self._store_errors("delete"):
            if not self.store.exists_by_id(transaction_id):
                raise NotFoundError(transaction_id)
            if not self.store.delete(transaction_id):
                raise NotFoundError(transaction_id)

        self._invalidate_after_write()

        log_action(
            self.logger, "info", f"Transaction deleted: {transaction_id}",
            action="delete_transaction", resource=f"transaction:{transaction_id}"
        )

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    def get_by_id(self, transaction_id: int) -> Transaction:
        def compute() -> Transaction:
            record = self.store.find_by_id(transaction_id)
            if record is None:
                raise NotFoundError(transaction_id)
            return record

        with self._store_errors("get_by_id"):
            return self.cache.get_or_compute(TRANSACTIONS, make_key("id", transaction_id), compute)

    def get_by_reference(self, reference: str) -> Transaction:
        def compute() -> Transaction:
            record = self.store.find_by_reference(reference)
            if record is None:
                raise NotFoundError(reference)
            return record

        with self._store_errors("get_by_reference"):
            return self.cache.get_or_compute(TRANSACTIONS, make_key("reference", reference), compute)

    # ------------------------------------------------------------------
    # Paged queries
    # ------------------------------------------------------------------

    def _cached_query(self, operation: str, criteria: TransactionCriteria,
                      page_request: PageRequest, *key_params: Any) -> Page:
        key = make_key(operation, *key_params, *page_request.cache_key_parts())
        with self._store_errors(operation):
            return self.cache.get_or_compute(
                TRANSACTIONS, key, lambda: self.query_engine.query(criteria, page_request)
            )

    def list_transactions(self, page: int = 0, size: Optional[int] = None,
                          sort_by: Optional[str] = None, direction: Any = "desc") -> Page:
        """All transactions, newest first unless another sort is given"""
        page_request = self._page_request(page, size, sort_by, direction)
        return self._cached_query("all", TransactionCriteria(), page_request)

    def list_by_account(self, account_number: str, page: int = 0,
                        size: Optional[int] = None) -> Page:
        if not isinstance(account_number, str) or not account_number.strip():
            raise ValidationError("account_number", "Account number is required")
        page_request = self._page_request(page, size)
        criteria = TransactionCriteria(account_number=account_number.strip())
        return self._cached_query("account", criteria, page_request, criteria.account_number)

    def list_by_type(self, transaction_type: Union[str, TransactionType], page: int = 0,
                     size: Optional[int] = None) -> Page:
        lookup = lookup_transaction_type(transaction_type)
        if not lookup.found:
            raise ValidationError("type", lookup.error)
        page_request = self._page_request(page, size)
        criteria = TransactionCriteria(transaction_type=lookup.variant)
        return self._cached_query("type", criteria, page_request, lookup.variant)

    def list_by_date_range(self, start_date: Any, end_date: Any, page: int = 0,
                           size: Optional[int] = None) -> Page:
        if start_date is None or end_date is None:
            raise ValidationError("date_range", "Both start_date and end_date are required")
        criteria = CriteriaQueryEngine.build_criteria(start_date=start_date, end_date=end_date)
        page_request = self._page_request(page, size)
        return self._cached_query(
            "dateRange", criteria, page_request, criteria.start_date, criteria.end_date
        )

    def list_by_amount_range(self, min_amount: Any, max_amount: Any, page: int = 0,
                             size: Optional[int] = None) -> Page:
        if min_amount is None or max_amount is None:
            raise ValidationError("amount_range", "Both min_amount and max_amount are required")
        criteria = CriteriaQueryEngine.build_criteria(min_amount=min_amount, max_amount=max_amount)
        page_request = self._page_request(page, size)
        return self._cached_query(
            "amountRange", criteria, page_request, criteria.min_amount, criteria.max_amount
        )

    def list_by_criteria(
        self,
        account_number: Optional[str] = None,
        transaction_type: Any = None,
        start_date: Any = None,
        end_date: Any = None,
        min_amount: Any = None,
        max_amount: Any = None,
        page: int = 0,
        size: Optional[int] = None,
        sort_by: Optional[str] = None,
        direction: Any = "desc"
    ) -> Page:
        """Filter by any combination of account, type, date range and amount range"""
        criteria = CriteriaQueryEngine.build_criteria(
            account_number=account_number,
            transaction_type=transaction_type,
            start_date=start_date,
            end_date=end_date,
            min_amount=min_amount,
            max_amount=max_amount,
        )
        page_request = self._page_request(page, size, sort_by, direction)
        return self._cached_query("criteria", criteria, page_request, *criteria.cache_key_parts())

    def search(self, keyword: str, page: int = 0, size: Optional[int] = None) -> Page:
        """Substring search over reference and description"""
        if not isinstance(keyword, str) or not keyword.strip():
            raise ValidationError("keyword", "Search keyword is required")
        keyword = keyword.strip()
        page_request = self._page_request(page, size)
        key = make_key("search", keyword, *page_request.cache_key_parts())
        with self._store_errors("search"):
            return self.cache.get_or_compute(
                TRANSACTIONS, key, lambda: self.store.search_by_keyword(keyword, page_request)
            )

    def recent(self, limit: Optional[int] = None) -> List[Transaction]:
        """Most recent transactions by transaction date"""
        max_limit = self.config.recent_limit
        limit = max_limit if limit is None else limit
        if not 1 <= limit <= max_limit:
            raise ValidationError("limit", f"Limit must be between 1 and {max_limit}")
        with self._store_errors("recent"):
            return self.cache.get_or_compute(
                RECENT_TRANSACTIONS, make_key("recent", limit),
                lambda: self.store.find_recent(limit)
            )

    # ------------------------------------------------------------------
    # Aggregates and catalog
    # ------------------------------------------------------------------

    def count_by_account(self, account_number: str) -> int:
        with self._store_errors("count_by_account"):
            return self.balances.count_by_account(account_number)

    def balance(self, account_number: str) -> Decimal:
        with self._store_errors("balance"):
            return self.balances.balance(account_number)

    def balance_by_type(self, account_number: str,
                        transaction_type: Union[str, TransactionType]) -> Decimal:
        lookup = lookup_transaction_type(transaction_type)
        if not lookup.found:
            raise ValidationError("type", lookup.error)
        with self._store_errors("balance_by_type"):
            return self.balances.balance_by_type(account_number, lookup.variant)

    def list_types(self) -> List[str]:
        """Names of every transaction type"""
        return self.cache.get_or_compute(
            METADATA, make_key("transactionTypes"),
            lambda: [t.name for t in TransactionType]
        )
