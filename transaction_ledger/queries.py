"""
Criteria Query Engine

Turns an optional multi-dimension filter (account, type, date range, amount
range) into a store predicate. Every dimension is independently optional and
an unset dimension matches all records; the supplied ones are combined with
AND.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, List, Optional

from .exceptions import ValidationError
from .models import (
    TransactionCriteria, PageRequest, Page, MAX_AMOUNT, AMOUNT_QUANTUM,
    lookup_transaction_type, parse_datetime
)
from .storage import TransactionStore, Predicate, Condition, Operator


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# Stored amounts lie in (0, MAX_AMOUNT]; bounds outside [0, MAX_AMOUNT + 0.01] select
# the same rows as the nearest edge and would overflow integer columns
_AMOUNT_BOUND_FLOOR = Decimal("0.00")
_AMOUNT_BOUND_CEILING = MAX_AMOUNT + AMOUNT_QUANTUM


def clamp_amount_bound(value: Decimal) -> Decimal:
    return min(max(value, _AMOUNT_BOUND_FLOOR), _AMOUNT_BOUND_CEILING)


def coerce_datetime(field: str, value: Any) -> Optional[datetime]:
    if _blank(value):
        return None
    try:
        return parse_datetime(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(field, f"{field} is not a valid ISO-8601 timestamp: {value}") from e


def coerce_decimal(field: str, value: Any) -> Optional[Decimal]:
    if _blank(value):
        return None
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValidationError(field, f"{field} is not a valid decimal: {value}") from e
    if not result.is_finite():
        raise ValidationError(field, f"{field} must be a finite number")
    return result


class CriteriaQueryEngine:
    """Composes optional filters and delegates the paged query to the store"""

    def __init__(self, store: TransactionStore):
        self.store = store

    @staticmethod
    def build_criteria(
        account_number: Any = None,
        transaction_type: Any = None,
        start_date: Any = None,
        end_date: Any = None,
        min_amount: Any = None,
        max_amount: Any = None
    ) -> TransactionCriteria:
        """Coerce raw filter values into criteria, rejecting malformed ones"""
        resolved_type = None
        if not _blank(transaction_type):
            lookup = lookup_transaction_type(transaction_type)
            if not lookup.found:
                raise ValidationError("type", lookup.error)
            resolved_type = lookup.variant

        criteria = TransactionCriteria(
            account_number=None if _blank(account_number) else str(account_number).strip(),
            transaction_type=resolved_type,
            start_date=coerce_datetime("start_date", start_date),
            end_date=coerce_datetime("end_date", end_date),
            min_amount=coerce_decimal("min_amount", min_amount),
            max_amount=coerce_decimal("max_amount", max_amount),
        )
        CriteriaQueryEngine.validate(criteria)
        return criteria

    @staticmethod
    def validate(criteria: TransactionCriteria) -> None:
        if criteria.start_date and criteria.end_date and criteria.start_date > criteria.end_date:
            raise ValidationError("start_date", "start_date must not be after end_date")
        if (criteria.min_amount is not None and criteria.max_amount is not None
                and criteria.min_amount > criteria.max_amount):
            raise ValidationError("min_amount", "min_amount must not exceed max_amount")

    @staticmethod
    def build_predicate(criteria: TransactionCriteria) -> Predicate:
        """AND together a condition for each supplied dimension only"""
        conditions: List[Condition] = []
        if criteria.account_number is not None:
            conditions.append(Condition("account_number", Operator.EQ, criteria.account_number))
        if criteria.transaction_type is not None:
            conditions.append(Condition("transaction_type", Operator.EQ, criteria.transaction_type))
        if criteria.start_date is not None:
            conditions.append(Condition("transaction_date", Operator.GTE, criteria.start_date))
        if criteria.end_date is not None:
            conditions.append(Condition("transaction_date", Operator.LTE, criteria.end_date))
        if criteria.min_amount is not None:
            conditions.append(Condition("amount", Operator.GTE, clamp_amount_bound(criteria.min_amount)))
        if criteria.max_amount is not None:
            conditions.append(Condition("amount", Operator.LTE, clamp_amount_bound(criteria.max_amount)))
        return Predicate(tuple(conditions))

    def query(self, criteria: TransactionCriteria, page_request: PageRequest) -> Page:
        self.validate(criteria)
        return self.store.query(self.build_predicate(criteria), page_request)
