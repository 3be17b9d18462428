"""
Tests for criteria composition and predicate building
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from transaction_ledger.exceptions import ValidationError
from transaction_ledger.models import (
    Transaction, TransactionType, TransactionCriteria, PageRequest
)
from transaction_ledger.queries import CriteriaQueryEngine
from transaction_ledger.storage import InMemoryTransactionStore, Operator


BASE_DATE = datetime(2025, 2, 1, tzinfo=timezone.utc)


class TestBuildCriteria:
    """Test coercion of raw filter values"""

    def test_blank_values_are_unset(self):
        """Test None and blank strings leave a dimension unset"""
        criteria = CriteriaQueryEngine.build_criteria(
            account_number="  ", transaction_type="", start_date=None, min_amount=""
        )
        assert criteria.is_empty

    def test_values_are_coerced(self):
        """Test strings become typed criteria"""
        criteria = CriteriaQueryEngine.build_criteria(
            account_number=" 12345678 ",
            transaction_type="deposit",
            start_date="2025-01-01T00:00:00Z",
            max_amount="250.5",
        )
        assert criteria.account_number == "12345678"
        assert criteria.transaction_type == TransactionType.DEPOSIT
        assert criteria.start_date == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert criteria.max_amount == Decimal("250.5")

    @pytest.mark.parametrize("kwargs,field", [
        ({"transaction_type": "LOAN"}, "type"),
        ({"start_date": "yesterday"}, "start_date"),
        ({"end_date": "2025-13-01"}, "end_date"),
        ({"min_amount": "abc"}, "min_amount"),
        ({"max_amount": "NaN"}, "max_amount"),
    ])
    def test_malformed_values(self, kwargs, field):
        """Test malformed filters are validation errors naming the field"""
        with pytest.raises(ValidationError) as exc_info:
            CriteriaQueryEngine.build_criteria(**kwargs)
        assert exc_info.value.field == field

    def test_inverted_date_range(self):
        """Test start after end is rejected"""
        with pytest.raises(ValidationError):
            CriteriaQueryEngine.build_criteria(
                start_date=BASE_DATE, end_date=BASE_DATE - timedelta(days=1)
            )

    def test_inverted_amount_range(self):
        """Test min above max is rejected"""
        with pytest.raises(ValidationError):
            CriteriaQueryEngine.build_criteria(min_amount="500", max_amount="100")

    def test_equal_bounds_are_allowed(self):
        """Test a single point range"""
        criteria = CriteriaQueryEngine.build_criteria(min_amount="100", max_amount="100")
        assert criteria.min_amount == criteria.max_amount


class TestBuildPredicate:
    """Test predicate composition"""

    def test_empty_criteria_matches_everything(self):
        """Test no conditions for unset dimensions"""
        assert CriteriaQueryEngine.build_predicate(TransactionCriteria()).conditions == ()

    def test_only_supplied_dimensions_become_conditions(self):
        """Test one condition per supplied bound"""
        predicate = CriteriaQueryEngine.build_predicate(TransactionCriteria(
            account_number="12345678",
            start_date=BASE_DATE,
            max_amount=Decimal("100"),
        ))
        assert [(c.field, c.operator) for c in predicate.conditions] == [
            ("account_number", Operator.EQ),
            ("transaction_date", Operator.GTE),
            ("amount", Operator.LTE),
        ]

    def test_amount_bounds_are_clamped_to_storable_range(self):
        """Test out-of-range amount bounds collapse onto the nearest edge"""
        predicate = CriteriaQueryEngine.build_predicate(TransactionCriteria(
            min_amount=Decimal("-50"),
            max_amount=Decimal("100000000000000000000"),
        ))
        assert [c.value for c in predicate.conditions] == [
            Decimal("0.00"), Decimal("1000000000.00")
        ]

    def test_in_range_amount_bounds_are_unchanged(self):
        """Test ordinary bounds pass through as given"""
        predicate = CriteriaQueryEngine.build_predicate(TransactionCriteria(
            min_amount=Decimal("10.50"), max_amount=Decimal("999999999.99")
        ))
        assert [c.value for c in predicate.conditions] == [
            Decimal("10.50"), Decimal("999999999.99")
        ]


class TestCriteriaQuery:
    """Test queries against a store"""

    def setup_method(self):
        self.store = InMemoryTransactionStore()
        self.engine = CriteriaQueryEngine(self.store)
        rows = [
            ("REF1", "12345678", "100.00", TransactionType.DEPOSIT, 0),
            ("REF2", "12345678", "600.00", TransactionType.DEPOSIT, 5),
            ("REF3", "12345678", "300.00", TransactionType.WITHDRAWAL, 10),
            ("REF4", "87654321", "400.00", TransactionType.DEPOSIT, 15),
        ]
        for reference, account, amount, transaction_type, days in rows:
            self.store.create(Transaction(
                reference=reference,
                account_number=account,
                amount=Decimal(amount),
                transaction_type=transaction_type,
                description="Criteria fixture",
                transaction_date=BASE_DATE + timedelta(days=days),
            ))

    def references(self, criteria):
        page = self.engine.query(criteria, PageRequest.of())
        return sorted(t.reference for t in page.content)

    def test_all_unset_returns_everything(self):
        """Test empty criteria equals listing all"""
        assert self.references(TransactionCriteria()) == ["REF1", "REF2", "REF3", "REF4"]

    def test_account_and_type(self):
        """Test dimensions combine with AND"""
        criteria = CriteriaQueryEngine.build_criteria(
            account_number="12345678", transaction_type="DEPOSIT"
        )
        assert self.references(criteria) == ["REF1", "REF2"]

    def test_amount_and_date_bounds(self):
        """Test inclusive amount and date ranges together"""
        criteria = CriteriaQueryEngine.build_criteria(
            start_date=BASE_DATE + timedelta(days=5),
            end_date=BASE_DATE + timedelta(days=15),
            min_amount="300.00",
            max_amount="400.00",
        )
        assert self.references(criteria) == ["REF3", "REF4"]

    def test_query_revalidates_criteria(self):
        """Test inverted criteria built directly are still rejected"""
        criteria = TransactionCriteria(min_amount=Decimal("5"), max_amount=Decimal("1"))
        with pytest.raises(ValidationError):
            self.engine.query(criteria, PageRequest.of())
