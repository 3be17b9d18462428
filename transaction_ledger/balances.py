"""
Balance Aggregation

Balances are never persisted; they are derived on demand from store sums and
read through the accountBalances cache namespace.
"""

from decimal import Decimal

from .cache import CacheLayer, ACCOUNT_BALANCES, make_key
from .models import TransactionType
from .storage import TransactionStore


ZERO = Decimal("0.00")


class BalanceAggregator:
    """Derives account balances and counts from the store"""

    def __init__(self, store: TransactionStore, cache: CacheLayer):
        self.store = store
        self.cache = cache

    def _sum(self, account_number: str, transaction_type: TransactionType) -> Decimal:
        total = self.store.sum(account_number, transaction_type)
        return total if total is not None else ZERO

    def balance(self, account_number: str) -> Decimal:
        """Deposits minus withdrawals for the account"""
        return self.cache.get_or_compute(
            ACCOUNT_BALANCES,
            make_key("balance", account_number),
            lambda: (
                self._sum(account_number, TransactionType.DEPOSIT)
                - self._sum(account_number, TransactionType.WITHDRAWAL)
            ),
        )

    def balance_by_type(self, account_number: str, transaction_type: TransactionType) -> Decimal:
        return self.cache.get_or_compute(
            ACCOUNT_BALANCES,
            make_key("balanceByType", account_number, transaction_type),
            lambda: self._sum(account_number, transaction_type),
        )

    def count_by_account(self, account_number: str) -> int:
        return self.cache.get_or_compute(
            ACCOUNT_BALANCES,
            make_key("count", account_number),
            lambda: self.store.count_by_account(account_number),
        )
