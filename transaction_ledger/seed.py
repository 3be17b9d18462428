"""
Sample Data Module

Loads a small set of demo transactions into an empty store so a fresh
deployment has something to query. Seeding is skipped when the store already
holds records.
"""

from decimal import Decimal
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .logging_config import get_logger
from .models import Transaction, TransactionType, utc_now
from .storage import TransactionStore


# (reference, account, amount, type, description, days ago)
SAMPLE_TRANSACTIONS = [
    ("TXN202509010000000000001", "12345678", "1000.00", TransactionType.DEPOSIT, "Initial deposit", 30),
    ("TXN202509010000000000002", "12345678", "500.00", TransactionType.WITHDRAWAL, "ATM withdrawal", 25),
    ("TXN202509010000000000003", "12345678", "250.00", TransactionType.PAYMENT, "Utility bill payment", 20),
    ("TXN202509010000000000004", "12345678", "750.00", TransactionType.DEPOSIT, "Salary deposit", 15),
    ("TXN202509010000000000005", "87654321", "2000.00", TransactionType.DEPOSIT, "Business account funding", 28),
    ("TXN202509010000000000006", "87654321", "150.00", TransactionType.FEE, "Monthly maintenance fee", 22),
    ("TXN202509010000000000007", "87654321", "300.00", TransactionType.TRANSFER, "Transfer to savings", 18),
    ("TXN202509010000000000008", "11111111", "100.00", TransactionType.DEPOSIT, "Gift deposit", 10),
    ("TXN202509010000000000009", "11111111", "50.00", TransactionType.WITHDRAWAL, "Shopping trip", 5),
    ("TXN202509010000000000010", "11111111", "25.00", TransactionType.INTEREST, "Interest earned", 1),
]


def seed_sample_data(store: TransactionStore,
                     clock: Optional[Callable[[], datetime]] = None) -> List[Transaction]:
    """
    Insert the sample transactions if the store is empty.

    Returns:
        The created records, or an empty list when seeding was skipped
    """
    logger = get_logger("ledger.seed")
    if store.count() > 0:
        logger.info("Store already contains transactions, skipping sample data")
        return []

    now = (clock or utc_now)()
    created = []
    for reference, account, amount, transaction_type, description, days_ago in SAMPLE_TRANSACTIONS:
        created.append(store.create(Transaction(
            reference=reference,
            account_number=account,
            amount=Decimal(amount),
            transaction_type=transaction_type,
            description=description,
            transaction_date=now - timedelta(days=days_ago),
        )))

    logger.info(f"Seeded {len(created)} sample transactions")
    return created
