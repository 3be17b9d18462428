"""
Transaction Ledger

Append-mostly transaction records for bank accounts with paginated criteria
queries, derived balances, and a read-through cache that is invalidated on
every write.
"""

__version__ = "1.0.0"
