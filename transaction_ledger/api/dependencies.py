"""
Ledger system wiring and FastAPI dependencies
"""

from typing import Optional

from fastapi import Request

from ..cache import CacheLayer
from ..config import LedgerConfig, get_config
from ..logging_config import get_logger
from ..seed import seed_sample_data
from ..service import LedgerService
from ..storage import TransactionStore, InMemoryTransactionStore, SQLiteTransactionStore


class LedgerSystem:
    """Ledger components initialized from configuration"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 store: Optional[TransactionStore] = None):
        self.config = config or get_config()
        self.logger = get_logger("ledger.system")

        # Initialize storage
        self.store = store or self._create_store()

        self.cache = CacheLayer(enabled=self.config.cache_enabled)
        self.service = LedgerService(self.store, cache=self.cache, config=self.config)

        if self.config.seed_sample_data:
            seed_sample_data(self.store)

    def _create_store(self) -> TransactionStore:
        """Create storage backend based on configuration"""
        backend = self.config.storage_backend.lower()
        if backend == "memory":
            return InMemoryTransactionStore()
        if backend == "sqlite":
            self.logger.info(f"Using SQLite store at {self.config.database_path}")
            return SQLiteTransactionStore(self.config.database_path)
        raise ValueError(f"Unknown storage backend: {self.config.storage_backend}")

    def close(self) -> None:
        self.store.close()


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.ledger_system


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_system.service
