"""
Read-Through Cache Module

Memoizes read results per namespace under deterministic keys. Writes drop
whole namespaces at once; each namespace carries a generation counter so a
value computed before an invalidation is never stored after it.

The lock is held only for map operations, never while a value is computed.
"""

import copy
import json
import threading
from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from .logging_config import get_logger


TRANSACTIONS = "transactions"
RECENT_TRANSACTIONS = "recentTransactions"
ACCOUNT_BALANCES = "accountBalances"
METADATA = "metadata"

ALL_NAMESPACES = (TRANSACTIONS, RECENT_TRANSACTIONS, ACCOUNT_BALANCES, METADATA)

# Namespaces dropped by every ledger write
WRITE_NAMESPACES = (TRANSACTIONS, RECENT_TRANSACTIONS, ACCOUNT_BALANCES)

# Static data populated once per process
PINNED_NAMESPACES = frozenset({METADATA})


def _key_part(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def make_key(operation: str, *params: Any) -> str:
    """
    Build a cache key from an operation name and all of its parameters.

    Parameters are JSON-encoded as a list so separators inside string values
    cannot make two different parameter sets produce the same key.
    """
    encoded = json.dumps([_key_part(p) for p in params], default=str, separators=(",", ":"))
    return f"{operation}:{encoded}"


class CacheLayer:
    """Namespaced get-or-compute cache with atomic namespace invalidation"""

    def __init__(self, namespaces: Iterable[str] = ALL_NAMESPACES, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.RLock()
        self._entries: Dict[str, Dict[str, Any]] = {ns: {} for ns in namespaces}
        self._generations: Dict[str, int] = {ns: 0 for ns in self._entries}
        self._stats = {"hits": 0, "misses": 0, "discarded": 0, "invalidations": 0}
        self.logger = get_logger("ledger.cache")

    def _check_namespace(self, namespace: str) -> None:
        if namespace not in self._entries:
            raise ValueError(f"Unknown cache namespace: {namespace}")

    def get_or_compute(self, namespace: str, key: str, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for (namespace, key), computing it on a miss.

        Args:
            namespace: Cache partition the key belongs to
            key: Deterministic key, usually built with make_key
            compute: Called without arguments on a miss

        Returns:
            A private copy of the cached or freshly computed value
        """
        self._check_namespace(namespace)
        if not self.enabled:
            return compute()

        with self._lock:
            bucket = self._entries[namespace]
            if key in bucket:
                self._stats["hits"] += 1
                self.logger.debug(f"Cache hit {namespace}/{key}")
                # Copy so callers cannot mutate cached state
                return copy.deepcopy(bucket[key])
            self._stats["misses"] += 1
            generation = self._generations[namespace]

        self.logger.debug(f"Cache miss {namespace}/{key}")
        value = compute()

        with self._lock:
            if self._generations[namespace] == generation:
                self._entries[namespace][key] = copy.deepcopy(value)
            else:
                # Namespace was invalidated while computing
                self._stats["discarded"] += 1
                self.logger.debug(f"Discarding stale value for {namespace}/{key}")
        return value

    def get(self, namespace: str, key: str) -> Optional[Any]:
        """Peek at a cached value without computing; None on a miss"""
        self._check_namespace(namespace)
        with self._lock:
            bucket = self._entries[namespace]
            if key not in bucket:
                return None
            return copy.deepcopy(bucket[key])

    def invalidate(self, *namespaces: str) -> None:
        """Drop every key in the given namespaces; pinned namespaces are kept"""
        for namespace in namespaces:
            self._check_namespace(namespace)

        with self._lock:
            for namespace in namespaces:
                if namespace in PINNED_NAMESPACES:
                    self.logger.warning(f"Refusing to invalidate pinned cache namespace {namespace}")
                    continue
                self._entries[namespace] = {}
                self._generations[namespace] += 1
            self._stats["invalidations"] += 1

    def size(self, namespace: Optional[str] = None) -> int:
        """Number of cached entries in one namespace, or in all of them"""
        with self._lock:
            if namespace is not None:
                self._check_namespace(namespace)
                return len(self._entries[namespace])
            return sum(len(bucket) for bucket in self._entries.values())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            result = dict(self._stats)
            result["entries"] = sum(len(bucket) for bucket in self._entries.values())
            return result
