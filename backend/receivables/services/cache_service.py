# Overview: Derived-statistics cache and the invalidation contract tied to settlement writes.

"""
Stats Cache & Cache Coordinator

WHY: Debt totals and customer financial summaries are aggregate queries
over sales/debts/customers. They are memoized, so every write that changes
an invoice, a debt record or a customer balance must invalidate them.

POLICY:
- Over-invalidate rather than under-invalidate: a customer write clears
  that customer's keys AND every global aggregate
- Every entry carries a TTL so a missed invalidation self-heals
- Invalidation never fails a settlement (errors are logged only)

KEY LAYOUT:
- <data_type>:customer:<customer_id>[:...]   customer-scoped
- <data_type>:stats:<scope>                  aggregates (scope "all" or id)
- <data_type>:list:<...>                     list views
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..validation import CacheInvalidationError


logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 120
DEFAULT_MAX_ENTRIES = 1000


# Per data type: own patterns, plus related types whose aggregates include it
INVALIDATION_PATTERNS: dict[str, dict[str, list[str]]] = {
    "sales": {
        "patterns": ["sales:list:*", "sales:sale:*", "sales:stats:*"],
        "related": ["debts:*", "customers:*"],
    },
    "debts": {
        "patterns": ["debts:list:*", "debts:debt:*", "debts:stats:*"],
        "related": ["sales:*", "customers:*"],
    },
    "customers": {
        "patterns": ["customers:list:*", "customers:customer:*", "customers:all"],
        "related": ["customer_receipts:stats:*"],
    },
    "customer_receipts": {
        "patterns": ["customer_receipts:list:*", "customer_receipts:receipt:*", "customer_receipts:stats:*"],
        "related": ["customers:*"],
    },
    "cash": {
        "patterns": ["cash:*"],
        "related": [],
    },
}

# Data types touched by one settlement or receipt void
SETTLEMENT_DATA_TYPES = ("sales", "debts", "customers", "customer_receipts", "cash")


def customer_key(data_type: str, customer_id: int, *parts: Any) -> str:
    suffix = "".join(f":{p}" for p in parts)
    return f"{data_type}:customer:{customer_id}{suffix}"


def stats_key(data_type: str, scope: Any = "all") -> str:
    return f"{data_type}:stats:{scope}"


@dataclass
class _Entry:
    value: Any
    expires_at: float


class StatsCache:
    """
    Thread-safe in-process TTL cache.

    One instance per app (app.extensions["stats_cache"]); tests create
    their own. Expired entries are dropped lazily on access and on set.
    """

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.RLock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return default
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._stats["misses"] += 1
                logger.debug("Cache key expired: %s", key)
                return default
            self._stats["hits"] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
            self._stats["sets"] += 1

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._clock()

    def delete(self, key: str) -> int:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return 0
            self._stats["deletes"] += 1
            return 1

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern ("debts:stats:*")."""
        with self._lock:
            keys = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._entries[k]
            self._stats["deletes"] += len(keys)
        if keys:
            logger.debug("Invalidated %d cache keys matching %s", len(keys), pattern)
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Stats cache cleared (%d keys)", count)
        return count

    def get_or_set(self, key: str, producer: Callable[[], Any], ttl_seconds: int | None = None) -> Any:
        """
        Return the cached value, or compute, store and return it.

        The producer runs outside the lock; two concurrent misses may both
        compute, the later set wins.
        """
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = producer()
        self.set(key, value, ttl_seconds)
        return value

    def keys(self) -> list[str]:
        now = self._clock()
        with self._lock:
            return sorted(k for k, e in self._entries.items() if e.expires_at > now)

    def stats(self) -> dict:
        with self._lock:
            hits = self._stats["hits"]
            misses = self._stats["misses"]
            return {
                **self._stats,
                "keys": len(self._entries),
                "hit_rate": round(hits / (hits + misses) * 100, 2) if hits + misses else 0.0,
            }

    def _evict(self) -> None:
        # Caller holds the lock. Drop expired entries first, then the
        # entries closest to expiry.
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        overflow = len(self._entries) - self.max_entries + 1
        if overflow > 0:
            victims = sorted(self._entries.items(), key=lambda kv: kv[1].expires_at)[:overflow]
            for k, _ in victims:
                del self._entries[k]


class CacheCoordinator:
    """
    Owns the invalidation contract for settlement writes.

    invalidate(customer_id) is what receipt_service calls after commit.
    """

    def __init__(self, cache: StatsCache):
        self.cache = cache

    def invalidate(self, customer_id: int | None) -> int:
        """
        Remove every aggregate that could include this customer's invoices.

        Raises:
            CacheInvalidationError: wraps any failure; callers log it.
        """
        try:
            total = 0
            if customer_id is not None:
                total += self.cache.invalidate_pattern(f"*:customer:{customer_id}")
                total += self.cache.invalidate_pattern(f"*:customer:{customer_id}:*")
            total += self.invalidate_data_types(SETTLEMENT_DATA_TYPES)
            logger.info("Invalidated %d cache keys for customer %s", total, customer_id)
            return total
        except CacheInvalidationError:
            raise
        except Exception as exc:
            raise CacheInvalidationError(f"Cache invalidation failed for customer {customer_id}: {exc}") from exc

    def invalidate_data_types(self, data_types: Iterable[str], *, include_related: bool = True) -> int:
        total = 0
        for data_type in data_types:
            rule = INVALIDATION_PATTERNS.get(data_type)
            if rule is None:
                raise CacheInvalidationError(f"No invalidation patterns for data type: {data_type}")
            patterns = list(rule["patterns"])
            if include_related:
                patterns.extend(rule["related"])
            for pattern in patterns:
                total += self.cache.invalidate_pattern(pattern)
        return total

    def invalidate_quietly(self, customer_id: int | None) -> bool:
        """
        Post-commit variant: never raises.

        Returns False when invalidation failed (stale entries then expire
        via TTL).
        """
        try:
            self.invalidate(customer_id)
            return True
        except CacheInvalidationError:
            logger.exception("Cache invalidation failed for customer %s; relying on TTL", customer_id)
            return False


def get_cache_coordinator() -> CacheCoordinator:
    """Coordinator bound to the current Flask app."""
    from flask import current_app
    return current_app.extensions["stats_cache"]
