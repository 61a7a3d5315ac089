"""
ORACLE - Price Cache

TTL-keyed in-memory map. Expired entries are dropped when read.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Mapping, Optional

from shared import AgentLogger, normalize_address

CacheKey = tuple[Hashable, ...]


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload. Expiry is derived from created_at + ttl."""
    payload: Any
    created_at: float  # Clock seconds
    ttl_ms: int

    def is_fresh(self, now: float) -> bool:
        return (now - self.created_at) * 1000 < self.ttl_ms


class PriceCache:
    """
    In-memory TTL cache owned by one provider.

    Keys are tuples: ``(provider, chain_index, address)`` for prices and
    ``(provider, endpoint, params...)`` for other lookups. Writes always
    replace with a fresh timestamp. Not safe to share across processes.
    """

    DEFAULT_TTL_MS = 60_000

    def __init__(
        self,
        name: str,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logger = AgentLogger("ORACLE-CACHE").bind(provider=name)
        self.name = name
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}

        # Statistics
        self.hits = 0
        self.misses = 0
        self.expired = 0

    @staticmethod
    def price_key(provider: str, chain_index: str, address: str) -> CacheKey:
        """Composite key for a single token price."""
        return (provider, "price", str(chain_index), normalize_address(address))

    @staticmethod
    def endpoint_key(
        provider: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> CacheKey:
        """Composite key for a non-price lookup."""
        frozen = tuple(sorted((params or {}).items()))
        return (provider, endpoint, frozen)

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return the cached payload, or None on miss or expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            self.expired += 1
            self.misses += 1
            return None

        self.hits += 1
        return entry.payload

    def set(self, key: CacheKey, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Store ``value`` under ``key`` with a fresh timestamp."""
        self._entries[key] = CacheEntry(
            payload=value,
            created_at=self._clock(),
            ttl_ms=self.default_ttl_ms if ttl_ms is None else ttl_ms,
        )

    def invalidate(self, key: CacheKey) -> bool:
        """Drop one key. Returns True if it was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        """Get cache statistics."""
        lookups = self.hits + self.misses
        return {
            "provider": self.name,
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "hit_rate": self.hits / max(1, lookups),
        }
