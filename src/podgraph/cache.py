"""
Process-local TTL caches for entity lookups and LLM verdicts.

Caches are plain objects handed to the resolvers, one set per process;
nothing here is module-global.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, Optional, Tuple

from .utils.logger import logger


class ResolutionCache:
    """
    LRU cache with TTL expiration.

    Read-through only: callers ``get`` first and ``put`` after doing the work.
    """

    def __init__(self, name: str, max_size: int = 10000, ttl_seconds: int = 1800):
        """
        Initialize cache.

        Args:
            name: Namespace used in logs and stats
            max_size: Maximum number of cached entries
            ttl_seconds: Time-to-live in seconds
        """
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: OrderedDict[Hashable, tuple] = OrderedDict()  # key -> (value, timestamp)
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Get cached value if present and not expired."""
        if key in self._cache:
            value, timestamp = self._cache[key]
            elapsed = time.monotonic() - timestamp

            if elapsed < self.ttl_seconds:
                # Move to end (most recently used)
                self._cache.move_to_end(key)
                self._hits += 1
                logger.debug(f"{self.name} cache HIT (age={elapsed:.1f}s)")
                return value
            else:
                del self._cache[key]

        self._misses += 1
        return None

    def put(self, key: Hashable, value: Any) -> None:
        """Cache a value."""
        if key in self._cache:
            self._cache.move_to_end(key)
        elif len(self._cache) >= self.max_size:
            # Evict least recently used
            self._cache.popitem(last=False)

        self._cache[key] = (value, time.monotonic())

    def invalidate(self, key: Hashable) -> None:
        self._cache.pop(key, None)

    def flush(self) -> None:
        """Drop every entry and reset counters."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        logger.info(f"{self.name} cache flushed")

    @property
    def key_count(self) -> int:
        """Number of live (non-expired) entries."""
        now = time.monotonic()
        return sum(1 for _, ts in self._cache.values() if now - ts < self.ttl_seconds)

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics."""
        total = self._hits + self._misses
        return {
            "keys": self.key_count,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0.0,
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
        }


def entity_cache_key(entity_type: str, name: str) -> Tuple[str, str]:
    return (entity_type, name.strip().lower())


def llm_cache_key(name: str, entity_type: str, candidate_ids: Iterable[str]) -> Tuple[str, str, Tuple[str, ...]]:
    return (name.strip().lower(), entity_type, tuple(sorted(candidate_ids)))


@dataclass
class CachedMatch:
    """Positive entity lookup remembered by the entity cache."""

    entity_id: str
    strategy: str
    confidence: float


@dataclass
class CachedVerdict:
    """LLM verdict remembered by the LLM cache; ``entity_id`` None means no match."""

    entity_id: Optional[str]
    confidence: float
    reasoning: str


class CacheService:
    """The two caches the pipeline uses, built once per process."""

    def __init__(self, entity_cache: ResolutionCache, llm_cache: ResolutionCache):
        self.entity = entity_cache
        self.llm = llm_cache

    @classmethod
    def create(cls, max_size: int = 10000, entity_ttl_seconds: int = 1800, llm_ttl_seconds: int = 3600) -> "CacheService":
        return cls(
            ResolutionCache("entity", max_size=max_size, ttl_seconds=entity_ttl_seconds),
            ResolutionCache("llm", max_size=max_size, ttl_seconds=llm_ttl_seconds),
        )

    def flush(self) -> None:
        self.entity.flush()
        self.llm.flush()

    def stats(self) -> Dict[str, Any]:
        entity_stats = self.entity.stats()
        llm_stats = self.llm.stats()
        return {
            "keys": entity_stats["keys"] + llm_stats["keys"],
            "hits": entity_stats["hits"] + llm_stats["hits"],
            "misses": entity_stats["misses"] + llm_stats["misses"],
            "entityCache": entity_stats,
            "llmCache": llm_stats,
        }
