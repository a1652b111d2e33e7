"""In-process TTL cache used by the check pipeline.

The cache is an explicit service instance created at application startup and
injected into the components that need it. Storage sits behind the
``CacheBackend`` interface so a shared backend can replace the in-memory one
without touching callers.
"""

import asyncio
import hashlib
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Pattern, Tuple, Union

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

KeyMatcher = Union[str, Pattern[str], Callable[[str], bool]]


def fingerprint(text: str) -> str:
    """Return a short, stable hex digest of text for use in cache keys."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class CacheKeys:
    """Key families shared by the pipeline stages."""

    @staticmethod
    def embedding(text_fingerprint: str) -> str:
        return f"emb:{text_fingerprint}"

    @staticmethod
    def similar_phrases(organization_id: Any, text_fingerprint: str) -> str:
        return f"similar:{organization_id}:{text_fingerprint}"

    @staticmethod
    def queue_status(organization_id: Any) -> str:
        return f"queue:{organization_id}"


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class CacheBackend(ABC):
    """Storage interface for cache entries."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def set(self, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed storage, local to the process."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)


class CacheService:
    """Key-value cache with per-entry TTL and a periodic expiry sweep."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        default_ttl: float = 300.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            backend: Entry storage, in-memory by default
            default_ttl: TTL in seconds used when ``set`` is called without one
            sweep_interval: Seconds between background expiry sweeps
            clock: Monotonic time source, injectable for tests
        """
        self.backend = backend or InMemoryCacheBackend()
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None
        self._hits = 0
        self._misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` if absent or expired.

        Expired entries are removed on read.
        """
        entry = self.backend.get(key)
        if entry is None:
            self._misses += 1
            return default

        if entry.is_expired(self._clock()):
            self.backend.delete(key)
            self._misses += 1
            return default

        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.backend.set(
            key,
            CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            ),
        )

    def has(self, key: str) -> bool:
        entry = self.backend.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self.backend.delete(key)
            return False
        return True

    def delete(self, key: str) -> bool:
        return self.backend.delete(key)

    def clear(self) -> None:
        self.backend.clear()
        self._hits = 0
        self._misses = 0

    def invalidate_by_pattern(self, matcher: KeyMatcher) -> int:
        """Remove every key matching a regex or predicate.

        Args:
            matcher: Regex string, compiled pattern, or ``key -> bool`` callable

        Returns:
            Number of entries removed
        """
        if isinstance(matcher, str):
            matcher = re.compile(matcher)
        predicate = matcher.search if isinstance(matcher, re.Pattern) else matcher

        removed = 0
        for key, _ in self.backend.items():
            if predicate(key) and self.backend.delete(key):
                removed += 1
        return removed

    def sweep(self) -> int:
        """Remove all expired entries and return how many were removed."""
        now = self._clock()
        removed = 0
        for key, entry in self.backend.items():
            if entry.is_expired(now) and self.backend.delete(key):
                removed += 1
        if removed:
            LOGGER.debug(f"Cache sweep removed {removed} expired entries")
        return removed

    def stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self.backend),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
        }

    def start(self) -> None:
        """Start the background sweep task on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            LOGGER.info("Cache sweeper started", extra={"interval": self.sweep_interval})

    async def stop(self) -> None:
        """Stop the sweep task and drop all entries."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        self.clear()
        LOGGER.info("Cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                LOGGER.error(f"Cache sweep failed: {e}", exc_info=True)
