"""In-memory TTL cache for resolved secret values."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..config import SECRET_CACHE_TTL_SECONDS


@dataclass
class CachedSecret:
    value: str = field(repr=False)
    backend: str
    stored_at: float
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total) * 100 if total else 0.0


class SecretCache:
    """
    Values resolved from backends, keyed by secret name.

    Entries expire after ``ttl`` seconds. The cache is owned by a resolver;
    nothing here is module-global.
    """

    def __init__(self, ttl: float = SECRET_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CachedSecret] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, name: str) -> Optional[CachedSecret]:
        entry = self._entries.get(name)
        if entry is None:
            return None
        if self.clock() > entry.expires_at:
            del self._entries[name]
            return None
        return entry

    def get(self, name: str) -> Optional[CachedSecret]:
        entry = self._live(name)
        if entry is None:
            self._misses += 1
        else:
            self._hits += 1
        return entry

    def set(self, name: str, value: str, backend: str, ttl: Optional[float] = None) -> None:
        now = self.clock()
        self._entries[name] = CachedSecret(
            value=value,
            backend=backend,
            stored_at=now,
            expires_at=now + (self.ttl if ttl is None else ttl),
        )

    def has(self, name: str) -> bool:
        return self._live(name) is not None

    def invalidate(self, name: Optional[str] = None) -> None:
        if name is None:
            self._entries.clear()
        else:
            self._entries.pop(name, None)

    def invalidate_backend(self, backend: str) -> None:
        for name in [n for n, e in self._entries.items() if e.backend == backend]:
            del self._entries[name]

    def clear(self) -> None:
        self._entries.clear()
        self.reset_stats()

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self.clock()
        expired = [n for n, e in self._entries.items() if now > e.expires_at]
        for name in expired:
            del self._entries[name]
        return len(expired)

    def keys(self) -> List[str]:
        return list(self._entries)

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), hits=self._hits, misses=self._misses)

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
