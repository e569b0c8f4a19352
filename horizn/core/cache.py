"""
Process-local read-through cache with per-entry TTL.

Entries are not shared between worker processes; cached values must be
plain data (never ORM instances bound to a session).
"""
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

_MISSING = object()


class TTLCache:
    """Small TTL cache keyed by string."""

    def __init__(self, default_ttl: int = 300, max_entries: int = 10_000) -> None:
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        item = self._entries.get(key)
        if item is None:
            return None

        expires_at, value = item
        if expires_at < time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if len(self._entries) >= self.max_entries:
            self._evict_expired()
            if len(self._entries) >= self.max_entries:
                # Still full: drop the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                self._entries.pop(oldest, None)
        expires_at = time.monotonic() + (self.default_ttl if ttl is None else ttl)
        self._entries[key] = (expires_at, value)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None,
    ) -> T:
        """Return the cached value or await `loader` and cache its result.

        `None` results are not cached so that a missing row is retried.
        """
        item = self._entries.get(key, _MISSING)
        if item is not _MISSING and item[0] >= time.monotonic():
            return item[1]

        value = await loader()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def _evict_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, (exp, _) in self._entries.items() if exp < now]:
            self._entries.pop(key, None)
