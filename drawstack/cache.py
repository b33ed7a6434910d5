import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

from . import QUERY_CACHE_TTL_MS

_MISSING = object()


class QueryCache:
    """
    In-memory results cache whose entries expire `ttl_ms` after they are set.

    Expiry is lazy: an expired entry is evicted by the read that finds it.
    `cleanup()` sweeps every expired entry at once to bound memory.
    """

    def __init__(self, ttl_ms: float = QUERY_CACHE_TTL_MS, clock: Callable[[], float] = time.monotonic):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _expired(self, stamped_at: float, now: float) -> bool:
        return now - stamped_at > self.ttl_ms

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (value, self._now_ms())

    def _lookup(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, stamped_at = entry
        if self._expired(stamped_at, self._now_ms()):
            del self._entries[key]
            return _MISSING
        return value

    def get(self, key: Hashable) -> Optional[Any]:
        value = self._lookup(key)
        return None if value is _MISSING else value

    def has(self, key: Hashable) -> bool:
        # A cached None still counts; checking also evicts an expired entry.
        return self._lookup(key) is not _MISSING

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        now = self._now_ms()
        expired = [k for k, (_, stamped_at) in self._entries.items() if self._expired(stamped_at, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(self, key: Hashable, load: Callable[[], Awaitable[Any]]) -> Any:
        """Serve `key` from the cache, or await `load()` and cache its result."""
        value = self._lookup(key)
        if value is _MISSING:
            value = await load()
            self.set(key, value)
        return value
