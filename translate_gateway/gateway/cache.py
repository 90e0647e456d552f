"""Result cache — in-memory LRU with per-entry TTL.

Expiry is lazy: an expired entry is dropped when it is looked up, there is
no background sweep. Correctness therefore does not depend on timers firing
while the process is suspended.

Lookups return the ``MISSING`` sentinel on a miss, so a stored ``None`` or
empty string is a genuine hit and ``has()`` never confuses the two.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from translate_gateway.core import metrics
from translate_gateway.core.config import CacheConfig

logger = logging.getLogger(__name__)

DEFAULT_SIZE = 500
DEFAULT_TTL_MS = 12 * 60 * 60 * 1000
CACHE_KEY_VERSION = "v1"


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float  # clock() seconds; 0 = never expires


class ResultCache:
    """LRU cache with TTL, live-resizable and switchable.

    Usage:
        cache = ResultCache(size=500, ttl_ms=12 * 3600 * 1000)
        cache.set(key, "译文")
        value = cache.get(key)        # MISSING on miss
        cache.update_options(size=100, enabled=False)
    """

    def __init__(
        self,
        size: int = DEFAULT_SIZE,
        ttl_ms: int = DEFAULT_TTL_MS,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.size = max(1, int(size))
        self.ttl_ms = max(0, int(ttl_ms))
        self.enabled = bool(enabled)
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> ResultCache:
        return cls(size=config.size, ttl_ms=config.ttl_ms, enabled=config.enabled, clock=clock)

    def _expired(self, entry: _Entry) -> bool:
        return entry.expires_at > 0 and self._clock() > entry.expires_at

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISSING``. Expired entries are evicted here."""
        if not self.enabled:
            return MISSING
        entry = self._entries.get(key)
        if entry is None:
            self._record(hit=False)
            return MISSING
        if self._expired(entry):
            del self._entries[key]
            self._record(hit=False)
            return MISSING
        self._entries.move_to_end(key)
        self._record(hit=True)
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Insert or overwrite; ``ttl_ms`` <= 0 means the entry never expires."""
        if not self.enabled:
            return
        ttl = self.ttl_ms if ttl_ms is None else int(ttl_ms)
        expires_at = self._clock() + ttl / 1000.0 if ttl > 0 else 0.0
        self._entries[key] = _Entry(value=value, expires_at=expires_at)
        self._entries.move_to_end(key)
        self._evict_if_needed()

    def has(self, key: str) -> bool:
        return self.get(key) is not MISSING

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def update_options(
        self,
        size: int | None = None,
        ttl_ms: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Live reconfiguration; shrinking ``size`` evicts immediately."""
        if size is not None and size > 0:
            self.size = int(size)
        if ttl_ms is not None and ttl_ms >= 0:
            self.ttl_ms = int(ttl_ms)
        if enabled is not None:
            self.enabled = bool(enabled)
        self._evict_if_needed()

    def _evict_if_needed(self) -> None:
        while len(self._entries) > self.size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted LRU cache entry %s", evicted)

    def _record(self, hit: bool) -> None:
        if hit:
            self.hits += 1
            metrics.CACHE_LOOKUPS.labels(result="hit").inc()
        else:
            self.misses += 1
            metrics.CACHE_LOOKUPS.labels(result="miss").inc()

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def get_stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "entries": len(self._entries),
            "size": self.size,
            "ttl_ms": self.ttl_ms,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate(), 4),
        }


def fnv1a32(text: str) -> str:
    """32-bit FNV-1a over UTF-16 code units, as 8 lowercase hex digits.

    Fast, stable across processes, not cryptographic.
    """
    h = 0x811C9DC5
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return f"{h:08x}"


def make_cache_key(
    *,
    provider: str = "custom",
    model: str = "",
    source_lang: str = "auto",
    target_lang: str = "zh-CN",
    text: str = "",
) -> str:
    """Deterministic key: provider, model, language pair and a hash of the exact text."""
    return "|".join(
        [
            CACHE_KEY_VERSION,
            str(provider).strip().lower(),
            str(model).strip(),
            str(source_lang).strip(),
            str(target_lang).strip(),
            fnv1a32(str(text)),
        ]
    )
