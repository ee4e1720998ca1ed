# app/services/cache.py
"""
TTL + LRU 記憶體快取（thread-safe）。

- 由呼叫端明確建立、注入，不用模組層級單例
- get 命中會刷新 recency；過期的 entry 在下次讀取時移除
- set 到達容量時先清過期，再踢最久沒用到的
- 併發下 eviction 與 insert 採 last-write-wins，不保證 linearizable
"""

from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar("V")

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


@dataclass
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    avg_access_count: float

    def as_dict(self) -> dict:
        return {
            "size": self.size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 3),
            "avg_access_count": round(self.avg_access_count, 2),
        }


class TTLCache(Generic[V]):
    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 1800.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        cleanup_threshold: float = 0.8,
        evict_oldest: bool = False,
        key_prefix: str = "normalize:",
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cleanup_threshold = cleanup_threshold
        # True：依寫入順序淘汰（get 不刷新順序）
        self.evict_oldest = evict_oldest
        self.key_prefix = key_prefix
        self._clock = clock
        self._data: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._access: dict[str, int] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def generate_key(self, text: str) -> str:
        """頭尾空白、連續空白、大小寫不同的文字會得到同一個 key"""
        return f"{self.key_prefix}{_WS_RE.sub(' ', (text or '').strip()).lower()}"

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                self._remove(key)
                self._misses += 1
                return None
            if not self.evict_oldest:
                self._data.move_to_end(key)
            self._access[key] = self._access.get(key, 0) + 1
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key in self._data:
                self._remove(key)
            elif len(self._data) >= self.max_size:
                if len(self._data) >= self.max_size * self.cleanup_threshold:
                    self.cleanup()
                while len(self._data) >= self.max_size:
                    oldest, _ = self._data.popitem(last=False)
                    self._access.pop(oldest, None)
                    self._evictions += 1
            self._data[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._access[key] = 0

    def cleanup(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._data.items() if e.expires_at <= now]
            for k in expired:
                self._remove(k)
            return len(expired)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._access.clear()

    def get_stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            size = len(self._data)
            return CacheStats(
                size=size,
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                hit_rate=(self._hits / lookups) if lookups else 0.0,
                avg_access_count=(sum(self._access.values()) / size) if size else 0.0,
            )

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)
        self._access.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._data.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.expires_at > self._clock()
