"""
core/cache.py
-------------
Small in-process LRU with per-entry TTL, used for short-lived configuration
(widget config lookups). Not shared across workers.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float


class ConfigCache:
    def __init__(
        self,
        *,
        maxsize: int = 512,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.maxsize = max(0, int(maxsize))
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._items: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        if self.maxsize <= 0:
            return None
        now = self._clock()
        with self._lock:
            entry = self._items.get(key)
            if entry is None or entry.expires_at <= now:
                self._items.pop(key, None)
                self.misses += 1
                return None
            self._items.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        if self.maxsize <= 0:
            return
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._items[key] = _Entry(value=value, expires_at=expires_at)
            self._items.move_to_end(key)
            while len(self._items) > self.maxsize:
                self._items.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            size = len(self._items)
        return {"size": size, "hits": self.hits, "misses": self.misses}
