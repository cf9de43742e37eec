from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

ACTIVE_SCHEMA_KEY = "active_schema"
SCHEMA_LIST_KEY = "schema_list"


class SchemaCache:
    """
    In-memory read-through cache for schema lookups.

    - fixed TTL per entry (never a source of truth; may be stale up to ttl_seconds)
    - invalidate-on-write from the schema service
    - thread-safe
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._items: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= now:
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._items[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        # NotFound and friends propagate; failures are never cached
        value = loader()
        self.put(key, value)
        return value

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            if not keys:
                self._items.clear()
                return
            for k in keys:
                self._items.pop(k, None)
