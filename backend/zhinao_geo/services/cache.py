import threading
import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    """Per-process cache of read views, keyed like ``"scan-jobs:<user_id>"``.

    Writers invalidate by key prefix so every copy of a list view is dropped
    when an asynchronous job changes state.
    """

    def __init__(
        self,
        *,
        max_items: int = 5000,
        ttl_s: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(1, int(ttl_s or 1))
        self._clock = clock
        self._items: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._items[key]
                return None
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if key not in self._items and len(self._items) >= self._max_items:
                self._make_room()
            self._items[key] = _Entry(expires_at=self._clock() + self._ttl_s, value=value)

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        self.set(key, value)
        return value

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._items if k == prefix or k.startswith(f"{prefix}:")]
            for k in doomed:
                del self._items[k]
            return len(doomed)

    def _make_room(self) -> None:
        now = self._clock()
        self._items = {k: e for k, e in self._items.items() if e.expires_at > now}
        # insertion order doubles as age
        while len(self._items) >= self._max_items:
            del self._items[next(iter(self._items))]


def cache_key(*parts: object) -> str:
    return ":".join(str(p) for p in parts)
