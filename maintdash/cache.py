"""
In-memory key/value cache with per-entry TTL.

Entries expire lazily: an expired entry is only removed when it is read.
There is no capacity limit; the number of keys is bounded by the distinct
filter combinations per resource.
"""

import copy
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from maintdash.logging_config import get_logger
from maintdash.models import CacheEntry

logger = get_logger("Cache")


def build_key(prefix: str, filters: Optional[Mapping[str, Any]] = None) -> str:
    """``"<prefix>:a=1&b=2"``; filter keys are sorted so insertion order never matters."""
    pairs = "&".join(f"{k}={filters[k]}" for k in sorted(filters or {}))
    return f"{prefix}:{pairs}"


class TTLCache:
    """Dictionary-backed cache shared by every request thread.

    Each public method holds the lock for its whole body, so a read, write or
    eviction is atomic with respect to the others.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss (absent or expired)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now > entry.expires_at:
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float = 300) -> bool:
        """Store a snapshot of *value*. Returns False when it could not be stored."""
        try:
            snapshot = copy.deepcopy(value)
        except Exception as e:
            logger.warning(f"Could not cache {key}: {e}")
            return False

        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key, value=snapshot, created_at=now, expires_at=now + ttl_seconds,
            )
        return True

    def evict_by_prefix(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in list(self._entries) if k.startswith(pattern)]
            for key in doomed:
                self._entries.pop(key, None)
        if doomed:
            logger.info(f"Cleared {len(doomed)} cache item(s) matching {pattern!r}")
        return len(doomed)

    def evict_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared entire cache ({count} items)")
        return count

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.items())

        items = []
        for key, entry in entries:
            items.append({
                "key": key,
                "size": len(repr(entry.value)),
                "expiresIn": round(max(0.0, entry.expires_at - now), 1),
                "createdAt": datetime.fromtimestamp(entry.created_at, tz=timezone.utc).isoformat(),
            })
        return {"totalItems": len(entries), "items": items}
