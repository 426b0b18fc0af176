"""
Read Cache
==========

Process-wide, time-boxed memoization in front of the leaderboard aggregation.

- get(key): value if stored and `now - stored_at <= ttl`, else evicted + None.
- set(key, value): stores with the current time; when a scheduler is attached,
  also queues a one-shot eviction job at `ttl` in the future.
- invalidate(key=None): drops `key` and every key starting with it; no key
  clears everything.

Single instance only. Each write path that inserts transactions calls
`invalidate("leaderboard")` after the insert commits.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

log = logging.getLogger("clanpoints.cache")

DEFAULT_TTL_SECONDS = 30.0
LEADERBOARD_KEY = "leaderboard"


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ReadCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Any = None,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._scheduler = scheduler
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, stored_at=self._clock())
        self._schedule_eviction(key)

    def invalidate(self, key: Optional[str] = None) -> int:
        with self._lock:
            if key is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [k for k in self._entries if k == key or k.startswith(key)]
                for k in doomed:
                    del self._entries[k]
                removed = len(doomed)
        if removed:
            log.debug("Cache invalidated key=%s removed=%d", key or "*", removed)
        return removed

    def evict_if_stale(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                return True
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _schedule_eviction(self, key: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.add_job(
                self.evict_if_stale,
                "date",
                run_date=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
                args=[key],
                id=f"cache-evict:{key}",
                replace_existing=True,
            )
        except Exception as e:
            # on-read expiry still applies
            log.warning("Cache eviction scheduling failed for %s: %s", key, e)


class NullCache:
    """
    Same interface, stores nothing.
    """

    ttl_seconds = 0.0

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any) -> None:
        return None

    def invalidate(self, key: Optional[str] = None) -> int:
        return 0

    def __len__(self) -> int:
        return 0
