from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable

DEFAULT_TTL_SECONDS = 300


class FamilySnapshotCache:
    """Advisory per-family snapshot cache.

    Values are read-only copies for display. Balance-affecting code paths never
    read from here; every write path calls Invalidate for the family it touched.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[int, tuple[float, Any]] = {}

    def Get(self, family_id: int) -> Any | None:
        if self._ttl_seconds <= 0:
            return None
        with self._lock:
            cached = self._entries.get(family_id)
            if not cached:
                return None
            expires_at, value = cached
            if expires_at <= self._clock():
                self._entries.pop(family_id, None)
                return None
            return value

    def Set(self, family_id: int, value: Any) -> None:
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[family_id] = (self._clock() + self._ttl_seconds, value)

    def Invalidate(self, family_id: int) -> None:
        with self._lock:
            self._entries.pop(family_id, None)

    def Clear(self) -> None:
        with self._lock:
            self._entries.clear()
