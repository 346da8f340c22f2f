# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process cache for read-only backend responses.

A ``QueryCache`` is attached to each request by the HTTP layer when the app
is built with one; ``Caller`` consults it only for methods listed in
``QueryCache.methods``.  Entries expire after ``ttl`` seconds and the
least recently used entry is evicted once ``max_entries`` is reached.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable

from upload_bridge.rpc._wire import RpcResponse

__all__ = ["DEFAULT_CACHED_METHODS", "QueryCache"]

DEFAULT_CACHED_METHODS: frozenset[str] = frozenset({"resolve", "claim_search"})


class QueryCache:
    """Thread-safe TTL + LRU cache of successful backend responses."""

    __slots__ = ("_clock", "_entries", "_lock", "max_entries", "methods", "ttl")

    def __init__(
        self,
        ttl: float = 60.0,
        max_entries: int = 1024,
        methods: Iterable[str] = DEFAULT_CACHED_METHODS,
        *,
        _clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.ttl = ttl
        self.max_entries = max_entries
        self.methods = frozenset(methods)
        self._clock = _clock
        self._entries: OrderedDict[str, tuple[float, RpcResponse]] = OrderedDict()
        self._lock = threading.Lock()

    def is_cacheable(self, method: str) -> bool:
        """Return whether responses for *method* may be cached."""
        return method in self.methods

    def get(self, key: str) -> RpcResponse | None:
        """Return the cached response for *key*, or ``None`` if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, response = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return response

    def set(self, key: str, response: RpcResponse) -> None:
        """Store *response* under *key*."""
        expires_at = self._clock() + self.ttl
        with self._lock:
            self._entries[key] = (expires_at, response)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        """Return the number of stored entries, expired ones included."""
        with self._lock:
            return len(self._entries)
