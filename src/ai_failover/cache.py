"""Bounded response cache with first-in-first-out eviction."""

from __future__ import annotations

import hashlib
import json
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Deque, Dict, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .providers.base import AIResponse, Message, RequestOptions


@dataclass
class CacheEntry:
    fingerprint: str
    response: "AIResponse"
    timestamp: float
    sequence: int


def fingerprint(
    provider_id: str,
    messages: Sequence["Message"],
    options: Optional["RequestOptions"] = None,
) -> str:
    """Stable hash of the messages and the options that shape a reply."""
    if options is not None and options.cache_key:
        return f"{provider_id}:key:{options.cache_key}"
    payload = {
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "options": {
            "temperature": getattr(options, "temperature", None),
            "max_tokens": getattr(options, "max_tokens", None),
            "system_prompt": getattr(options, "system_prompt", None),
        },
    }
    digest = hashlib.sha256(
        json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
    ).hexdigest()
    return f"{provider_id}:{digest}"


class ResponseCache:
    """Insertion-ordered cache; eviction ignores reads (FIFO, not LRU).

    ``_order`` records ``(sequence, key)`` pairs in insertion order and
    ``_entries`` is the lookup index. Keys dropped through expiry or
    replacement leave stale pairs in ``_order``; they are skipped on eviction
    by comparing sequence numbers.
    """

    def __init__(
        self,
        *,
        capacity: int = 100,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._order: Deque[Tuple[int, str]] = deque()
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional["AIResponse"]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl:
            del self._entries[key]
            return None
        return entry.response

    def put(self, key: str, response: "AIResponse") -> None:
        existing = self._entries.get(key)
        if existing is not None:
            # Refreshing a key keeps its place in the queue.
            existing.response = response
            existing.timestamp = self._clock()
            return
        while len(self._entries) >= self.capacity:
            self._evict_oldest()
        self._sequence += 1
        self._entries[key] = CacheEntry(key, response, self._clock(), self._sequence)
        self._order.append((self._sequence, key))
        if len(self._order) > 2 * self.capacity:
            self._order = deque(
                sorted((entry.sequence, entry.fingerprint) for entry in self._entries.values())
            )

    def _evict_oldest(self) -> None:
        while self._order:
            sequence, key = self._order.popleft()
            entry = self._entries.get(key)
            if entry is not None and entry.sequence == sequence:
                del self._entries[key]
                return

    def purge_expired(self) -> int:
        """Eagerly drop expired entries; lookups expire lazily regardless."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._order.clear()
