# =============================================================================
# Response Cache — Bounded TTL Cache for Model Responses
# =============================================================================
#
# In-memory, process-wide cache shared by every concurrent run.
#
#   - Exact-match lookup on a deterministic string key
#   - Per-entry TTL (completions 5 min, catalog lookups 1 h)
#   - Capacity bound: when full, the OLDEST-INSERTED entry is evicted
#     (insertion order, not access order)
#   - Hit / miss / eviction counters for GET /health
#
# All access goes through one threading.Lock. The clock is injectable
# so tests can move time forward without sleeping.
#
# make_cache_key() derives a SHA-256 key from a normalized request.
# Binary attachments are represented by their media type, name, size,
# a short hex prefix and a full digest, never by the raw bytes.
# =============================================================================

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

ATTACHMENT_PREFIX_BYTES = 64


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass
class CacheStats:
    """Counters describing cache effectiveness."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entries: int = 0
    max_entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "entries": self.entries,
            "max_entries": self.max_entries,
            "hit_rate": round(self.hit_rate, 4),
        }


class ResponseCache:
    """
    TTL cache with oldest-inserted eviction.

    Args:
        max_entries: Capacity before eviction starts.
        default_ttl: TTL in seconds when put() is not given one.
        clock: Monotonic time source (seconds).
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            # Re-inserting refreshes the insertion position
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Cache full, evicted %s", evicted_key[:12])
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                inserted_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry. Returns how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Response cache cleared (%d entries)", removed)
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                entries=len(self._entries),
                max_entries=self.max_entries,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def describe_attachment(data: bytes, media_type: str, name: str = "") -> dict:
    """Bounded, deterministic stand-in for binary content in a cache key."""
    return {
        "media_type": media_type,
        "name": name,
        "size": len(data),
        "prefix": data[:ATTACHMENT_PREFIX_BYTES].hex(),
        "sha256": hashlib.sha256(data).hexdigest(),
    }


def make_cache_key(namespace: str, payload: dict[str, Any]) -> str:
    """SHA-256 of the namespaced payload serialized as canonical JSON."""
    canonical = json.dumps(
        {"namespace": namespace, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
