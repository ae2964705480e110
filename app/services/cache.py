# =============================================================================
# Result Cache — Process-Local, Time-Bounded, Fingerprint-Keyed
# =============================================================================
#
# Stores finished reports, built vector indices and extracted text so a
# repeat request for the same file skips the expensive pipeline stages.
#
# KEYS:
#   report / extracted text — fingerprint of file METADATA:
#       (name, size, last-modified timestamp)
#   Q&A context (vector index) — (company name, first 100 chars of text
#       with non-word characters removed)
#
# KNOWN LIMITATION: metadata fingerprints do not look at file contents.
# A file whose bytes change while name, size and timestamp stay the same
# gets a stale hit until the entry expires.
#
# EXPIRY: fixed TTL (24h by default) measured from creation. There is no
# background sweep and no LRU: an entry is evicted lazily when a read finds
# it expired.
#
# DESIGN DECISION: Explicit service object with an injected clock.
# Constructed once per process and passed to the pipeline entry points.
# Tests inject a fake clock to step over the TTL boundary deterministically.
#
# CONCURRENCY: single event loop, so get/put need no lock. get_or_compute()
# does hold a per-key asyncio.Lock so two concurrent requests for the same
# fingerprint share one build instead of racing. A key's lock is dropped
# once its last holder or waiter leaves. A multi-worker deployment
# needs an external keyed store with the same at-most-one-build semantics.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]

_NON_WORD = re.compile(r"\W")


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


def file_fingerprint(name: str, size: int, last_modified: float | int) -> str:
    """Fingerprint a source file by its metadata (not its contents)."""
    return f"{name}_{last_modified}_{size}"


def qa_context_fingerprint(company_name: str, text: str) -> str:
    """Fingerprint a Q&A context by company and the start of its text."""
    return f"qa_context_{company_name}_{_NON_WORD.sub('', text[:100])}"


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: float


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0  # callers inside or waiting on get_or_compute


class ResultCache:
    """
    Keyed store with lazy time-based expiry.

    Args:
        ttl_seconds: Entry lifetime (default settings.cache_ttl_seconds).
        clock: Returns the current time in seconds (default time.time).
        key_prefix: Namespace prepended to every key.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Clock = time.time,
        key_prefix: str | None = None,
    ) -> None:
        self._ttl = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._prefix = settings.cache_key_prefix if key_prefix is None else key_prefix
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, _KeyLock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        """Return the payload, or None on a miss or an expired entry."""
        full_key = self._prefix + key
        entry = self._entries.get(full_key)
        if entry is None:
            return None

        age = self._clock() - entry.created_at
        if age > self._ttl:
            del self._entries[full_key]
            logger.info("Cache entry expired: %s (age %.0fs)", key, age)
            return None

        logger.debug("Cache hit: %s", key)
        return entry.payload

    def put(self, key: str, payload: Any) -> None:
        """Store a payload, replacing any previous entry for the key."""
        full_key = self._prefix + key
        self._entries[full_key] = CacheEntry(
            key=full_key, payload=payload, created_at=self._clock(),
        )
        logger.debug("Cached: %s", key)

    def payloads(self, key_prefix: str) -> list[Any]:
        """Live payloads whose key starts with key_prefix, in insertion order."""
        full_prefix = self._prefix + key_prefix
        keys = [k for k in self._entries if k.startswith(full_prefix)]
        payloads = (self.get(k[len(self._prefix):]) for k in keys)
        return [p for p in payloads if p is not None]

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Return the cached payload, or build and store it exactly once.

        Concurrent callers for the same key wait for the first build. A
        failed build stores nothing; the next caller retries it.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        key_lock = self._locks.setdefault(key, _KeyLock())
        key_lock.holders += 1
        try:
            async with key_lock.lock:
                cached = self.get(key)
                if cached is not None:
                    return cached
                payload = await factory()
                self.put(key, payload)
                return payload
        finally:
            key_lock.holders -= 1
            if key_lock.holders == 0 and self._locks.get(key) is key_lock:
                del self._locks[key]

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()
