"""Two-tier cache: in-process memory in front of a durable shared backend.

Writes go to the durable tier first and then populate memory with an absolute
expiry. Reads are served from memory while fresh and otherwise fall through to
the durable tier, repopulating memory on a hit. Expired memory entries are
swept lazily on every read; there is no background timer.

The memory tier is only an optimization. Every value it holds can be re-read
from the durable tier, so a failing durable write is reported to the caller
(``set`` returns False) and logged, but never raised. The key is then
deleted from both tiers so no older value outlives the failed write.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any

from debate_core.cache.backend import CacheBackend, CacheEntry
from debate_core.errors import PersistenceDegraded
from debate_core.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24.0


class LayeredCache:
    """Write-through cache with lazy expiry and concurrent bulk reads."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        default_ttl_hours: float = DEFAULT_TTL_HOURS,
        clock: Callable[[], datetime] = utc_now,
        max_fetch_workers: int = 8,
    ) -> None:
        self.backend = backend
        self.default_ttl_hours = default_ttl_hours
        self._clock = clock
        self._max_fetch_workers = max(1, max_fetch_workers)
        self._memory: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_hours: float | None = None) -> bool:
        """Write durable tier, then memory. Returns False when the durable write failed."""

        ttl = self.default_ttl_hours if ttl_hours is None else ttl_hours
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + timedelta(hours=ttl),
        )
        try:
            self.backend.write(entry)
        except Exception as error:  # noqa: BLE001
            logger.warning("%s", PersistenceDegraded(f"cache write failed for {key}: {error}"))
            self.delete(key)
            return False
        with self._lock:
            self._memory[key] = entry
        return True

    def get(self, key: str) -> Any | None:
        """Return the cached value or None on a miss."""

        now = self._clock()
        with self._lock:
            self._sweep_expired(now)
            entry = self._memory.get(key)
        if entry is not None:
            return entry.value

        try:
            durable = self.backend.read(key)
        except Exception as error:  # noqa: BLE001
            logger.warning("Durable cache read failed for %s: %s", key, error)
            return None
        if durable is None or durable.is_expired(now):
            return None
        with self._lock:
            self._memory[key] = durable
        return durable.value

    def delete(self, key: str) -> bool:
        with self._lock:
            self._memory.pop(key, None)
        try:
            self.backend.delete(key)
        except Exception as error:  # noqa: BLE001
            logger.warning("Durable cache delete failed for %s: %s", key, error)
            return False
        return True

    def invalidate_memory(self, key: str | None = None) -> None:
        """Drop memory entries without touching the durable tier."""

        with self._lock:
            if key is None:
                self._memory.clear()
            else:
                self._memory.pop(key, None)

    def list_by_predicate(
        self,
        predicate: Callable[[Any], bool],
        *,
        prefix: str = "",
    ) -> list[Any]:
        """Return every cached value under ``prefix`` that satisfies ``predicate``.

        Warm keys are served from memory; the remaining keys are fetched from
        the durable tier concurrently and repopulated before merging. Results
        follow durable key order.
        """

        keys = self.backend.list_keys(prefix)
        now = self._clock()
        warm: dict[str, Any] = {}
        cold: list[str] = []
        with self._lock:
            self._sweep_expired(now)
            for key in keys:
                entry = self._memory.get(key)
                if entry is None:
                    cold.append(key)
                else:
                    warm[key] = entry.value

        fetched: dict[str, CacheEntry] = {}
        if cold:
            with ThreadPoolExecutor(
                max_workers=min(self._max_fetch_workers, len(cold)),
                thread_name_prefix="cache-fetch",
            ) as executor:
                for key, entry in zip(cold, executor.map(self._safe_read, cold), strict=True):
                    if entry is not None and not entry.is_expired(now):
                        fetched[key] = entry
            with self._lock:
                self._memory.update(fetched)

        results: list[Any] = []
        for key in keys:
            if key in warm:
                value = warm[key]
            elif key in fetched:
                value = fetched[key].value
            else:
                continue
            if predicate(value):
                results.append(value)
        return results

    def memory_size(self) -> int:
        with self._lock:
            return len(self._memory)

    def _safe_read(self, key: str) -> CacheEntry | None:
        try:
            return self.backend.read(key)
        except Exception as error:  # noqa: BLE001
            logger.warning("Durable cache read failed for %s: %s", key, error)
            return None

    def _sweep_expired(self, now: datetime) -> None:
        expired = [key for key, entry in self._memory.items() if entry.is_expired(now)]
        for key in expired:
            del self._memory[key]
