"""In-memory, time-bounded cache for provider search results."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple

from . import config
from .models import RestroomCandidate

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    latitude: float
    longitude: float
    radius_m: int
    discriminator: str


def make_cache_key(
    latitude: float,
    longitude: float,
    radius_m: float,
    discriminator: str,
    precision: int = config.CACHE_COORD_PRECISION,
) -> CacheKey:
    return CacheKey(
        round(float(latitude), precision),
        round(float(longitude), precision),
        int(radius_m),
        discriminator,
    )


@dataclass(frozen=True)
class CacheEntry:
    value: Tuple[RestroomCandidate, ...]
    inserted_at: float
    timeout_seconds: float

    def age(self, now: float) -> float:
        return now - self.inserted_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.timeout_seconds


class ResultCache:
    """Per-provider memoization of search results.

    A single coarse lock guards the map; entries are independent so no
    per-entry locking is needed. Expired entries are swept lazily on write.
    """

    def __init__(
        self,
        timeout_seconds: float,
        name: str = "results",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = float(timeout_seconds)
        self.name = name
        self.clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Tuple[RestroomCandidate, ...]]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                return None
        logger.debug("%s cache hit for %s (age %.1fs)", self.name, key, entry.age(now))
        return entry.value

    def put(self, key: CacheKey, value: Sequence[RestroomCandidate]) -> Tuple[RestroomCandidate, ...]:
        stored = tuple(value)
        now = self.clock()
        with self._lock:
            self._entries[key] = CacheEntry(stored, now, self.timeout_seconds)
            self._sweep(now)
        return stored

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep(self, now: float) -> None:
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("%s cache evicted %s expired entries", self.name, len(expired))


def places_cache(clock: Callable[[], float] = time.monotonic) -> ResultCache:
    return ResultCache(config.PLACES_CACHE_TIMEOUT_SECONDS, name="places", clock=clock)


def registry_cache(clock: Callable[[], float] = time.monotonic) -> ResultCache:
    return ResultCache(config.REGISTRY_CACHE_TIMEOUT_SECONDS, name="registry", clock=clock)
