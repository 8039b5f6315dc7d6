"""Live aggregation session: reacts to location, radius and filter changes.

Every provider load is tagged with a generation number. A new trigger bumps
the generation, closes the previous live subscription and leaves any load
still in flight to finish unobserved: its snapshot and every emission from
its subscription are dropped because their generation is no longer current.

The controller never calls into the store while holding its own lock; the
store invokes subscriber callbacks under its lock, so the reverse order
would deadlock.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from functools import partial
from typing import Iterable, List, Optional, Tuple

from . import config
from .filters import FilterOutcome
from .geo import haversine_m
from .models import FilterSpec, ProviderSnapshot, RestroomCandidate, Result, Review
from .pipeline import RestroomProvider, derive_results, fetch_provider_snapshots
from .state import StateCell
from .store import NearbySubscription, RestroomStore

logger = logging.getLogger(__name__)

Location = Tuple[float, float]


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"


class LiveAggregationController:
    def __init__(
        self,
        places_client: RestroomProvider,
        registry_client: RestroomProvider,
        store: RestroomStore,
        filters: Optional[FilterSpec] = None,
        radius_m: int = config.DEFAULT_SEARCH_RADIUS_M,
        location_threshold_m: float = config.LOCATION_CHANGE_THRESHOLD_M,
    ) -> None:
        self.places_client = places_client
        self.registry_client = registry_client
        self.store = store
        self.location_threshold_m = location_threshold_m

        self.status: StateCell[SessionStatus] = StateCell(SessionStatus.IDLE, "status")
        self.results: StateCell[List[RestroomCandidate]] = StateCell([], "results")
        self.error: StateCell[Optional[str]] = StateCell(None, "error")
        self.location: StateCell[Optional[Location]] = StateCell(None, "location")
        self.filters: StateCell[FilterSpec] = StateCell(filters or FilterSpec(), "filters")
        self.radius_m: StateCell[int] = StateCell(int(radius_m), "radius_m")

        self.last_outcome: Optional[FilterOutcome] = None
        self._lock = threading.RLock()
        self._generation = 0
        self._executor: Optional[ThreadPoolExecutor] = None
        self._subscription: Optional[NearbySubscription] = None
        self._snapshot: Optional[ProviderSnapshot] = None
        self._user_records: Optional[List[RestroomCandidate]] = None

    # --- lifecycle ---

    @property
    def started(self) -> bool:
        return self._executor is not None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def start(self) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="aggregation")

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            subscription, self._subscription = self._subscription, None
            executor, self._executor = self._executor, None
            self._snapshot = None
            self._user_records = None
            self.location.set(None)
            self.status.set(SessionStatus.IDLE)
        _close(subscription)
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "LiveAggregationController":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # --- triggers ---

    def update_location(self, latitude: float, longitude: float) -> Optional[Future]:
        with self._lock:
            if self._executor is None:
                raise RuntimeError("Controller is not started")
            previous = self.location.value
            if previous is not None:
                moved = haversine_m(previous[0], previous[1], latitude, longitude)
                if moved < self.location_threshold_m:
                    logger.debug("Ignoring location update, moved %.1fm", moved)
                    return None
            self.location.set((latitude, longitude))
            future, stale = self._reload()
        _close(stale)
        return future

    def update_radius(self, radius_m: int) -> Optional[Future]:
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        with self._lock:
            self.radius_m.set(int(radius_m))
            if self.location.value is None:
                return None
            future, stale = self._reload()
        _close(stale)
        return future

    def update_filters(self, filters: FilterSpec) -> None:
        """Replace the filters and re-derive locally from the current snapshots."""
        with self._lock:
            self.filters.set(filters)
            if self._snapshot is None or self._user_records is None:
                return
            self._publish(derive_results(self._snapshot, self._user_records, filters))

    def follow(self, locations: Iterable[Location]) -> List[Future]:
        futures: List[Future] = []
        for latitude, longitude in locations:
            future = self.update_location(latitude, longitude)
            if future is not None:
                futures.append(future)
        return futures

    # --- writes ---

    def add_record(self, candidate: RestroomCandidate) -> Result[str]:
        result = self.store.add_record(candidate)
        if not result.ok:
            self.error.set(f"Failed to add restroom: {result.error}")
        return result

    def add_review(self, record_id: str, review: Review) -> Result[str]:
        result = self.store.add_review(record_id, review)
        if not result.ok:
            self.error.set(f"Failed to add review: {result.error}")
        return result

    # --- internals ---

    def _reload(self) -> Tuple[Future, Optional[NearbySubscription]]:
        # Caller holds the lock and closes the returned stale subscription after releasing it.
        if self._executor is None:
            raise RuntimeError("Controller is not started")
        self._generation += 1
        generation = self._generation
        subscription, self._subscription = self._subscription, None
        self._snapshot = None
        self._user_records = None
        location = self.location.value
        radius_m = self.radius_m.value
        self.status.set(SessionStatus.LOADING)
        self.error.set(None)
        logger.info("Load %s: (%s, %s) within %sm", generation, location[0], location[1], radius_m)
        return self._executor.submit(self._load, generation, location, radius_m), subscription

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._executor is not None

    def _load(self, generation: int, location: Location, radius_m: int) -> None:
        latitude, longitude = location
        try:
            snapshot = fetch_provider_snapshots(
                self.places_client, self.registry_client, latitude, longitude, radius_m
            )
        except Exception as exc:
            logger.exception("Load %s failed", generation)
            with self._lock:
                if self._is_current(generation):
                    self.error.set(f"Failed to load nearby restrooms: {exc}")
                    self.status.set(SessionStatus.READY)
            return

        with self._lock:
            if not self._is_current(generation):
                logger.debug("Discarding superseded load %s", generation)
                return
            self._snapshot = snapshot

        subscription = self.store.subscribe_nearby(
            latitude,
            longitude,
            radius_m,
            on_update=partial(self._on_user_records, generation),
            on_error=partial(self._on_subscription_error, generation),
        )
        with self._lock:
            if self._is_current(generation) and not subscription.closed:
                self._subscription = subscription
                return
        subscription.close()

    def _on_user_records(self, generation: int, records: List[RestroomCandidate]) -> None:
        with self._lock:
            if not self._is_current(generation) or self._snapshot is None:
                logger.debug("Dropping live update from superseded load %s", generation)
                return
            self._user_records = list(records)
            self._publish(derive_results(self._snapshot, self._user_records, self.filters.value))

    def _on_subscription_error(self, generation: int, exc: Exception) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._subscription = None
            # Keep the last published results.
            self.error.set(f"Live updates stopped: {exc}")
            self.status.set(SessionStatus.READY)

    def _publish(self, outcome: FilterOutcome) -> None:
        # Caller holds the lock.
        self.last_outcome = outcome
        published = outcome.published()
        self.results.set(published)
        self.status.set(SessionStatus.READY)
        logger.info(
            "Published %s candidates (%s passing, %s filtered out)",
            len(published), len(outcome.passing), len(outcome.filtered_out),
        )


def _close(subscription: Optional[NearbySubscription]) -> None:
    if subscription is not None:
        subscription.close()
