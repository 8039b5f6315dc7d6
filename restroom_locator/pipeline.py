"""Pipeline orchestration: provider fetch, fusion and filtering."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .filters import FilterOutcome, apply_filters
from .fusion import fuse
from .models import FilterSpec, ProviderSnapshot, RestroomCandidate, Result

logger = logging.getLogger(__name__)


class RestroomProvider(Protocol):
    def find_nearby_restrooms(
        self, latitude: float, longitude: float, radius_m: int
    ) -> Result[List[RestroomCandidate]]: ...


class NearbySnapshotSource(Protocol):
    def fetch_nearby(
        self, latitude: float, longitude: float, radius_m: float
    ) -> Result[List[RestroomCandidate]]: ...


@dataclass
class PipelineResult:
    results: List[RestroomCandidate]
    outcome: FilterOutcome
    snapshot: ProviderSnapshot
    summary: Dict[str, Any] = field(default_factory=dict)


def _contribution(name: str, future: "Future[Result[List[RestroomCandidate]]]") -> List[RestroomCandidate]:
    result = future.result()
    if not result.ok:
        logger.warning("%s returned no results: %s", name, result.error)
        return []
    return list(result.value or [])


def fetch_provider_snapshots(
    places_client: RestroomProvider,
    registry_client: RestroomProvider,
    latitude: float,
    longitude: float,
    radius_m: int,
    executor: Optional[ThreadPoolExecutor] = None,
) -> ProviderSnapshot:
    """Query both providers concurrently; a failed provider contributes nothing."""
    owned = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="providers")
    try:
        places_future = pool.submit(places_client.find_nearby_restrooms, latitude, longitude, radius_m)
        registry_future = pool.submit(registry_client.find_nearby_restrooms, latitude, longitude, radius_m)
        commercial = _contribution("Places", places_future)
        registry = _contribution("Registry", registry_future)
    finally:
        if owned:
            pool.shutdown(wait=True)
    return ProviderSnapshot(
        latitude=latitude,
        longitude=longitude,
        radius_m=int(radius_m),
        commercial=tuple(commercial),
        registry=tuple(registry),
    )


def derive_results(
    snapshot: ProviderSnapshot,
    user_submitted: Sequence[RestroomCandidate],
    filters: FilterSpec,
) -> FilterOutcome:
    fused = fuse(snapshot.commercial, snapshot.registry, user_submitted)
    return apply_filters(fused, filters)


def summarize(snapshot: ProviderSnapshot, user_count: int, outcome: FilterOutcome) -> Dict[str, Any]:
    return {
        "center": {"lat": snapshot.latitude, "lng": snapshot.longitude},
        "radius_m": snapshot.radius_m,
        "commercial_count": len(snapshot.commercial),
        "registry_count": len(snapshot.registry),
        "user_submitted_count": user_count,
        "passing_count": len(outcome.passing),
        "filtered_out_count": len(outcome.filtered_out),
        "published_count": len(outcome.published()),
    }


def aggregate_once(
    places_client: RestroomProvider,
    registry_client: RestroomProvider,
    store: Optional[NearbySnapshotSource],
    latitude: float,
    longitude: float,
    radius_m: int,
    filters: Optional[FilterSpec] = None,
) -> PipelineResult:
    """One-shot run of the whole pipeline, without a live subscription."""
    filters = filters or FilterSpec()
    logger.info("Stage 1: provider fetch (%s, %s, %sm)", latitude, longitude, radius_m)
    snapshot = fetch_provider_snapshots(places_client, registry_client, latitude, longitude, radius_m)

    user_submitted: List[RestroomCandidate] = []
    if store is not None:
        stored = store.fetch_nearby(latitude, longitude, radius_m)
        if stored.ok:
            user_submitted = list(stored.value or [])
        else:
            logger.warning("Store returned no results: %s", stored.error)

    logger.info("Stage 2: fusion and filters")
    outcome = derive_results(snapshot, user_submitted, filters)
    results = outcome.published()
    summary = summarize(snapshot, len(user_submitted), outcome)
    logger.info("Published %s candidates (%s filtered out)", len(results), len(outcome.filtered_out))
    return PipelineResult(results=results, outcome=outcome, snapshot=snapshot, summary=summary)
