"""Community restroom registry client."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from . import config
from .cache import ResultCache, make_cache_key
from .geo import haversine_m, is_valid_coordinate
from .http import HttpClient, ProviderError, RequestMetrics
from .models import RestroomCandidate, Result

logger = logging.getLogger(__name__)


class CommunityRegistryClient:
    """Single-request client; any failure fails the whole fetch."""

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        cache: Optional[ResultCache] = None,
        metrics: Optional[RequestMetrics] = None,
        url: str = config.REGISTRY_BY_LOCATION_URL,
    ) -> None:
        self.http = http_client or HttpClient()
        self.cache = cache
        self.metrics = metrics
        self.url = url

    def find_nearby_restrooms(
        self,
        latitude: float,
        longitude: float,
        radius_m: int = config.REGISTRY_DEFAULT_RADIUS_M,
    ) -> Result[List[RestroomCandidate]]:
        if radius_m <= 0:
            return Result.failure("radius_m must be positive")

        key = make_cache_key(latitude, longitude, radius_m, "registry")
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                if self.metrics is not None:
                    self.metrics.inc_cache_hit("registry")
                return Result.success(list(cached))

        params = {"lat": latitude, "lng": longitude, "radius": int(radius_m)}
        try:
            if self.metrics is not None:
                self.metrics.inc_network("registry")
            payload = self.http.get_json(self.url, params)
            records = parse_registry_response(payload)
        except Exception as exc:
            logger.warning("Registry fetch failed near (%s, %s): %s", latitude, longitude, exc)
            if self.metrics is not None:
                self.metrics.inc_failure("registry")
            return Result.failure(exc)

        nearby: List[RestroomCandidate] = []
        for record in records:
            distance = haversine_m(latitude, longitude, record.latitude, record.longitude)
            if distance <= radius_m:
                nearby.append(record.with_changes(distance_from_user=distance))
        nearby.sort(key=lambda c: c.distance_from_user)

        logger.info("Registry: %s records, %s within %sm", len(records), len(nearby), radius_m)
        if self.cache is not None:
            self.cache.put(key, nearby)
        return Result.success(nearby)


def parse_registry_response(payload: Any) -> List[RestroomCandidate]:
    if not isinstance(payload, list):
        raise ProviderError("Registry response is not a list")
    parsed: List[RestroomCandidate] = []
    for raw in payload:
        record = parse_registry_record(raw)
        if record is not None:
            parsed.append(record)
    return parsed


def parse_registry_record(raw: Dict[str, Any]) -> Optional[RestroomCandidate]:
    """Map one registry record; records without usable geometry are dropped."""
    if not isinstance(raw, dict):
        return None
    try:
        latitude = float(raw.get("latitude"))
        longitude = float(raw.get("longitude"))
    except (TypeError, ValueError):
        return None
    if not is_valid_coordinate(latitude, longitude):
        return None

    record_id = raw.get("id")
    if record_id in (None, ""):
        # Keep id-less records distinct for deduplication.
        record_id = f"{latitude:.6f},{longitude:.6f}"

    return RestroomCandidate(
        id=f"{config.REGISTRY_ID_PREFIX}{record_id}",
        name=raw.get("name") or config.REGISTRY_DEFAULT_NAME,
        address=raw.get("street") or "",
        latitude=latitude,
        longitude=longitude,
        is_public=True,
        is_free=True,
        is_gender_neutral=bool(raw.get("unisex", False)),
        is_baby_friendly=bool(raw.get("changing_table", False)),
        has_changing_table=bool(raw.get("changing_table", False)),
        is_wheelchair_accessible=bool(raw.get("accessible", False)),
        is_approved=bool(raw.get("approved", True)),
        submitted_by=config.REGISTRY_SOURCE_NAME,
    )
