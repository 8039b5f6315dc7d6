"""Commercial places client: nearby and text search fan-out, parsing and ranking."""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import requests

from . import config
from .cache import ResultCache, make_cache_key
from .geo import haversine_m, is_valid_coordinate
from .http import HttpClient, ProviderError, RequestMetrics
from .models import Category, RestroomCandidate, Result

logger = logging.getLogger(__name__)

QUERY_ERRORS = (requests.RequestException, ProviderError, ValueError)


class CommercialPlacesClient:
    def __init__(
        self,
        api_key: str,
        http_client: Optional[HttpClient] = None,
        cache: Optional[ResultCache] = None,
        metrics: Optional[RequestMetrics] = None,
        venue_categories: Optional[Sequence[str]] = None,
        text_queries: Optional[Sequence[str]] = None,
        max_pages: int = config.PLACES_MAX_PAGES_PER_QUERY,
        max_results: int = config.PLACES_MAX_RESULTS,
        max_workers: int = config.PLACES_MAX_WORKERS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.http = http_client or HttpClient()
        self.cache = cache
        self.metrics = metrics
        self.venue_categories = list(venue_categories if venue_categories is not None else config.VENUE_CATEGORIES)
        self.text_queries = list(text_queries if text_queries is not None else config.TEXT_QUERIES)
        self.max_pages = max(1, int(max_pages))
        self.max_results = max_results
        self.max_workers = max(1, int(max_workers))
        self.sleep = sleep

    def find_nearby_restrooms(
        self, latitude: float, longitude: float, radius_m: int
    ) -> Result[List[RestroomCandidate]]:
        if radius_m <= 0:
            return Result.failure("radius_m must be positive")

        key = make_cache_key(latitude, longitude, radius_m, "places")
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                if self.metrics is not None:
                    self.metrics.inc_cache_hit("places")
                return Result.success(list(cached))

        try:
            raw = self._search_all(latitude, longitude, radius_m)
            ranked = rank_candidates(raw, latitude, longitude, radius_m, self.max_results)
        except Exception as exc:
            logger.exception("Places search failed near (%s, %s)", latitude, longitude)
            return Result.failure(exc)

        logger.info(
            "Places: %s raw candidates, %s within %sm of (%s, %s)",
            len(raw), len(ranked), radius_m, latitude, longitude,
        )
        if self.cache is not None:
            self.cache.put(key, ranked)
        return Result.success(ranked)

    def search_nearby(self, latitude: float, longitude: float, radius_m: int, place_type: str) -> List[RestroomCandidate]:
        params = build_nearby_search_params(latitude, longitude, radius_m, place_type, self.api_key)
        return self._fetch_all_pages(config.PLACES_NEARBY_SEARCH_URL, params, f"type={place_type}")

    def search_text(self, latitude: float, longitude: float, radius_m: int, query: str) -> List[RestroomCandidate]:
        params = build_text_search_params(latitude, longitude, radius_m, query, self.api_key)
        return self._fetch_all_pages(config.PLACES_TEXT_SEARCH_URL, params, f"query={query!r}")

    def _search_all(self, latitude: float, longitude: float, radius_m: int) -> List[RestroomCandidate]:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="places") as pool:
            nearby = [
                pool.submit(self._isolated, self.search_nearby, latitude, longitude, radius_m, t)
                for t in self.venue_categories
            ]
            text = [
                pool.submit(self._isolated, self.search_text, latitude, longitude, radius_m, q)
                for q in self.text_queries
            ]
            candidates: List[RestroomCandidate] = []
            for future in nearby + text:
                candidates.extend(future.result())
        return candidates

    def _isolated(self, search: Callable[..., List[RestroomCandidate]], *args: Any) -> List[RestroomCandidate]:
        try:
            return search(*args)
        except QUERY_ERRORS as exc:
            logger.warning("Places query %s failed: %s", args[-1], exc)
            if self.metrics is not None:
                self.metrics.inc_failure("places")
            return []

    def _fetch_all_pages(self, url: str, params: Dict[str, Any], label: str) -> List[RestroomCandidate]:
        places: List[RestroomCandidate] = []
        page_token: Optional[str] = None
        for page in range(self.max_pages):
            page_params = dict(params)
            if page_token:
                page_params["pagetoken"] = page_token
            if self.metrics is not None:
                self.metrics.inc_network("places")
            payload = self.http.get_json(url, page_params)
            try:
                check_status(payload)
            except ProviderError as exc:
                if page == 0:
                    raise
                logger.warning("Places %s page %s failed, keeping %s results: %s", label, page + 1, len(places), exc)
                break
            places.extend(parse_places_response(payload))
            page_token = payload.get("next_page_token")
            if not page_token or page + 1 >= self.max_pages:
                break
            # The token only becomes valid after a short provider-side delay.
            self.sleep(config.PAGE_TOKEN_DELAY_SECONDS)
        logger.debug("Places %s: %s results", label, len(places))
        return places


def build_nearby_search_params(
    latitude: float, longitude: float, radius_m: int, place_type: str, api_key: str
) -> Dict[str, Any]:
    return {
        "location": f"{latitude},{longitude}",
        "radius": int(radius_m),
        "type": place_type,
        "key": api_key,
    }


def build_text_search_params(
    latitude: float, longitude: float, radius_m: int, query: str, api_key: str
) -> Dict[str, Any]:
    return {
        "query": query,
        "location": f"{latitude},{longitude}",
        "radius": int(radius_m),
        "key": api_key,
    }


def check_status(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise ProviderError("Malformed places response")
    status = payload.get("status")
    if status not in config.PLACES_OK_STATUSES:
        raise ProviderError(payload.get("error_message") or status or "missing status")


def classify_types(types: Iterable[str]) -> Category:
    present = set(types or [])
    for type_names, category in config.CATEGORY_TYPE_RULES:
        if present.intersection(type_names):
            return Category.parse(category)
    return Category.PUBLIC_TOILET


# Adapter/mapper for places response fields

def parse_places_response(response: Dict[str, Any]) -> List[RestroomCandidate]:
    results = response.get("results") or []
    parsed: List[RestroomCandidate] = []
    for p in results:
        try:
            candidate = parse_place(p)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.debug("Skipping malformed place record: %s", exc)
            continue
        if candidate is not None:
            parsed.append(candidate)
    return parsed


def parse_place(p: Dict[str, Any]) -> Optional[RestroomCandidate]:
    place_id = p.get("place_id")
    if not place_id:
        return None
    location = (p.get("geometry") or {}).get("location") or {}
    return RestroomCandidate(
        id=place_id,
        name=p.get("name") or "Unknown",
        address=p.get("vicinity") or p.get("formatted_address") or "",
        latitude=float(location.get("lat") or 0.0),
        longitude=float(location.get("lng") or 0.0),
        category=classify_types(p.get("types") or []),
        rating=float(p.get("rating") or 0.0),
        review_count=int(p.get("user_ratings_total") or 0),
        is_from_commercial_provider=True,
        commercial_place_id=place_id,
    )


def is_restroom_relevant(candidate: RestroomCandidate) -> bool:
    """Drop obvious non-venues unless a restroom keyword says otherwise."""
    name = candidate.name.lower()
    address = candidate.address.lower()

    def mentions(keyword: str) -> bool:
        return keyword in name or keyword in address

    if any(mentions(k) for k in config.RESTROOM_KEYWORDS):
        return True
    return not any(mentions(k) for k in config.NON_RESTROOM_KEYWORDS)


def result_sort_key(candidate: RestroomCandidate) -> tuple:
    return (
        candidate.category is not Category.PUBLIC_TOILET,
        -candidate.rating,
        -candidate.review_count,
        candidate.distance_from_user,
    )


def rank_candidates(
    candidates: Iterable[RestroomCandidate],
    latitude: float,
    longitude: float,
    radius_m: float,
    max_results: int = config.PLACES_MAX_RESULTS,
) -> List[RestroomCandidate]:
    seen: set[str] = set()
    ranked: List[RestroomCandidate] = []
    for candidate in candidates:
        if candidate.dedup_key in seen:
            continue
        seen.add(candidate.dedup_key)
        if not is_valid_coordinate(candidate.latitude, candidate.longitude):
            continue
        if not is_restroom_relevant(candidate):
            continue
        distance = haversine_m(latitude, longitude, candidate.latitude, candidate.longitude)
        if distance > radius_m:
            continue
        ranked.append(candidate.with_changes(distance_from_user=distance))
    ranked.sort(key=result_sort_key)
    return ranked[:max_results]
