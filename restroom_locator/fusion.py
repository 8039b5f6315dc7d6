"""Merge commercial, registry and user-submitted candidates into one list."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from . import config
from .geo import distance_meters, is_valid_coordinate
from .models import RestroomCandidate

logger = logging.getLogger(__name__)


def find_spatial_match(
    candidate: RestroomCandidate,
    others: Sequence[RestroomCandidate],
    threshold_m: float = config.SPATIAL_MATCH_METERS,
) -> Optional[RestroomCandidate]:
    """Nearest candidate strictly within ``threshold_m``; ties keep input order."""
    if not is_valid_coordinate(candidate.latitude, candidate.longitude):
        return None
    best: Optional[RestroomCandidate] = None
    best_distance = threshold_m
    for other in others:
        if not is_valid_coordinate(other.latitude, other.longitude):
            continue
        d = distance_meters(candidate.coordinates, other.coordinates)
        if d < best_distance:
            best = other
            best_distance = d
    return best


def enrich_from_commercial(registry: RestroomCandidate, commercial: RestroomCandidate) -> RestroomCandidate:
    """Registry amenities and provenance, commercial identity and popularity."""
    return registry.with_changes(
        name=commercial.name if commercial.name.strip() else registry.name,
        category=commercial.category,
        rating=commercial.rating,
        review_count=commercial.review_count,
        distance_from_user=commercial.distance_from_user,
        commercial_place_id=commercial.commercial_place_id,
    )


def dedupe(candidates: Iterable[RestroomCandidate]) -> List[RestroomCandidate]:
    seen: set[str] = set()
    unique: List[RestroomCandidate] = []
    for candidate in candidates:
        key = candidate.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def fuse(
    commercial: Sequence[RestroomCandidate],
    registry: Sequence[RestroomCandidate],
    user_submitted: Sequence[RestroomCandidate],
) -> List[RestroomCandidate]:
    """Combine the three sources into one deduplicated list sorted by distance.

    A registry record matched to a commercial venue takes that venue's slot in
    the list, so the enriched record (amenities plus rating) is what survives
    deduplication. Every other collision is first-seen-wins, with commercial
    and user-submitted records ahead of registry records.
    """
    absorbed: Dict[str, RestroomCandidate] = {}
    remaining: List[RestroomCandidate] = []
    for record in registry:
        match = find_spatial_match(record, commercial)
        if match is None:
            remaining.append(record)
            continue
        enriched = enrich_from_commercial(record, match)
        if match.dedup_key in absorbed:
            remaining.append(enriched)
        else:
            absorbed[match.dedup_key] = enriched
            logger.debug("Enriched registry record %s with %s", record.id, match.dedup_key)

    working: List[RestroomCandidate] = [absorbed.get(c.dedup_key, c) for c in commercial]
    working.extend(user_submitted)
    working.extend(remaining)

    fused = dedupe(working)
    fused.sort(key=lambda c: c.distance_from_user)
    logger.debug(
        "Fused %s commercial, %s registry (%s enriched), %s user records into %s",
        len(commercial), len(registry), len(absorbed), len(user_submitted), len(fused),
    )
    return fused
