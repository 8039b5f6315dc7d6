"""Declarative filtering of fused candidates into passing and filtered-out sets."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from .models import FilterSpec, RestroomCandidate

logger = logging.getLogger(__name__)

# (filter flag, candidate attribute, predicate name); evaluation order is fixed.
AMENITY_PREDICATES: Tuple[Tuple[str, str, str], ...] = (
    ("gender_neutral_only", "is_gender_neutral", "gender_neutral"),
    ("baby_friendly_only", "is_baby_friendly", "baby_friendly"),
    ("dog_friendly_only", "is_dog_friendly", "dog_friendly"),
    ("wheelchair_accessible_only", "is_wheelchair_accessible", "wheelchair_accessible"),
    ("free_only", "is_free", "free"),
    ("approved_only", "is_approved", "approved"),
)


@dataclass(frozen=True)
class FilterOutcome:
    passing: List[RestroomCandidate] = field(default_factory=list)
    filtered_out: List[RestroomCandidate] = field(default_factory=list)
    reasons: Dict[str, List[str]] = field(default_factory=dict)
    keeps_filtered_out: bool = False

    def published(self) -> List[RestroomCandidate]:
        """Passing list, followed by the tagged filtered-out list when shown."""
        if self.keeps_filtered_out:
            return self.passing + self.filtered_out
        return list(self.passing)


def failed_predicates(candidate: RestroomCandidate, spec: FilterSpec) -> List[str]:
    """Names of every enabled predicate the candidate fails, in evaluation order."""
    failures: List[str] = []

    if candidate.has_amenity_data:
        for flag, attribute, name in AMENITY_PREDICATES:
            if getattr(spec, flag) and not getattr(candidate, attribute):
                failures.append(name)

    if spec.rating_filter_active:
        if 0 < candidate.rating < spec.min_rating:
            failures.append("min_rating")

    if spec.distance_filter_active:
        if candidate.distance_from_user > spec.max_distance_km * 1000:
            failures.append("max_distance")

    return failures


def passes(candidate: RestroomCandidate, spec: FilterSpec) -> bool:
    return not failed_predicates(candidate, spec)


def apply_filters(candidates: Sequence[RestroomCandidate], spec: FilterSpec) -> FilterOutcome:
    passing: List[RestroomCandidate] = []
    filtered_out: List[RestroomCandidate] = []
    reasons: Dict[str, List[str]] = {}

    for candidate in candidates:
        failures = failed_predicates(candidate, spec)
        if not failures:
            passing.append(candidate.with_changes(is_filtered_out=False))
            continue
        reasons[candidate.dedup_key] = failures
        logger.debug("Filtered out %s (%s): %s", candidate.name, candidate.provenance.value, ", ".join(failures))
        filtered_out.append(candidate.with_changes(is_filtered_out=True))

    logger.debug("Filters kept %s of %s candidates", len(passing), len(candidates))
    return FilterOutcome(
        passing=passing,
        filtered_out=filtered_out,
        reasons=reasons,
        keeps_filtered_out=spec.keeps_filtered_out,
    )


def filter_candidates(candidates: Sequence[RestroomCandidate], spec: FilterSpec) -> List[RestroomCandidate]:
    return apply_filters(candidates, spec).published()
