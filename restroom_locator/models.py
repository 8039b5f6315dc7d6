"""Canonical records shared by the providers, the store and the pipeline."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Mapping, Optional, Tuple, TypeVar

from . import config

T = TypeVar("T")


class Category(str, Enum):
    PUBLIC_TOILET = "public_toilet"
    RESTAURANT_CAFE = "restaurant_cafe"
    GAS_STATION = "gas_station"
    TRANSIT_STATION = "transit_station"
    HOTEL = "hotel"

    @property
    def display_name(self) -> str:
        return _CATEGORY_DISPLAY[self]

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if isinstance(value, Category):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.PUBLIC_TOILET


_CATEGORY_DISPLAY = {
    Category.PUBLIC_TOILET: "Public Toilet",
    Category.RESTAURANT_CAFE: "Restaurant / Cafe",
    Category.GAS_STATION: "Gas Station",
    Category.TRANSIT_STATION: "Metro / Train Station",
    Category.HOTEL: "Hotel",
}


class Provenance(str, Enum):
    COMMERCIAL = "commercial"
    REGISTRY = "registry"
    USER = "user"


AMENITY_FIELDS: Tuple[str, ...] = (
    "is_public",
    "is_free",
    "is_gender_neutral",
    "is_baby_friendly",
    "is_dog_friendly",
    "is_wheelchair_accessible",
    "has_changing_table",
    "has_paper",
    "has_soap",
    "has_hand_dryer",
    "has_running_water",
    "has_shower",
)

# Never written to the store.
RUNTIME_FIELDS: Tuple[str, ...] = ("id", "distance_from_user", "is_filtered_out")

# Owned by the store.
STORE_MANAGED_FIELDS: Tuple[str, ...] = ("submitted_at", "last_updated")


@dataclass(frozen=True)
class RestroomCandidate:
    """One restroom record flowing through the pipeline.

    Instances are immutable; enrichment and tagging go through ``with_changes``.
    """

    id: str = ""
    name: str = ""
    address: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    category: Category = Category.PUBLIC_TOILET
    is_public: bool = False
    is_free: bool = False
    is_gender_neutral: bool = False
    is_baby_friendly: bool = False
    is_dog_friendly: bool = False
    is_wheelchair_accessible: bool = False
    has_changing_table: bool = False
    has_paper: bool = False
    has_soap: bool = False
    has_hand_dryer: bool = False
    has_running_water: bool = False
    has_shower: bool = False
    cleanliness_rating: float = 0.0
    availability_rating: float = 0.0
    rating: float = 0.0
    review_count: int = 0
    submitted_by: str = ""
    is_from_commercial_provider: bool = False
    commercial_place_id: Optional[str] = None
    is_approved: bool = True
    distance_from_user: float = 0.0
    is_filtered_out: bool = False
    submitted_at: Optional[str] = None
    last_updated: Optional[str] = None

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    @property
    def dedup_key(self) -> str:
        return self.commercial_place_id or self.id

    @property
    def provenance(self) -> Provenance:
        if self.is_from_commercial_provider:
            return Provenance.COMMERCIAL
        if self.submitted_by == config.REGISTRY_SOURCE_NAME:
            return Provenance.REGISTRY
        return Provenance.USER

    @property
    def has_amenity_data(self) -> bool:
        """Whether amenity flags come from a source trusted for filtering."""
        return self.provenance is Provenance.REGISTRY

    def with_changes(self, **changes: Any) -> "RestroomCandidate":
        return dataclasses.replace(self, **changes)


def rating_from_user_scores(cleanliness: float, availability: float) -> float:
    if cleanliness > 0 and availability > 0:
        return (cleanliness + availability) / 2
    return 0.0


def with_user_rating(candidate: RestroomCandidate) -> RestroomCandidate:
    """Fill ``rating`` from the cleanliness/availability scores of a user submission."""
    if candidate.provenance is not Provenance.USER or candidate.rating > 0:
        return candidate
    computed = rating_from_user_scores(candidate.cleanliness_rating, candidate.availability_rating)
    if computed <= 0:
        return candidate
    return candidate.with_changes(rating=clamp_rating(computed))


def clamp_rating(value: float) -> float:
    return max(0.0, min(5.0, float(value)))


_CANDIDATE_FIELDS = {f.name: f for f in dataclasses.fields(RestroomCandidate)}


def candidate_to_document(candidate: RestroomCandidate) -> Dict[str, Any]:
    doc = dataclasses.asdict(candidate)
    for name in RUNTIME_FIELDS:
        doc.pop(name, None)
    doc["category"] = candidate.category.value
    return doc


def candidate_from_document(doc_id: str, doc: Mapping[str, Any]) -> RestroomCandidate:
    values: Dict[str, Any] = {}
    for name, value in doc.items():
        if name not in _CANDIDATE_FIELDS or name in RUNTIME_FIELDS:
            continue
        values[name] = value
    if "category" in values:
        values["category"] = Category.parse(values["category"])
    for name in ("latitude", "longitude", "rating", "cleanliness_rating", "availability_rating"):
        if values.get(name) is not None:
            values[name] = float(values[name])
    if values.get("review_count") is not None:
        values["review_count"] = int(values["review_count"])
    return RestroomCandidate(id=doc_id, **values)


@dataclass(frozen=True)
class Review:
    id: str = ""
    record_id: str = ""
    user_id: str = ""
    user_name: str = ""
    rating: float = 0.0
    comment: str = ""
    created_at: Optional[str] = None
    helpful_count: int = 0


@dataclass(frozen=True)
class FilterSpec:
    """User-chosen predicate configuration. Replace, never mutate."""

    gender_neutral_only: bool = False
    baby_friendly_only: bool = False
    dog_friendly_only: bool = False
    wheelchair_accessible_only: bool = False
    free_only: bool = False
    approved_only: bool = False
    min_rating: float = 0.0
    max_distance_km: float = config.DEFAULT_MAX_DISTANCE_KM

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_rating", clamp_rating(self.min_rating))
        clamped = max(
            config.MIN_MAX_DISTANCE_KM,
            min(config.MAX_MAX_DISTANCE_KM, float(self.max_distance_km)),
        )
        object.__setattr__(self, "max_distance_km", clamped)

    @property
    def amenity_filters_active(self) -> bool:
        return (
            self.gender_neutral_only
            or self.baby_friendly_only
            or self.dog_friendly_only
            or self.wheelchair_accessible_only
            or self.free_only
            or self.approved_only
        )

    @property
    def rating_filter_active(self) -> bool:
        return self.min_rating > 0

    @property
    def distance_filter_active(self) -> bool:
        return self.max_distance_km < config.DISTANCE_FILTER_DISABLED_KM

    @property
    def keeps_filtered_out(self) -> bool:
        return self.amenity_filters_active or self.rating_filter_active


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success or failure returned across provider and store boundaries."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Any) -> "Result[T]":
        message = str(error) or error.__class__.__name__
        return cls(ok=False, error=message)

    def value_or(self, default: T) -> T:
        if self.ok and self.value is not None:
            return self.value
        return default


@dataclass(frozen=True)
class ProviderSnapshot:
    """Last successful fetch from both providers for one location and radius."""

    latitude: float
    longitude: float
    radius_m: int
    commercial: Tuple[RestroomCandidate, ...] = field(default_factory=tuple)
    registry: Tuple[RestroomCandidate, ...] = field(default_factory=tuple)
