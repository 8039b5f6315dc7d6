"""Project configuration.

Loads user-defined search parameters from search_config.json when available,
falling back to sensible defaults. Keep provider request shapes centralized here.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

PLACES_NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
PLACES_TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
REGISTRY_BY_LOCATION_URL = "https://www.refugerestrooms.org/api/v1/restrooms/by_location"
DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

PLACES_OK_STATUSES = frozenset({"OK", "ZERO_RESULTS"})

# --- Commercial places queries ---

VENUE_CATEGORIES: List[str] = [
    "restaurant",
    "gas_station",
    "shopping_mall",
    "hospital",
    "hotel",
    "convenience_store",
    "department_store",
    "supermarket",
    "park",
    "library",
    "museum",
    "airport",
    "train_station",
    "bus_station",
    "shopping_center",
]

TEXT_QUERIES: List[str] = [
    "public restrooms near me",
    "public bathroom near me",
    "public toilet near me",
    "restroom near me",
    "bathroom near me",
    "toilet near me",
    "gas stations with restrooms near me",
    "restaurants with restrooms near me",
    "shopping mall restrooms near me",
    "hospital restrooms near me",
    "hotel lobby restrooms near me",
    "convenience store restrooms near me",
    "supermarket restrooms near me",
    "department store restrooms near me",
]

# Ordered, first match wins; anything unmatched is a public toilet.
CATEGORY_TYPE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("gas_station",), "gas_station"),
    (("restaurant", "cafe"), "restaurant_cafe"),
    (("hotel", "lodging"), "hotel"),
    (("shopping_mall", "department_store", "supermarket", "convenience_store"), "restaurant_cafe"),
    (("train_station", "transit_station", "bus_station", "subway_station"), "transit_station"),
    (("park",), "public_toilet"),
]

# --- Relevance keywords ---

NON_RESTROOM_KEYWORDS: List[str] = [
    "bus stop", "bus station", "transit station", "subway station", "train station",
    "intersection", "traffic light", "crossing", "cemetery", "grave", "memorial",
    "parking meter", "atm", "vending machine",
]

RESTROOM_KEYWORDS: List[str] = [
    "restroom", "bathroom", "toilet", "washroom", "lavatory", "wc",
    "restaurant", "gas", "station", "mall", "hospital", "hotel",
    "store", "market", "supermarket", "convenience", "department",
    "public", "facility", "center", "plaza", "park",
]

# --- Commercial provider limits ---

PLACES_MAX_PAGES_PER_QUERY = 3
PAGE_TOKEN_DELAY_SECONDS = 2.0
PLACES_MAX_RESULTS = 30
PLACES_MAX_WORKERS = 8

# --- Registry provider ---

REGISTRY_SOURCE_NAME = "Refuge Restrooms"
REGISTRY_ID_PREFIX = "refuge_"
REGISTRY_DEFAULT_NAME = "Public Restroom"
REGISTRY_DEFAULT_RADIUS_M = 5000

# --- Cache ---

PLACES_CACHE_TIMEOUT_SECONDS = 5 * 60
REGISTRY_CACHE_TIMEOUT_SECONDS = 10 * 60
CACHE_COORD_PRECISION = 4

# --- Fusion / filters ---

SPATIAL_MATCH_METERS = 50.0
DEFAULT_MAX_DISTANCE_KM = 8.0
MIN_MAX_DISTANCE_KM = 0.5
MAX_MAX_DISTANCE_KM = 10.0
DISTANCE_FILTER_DISABLED_KM = 20.0

# --- Live session ---

METERS_PER_MILE = 1609.34
DEFAULT_SEARCH_RADIUS_M = 1609
LOCATION_CHANGE_THRESHOLD_M = 25.0
STORE_SCAN_LIMIT = 100
REVIEW_LIST_LIMIT = 20

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 10
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Outputs ---

STORE_DB_PATH = "restrooms.db"
OUTPUT_DIR = "out"


def load_search_config(path: Optional[str] = None) -> bool:
    """Load search configuration from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "search_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()

    categories = data.get("venue_categories", [])
    if categories:
        globals_ref["VENUE_CATEGORIES"] = list(categories)

    queries = data.get("text_queries", [])
    if queries:
        globals_ref["TEXT_QUERIES"] = list(queries)

    radius = data.get("default_radius_m")
    if radius is not None:
        globals_ref["DEFAULT_SEARCH_RADIUS_M"] = int(radius)

    cache = data.get("cache", {})
    if "places_timeout_seconds" in cache:
        globals_ref["PLACES_CACHE_TIMEOUT_SECONDS"] = float(cache["places_timeout_seconds"])
    if "registry_timeout_seconds" in cache:
        globals_ref["REGISTRY_CACHE_TIMEOUT_SECONDS"] = float(cache["registry_timeout_seconds"])

    max_results = data.get("max_results")
    if max_results is not None:
        globals_ref["PLACES_MAX_RESULTS"] = int(max_results)

    return True
