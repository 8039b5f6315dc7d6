"""Directions API client and response parsing."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config
from .geo import Coordinate, decode_polyline
from .http import HttpClient, ProviderError, RequestMetrics
from .models import Result

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"


@dataclass(frozen=True)
class NavigationStep:
    instruction: str
    distance_text: str
    duration_text: str
    maneuver: str
    start: Coordinate
    end: Coordinate


@dataclass(frozen=True)
class NavigationRoute:
    distance_text: str
    duration_text: str
    duration_seconds: int
    polyline: str
    start: Coordinate
    end: Coordinate
    steps: List[NavigationStep] = field(default_factory=list)

    def path(self) -> List[Coordinate]:
        return decode_polyline(self.polyline)


class DirectionsClient:
    def __init__(
        self,
        api_key: str,
        http_client: Optional[HttpClient] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.api_key = api_key
        self.http = http_client or HttpClient()
        self.metrics = metrics

    def get_directions(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> Result[NavigationRoute]:
        params = build_directions_params(origin, destination, mode, self.api_key)
        try:
            if self.metrics is not None:
                self.metrics.inc_network("directions")
            response = self.http.get_json(config.DIRECTIONS_URL, params)
            route = parse_directions_response(response)
        except Exception as exc:
            logger.warning("Directions %s -> %s failed: %s", origin, destination, exc)
            return Result.failure(exc)
        logger.info("Route found: %s in %s", route.distance_text, route.duration_text)
        return Result.success(route)


def build_directions_params(
    origin: Coordinate, destination: Coordinate, mode: TravelMode, api_key: str
) -> Dict[str, Any]:
    return {
        "origin": f"{origin[0]},{origin[1]}",
        "destination": f"{destination[0]},{destination[1]}",
        "mode": TravelMode(mode).value,
        "key": api_key,
    }


def _coord(obj: Dict[str, Any]) -> Coordinate:
    return (float(obj["lat"]), float(obj["lng"]))


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def parse_directions_response(response: Dict[str, Any]) -> NavigationRoute:
    status = response.get("status")
    if status != "OK":
        raise ProviderError(response.get("error_message") or f"Directions API error: {status}")
    routes = response.get("routes") or []
    if not routes:
        raise ProviderError("No routes found")

    route = routes[0]
    leg = route["legs"][0]
    steps = [
        NavigationStep(
            instruction=strip_html(step.get("html_instructions", "")),
            distance_text=step["distance"]["text"],
            duration_text=step["duration"]["text"],
            maneuver=step.get("maneuver", ""),
            start=_coord(step["start_location"]),
            end=_coord(step["end_location"]),
        )
        for step in leg.get("steps") or []
    ]
    return NavigationRoute(
        distance_text=leg["distance"]["text"],
        duration_text=leg["duration"]["text"],
        duration_seconds=int(leg["duration"]["value"]),
        polyline=(route.get("overview_polyline") or {}).get("points", ""),
        start=_coord(leg["start_location"]),
        end=_coord(leg["end_location"]),
        steps=steps,
    )
