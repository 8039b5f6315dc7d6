"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv as _load_dotenv

from restroom_locator import config
from restroom_locator.cache import places_cache, registry_cache
from restroom_locator.http import HttpClient, RequestMetrics
from restroom_locator.models import FilterSpec
from restroom_locator.pipeline import aggregate_once
from restroom_locator.places_client import CommercialPlacesClient
from restroom_locator.registry_client import CommunityRegistryClient
from restroom_locator.reporting import (
    ensure_dir,
    write_json_object,
    write_results_csv,
    write_results_json,
)
from restroom_locator.store import RestroomStore

logger = logging.getLogger("run")


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find nearby public restrooms from several sources")
    parser.add_argument("--lat", type=float, required=True, help="Center latitude")
    parser.add_argument("--lng", type=float, required=True, help="Center longitude")
    parser.add_argument("--radius-m", type=int, default=config.DEFAULT_SEARCH_RADIUS_M)
    parser.add_argument("--gender-neutral", action="store_true")
    parser.add_argument("--baby-friendly", action="store_true")
    parser.add_argument("--dog-friendly", action="store_true")
    parser.add_argument("--wheelchair", action="store_true")
    parser.add_argument("--free", action="store_true")
    parser.add_argument("--approved", action="store_true")
    parser.add_argument("--min-rating", type=float, default=0.0)
    parser.add_argument("--max-distance-km", type=float, default=config.DEFAULT_MAX_DISTANCE_KM)
    parser.add_argument("--store", default=config.STORE_DB_PATH, help="Path to the submissions database")
    parser.add_argument("--no-store", action="store_true", help="Skip user-submitted restrooms")
    parser.add_argument("--out", default=config.OUTPUT_DIR)
    return parser.parse_args(argv)


def filters_from_args(args: argparse.Namespace) -> FilterSpec:
    return FilterSpec(
        gender_neutral_only=args.gender_neutral,
        baby_friendly_only=args.baby_friendly,
        dog_friendly_only=args.dog_friendly,
        wheelchair_accessible_only=args.wheelchair,
        free_only=args.free,
        approved_only=args.approved,
        min_rating=args.min_rating,
        max_distance_km=args.max_distance_km,
    )


def main(argv: Optional[list] = None) -> int:
    load_env()
    config.load_search_config()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    api_key = os.environ.get("GOOGLE_MAPS_API_KEY")
    if not api_key:
        print("Missing GOOGLE_MAPS_API_KEY in environment", file=sys.stderr)
        return 1
    if args.radius_m <= 0:
        print("--radius-m must be positive", file=sys.stderr)
        return 1

    metrics = RequestMetrics()
    http_client = HttpClient()
    places_client = CommercialPlacesClient(
        api_key,
        http_client,
        cache=places_cache(),
        metrics=metrics,
        max_results=config.PLACES_MAX_RESULTS,
    )
    registry_client = CommunityRegistryClient(http_client, cache=registry_cache(), metrics=metrics)
    store = None if args.no_store else RestroomStore(args.store)

    try:
        result = aggregate_once(
            places_client,
            registry_client,
            store,
            args.lat,
            args.lng,
            args.radius_m,
            filters_from_args(args),
        )
        ensure_dir(args.out)
        write_results_json(os.path.join(args.out, "results.json"), result.results)
        write_results_csv(os.path.join(args.out, "results.csv"), result.results)
        write_json_object(os.path.join(args.out, "summary.json"), result.summary)
    except Exception as exc:
        logger.exception("Run failed")
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if store is not None:
            store.close()

    print(f"Done. {len(result.results)} restrooms written to {args.out}/results.json and {args.out}/results.csv")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
