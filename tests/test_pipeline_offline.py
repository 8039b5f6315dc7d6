import json

import run
from restroom_locator import config
from restroom_locator.models import FilterSpec, RestroomCandidate, Result
from restroom_locator.pipeline import aggregate_once, fetch_provider_snapshots
from restroom_locator.store import RestroomStore

CENTER = (12.97, 77.59)
METERS_PER_DEGREE_LAT = 111195.08


def north(meters):
    return CENTER[0] + meters / METERS_PER_DEGREE_LAT


class StaticProvider:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error

    def find_nearby_restrooms(self, latitude, longitude, radius_m):
        if self.error:
            return Result.failure(self.error)
        return Result.success(list(self.candidates))


def _commercial():
    return RestroomCandidate(
        id="ChIJshell",
        name="Shell Station",
        latitude=north(200),
        longitude=CENTER[1],
        rating=4.2,
        is_from_commercial_provider=True,
        commercial_place_id="ChIJshell",
        distance_from_user=200.0,
    )


def _registry(record_id, meters, **amenities):
    return RestroomCandidate(
        id=record_id,
        name="Public Restroom",
        latitude=north(meters),
        longitude=CENTER[1],
        submitted_by=config.REGISTRY_SOURCE_NAME,
        distance_from_user=float(meters),
        **amenities,
    )


def test_snapshot_keeps_successful_provider_when_other_fails():
    snapshot = fetch_provider_snapshots(
        StaticProvider(error="quota"), StaticProvider([_registry("refuge_1", 300)]), CENTER[0], CENTER[1], 500
    )
    assert snapshot.commercial == ()
    assert [c.id for c in snapshot.registry] == ["refuge_1"]
    assert snapshot.radius_m == 500


def test_aggregate_once_fuses_filters_and_summarizes():
    store = RestroomStore(":memory:")
    try:
        store.add_record(
            RestroomCandidate(name="Library", latitude=north(50), longitude=CENTER[1], submitted_by="alice")
        )
        result = aggregate_once(
            StaticProvider([_commercial()]),
            StaticProvider([_registry("refuge_1", 210, is_wheelchair_accessible=True), _registry("refuge_2", 400)]),
            store,
            CENTER[0],
            CENTER[1],
            500,
            FilterSpec(wheelchair_accessible_only=True),
        )
    finally:
        store.close()

    assert [c.name for c in result.results] == ["Library", "Shell Station", "Public Restroom"]
    assert [c.is_filtered_out for c in result.results] == [False, False, True]
    assert result.summary["commercial_count"] == 1
    assert result.summary["registry_count"] == 2
    assert result.summary["user_submitted_count"] == 1
    assert result.summary["passing_count"] == 2
    assert result.summary["filtered_out_count"] == 1


def test_aggregate_once_without_store():
    result = aggregate_once(StaticProvider([_commercial()]), StaticProvider(), None, CENTER[0], CENTER[1], 500)
    assert [c.id for c in result.results] == ["ChIJshell"]


def test_main_requires_api_key(monkeypatch, tmp_path):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    assert run.main(["--lat", "12.97", "--lng", "77.59", "--out", str(tmp_path)]) == 1


def test_main_writes_outputs(monkeypatch, tmp_path):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "dummy")
    captured = {}

    def fake_aggregate(places, registry, store, lat, lng, radius_m, filters):
        captured.update(lat=lat, lng=lng, radius_m=radius_m, filters=filters, store=store)
        return aggregate_once(StaticProvider([_commercial()]), StaticProvider(), None, lat, lng, radius_m, filters)

    monkeypatch.setattr(run, "aggregate_once", fake_aggregate)
    out_dir = tmp_path / "out"

    code = run.main(
        ["--lat", "12.97", "--lng", "77.59", "--radius-m", "800", "--free", "--min-rating", "3",
         "--no-store", "--out", str(out_dir)]
    )

    assert code == 0
    assert captured["radius_m"] == 800
    assert captured["store"] is None
    assert captured["filters"].free_only
    assert captured["filters"].min_rating == 3.0
    rows = json.loads((out_dir / "results.json").read_text(encoding="utf-8"))
    assert [r["id"] for r in rows] == ["ChIJshell"]
    assert (out_dir / "results.csv").exists()
    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["published_count"] == 1
