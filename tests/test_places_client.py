import requests

from restroom_locator import config
from restroom_locator.cache import ResultCache
from restroom_locator.http import HttpClient, RequestMetrics
from restroom_locator.models import Category
from restroom_locator.places_client import CommercialPlacesClient, rank_candidates, parse_places_response

CENTER = (12.97, 77.59)
METERS_PER_DEGREE_LAT = 111195.08


def north(meters):
    return CENTER[0] + meters / METERS_PER_DEGREE_LAT


def place(place_id, name, meters, types=None, rating=None, total=None, vicinity=""):
    payload = {
        "place_id": place_id,
        "name": name,
        "vicinity": vicinity,
        "geometry": {"location": {"lat": north(meters), "lng": CENTER[1]}},
        "types": types or [],
    }
    if rating is not None:
        payload["rating"] = rating
    if total is not None:
        payload["user_ratings_total"] = total
    return payload


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.headers = {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        outcome = self.handler(url, params or {})
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


def make_client(handler, categories=("restaurant",), queries=(), cache=None, metrics=None, sleeps=None):
    http_client = HttpClient(timeout=1, retry_max=1, backoff_base=0.0, backoff_max=0.0, sleep=lambda s: None)
    http_client.session = FakeSession(handler)
    recorded = sleeps if sleeps is not None else []
    client = CommercialPlacesClient(
        "dummy",
        http_client,
        cache=cache,
        metrics=metrics,
        venue_categories=list(categories),
        text_queries=list(queries),
        max_workers=2,
        sleep=recorded.append,
    )
    return client, http_client.session


def ok(results, token=None):
    payload = {"status": "OK", "results": results}
    if token:
        payload["next_page_token"] = token
    return payload


def test_follows_page_tokens_with_delay():
    def handler(url, params):
        if params.get("pagetoken") == "t1":
            return ok([place("p2", "Second Diner", 200, ["restaurant"])])
        return ok([place("p1", "First Diner", 100, ["restaurant"])], token="t1")

    sleeps = []
    client, session = make_client(handler, sleeps=sleeps)
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert result.ok
    assert {c.id for c in result.value} == {"p1", "p2"}
    assert sleeps == [config.PAGE_TOKEN_DELAY_SECONDS]
    assert len(session.calls) == 2
    assert session.calls[1][1]["pagetoken"] == "t1"


def test_failed_query_is_isolated():
    def handler(url, params):
        if url == config.PLACES_TEXT_SEARCH_URL:
            return requests.ConnectionError("offline")
        if params.get("type") == "hotel":
            return {"status": "REQUEST_DENIED", "error_message": "bad key"}
        return ok([place("p1", "Diner", 100, ["restaurant"])])

    metrics = RequestMetrics()
    client, _ = make_client(
        handler, categories=("restaurant", "hotel"), queries=("restroom near me",), metrics=metrics
    )
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert result.ok
    assert [c.id for c in result.value] == ["p1"]
    assert metrics.failures_places == 2


def test_zero_results_status_is_not_an_error():
    client, _ = make_client(lambda url, params: {"status": "ZERO_RESULTS", "results": []})
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)
    assert result.ok
    assert result.value == []


def test_radius_containment_and_invalid_coordinates():
    far = place("far", "Far Diner", 800, ["restaurant"])
    zero = place("zero", "Zero Diner", 50, ["restaurant"])
    zero["geometry"]["location"] = {"lat": 0.0, "lng": 0.0}
    near = place("near", "Near Diner", 450, ["restaurant"])
    client, _ = make_client(lambda url, params: ok([far, zero, near]))

    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert [c.id for c in result.value] == ["near"]
    assert all(c.distance_from_user <= 500 for c in result.value)


def test_non_restroom_entities_dropped_unless_restroom_keyword():
    results = [
        place("c1", "City Cemetery", 100),
        place("c2", "Cemetery Restroom", 120),
        place("a1", "Corner ATM", 130),
        place("b1", "Bus stop 12", 140),
        place("b2", "Bus station", 150),
    ]
    client, _ = make_client(lambda url, params: ok(results))

    ids = {c.id for c in client.find_nearby_restrooms(CENTER[0], CENTER[1], 500).value}

    assert ids == {"c2", "b2"}


def test_sorting_public_toilets_then_rating_reviews_distance():
    results = [
        place("cafe1", "Cafe One", 100, ["cafe"], rating=4.5, total=10),
        place("cafe2", "Cafe Two", 200, ["cafe"], rating=4.5, total=50),
        place("toilet", "City Toilet", 300, rating=3.0),
        place("diner", "Diner", 400, ["restaurant"], rating=4.9, total=5),
    ]
    client, _ = make_client(lambda url, params: ok(results))

    ranked = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500).value

    assert [c.id for c in ranked] == ["toilet", "diner", "cafe2", "cafe1"]
    assert ranked[0].category is Category.PUBLIC_TOILET


def test_deduplicates_by_place_id_and_caps_results():
    results = [place(f"p{i}", f"Diner {i}", 10 + i, ["restaurant"]) for i in range(35)]
    client, _ = make_client(lambda url, params: ok(results), queries=("restroom near me",))

    ranked = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500).value

    assert len(ranked) == config.PLACES_MAX_RESULTS
    assert len({c.id for c in ranked}) == len(ranked)


def test_cache_hit_skips_network():
    metrics = RequestMetrics()
    cache = ResultCache(300, name="places")
    client, session = make_client(
        lambda url, params: ok([place("p1", "Diner", 100, ["restaurant"])]), cache=cache, metrics=metrics
    )

    first = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)
    second = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert first.value == second.value
    assert len(session.calls) == 1
    assert metrics.network_places == 1
    assert metrics.cache_hits_places == 1


def test_rank_candidates_is_pure():
    parsed = parse_places_response(ok([place("p1", "Diner", 100, ["restaurant"])]))
    once = rank_candidates(parsed, CENTER[0], CENTER[1], 500)
    twice = rank_candidates(parsed, CENTER[0], CENTER[1], 500)
    assert once == twice
    assert parsed[0].distance_from_user == 0.0


def test_non_positive_radius_is_a_failure():
    client, session = make_client(lambda url, params: ok([]))
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 0)
    assert not result.ok
    assert session.calls == []


def test_malformed_records_are_skipped_without_failing_other_queries():
    bad_lat = place("bad", "Bad Diner", 100, ["restaurant"])
    bad_lat["geometry"]["location"]["lat"] = "north-ish"
    broken_geometry = place("geo", "Geo Diner", 100, ["restaurant"])
    broken_geometry["geometry"] = "not a dict"

    def handler(url, params):
        if url == config.PLACES_TEXT_SEARCH_URL:
            return ok([None])
        return ok([bad_lat, place("good", "Public Toilet", 100), broken_geometry])

    client, _ = make_client(handler, queries=("restroom near me",))
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert result.ok
    assert [c.id for c in result.value] == ["good"]
