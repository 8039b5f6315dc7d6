import requests

from restroom_locator.cache import ResultCache
from restroom_locator.http import HttpClient, RequestMetrics
from restroom_locator.registry_client import CommunityRegistryClient

CENTER = (12.97, 77.59)
METERS_PER_DEGREE_LAT = 111195.08


def record(record_id, meters, **extra):
    payload = {
        "id": record_id,
        "name": f"Restroom {record_id}",
        "latitude": CENTER[0] + meters / METERS_PER_DEGREE_LAT,
        "longitude": CENTER[1],
    }
    payload.update(extra)
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
    def __init__(self, outcome, status_code=200):
        self.outcome = outcome
        self.status_code = status_code
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return FakeResponse(self.outcome, self.status_code)


def make_client(outcome, status_code=200, cache=None, metrics=None):
    http_client = HttpClient(timeout=1, retry_max=1, backoff_base=0.0, backoff_max=0.0, sleep=lambda s: None)
    http_client.session = FakeSession(outcome, status_code)
    return CommunityRegistryClient(http_client, cache=cache, metrics=metrics), http_client.session


def test_returns_records_within_radius_sorted_by_distance():
    client, session = make_client([record(1, 400), record(2, 100), record(3, 900)])

    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert result.ok
    assert [r.id for r in result.value] == ["refuge_2", "refuge_1"]
    assert result.value[0].distance_from_user < result.value[1].distance_from_user
    assert session.calls[0][1] == {"lat": CENTER[0], "lng": CENTER[1], "radius": 500}


def test_default_radius():
    client, session = make_client([record(1, 4000)])
    result = client.find_nearby_restrooms(CENTER[0], CENTER[1])
    assert [r.id for r in result.value] == ["refuge_1"]
    assert session.calls[0][1]["radius"] == 5000


def test_network_error_fails_whole_fetch():
    metrics = RequestMetrics()
    client, _ = make_client(requests.ConnectionError("offline"), metrics=metrics)

    result = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert not result.ok
    assert "offline" in result.error
    assert metrics.failures_registry == 1


def test_http_error_and_malformed_payload_fail():
    client, _ = make_client([], status_code=404)
    assert not client.find_nearby_restrooms(CENTER[0], CENTER[1], 500).ok

    client, _ = make_client({"unexpected": True})
    assert not client.find_nearby_restrooms(CENTER[0], CENTER[1], 500).ok


def test_cache_hit_skips_network():
    metrics = RequestMetrics()
    client, session = make_client([record(1, 100)], cache=ResultCache(600, name="registry"), metrics=metrics)

    first = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)
    second = client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)

    assert first.value == second.value
    assert len(session.calls) == 1
    assert metrics.network_registry == 1
    assert metrics.cache_hits_registry == 1


def test_failures_are_not_cached():
    cache = ResultCache(600, name="registry")
    client, _ = make_client(requests.ConnectionError("offline"), cache=cache)
    client.find_nearby_restrooms(CENTER[0], CENTER[1], 500)
    assert len(cache) == 0
