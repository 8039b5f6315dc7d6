from restroom_locator import config
from restroom_locator.fusion import dedupe, enrich_from_commercial, find_spatial_match, fuse
from restroom_locator.models import Category, Provenance, RestroomCandidate

CENTER = (12.97, 77.59)
METERS_PER_DEGREE_LAT = 111195.08


def at(meters):
    return CENTER[0] + meters / METERS_PER_DEGREE_LAT


def commercial(place_id, name, meters, rating=0.0, reviews=0, category=Category.RESTAURANT_CAFE):
    return RestroomCandidate(
        id=place_id,
        name=name,
        latitude=at(meters),
        longitude=CENTER[1],
        category=category,
        rating=rating,
        review_count=reviews,
        is_from_commercial_provider=True,
        commercial_place_id=place_id,
        distance_from_user=float(meters),
    )


def registry(record_id, meters, **amenities):
    return RestroomCandidate(
        id=f"refuge_{record_id}",
        name="Public Restroom",
        latitude=at(meters),
        longitude=CENTER[1],
        is_public=True,
        is_free=True,
        submitted_by=config.REGISTRY_SOURCE_NAME,
        distance_from_user=float(meters),
        **amenities,
    )


def user(record_id, meters, **fields):
    values = {
        "id": record_id,
        "name": f"User {record_id}",
        "latitude": at(meters),
        "longitude": CENTER[1],
        "submitted_by": "alice",
        "distance_from_user": float(meters),
    }
    values.update(fields)
    return RestroomCandidate(**values)


def test_enrichment_keeps_registry_amenities_and_takes_commercial_rating():
    shell = commercial("ChIJshell", "Shell Station", 200, rating=4.2, reviews=31, category=Category.GAS_STATION)
    wc = registry(7, 210, is_wheelchair_accessible=True)

    fused = fuse([shell], [wc], [])

    assert len(fused) == 1
    merged = fused[0]
    assert merged.name == "Shell Station"
    assert merged.rating == 4.2
    assert merged.review_count == 31
    assert merged.category is Category.GAS_STATION
    assert merged.is_wheelchair_accessible
    assert merged.commercial_place_id == "ChIJshell"
    assert merged.provenance is Provenance.REGISTRY
    assert merged.distance_from_user == 200.0


def test_blank_commercial_name_keeps_registry_name():
    merged = enrich_from_commercial(registry(1, 100), commercial("ChIJ", "  ", 100))
    assert merged.name == "Public Restroom"


def test_registry_beyond_threshold_is_not_merged():
    shell = commercial("ChIJshell", "Shell Station", 200)
    far = registry(7, 260)

    fused = fuse([shell], [far], [])

    assert [c.dedup_key for c in fused] == ["ChIJshell", "refuge_7"]
    assert fused[1].commercial_place_id is None


def test_nearest_commercial_match_wins():
    near = commercial("near", "Near Cafe", 105)
    nearer = commercial("nearer", "Nearer Cafe", 98)
    record = registry(1, 100)
    assert find_spatial_match(record, [near, nearer]) is nearer


def test_equidistant_match_keeps_input_order():
    first = commercial("first", "First", 110)
    second = commercial("second", "Second", 110)
    assert find_spatial_match(registry(1, 100), [first, second]) is first


def test_second_registry_match_for_same_venue_is_dropped():
    shell = commercial("ChIJshell", "Shell Station", 200)
    fused = fuse([shell], [registry(1, 205), registry(2, 215)], [])
    assert len(fused) == 1
    assert fused[0].id == "refuge_1"


def test_commercial_beats_user_on_same_key():
    shell = commercial("ChIJshell", "Shell Station", 200)
    duplicate = user("u1", 200, commercial_place_id="ChIJshell")
    fused = fuse([shell], [], [duplicate])
    assert len(fused) == 1
    assert fused[0].provenance is Provenance.COMMERCIAL


def test_output_sorted_by_distance_and_deduplicated():
    fused = fuse(
        [commercial("a", "A", 300), commercial("b", "B", 100)],
        [registry(1, 700)],
        [user("u1", 50), user("u1", 50)],
    )
    assert [c.dedup_key for c in fused] == ["u1", "b", "a", "refuge_1"]
    distances = [c.distance_from_user for c in fused]
    assert distances == sorted(distances)


def test_fuse_is_idempotent():
    comm = [commercial("ChIJshell", "Shell Station", 200, rating=4.2)]
    reg = [registry(7, 210, is_wheelchair_accessible=True), registry(8, 900)]
    users = [user("u1", 400)]
    assert fuse(comm, reg, users) == fuse(comm, reg, users)


def test_dedupe_first_seen_wins():
    a = user("x", 10, name="first")
    b = user("x", 20, name="second")
    kept = dedupe([a, b])
    assert kept == [a]
    assert kept[0].name == "first"
