import threading

import pytest

from eduquery.errors import InvalidInput, LocationNotFound, NotFound
from eduquery.services.radius_search_service import (
    geocode_in_batches,
    haversine_km,
    lookup_postal_code,
    reverse_geocode,
    search_by_postal_code,
)

CENTER = "529889"                     # Tampines
CENTER_POINT = (1.3526, 103.9447)


@pytest.fixture
def located(geocoder):
    geocoder.points.update({
        CENTER: CENTER_POINT,
        "529757": (1.3541, 103.9434),  # ~0.2 km
        "510101": (1.3700, 103.9500),  # ~2 km
        "119077": (1.2966, 103.7764),  # ~19.7 km
    })
    return geocoder


def test_haversine_is_zero_for_the_same_point():
    assert haversine_km(1.35, 103.8, 1.35, 103.8) == 0


def test_haversine_one_degree_of_latitude():
    assert haversine_km(1.0, 103.8, 2.0, 103.8) == pytest.approx(111.19, abs=0.01)


@pytest.mark.parametrize("postal_code", [
    "12345", "1234567", "12a456", "", None, 529889, " 529889", "529889\n", "٥٢٩٨٨٩",
])
def test_malformed_postal_code_fails_before_any_lookup(app, geocoder, statements, postal_code):
    with pytest.raises(InvalidInput):
        search_by_postal_code(postal_code, 5)
    assert geocoder.calls == []
    assert statements == []


@pytest.mark.parametrize("radius", [0, -2, "abc", None, "", True, float("nan"), float("inf")])
def test_radius_must_be_a_positive_number(app, geocoder, radius):
    with pytest.raises(InvalidInput):
        search_by_postal_code(CENTER, radius)
    assert geocoder.calls == []


@pytest.mark.parametrize("postal_code, radius", [(None, 5), ("", 5), (CENTER, None), (CENTER, "")])
def test_missing_fields_are_reported_together(app, geocoder, postal_code, radius):
    with pytest.raises(InvalidInput) as excinfo:
        search_by_postal_code(postal_code, radius)
    assert excinfo.value.message == "Postal code and radius are required"
    assert geocoder.calls == []


def test_numeric_string_radius_is_accepted(app, located, make_school):
    make_school("Near", postal_code="529757")
    result = search_by_postal_code(CENTER, "1.5")
    assert result["search_params"]["radius_km"] == 1.5
    assert [s["school_name"] for s in result["results"]] == ["Near"]


def test_unresolvable_center_is_location_not_found(app, geocoder, statements, make_school):
    make_school("Somewhere", postal_code="510101")
    statements.clear()

    with pytest.raises(LocationNotFound):
        search_by_postal_code("123456", 5)

    assert geocoder.calls == ["123456"]
    assert statements == []


def test_results_are_within_radius_and_sorted(app, located, make_school):
    make_school("Far", postal_code="119077")
    make_school("Mid", postal_code="510101")
    make_school("Near", postal_code="529757")

    result = search_by_postal_code(CENTER, 5)

    names = [s["school_name"] for s in result["results"]]
    distances = [s["distance_km"] for s in result["results"]]
    assert names == ["Near", "Mid"]
    assert distances == sorted(distances)
    assert all(d <= 5 for d in distances)
    assert all(round(d, 2) == d for d in distances)


def test_shared_postal_code_is_resolved_once(app, located, make_school):
    make_school("Twin A", postal_code="510101")
    make_school("Twin B", postal_code="510101")

    result = search_by_postal_code(CENTER, 5)

    assert located.calls.count("510101") == 1
    twins = [s for s in result["results"] if s["school_name"].startswith("Twin")]
    assert len(twins) == 2
    assert twins[0]["distance_km"] == twins[1]["distance_km"]


def test_unresolvable_candidates_are_dropped(app, located, make_school):
    located.points["520000"] = ConnectionError("upstream down")
    make_school("Unknown", postal_code="500000")
    make_school("Broken", postal_code="520000")
    make_school("Mid", postal_code="510101")

    result = search_by_postal_code(CENTER, 50)

    assert [s["school_name"] for s in result["results"]] == ["Mid"]
    assert result["metadata"]["schools_processed"] == 3
    assert result["metadata"]["coordinates_fetched"] == 1


def test_search_is_logged(app, located, make_school, activity_log):
    make_school("Near", postal_code="529757")
    make_school("Far", postal_code="119077")

    search_by_postal_code(CENTER, 2)

    entry = activity_log.find_one({"action": "search_by_postal_code"})
    assert entry["data"] == {
        "postal_code": CENTER,
        "radius_km": 2.0,
        "results_count": 1,
        "schools_processed": 2,
        "coordinates_fetched": 2,
    }


def test_result_carries_center_details(app, located, make_school):
    result = search_by_postal_code(CENTER, 1)
    assert result["results"] == []
    assert result["search_params"]["center_latitude"] == CENTER_POINT[0]
    assert result["search_params"]["center_address"] == f"BLK {CENTER}"


# ----------------------------
# Batching
# ----------------------------

class RecordingGeocoder:
    def __init__(self, batch_size):
        self.barrier = threading.Barrier(batch_size, timeout=5)
        self.calls = []
        self.lock = threading.Lock()

    def resolve(self, postal_code):
        with self.lock:
            self.calls.append(postal_code)
        # only passes if the whole batch is in flight at once
        self.barrier.wait()
        return (1.3, 103.8, None)


def test_batches_run_concurrently_and_sleep_between():
    codes = [f"{n:06d}" for n in range(1, 7)]
    geocoder = RecordingGeocoder(batch_size=3)
    sleeps = []

    resolved = geocode_in_batches(geocoder, codes, batch_size=3, delay=0.15, sleep=sleeps.append)

    assert set(resolved) == set(codes)
    assert all(value is not None for value in resolved.values())
    assert sleeps == [0.15]
    assert sorted(geocoder.calls[:3]) == codes[:3]


def test_no_sleep_after_the_last_batch():
    sleeps = []
    geocode_in_batches(type("G", (), {"resolve": lambda self, c: None})(), ["000001"],
                       batch_size=5, delay=0.1, sleep=sleeps.append)
    assert sleeps == []


# ----------------------------
# Single lookups
# ----------------------------

def test_lookup_postal_code(app, located):
    result = lookup_postal_code("510101")
    assert result["latitude"] == 1.37
    assert result["address"] == "BLK 510101"


def test_lookup_unknown_postal_code(app, geocoder):
    with pytest.raises(LocationNotFound):
        lookup_postal_code("999999")


def test_reverse_geocode_rejects_points_outside_singapore(app):
    with pytest.raises(InvalidInput):
        reverse_geocode("3.1390", "101.6869")


def test_reverse_geocode_without_match(app, geocoder):
    with pytest.raises(NotFound):
        reverse_geocode("1.35", "103.9")


def test_reverse_geocode_returns_postal_code(app, geocoder, activity_log):
    geocoder.reverse_result = {"postalCode": "529889", "address": "TAMPINES MALL", "buildingName": None}
    assert reverse_geocode("1.3526", "103.9447")["postalCode"] == "529889"
    assert activity_log.find_one({"action": "reverse_geocode"}) is not None
