import pytest
import requests

from eduquery.services.geocoding_service import (
    Coordinates,
    GeocodeCache,
    GeocodingClient,
    district_coordinates,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Records requests and replays queued responses (or raises them)."""

    def __init__(self, get=None, post=None):
        self.headers = {}
        self.get_responses = list(get or [])
        self.post_responses = list(post or [])
        self.gets = []
        self.posts = []

    def _next(self, queue):
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        return self._next(self.get_responses)

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return self._next(self.post_responses)


def search_hit(lat="1.3526", lng="103.9447", address="1 TAMPINES WALK"):
    return FakeResponse({
        "found": 1,
        "results": [{"LATITUDE": lat, "LONGITUDE": lng, "ADDRESS": address}],
    })


NO_HIT = FakeResponse({"found": 0, "results": []})


def make_client(session, **kwargs):
    return GeocodingClient(base_url="https://onemap.test", session=session, **kwargs)


# ----------------------------
# Forward geocoding
# ----------------------------

def test_resolve_parses_first_result():
    session = FakeSession(get=[search_hit()])
    client = make_client(session, timeout=7)

    coordinates = client.resolve("529889")

    assert coordinates == Coordinates(1.3526, 103.9447, "1 TAMPINES WALK")
    url, kwargs = session.gets[0]
    assert url == "https://onemap.test/api/common/elastic/search"
    assert kwargs["params"]["searchVal"] == "529889"
    assert kwargs["timeout"] == 7


def test_second_resolve_is_served_from_cache():
    session = FakeSession(get=[search_hit()])
    client = make_client(session)

    first = client.resolve("529889")
    second = client.resolve("529889")

    assert first == second
    assert len(session.gets) == 1


def test_misses_are_not_cached():
    session = FakeSession(get=[NO_HIT, search_hit()])
    client = make_client(session)

    assert client.resolve("529889") is None
    assert client.resolve("529889") is not None
    assert len(session.gets) == 2


@pytest.mark.parametrize("failure", [
    requests.Timeout("timed out"),
    requests.ConnectionError("refused"),
    FakeResponse({}, status_code=503),
    FakeResponse(ValueError("not json")),
    FakeResponse({"found": 1, "results": [{"LATITUDE": "abc"}]}),
    FakeResponse(["unexpected", "list"]),
    FakeResponse("maintenance"),
])
def test_upstream_failures_resolve_to_none(failure):
    client = make_client(FakeSession(get=[failure]))
    assert client.resolve("529889") is None
    assert "529889" not in client.cache


# ----------------------------
# Token handling
# ----------------------------

def test_no_credentials_means_anonymous_requests():
    session = FakeSession(get=[search_hit()])
    make_client(session).resolve("529889")

    assert session.posts == []
    assert "Authorization" not in session.gets[0][1]["headers"]


def test_token_is_fetched_once_and_reused():
    session = FakeSession(
        get=[search_hit(), search_hit()],
        post=[FakeResponse({"access_token": "tok-1"})],
    )
    client = make_client(session, email="ops@example.sg", password="pw")

    client.resolve("529889")
    client.resolve("510101")

    assert len(session.posts) == 1
    assert session.posts[0][1]["json"] == {"email": "ops@example.sg", "password": "pw"}
    assert all(kwargs["headers"] == {"Authorization": "tok-1"} for _, kwargs in session.gets)


def test_token_is_refreshed_near_expiry():
    session = FakeSession(
        get=[search_hit(), search_hit()],
        post=[FakeResponse({"access_token": "old"}), FakeResponse({"access_token": "new"})],
    )
    client = make_client(session, email="ops@example.sg", password="pw")
    client.resolve("529889")

    client._token_expiry = 0
    client.resolve("510101")

    assert len(session.posts) == 2
    assert session.gets[-1][1]["headers"] == {"Authorization": "new"}


def test_failed_authentication_falls_back_to_anonymous():
    session = FakeSession(get=[search_hit()], post=[requests.ConnectionError("down")])
    client = make_client(session, email="ops@example.sg", password="pw")

    assert client.resolve("529889") is not None
    assert session.gets[0][1]["headers"] == {}


# ----------------------------
# Cache / fallback
# ----------------------------

def test_cache_evicts_least_recently_used():
    cache = GeocodeCache(max_entries=2)
    cache.set("111111", Coordinates(1, 1, None))
    cache.set("222222", Coordinates(2, 2, None))
    cache.get("111111")
    cache.set("333333", Coordinates(3, 3, None))

    assert "111111" in cache
    assert "222222" not in cache
    assert len(cache) == 2


def test_unbounded_cache_keeps_everything():
    cache = GeocodeCache()
    for n in range(500):
        cache.set(f"{n:06d}", Coordinates(n, n, None))
    assert len(cache) == 500


def test_district_coordinates_use_first_two_digits():
    assert district_coordinates("529889") == district_coordinates("520000")
    assert district_coordinates("529889").address is None
    assert district_coordinates("749999") is None


def test_resolve_approximate_prefers_real_coordinates():
    client = make_client(FakeSession(get=[search_hit()]))
    assert client.resolve_approximate("529889").address == "1 TAMPINES WALK"


def test_resolve_approximate_falls_back_without_caching():
    client = make_client(FakeSession(get=[NO_HIT]))

    coordinates = client.resolve_approximate("529889")

    assert coordinates == district_coordinates("529889")
    assert "529889" not in client.cache


def test_resolve_approximate_without_lookup_makes_no_request():
    session = FakeSession()
    client = make_client(session)
    client.cache.set("510101", Coordinates(1.37, 103.95, "BLK 101"))

    assert client.resolve_approximate("510101", lookup=False).address == "BLK 101"
    assert client.resolve_approximate("529889", lookup=False) == district_coordinates("529889")
    assert session.gets == []


# ----------------------------
# Reverse geocoding
# ----------------------------

def test_reverse_needs_a_token():
    session = FakeSession()
    assert make_client(session).reverse(1.35, 103.9) is None
    assert session.gets == []


def test_reverse_returns_postal_code():
    session = FakeSession(
        get=[FakeResponse({"GeocodeInfo": [
            {"POSTALCODE": "529889", "BUILDING": "TAMPINES MALL", "ROAD": "TAMPINES CENTRAL 5"},
        ]})],
        post=[FakeResponse({"access_token": "tok"})],
    )
    client = make_client(session, email="ops@example.sg", password="pw")

    result = client.reverse(1.3526, 103.9447)

    assert result == {
        "postalCode": "529889",
        "address": "TAMPINES MALL",
        "buildingName": "TAMPINES MALL",
    }
    assert session.gets[0][1]["params"]["buffer"] == 100
