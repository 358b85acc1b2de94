# eduquery/services/geocoding_service.py
"""
OneMap geocoding client.

OneMap is the Singapore Land Authority's mapping API. A postal code search
returns the building's coordinates; an account token (email + password)
raises the rate limits but anonymous search calls also work.

API Documentation: https://www.onemap.gov.sg/apidocs/
"""

import logging
import threading
import time
from collections import OrderedDict, namedtuple
from typing import Optional

import requests

from eduquery.utils.text import is_valid_postal_code

logger = logging.getLogger(__name__)

Coordinates = namedtuple("Coordinates", ["latitude", "longitude", "address"])


class GeocodeCache:
    """
    Process-wide postal code -> Coordinates store.

    max_entries=None keeps everything (Singapore has a small, finite postal
    code space); otherwise the least recently used entry is evicted.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    def get(self, postal_code):
        with self._lock:
            value = self._entries.get(postal_code)
            if value is not None:
                self._entries.move_to_end(postal_code)
            return value

    def set(self, postal_code, coordinates):
        with self._lock:
            self._entries[postal_code] = coordinates
            self._entries.move_to_end(postal_code)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, postal_code):
        with self._lock:
            return postal_code in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)


# Approximate centre of each postal district (first two digits of the code)
_DISTRICT_GROUPS = [
    (("01", "02", "03"), (1.2789, 103.8536)),
    (("04", "05", "06"), (1.2742, 103.8416)),
    (("07", "08"), (1.2741, 103.8454)),
    (("09", "10"), (1.3048, 103.8318)),
    (("11",), (1.3143, 103.8422)),
    (("12",), (1.3265, 103.8506)),
    (("13",), (1.3294, 103.8563)),
    (("14",), (1.3162, 103.8821)),
    (("15",), (1.3149, 103.9120)),
    (("16",), (1.3349, 103.9093)),
    (("17",), (1.3143, 103.9448)),
    (("18",), (1.3404, 103.9915)),
    (("19",), (1.3554, 103.8679)),
    (("20",), (1.3521, 103.8843)),
    (("21",), (1.3329, 103.7835)),
    (("22",), (1.3410, 103.7090)),
    (("23",), (1.3321, 103.7475)),
    (("24",), (1.3465, 103.7249)),
    (("25",), (1.3404, 103.6970)),
    (("26",), (1.3465, 103.6970)),
    (("27",), (1.3857, 103.7449)),
    (("28",), (1.3868, 103.8351)),
    (("29", "30"), (1.4257, 103.8351)),
    (("31", "32", "33"), (1.3831, 103.8188)),
    (("34", "35", "36", "37"), (1.4053, 103.9020)),
    (("38", "39", "40", "41"), (1.3721, 103.9474)),
    (("42", "43", "44", "45"), (1.3541, 103.9434)),
    (("46", "47", "48"), (1.3236, 103.9273)),
    (("49", "50"), (1.3158, 103.8631)),
    (("51", "52"), (1.3710, 103.8926)),
    (("53", "54", "55"), (1.3691, 103.8454)),
    (("56", "57"), (1.3526, 103.8352)),
    (("58", "59"), (1.3394, 103.7808)),
    (("60", "61", "62", "63", "64"), (1.3329, 103.7436)),
    (("65", "66"), (1.3621, 103.7630)),
    (("67",), (1.3807, 103.7470)),
    (("68",), (1.3945, 103.7449)),
    (("69", "70", "71"), (1.4271, 103.7170)),
    (("72",), (1.4382, 103.7470)),
    (("73",), (1.4355, 103.7859)),
    (("75",), (1.4304, 103.8354)),
    (("76",), (1.4143, 103.8329)),
    (("77", "78"), (1.4491, 103.8185)),
    (("79", "80"), (1.3875, 103.8709)),
    (("81",), (1.3644, 103.9915)),
    (("82",), (1.3840, 103.9065)),
]

DISTRICT_COORDINATES = {
    district: coords for districts, coords in _DISTRICT_GROUPS for district in districts
}


def district_coordinates(postal_code: str) -> Optional[Coordinates]:
    if not postal_code or len(postal_code) < 2:
        return None
    coords = DISTRICT_COORDINATES.get(postal_code[:2])
    if coords is None:
        return None
    return Coordinates(coords[0], coords[1], None)


class GeocodingClient:
    """Resolves postal codes to coordinates through OneMap."""

    TOKEN_PATH = "/api/auth/post/getToken"
    SEARCH_PATH = "/api/common/elastic/search"
    REVERSE_PATH = "/api/public/revgeocode"

    TOKEN_LIFETIME = 3 * 24 * 3600
    TOKEN_REFRESH_MARGIN = 3600

    def __init__(
        self,
        base_url="https://www.onemap.gov.sg",
        email=None,
        password=None,
        timeout=10,
        cache=None,
        session=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self.timeout = timeout
        self.cache = cache if cache is not None else GeocodeCache()
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        self._token = None
        self._token_expiry = 0
        self._token_lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            base_url=config["ONEMAP_BASE_URL"],
            email=config.get("ONEMAP_EMAIL"),
            password=config.get("ONEMAP_PASSWORD"),
            timeout=config["GEOCODE_TIMEOUT"],
            cache=GeocodeCache(config.get("GEOCODE_CACHE_SIZE")),
        )

    # ----------------------------
    # AUTH TOKEN
    # ----------------------------

    def _get_token(self):
        """Cached OneMap token, refreshed an hour before it expires."""
        if not self.email or not self.password:
            return None

        with self._token_lock:
            if self._token and time.time() < self._token_expiry - self.TOKEN_REFRESH_MARGIN:
                return self._token

            logger.info("Fetching new OneMap token for %s***", self.email[:3])
            try:
                response = self.session.post(
                    self.base_url + self.TOKEN_PATH,
                    json={"email": self.email, "password": self.password},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                token = response.json().get("access_token")
            except (requests.RequestException, ValueError) as e:
                logger.error("OneMap authentication failed: %s", e)
                return None

            if not token:
                logger.error("OneMap auth response had no access token")
                return None

            self._token = token
            self._token_expiry = time.time() + self.TOKEN_LIFETIME
            return self._token

    def _headers(self):
        token = self._get_token()
        return {"Authorization": token} if token else {}

    # ----------------------------
    # FORWARD GEOCODING
    # ----------------------------

    def resolve(self, postal_code: str) -> Optional[Coordinates]:
        """
        Coordinates for a postal code, or None if OneMap has no match or
        cannot be reached. Successful lookups are cached.
        """
        cached = self.cache.get(postal_code)
        if cached is not None:
            return cached

        coordinates = self._search(postal_code)
        if coordinates is not None:
            self.cache.set(postal_code, coordinates)
        return coordinates

    def _search(self, postal_code):
        params = {
            "searchVal": postal_code,
            "returnGeom": "Y",
            "getAddrDetails": "Y",
            "pageNum": 1,
        }
        try:
            response = self.session.get(
                self.base_url + self.SEARCH_PATH,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("OneMap lookup failed for %s: %s", postal_code, e)
            return None

        if not isinstance(data, dict):
            logger.warning("OneMap returned an unexpected body for %s", postal_code)
            return None

        results = data.get("results") or []
        if not data.get("found") or not results:
            logger.info("OneMap has no match for postal code %s", postal_code)
            return None

        first = results[0]
        try:
            return Coordinates(
                float(first["LATITUDE"]),
                float(first["LONGITUDE"]),
                first.get("ADDRESS"),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("OneMap returned unusable geometry for %s", postal_code)
            return None

    def resolve_approximate(self, postal_code: str, lookup=True) -> Optional[Coordinates]:
        """
        resolve(), falling back to the postal district centre. Only for
        map display; approximate points are never cached.

        With lookup=False only the cache is consulted, so no request is made.
        """
        coordinates = None
        if is_valid_postal_code(postal_code):
            coordinates = self.resolve(postal_code) if lookup else self.cache.get(postal_code)
        if coordinates is not None:
            return coordinates
        return district_coordinates(postal_code)

    # ----------------------------
    # REVERSE GEOCODING
    # ----------------------------

    def reverse(self, latitude: float, longitude: float):
        headers = self._headers()
        if not headers:
            logger.error("Cannot reverse geocode without a OneMap token")
            return None

        params = {
            "location": f"{latitude},{longitude}",
            "buffer": 100,
            "addressType": "all",
        }
        try:
            response = self.session.get(
                self.base_url + self.REVERSE_PATH,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("OneMap reverse geocode failed: %s", e)
            return None

        if not isinstance(data, dict):
            return None

        info = data.get("GeocodeInfo") or []
        if not info:
            return None

        geocode = info[0]
        postal_code = geocode.get("POSTALCODE") or ""
        if len(postal_code) != 6:
            return None

        return {
            "postalCode": postal_code,
            "address": geocode.get("BUILDING") or geocode.get("ROAD") or geocode.get("BLOCK") or "Singapore",
            "buildingName": geocode.get("BUILDING"),
        }
