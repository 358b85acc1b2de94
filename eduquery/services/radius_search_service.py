# eduquery/services/radius_search_service.py
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor

from flask import current_app

from eduquery.errors import InvalidInput, LocationNotFound, NotFound, store_errors
from eduquery.extensions import db, get_geocoder, log_activity
from eduquery.models.school import School, SchoolGeneralInfo, profile_join_condition
from eduquery.utils.text import clean_value, is_valid_postal_code

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371

# lat/lng box the reverse geocoder accepts
SINGAPORE_BOUNDS = {"lat": (1.1, 1.5), "lng": (103.6, 104.1)}

RESULT_PROFILE_COLUMNS = ("email_address", "telephone_no", "type_code", "nature_code")

POSTAL_CODE_MESSAGE = "Invalid postal code format. Singapore postal codes must be 6 digits."
REQUIRED_MESSAGE = "Postal code and radius are required"


# ---------------------------------------------------
# Validation / geometry
# ---------------------------------------------------

def validate_postal_code(postal_code):
    if not is_valid_postal_code(postal_code):
        raise InvalidInput(POSTAL_CODE_MESSAGE)
    return postal_code


def validate_radius(radius_km) -> float:
    if radius_km is None or radius_km == "" or isinstance(radius_km, bool):
        raise InvalidInput(REQUIRED_MESSAGE)
    try:
        radius = float(radius_km)
    except (TypeError, ValueError):
        raise InvalidInput("Radius must be a number")
    if not math.isfinite(radius) or radius <= 0:
        raise InvalidInput("Radius must be a positive number")
    return radius


def haversine_km(lat1, lon1, lat2, lon2) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


# ---------------------------------------------------
# Batched geocoding
# ---------------------------------------------------

def _safe_resolve(geocoder, postal_code):
    try:
        return geocoder.resolve(postal_code)
    except Exception:
        logger.exception("Geocoding %s failed; dropping candidate", postal_code)
        return None


def geocode_in_batches(geocoder, postal_codes, batch_size=5, delay=0.1, sleep=time.sleep):
    """
    Resolve postal codes batch_size at a time. Calls within a batch run
    concurrently; the next batch starts only after the whole batch is done
    and `delay` seconds have passed.

    Returns {postal_code: Coordinates or None}.
    """
    postal_codes = list(postal_codes)
    batch_size = max(1, int(batch_size))
    resolved = {}

    for start in range(0, len(postal_codes), batch_size):
        batch = postal_codes[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            results = list(pool.map(lambda code: _safe_resolve(geocoder, code), batch))
        resolved.update(zip(batch, results))

        if delay and start + batch_size < len(postal_codes):
            sleep(delay)

    return resolved


# ---------------------------------------------------
# Radius search
# ---------------------------------------------------

def _candidates():
    """Schools with a well-formed postal code, with their profile."""
    with store_errors():
        rows = (
            db.session.query(School, SchoolGeneralInfo)
            .outerjoin(SchoolGeneralInfo, profile_join_condition())
            .filter(School.postal_code.is_not(None), School.postal_code != "")
            .order_by(School.school_name)
            .all()
        )

    candidates = []
    seen = set()
    for school, profile in rows:
        if school.school_id in seen or not is_valid_postal_code(school.postal_code):
            continue
        seen.add(school.school_id)
        row = school.to_dict()
        for column in RESULT_PROFILE_COLUMNS:
            row[column] = clean_value(getattr(profile, column)) if profile is not None else None
        candidates.append(row)
    return candidates


def search_by_postal_code(postal_code, radius_km, sleep=time.sleep):
    """
    Schools within radius_km of the centre postal code, nearest first.

    Candidates that cannot be geocoded are dropped, never given a distance.
    """
    if postal_code in (None, "") or radius_km in (None, ""):
        raise InvalidInput(REQUIRED_MESSAGE)
    postal_code = validate_postal_code(postal_code)
    radius = validate_radius(radius_km)

    geocoder = get_geocoder()
    center = geocoder.resolve(postal_code)
    if center is None:
        raise LocationNotFound(
            f"Postal code {postal_code} not found. Please verify the postal code is correct."
        )

    candidates = _candidates()
    unique_codes = list(dict.fromkeys(c["postal_code"] for c in candidates))

    config = current_app.config
    coordinates = geocode_in_batches(
        geocoder,
        unique_codes,
        batch_size=config["GEOCODE_BATCH_SIZE"],
        delay=config["GEOCODE_BATCH_DELAY"],
        sleep=sleep,
    )

    results = []
    fetched = 0
    for school in candidates:
        point = coordinates.get(school["postal_code"])
        if point is None:
            continue
        fetched += 1
        distance = haversine_km(center.latitude, center.longitude, point.latitude, point.longitude)
        if distance <= radius:
            school["distance_km"] = round(distance, 2)
            results.append(school)

    results.sort(key=lambda s: s["distance_km"])

    logger.info(
        "Radius search %s/%skm: %d of %d schools within range (%d located)",
        postal_code, radius, len(results), len(candidates), fetched,
    )
    log_activity("search_by_postal_code", {
        "postal_code": postal_code,
        "radius_km": radius,
        "results_count": len(results),
        "schools_processed": len(candidates),
        "coordinates_fetched": fetched,
    })

    return {
        "results": results,
        "search_params": {
            "postal_code": postal_code,
            "radius_km": radius,
            "center_latitude": center.latitude,
            "center_longitude": center.longitude,
            "center_address": center.address,
        },
        "metadata": {
            "schools_processed": len(candidates),
            "unique_postal_codes": len(unique_codes),
            "coordinates_fetched": fetched,
        },
    }


# ---------------------------------------------------
# Single lookups
# ---------------------------------------------------

def lookup_postal_code(postal_code):
    validate_postal_code(postal_code)
    coordinates = get_geocoder().resolve(postal_code)
    if coordinates is None:
        raise LocationNotFound("Postal code not found or coordinates not available")
    return {
        "postal_code": postal_code,
        "latitude": coordinates.latitude,
        "longitude": coordinates.longitude,
        "address": coordinates.address,
    }


def reverse_geocode(lat, lng):
    if lat in (None, "") or lng in (None, ""):
        raise InvalidInput("Latitude and longitude required")
    try:
        latitude = float(lat)
        longitude = float(lng)
    except (TypeError, ValueError):
        raise InvalidInput("Invalid coordinates")

    lat_min, lat_max = SINGAPORE_BOUNDS["lat"]
    lng_min, lng_max = SINGAPORE_BOUNDS["lng"]
    if not (lat_min <= latitude <= lat_max and lng_min <= longitude <= lng_max):
        raise InvalidInput("Coordinates outside Singapore")

    result = get_geocoder().reverse(latitude, longitude)
    if result is None:
        raise NotFound("No postal code found for coordinates")

    log_activity("reverse_geocode", {
        "latitude": latitude,
        "longitude": longitude,
        "postalCode": result["postalCode"],
    })
    return result
