import logging
import pandas as pd
from io import StringIO
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError

from eduquery.errors import Conflict, InvalidInput, NotFound, store_errors
from eduquery.extensions import db, get_geocoder, log_activity
from eduquery.models.cca import SchoolCCA
from eduquery.models.programme import school_distinctives, school_programmes
from eduquery.models.school import (
    LEVELS,
    PROFILE_COLUMNS,
    ZONES,
    School,
    SchoolGeneralInfo,
    profile_join_condition,
)
from eduquery.models.subject import school_subjects
from eduquery.utils.text import clean_value, is_valid_postal_code

logger = logging.getLogger(__name__)

SCHOOL_FIELDS = (
    "school_name",
    "address",
    "postal_code",
    "zone_code",
    "mainlevel_code",
    "principal_name",
)

# Join tables holding a school_id, emptied before the school row goes
SCHOOL_LINK_TABLES = (
    school_subjects,
    SchoolCCA.__table__,
    school_programmes,
    school_distinctives,
)


def school_with_profile(school, profile=None):
    """School columns plus the extended profile, placeholders blanked out."""
    row = school.to_dict()
    for column in PROFILE_COLUMNS:
        row[column] = clean_value(getattr(profile, column)) if profile is not None else None
    return row


def _actor_fields(actor):
    if not actor:
        return {}
    return {"admin_id": actor.get("user_id"), "admin_username": actor.get("username")}


# ----------------------------
# READ
# ----------------------------

def get_all_schools():
    with store_errors():
        return School.query.order_by(School.school_name).all()


def search_schools(name=None):
    """All schools, or up to 50 whose name contains `name`."""
    name = (name or "").strip()
    with store_errors():
        query = School.query
        if name:
            query = query.filter(func.lower(School.school_name).contains(name.lower(), autoescape=True))
        query = query.order_by(School.school_name.asc())
        if name:
            query = query.limit(50)
        schools = query.all()

    if name:
        log_activity("search_schools", {"query": name, "results_count": len(schools)})
    return [s.to_dict() for s in schools]


def get_school(school_id: int) -> School:
    with store_errors():
        school = db.session.get(School, school_id)
    if school is None:
        raise NotFound("School not found")
    return school


def _link_count(table, school_id):
    return (
        db.session.query(func.count())
        .select_from(table)
        .filter(table.c.school_id == school_id)
        .scalar()
    )


def get_school_details(school_id: int, log=True):
    with store_errors():
        row = (
            db.session.query(School, SchoolGeneralInfo)
            .outerjoin(SchoolGeneralInfo, profile_join_condition())
            .filter(School.school_id == school_id)
            .first()
        )
        if row is None:
            raise NotFound("School not found")

        school, profile = row
        details = school_with_profile(school, profile)
        details["subject_count"] = _link_count(school_subjects, school_id)
        details["cca_count"] = _link_count(SchoolCCA.__table__, school_id)
        details["programme_count"] = _link_count(school_programmes, school_id)
        details["distinctive_count"] = _link_count(school_distinctives, school_id)

    if log:
        log_activity("view_school_details", {
            "school_id": school_id,
            "school_name": school.school_name,
        })
    return details


def get_recent_schools(limit=10):
    with store_errors():
        schools = School.query.order_by(School.school_id.desc()).limit(limit).all()
    return [s.to_dict() for s in schools]


def compare_schools(school1_id, school2_id):
    """Side-by-side details and catalog offerings for two schools."""
    from eduquery.services.catalog_service import get_school_catalog

    if not school1_id or not school2_id:
        raise InvalidInput("Both school IDs are required")

    try:
        first = get_school_details(int(school1_id), log=False)
        second = get_school_details(int(school2_id), log=False)
    except NotFound:
        raise NotFound("One or both schools not found")
    except (TypeError, ValueError):
        raise InvalidInput("School IDs must be integers")

    for school in (first, second):
        school.update(get_school_catalog(school["school_id"]))

    log_activity("school_comparison", {
        "school1_id": first["school_id"],
        "school2_id": second["school_id"],
        "school1_name": first["school_name"],
        "school2_name": second["school_name"],
    })
    return first, second


# ----------------------------
# MAP
# ----------------------------

def get_map_schools(zone=None):
    """
    Schools with display coordinates: a cached OneMap fix when one exists,
    otherwise the postal district centre. Issues no upstream calls.
    """
    with store_errors():
        query = School.query
        if zone and zone.lower() != "all":
            query = query.filter(School.zone_code == zone.upper())
        schools = query.order_by(School.school_name.asc()).all()

    geocoder = get_geocoder()
    rows = []
    for school in schools:
        row = school.to_dict()
        coordinates = geocoder.resolve_approximate(school.postal_code, lookup=False)
        row["latitude"] = coordinates.latitude if coordinates else None
        row["longitude"] = coordinates.longitude if coordinates else None
        row["approximate"] = coordinates is not None and coordinates.address is None
        rows.append(row)

    log_activity("view_map", {"zone": zone or "all", "schools_count": len(rows)})
    return rows


def get_map_stats():
    with store_errors():
        by_zone = (
            db.session.query(School.zone_code, func.count(School.school_id))
            .group_by(School.zone_code)
            .order_by(School.zone_code)
            .all()
        )
        by_level = (
            db.session.query(School.mainlevel_code, func.count(School.school_id))
            .group_by(School.mainlevel_code)
            .order_by(School.mainlevel_code)
            .all()
        )
        total = School.query.count()

    return {
        "total": total,
        "byZone": [{"zone_code": zone, "count": count} for zone, count in by_zone],
        "byLevel": [{"mainlevel_code": level, "count": count} for level, count in by_level],
    }


# ----------------------------
# CREATE / UPDATE
# ----------------------------

def validate_school_payload(data) -> dict:
    if not isinstance(data, dict):
        raise InvalidInput("All fields are required")

    cleaned = {}
    for field in SCHOOL_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput("All fields are required")
        cleaned[field] = value.strip()

    if not is_valid_postal_code(cleaned["postal_code"]):
        raise InvalidInput("Postal code must be exactly 6 digits")

    cleaned["zone_code"] = cleaned["zone_code"].upper()
    if cleaned["zone_code"] not in ZONES:
        raise InvalidInput(f"Zone must be one of: {', '.join(ZONES)}")

    cleaned["mainlevel_code"] = cleaned["mainlevel_code"].upper()
    if cleaned["mainlevel_code"] not in LEVELS:
        raise InvalidInput(f"Level must be one of: {', '.join(LEVELS)}")

    return cleaned


def _ensure_unique_name(name, exclude_id=None):
    query = School.query.filter(func.lower(School.school_name) == name.lower())
    if exclude_id is not None:
        query = query.filter(School.school_id != exclude_id)
    if query.first() is not None:
        raise Conflict("A school with this name already exists")


def _commit_school():
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("A school with this name already exists")


def add_school(data, actor=None) -> dict:
    fields = validate_school_payload(data)

    with store_errors():
        _ensure_unique_name(fields["school_name"])
        school = School(**fields)
        db.session.add(school)
        _commit_school()

    log_activity("create_school", {
        **_actor_fields(actor),
        "school_id": school.school_id,
        "school_name": school.school_name,
    })
    return school.to_dict()


def update_school(school_id: int, data, actor=None) -> dict:
    fields = validate_school_payload(data)

    with store_errors():
        school = db.session.get(School, school_id)
        if school is None:
            raise NotFound("School not found")
        _ensure_unique_name(fields["school_name"], exclude_id=school_id)
        for key, value in fields.items():
            setattr(school, key, value)
        _commit_school()

    log_activity("update_school", {
        **_actor_fields(actor),
        "school_id": school_id,
        "school_name": school.school_name,
    })
    return school.to_dict()


# ----------------------------
# DELETE
# ----------------------------

def delete_school(school_id: int, actor=None):
    """
    Remove the school's subject/CCA/programme/distinctive links and then
    the school itself, committed as one transaction.
    """
    with store_errors():
        school = db.session.get(School, school_id)
        if school is None:
            raise NotFound("School not found")
        school_name = school.school_name

        for table in SCHOOL_LINK_TABLES:
            db.session.execute(delete(table).where(table.c.school_id == school_id))
        db.session.execute(delete(School).where(School.school_id == school_id))
        db.session.commit()

    db.session.expire_all()
    log_activity("delete_school", {
        **_actor_fields(actor),
        "school_id": school_id,
        "school_name": school_name,
    })


# ----------------------------
# CSV EXPORT
# ----------------------------

def get_schools_as_csv():
    schools = get_all_schools()

    data = [
        {
            "ID": s.school_id,
            "School Name": s.school_name,
            "Address": s.address,
            "Postal Code": s.postal_code,
            "Zone": s.zone_code,
            "Level": s.mainlevel_code,
            "Principal": s.principal_name,
        }
        for s in schools
    ]

    df = pd.DataFrame(data, columns=[
        "ID", "School Name", "Address", "Postal Code", "Zone", "Level", "Principal",
    ])

    csv_buffer = StringIO()
    df.to_csv(csv_buffer, index=False)
    csv_buffer.seek(0)

    return csv_buffer
