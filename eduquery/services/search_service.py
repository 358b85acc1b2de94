# eduquery/services/search_service.py
import logging
from collections import namedtuple

from flask import current_app
from sqlalchemy import and_, bindparam, func, or_, select

from eduquery.errors import InvalidInput, NotFound, store_errors
from eduquery.extensions import db, log_activity
from eduquery.models.cca import CCA, SchoolCCA
from eduquery.models.programme import (
    DistinctiveProgramme,
    Programme,
    school_distinctives,
    school_programmes,
)
from eduquery.models.school import School, SchoolGeneralInfo, profile_join_condition
from eduquery.models.subject import Subject, school_subjects
from eduquery.services.school_service import get_school_details, school_with_profile
from eduquery.utils.text import PLACEHOLDER_VALUES, is_placeholder

logger = logging.getLogger(__name__)

# =========================================================
# FIELD VOCABULARY
# =========================================================

SUBSTRING = "substring"          # case-insensitive contains, guarded
EXACT = "exact"                  # raw equality, guarded
EXACT_CI = "exact_ci"            # case-insensitive equality, guarded
INDICATOR = "indicator"          # raw equality, no guard (Yes/No flags)
ANY_SUBSTRING = "any_substring"  # SUBSTRING against any one of several columns

FieldSpec = namedtuple("FieldSpec", ["columns", "match", "join"])

AdvancedSearch = namedtuple("AdvancedSearch", ["statement", "params", "joins", "criteria"])


def _school_or_profile(name):
    return func.coalesce(getattr(School, name), getattr(SchoolGeneralInfo, name))


P = SchoolGeneralInfo

FIELD_SPECS = {
    # schools (falling back to the profile copy of the column)
    "school_name": FieldSpec((School.school_name,), SUBSTRING, None),
    "principal_name": FieldSpec((_school_or_profile("principal_name"),), SUBSTRING, None),
    "address": FieldSpec((_school_or_profile("address"),), SUBSTRING, None),
    "postal_code": FieldSpec((_school_or_profile("postal_code"),), EXACT, None),
    "zone_code": FieldSpec((_school_or_profile("zone_code"),), EXACT_CI, None),
    "mainlevel_code": FieldSpec((_school_or_profile("mainlevel_code"),), EXACT_CI, None),

    # extended profile
    "vp_name": FieldSpec(
        (
            P.first_vp_name,
            P.second_vp_name,
            P.third_vp_name,
            P.fourth_vp_name,
            P.fifth_vp_name,
            P.sixth_vp_name,
        ),
        ANY_SUBSTRING,
        None,
    ),
    "email_address": FieldSpec((P.email_address,), SUBSTRING, None),
    "type_code": FieldSpec((P.type_code,), EXACT_CI, None),
    "nature_code": FieldSpec((P.nature_code,), EXACT_CI, None),
    "session_code": FieldSpec((P.session_code,), EXACT_CI, None),
    "dgp_code": FieldSpec((P.dgp_code,), EXACT_CI, None),
    "mothertongue_code": FieldSpec(
        (P.mothertongue1_code, P.mothertongue2_code, P.mothertongue3_code),
        ANY_SUBSTRING,
        None,
    ),
    "autonomous_ind": FieldSpec((P.autonomous_ind,), INDICATOR, None),
    "gifted_ind": FieldSpec((P.gifted_ind,), INDICATOR, None),
    "ip_ind": FieldSpec((P.ip_ind,), INDICATOR, None),
    "sap_ind": FieldSpec((P.sap_ind,), INDICATOR, None),
    "bus_desc": FieldSpec((P.bus_desc,), SUBSTRING, None),
    "mrt_desc": FieldSpec((P.mrt_desc,), SUBSTRING, None),

    # catalogs
    "subject_desc": FieldSpec((Subject.subject_desc,), SUBSTRING, "subjects"),
    "cca_generic_name": FieldSpec((CCA.cca_generic_name,), SUBSTRING, "ccas"),
    "cca_customized_name": FieldSpec((SchoolCCA.cca_customized_name,), SUBSTRING, "ccas"),
    "cca_grouping_desc": FieldSpec((CCA.cca_grouping_desc,), SUBSTRING, "ccas"),
    "moe_programme_desc": FieldSpec((Programme.moe_programme_desc,), SUBSTRING, "programmes"),
    "alp_domain": FieldSpec((DistinctiveProgramme.alp_domain,), SUBSTRING, "distinctives"),
    "alp_title": FieldSpec((DistinctiveProgramme.alp_title,), SUBSTRING, "distinctives"),
    "llp_domain1": FieldSpec((DistinctiveProgramme.llp_domain1,), SUBSTRING, "distinctives"),
    "llp_title": FieldSpec((DistinctiveProgramme.llp_title,), SUBSTRING, "distinctives"),
}

# join name -> (target, onclause) steps from School to the catalog table
JOIN_PATHS = {
    "subjects": (
        (school_subjects, School.school_id == school_subjects.c.school_id),
        (Subject, school_subjects.c.subject_id == Subject.subject_id),
    ),
    "ccas": (
        (SchoolCCA, School.school_id == SchoolCCA.school_id),
        (CCA, SchoolCCA.cca_id == CCA.cca_id),
    ),
    "programmes": (
        (school_programmes, School.school_id == school_programmes.c.school_id),
        (Programme, school_programmes.c.programme_id == Programme.programme_id),
    ),
    "distinctives": (
        (school_distinctives, School.school_id == school_distinctives.c.school_id),
        (
            DistinctiveProgramme,
            school_distinctives.c.distinctive_id == DistinctiveProgramme.distinctive_id,
        ),
    ),
}
JOIN_ORDER = ("subjects", "ccas", "programmes", "distinctives")


# =========================================================
# SANITISATION
# =========================================================

def sanitize_criteria(raw, max_length=100):
    """
    Keep recognised, non-empty, non-placeholder fields, each stripped and
    truncated to max_length characters.
    """
    if not isinstance(raw, dict):
        raise InvalidInput("Search criteria must be a JSON object")

    criteria = {}
    for field in FIELD_SPECS:
        value = raw.get(field)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        text = str(value).strip()[:max_length].strip()
        if is_placeholder(text):
            continue
        criteria[field] = text

    if not criteria:
        raise InvalidInput("At least one search parameter is required")
    return criteria


# =========================================================
# QUERY BUILDING
# =========================================================

def not_placeholder(column):
    return and_(
        column.is_not(None),
        func.trim(column) != "",
        func.upper(column).not_in(PLACEHOLDER_VALUES),
    )


def like_pattern(value):
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _contains(column, param):
    return and_(func.lower(column).like(param, escape="\\"), not_placeholder(column))


def _condition(spec, value, params):
    name = f"p{len(params) + 1}"

    if spec.match in (SUBSTRING, ANY_SUBSTRING):
        pattern = like_pattern(value)
        params.append(pattern)
        param = bindparam(name, pattern)
        clauses = [_contains(column, param) for column in spec.columns]
        return clauses[0] if len(clauses) == 1 else or_(*clauses)

    if spec.match == EXACT_CI:
        params.append(value.upper())
        column = spec.columns[0]
        return and_(func.upper(column) == bindparam(name, value.upper()), not_placeholder(column))

    params.append(value)
    column = spec.columns[0]
    if spec.match == EXACT:
        return and_(column == bindparam(name, value), not_placeholder(column))
    return column == bindparam(name, value)


def build_advanced_search(raw_criteria, limit=100, max_length=100):
    """
    Fold the supplied criteria over FIELD_SPECS into one statement.

    Returns AdvancedSearch(statement, params, joins, criteria): params are
    the bind values in order, joins the catalog paths the criteria need.
    """
    criteria = sanitize_criteria(raw_criteria, max_length=max_length)

    conditions = []
    params = []
    joins = set()
    for field, value in criteria.items():
        spec = FIELD_SPECS[field]
        conditions.append(_condition(spec, value, params))
        if spec.join:
            joins.add(spec.join)

    statement = (
        select(School, SchoolGeneralInfo)
        .select_from(School)
        .outerjoin(SchoolGeneralInfo, profile_join_condition())
    )
    for join in JOIN_ORDER:
        if join in joins:
            for target, onclause in JOIN_PATHS[join]:
                statement = statement.outerjoin(target, onclause)

    statement = (
        statement
        .where(and_(*conditions))
        .distinct()
        .order_by(School.school_name.asc(), School.school_id.asc())
        .limit(limit)
    )
    return AdvancedSearch(statement, params, frozenset(joins), criteria)


def advanced_search(raw_criteria):
    config = current_app.config
    search = build_advanced_search(
        raw_criteria,
        limit=config["SEARCH_RESULT_LIMIT"],
        max_length=config["SEARCH_VALUE_MAX_LENGTH"],
    )
    logger.info(
        "Advanced search on %s (joins: %s)",
        sorted(search.criteria), sorted(search.joins) or "none",
    )

    with store_errors():
        rows = db.session.execute(search.statement).all()

    results = []
    seen = set()
    for school, profile in rows:
        if school.school_id in seen:
            continue
        seen.add(school.school_id)
        results.append(school_with_profile(school, profile))

    log_activity("advanced_search", {
        "criteria_count": len(search.criteria),
        "criteria": search.criteria,
        "results_count": len(results),
    })
    return results, search.criteria


# =========================================================
# UNIVERSAL SEARCH
# =========================================================

def _school_summary(school, **extra):
    row = {
        "school_id": school.school_id,
        "name": school.school_name,
        "zone_code": school.zone_code,
        "mainlevel_code": school.mainlevel_code,
    }
    row.update(extra)
    return row


def universal_search(term: str):
    """Free-text search across schools and every catalog."""
    term = (term or "").strip()
    if not term:
        raise InvalidInput("Search query is required")

    pattern = like_pattern(term[:current_app.config["SEARCH_VALUE_MAX_LENGTH"]])

    def matches(column):
        return func.lower(column).like(pattern, escape="\\")

    with store_errors():
        schools = (
            School.query
            .filter(or_(
                matches(School.school_name),
                matches(School.address),
                matches(School.principal_name),
            ))
            .order_by(School.school_name)
            .all()
        )
        subjects = (
            db.session.query(School, Subject)
            .join(school_subjects, School.school_id == school_subjects.c.school_id)
            .join(Subject, school_subjects.c.subject_id == Subject.subject_id)
            .filter(matches(Subject.subject_desc), not_placeholder(Subject.subject_desc))
            .order_by(School.school_name)
            .all()
        )
        ccas = (
            db.session.query(School, CCA, SchoolCCA)
            .join(SchoolCCA, School.school_id == SchoolCCA.school_id)
            .join(CCA, SchoolCCA.cca_id == CCA.cca_id)
            .filter(or_(
                matches(CCA.cca_grouping_desc),
                matches(CCA.cca_generic_name),
                matches(SchoolCCA.cca_customized_name),
            ))
            .order_by(School.school_name)
            .all()
        )
        programmes = (
            db.session.query(School, Programme)
            .join(school_programmes, School.school_id == school_programmes.c.school_id)
            .join(Programme, school_programmes.c.programme_id == Programme.programme_id)
            .filter(matches(Programme.moe_programme_desc), not_placeholder(Programme.moe_programme_desc))
            .order_by(School.school_name)
            .all()
        )
        distinctives = (
            db.session.query(School, DistinctiveProgramme)
            .join(school_distinctives, School.school_id == school_distinctives.c.school_id)
            .join(
                DistinctiveProgramme,
                school_distinctives.c.distinctive_id == DistinctiveProgramme.distinctive_id,
            )
            .filter(or_(
                matches(func.coalesce(DistinctiveProgramme.alp_title, "")),
                matches(func.coalesce(DistinctiveProgramme.llp_title, "")),
                matches(func.coalesce(DistinctiveProgramme.alp_domain, "")),
                matches(func.coalesce(DistinctiveProgramme.llp_domain1, "")),
            ))
            .order_by(School.school_name)
            .all()
        )

    results = {
        "schools": [
            _school_summary(
                s,
                type="school",
                id=s.school_id,
                description=s.address,
                principal_name=s.principal_name,
            )
            for s in schools
        ],
        "subjects": [
            _school_summary(s, type="subject", description=subj.subject_desc)
            for s, subj in subjects
        ],
        "ccas": [
            _school_summary(
                s,
                type="cca",
                description=c.cca_grouping_desc,
                cca_category=c.cca_generic_name,
            )
            for s, c, _link in ccas
        ],
        "programmes": [
            _school_summary(s, type="programme", description=p.moe_programme_desc)
            for s, p in programmes
        ],
        "distinctives": [
            _school_summary(
                s,
                type="distinctive",
                description=d.alp_title or d.llp_title or "Distinctive Programme",
            )
            for s, d in distinctives
        ],
    }
    results["total"] = sum(len(rows) for rows in results.values())

    log_activity("universal_search", {
        "query": term,
        "total_results": results["total"],
        "breakdown": {key: len(value) for key, value in results.items() if key != "total"},
    })
    return results


# =========================================================
# DETAILS FOR A UNIVERSAL SEARCH HIT
# =========================================================

DETAIL_TYPES = ("school", "subject", "cca", "programme", "distinctive")


def _linked_schools(rows, **extra_fields):
    schools = []
    for row in rows:
        school = row[0]
        entry = {
            "school_id": school.school_id,
            "school_name": school.school_name,
            "zone_code": school.zone_code,
        }
        for key, index in extra_fields.items():
            entry[key] = getattr(row[1], index)
        schools.append(entry)
    return schools


def search_details(item_type: str, item_id: int):
    if item_type not in DETAIL_TYPES:
        raise InvalidInput("Invalid type")

    with store_errors():
        if item_type == "school":
            return get_school_details(item_id, log=False)

        if item_type == "subject":
            subject = db.session.get(Subject, item_id)
            if subject is None:
                raise NotFound("Item not found")
            rows = (
                db.session.query(School)
                .join(school_subjects, School.school_id == school_subjects.c.school_id)
                .filter(school_subjects.c.subject_id == item_id)
                .order_by(School.school_name)
                .all()
            )
            return {
                "subject_desc": subject.subject_desc,
                "schools": _linked_schools([(s,) for s in rows]),
            }

        if item_type == "cca":
            cca = db.session.get(CCA, item_id)
            if cca is None:
                raise NotFound("Item not found")
            rows = (
                db.session.query(School, SchoolCCA)
                .join(SchoolCCA, School.school_id == SchoolCCA.school_id)
                .filter(SchoolCCA.cca_id == item_id)
                .order_by(School.school_name)
                .all()
            )
            return {
                "cca_generic_name": cca.cca_generic_name,
                "schools": _linked_schools(rows, customized_name="cca_customized_name"),
            }

        if item_type == "programme":
            programme = db.session.get(Programme, item_id)
            if programme is None:
                raise NotFound("Item not found")
            rows = (
                db.session.query(School)
                .join(school_programmes, School.school_id == school_programmes.c.school_id)
                .filter(school_programmes.c.programme_id == item_id)
                .order_by(School.school_name)
                .all()
            )
            return {
                "moe_programme_desc": programme.moe_programme_desc,
                "schools": _linked_schools([(s,) for s in rows]),
            }

        distinctive = db.session.get(DistinctiveProgramme, item_id)
        if distinctive is None:
            raise NotFound("Item not found")
        rows = (
            db.session.query(School)
            .join(school_distinctives, School.school_id == school_distinctives.c.school_id)
            .filter(school_distinctives.c.distinctive_id == item_id)
            .order_by(School.school_name)
            .all()
        )
        data = distinctive.to_dict()
        data["schools"] = _linked_schools([(s,) for s in rows])
        return data
