# eduquery/services/catalog_service.py
import logging
from sqlalchemy import func, or_

from eduquery.errors import NotFound, store_errors
from eduquery.extensions import db, log_activity
from eduquery.models.cca import CCA, SCHOOL_SECTIONS, SchoolCCA
from eduquery.models.programme import (
    DistinctiveProgramme,
    Programme,
    school_distinctives,
    school_programmes,
)
from eduquery.models.school import School
from eduquery.models.subject import Subject, school_subjects
from eduquery.services.search_service import like_pattern, not_placeholder
from eduquery.utils.text import clean_value

logger = logging.getLogger(__name__)

CATALOG_SEARCH_LIMIT = 100

# =========================================================
# UPSERT BY NATURAL KEY
# =========================================================

def get_or_create_subject(subject_desc: str) -> Subject:
    subject_desc = clean_value(subject_desc)
    if not subject_desc:
        return None

    subject = Subject.query.filter_by(subject_desc=subject_desc).first()
    if not subject:
        subject = Subject(subject_desc=subject_desc)
        db.session.add(subject)
        db.session.flush()
    return subject


def get_or_create_cca(cca_generic_name: str, cca_grouping_desc=None) -> CCA:
    cca_generic_name = clean_value(cca_generic_name)
    if not cca_generic_name:
        return None

    cca = CCA.query.filter_by(cca_generic_name=cca_generic_name).first()
    if not cca:
        cca = CCA(
            cca_generic_name=cca_generic_name,
            cca_grouping_desc=clean_value(cca_grouping_desc),
        )
        db.session.add(cca)
        db.session.flush()
    elif not cca.cca_grouping_desc and clean_value(cca_grouping_desc):
        cca.cca_grouping_desc = clean_value(cca_grouping_desc)
    return cca


def get_or_create_programme(moe_programme_desc: str) -> Programme:
    moe_programme_desc = clean_value(moe_programme_desc)
    if not moe_programme_desc:
        return None

    programme = Programme.query.filter_by(moe_programme_desc=moe_programme_desc).first()
    if not programme:
        programme = Programme(moe_programme_desc=moe_programme_desc)
        db.session.add(programme)
        db.session.flush()
    return programme


def get_or_create_distinctive(alp_domain=None, alp_title=None, llp_domain1=None, llp_title=None):
    """
    A distinctive programme is identified by all four fields together.
    Returns None when neither an ALP nor an LLP domain is present.
    """
    key = {
        "alp_domain": clean_value(alp_domain),
        "alp_title": clean_value(alp_title),
        "llp_domain1": clean_value(llp_domain1),
        "llp_title": clean_value(llp_title),
    }
    if not key["alp_domain"] and not key["llp_domain1"]:
        return None

    # filter_by(x=None) would compare with "= NULL"
    query = DistinctiveProgramme.query
    for field, value in key.items():
        column = getattr(DistinctiveProgramme, field)
        query = query.filter(column.is_(None) if value is None else column == value)

    distinctive = query.first()
    if not distinctive:
        distinctive = DistinctiveProgramme(**key)
        db.session.add(distinctive)
        db.session.flush()
    return distinctive


# =========================================================
# LINKS
# =========================================================

def link_subject(school: School, subject: Subject):
    if subject is not None and subject not in school.subjects:
        school.subjects.append(subject)


def link_programme(school: School, programme: Programme):
    if programme is not None and programme not in school.programmes:
        school.programmes.append(programme)


def link_distinctive(school: School, distinctive: DistinctiveProgramme):
    if distinctive is not None and distinctive not in school.distinctives:
        school.distinctives.append(distinctive)


def link_cca(school: School, cca: CCA, cca_customized_name=None, school_section=None):
    if cca is None:
        return None

    section = clean_value(school_section)
    section = section.upper() if section else None
    if section not in SCHOOL_SECTIONS:
        section = None

    link = db.session.get(SchoolCCA, (school.school_id, cca.cca_id))
    if link is None:
        link = SchoolCCA(school_id=school.school_id, cca_id=cca.cca_id)
        db.session.add(link)
    link.cca_customized_name = clean_value(cca_customized_name) or link.cca_customized_name
    link.school_section = section or link.school_section
    return link


# =========================================================
# PER-SCHOOL OFFERINGS
# =========================================================

def _require_school(school_id):
    if db.session.get(School, school_id) is None:
        raise NotFound("School not found")


def get_school_subjects(school_id: int):
    with store_errors():
        _require_school(school_id)
        rows = (
            db.session.query(Subject.subject_desc)
            .join(school_subjects, school_subjects.c.subject_id == Subject.subject_id)
            .filter(school_subjects.c.school_id == school_id)
            .filter(not_placeholder(Subject.subject_desc))
            .distinct()
            .order_by(Subject.subject_desc)
            .all()
        )
    return [{"subject_desc": desc} for (desc,) in rows]


def get_school_ccas(school_id: int):
    with store_errors():
        _require_school(school_id)
        rows = (
            db.session.query(SchoolCCA, CCA)
            .join(CCA, SchoolCCA.cca_id == CCA.cca_id)
            .filter(SchoolCCA.school_id == school_id)
            .filter(not_placeholder(CCA.cca_generic_name))
            .order_by(CCA.cca_grouping_desc, CCA.cca_generic_name)
            .all()
        )
    return [
        {
            "cca_generic_name": cca.cca_generic_name,
            "cca_grouping_desc": cca.cca_grouping_desc,
            "cca_customized_name": link.cca_customized_name,
            "school_section": link.school_section,
        }
        for link, cca in rows
    ]


def get_school_programmes(school_id: int):
    with store_errors():
        _require_school(school_id)
        rows = (
            db.session.query(Programme.moe_programme_desc)
            .join(school_programmes, school_programmes.c.programme_id == Programme.programme_id)
            .filter(school_programmes.c.school_id == school_id)
            .filter(not_placeholder(Programme.moe_programme_desc))
            .distinct()
            .order_by(Programme.moe_programme_desc)
            .all()
        )
    return [{"moe_programme_desc": desc} for (desc,) in rows]


def get_school_distinctives(school_id: int):
    with store_errors():
        _require_school(school_id)
        rows = (
            db.session.query(DistinctiveProgramme)
            .join(
                school_distinctives,
                school_distinctives.c.distinctive_id == DistinctiveProgramme.distinctive_id,
            )
            .filter(school_distinctives.c.school_id == school_id)
            .order_by(DistinctiveProgramme.alp_title, DistinctiveProgramme.llp_title)
            .all()
        )
    return [
        {key: value for key, value in d.to_dict().items() if key != "distinctive_id"}
        for d in rows
    ]


def get_school_catalog(school_id: int) -> dict:
    return {
        "subjects": get_school_subjects(school_id),
        "ccas": get_school_ccas(school_id),
        "programmes": get_school_programmes(school_id),
        "distinctives": get_school_distinctives(school_id),
    }


# =========================================================
# SCHOOLS BY CATALOG NAME
# =========================================================

def _matches(column, pattern):
    return func.lower(column).like(pattern, escape="\\")


def _school_columns():
    return (School.school_id, School.school_name, School.zone_code, School.mainlevel_code)


def _catalog_search(name, action, build_query):
    """Empty name -> []; otherwise run, log the action and return dict rows."""
    name = (name or "").strip()
    if not name:
        return []

    with store_errors():
        rows = build_query(like_pattern(name)).limit(CATALOG_SEARCH_LIMIT).all()

    results = [dict(row._mapping) for row in rows]
    log_activity(action, {"query": name, "results_count": len(results)})
    return results


def search_schools_by_subject(name: str):
    def build(pattern):
        return (
            db.session.query(*_school_columns(), Subject.subject_desc)
            .join(school_subjects, School.school_id == school_subjects.c.school_id)
            .join(Subject, Subject.subject_id == school_subjects.c.subject_id)
            .filter(_matches(Subject.subject_desc, pattern))
            .filter(not_placeholder(Subject.subject_desc))
            .distinct()
            .order_by(School.school_name, Subject.subject_desc)
        )
    return _catalog_search(name, "search_subjects", build)


def search_schools_by_cca(name: str):
    def build(pattern):
        return (
            db.session.query(*_school_columns(), CCA.cca_generic_name)
            .join(SchoolCCA, School.school_id == SchoolCCA.school_id)
            .join(CCA, CCA.cca_id == SchoolCCA.cca_id)
            .filter(or_(
                _matches(CCA.cca_generic_name, pattern),
                _matches(CCA.cca_grouping_desc, pattern),
                _matches(SchoolCCA.cca_customized_name, pattern),
            ))
            .filter(not_placeholder(CCA.cca_generic_name))
            .distinct()
            .order_by(School.school_name, CCA.cca_generic_name)
        )
    return _catalog_search(name, "search_ccas", build)


def search_schools_by_programme(name: str):
    def build(pattern):
        return (
            db.session.query(*_school_columns(), Programme.moe_programme_desc)
            .join(school_programmes, School.school_id == school_programmes.c.school_id)
            .join(Programme, Programme.programme_id == school_programmes.c.programme_id)
            .filter(_matches(Programme.moe_programme_desc, pattern))
            .filter(not_placeholder(Programme.moe_programme_desc))
            .distinct()
            .order_by(School.school_name, Programme.moe_programme_desc)
        )
    return _catalog_search(name, "search_programmes", build)


def search_schools_by_distinctive(name: str):
    d = DistinctiveProgramme
    fields = (d.alp_domain, d.alp_title, d.llp_domain1, d.llp_title)

    def build(pattern):
        return (
            db.session.query(
                *_school_columns(),
                func.coalesce(d.alp_title, d.llp_title).label("distinctive_name"),
                d.alp_domain,
                d.llp_domain1,
            )
            .join(school_distinctives, School.school_id == school_distinctives.c.school_id)
            .join(d, d.distinctive_id == school_distinctives.c.distinctive_id)
            .filter(or_(*[_matches(column, pattern) for column in fields]))
            .filter(or_(*[not_placeholder(column) for column in fields]))
            .distinct()
            .order_by(School.school_name)
        )
    return _catalog_search(name, "search_distinctives", build)
