# eduquery/services/analytics_service.py
"""
Read-only reports over the school directory.

Rows are pulled with plain SQLAlchemy queries and aggregated with pandas,
so the reports behave the same on SQLite and PostgreSQL.
"""

import logging
import pandas as pd

from eduquery.errors import InvalidInput, store_errors
from eduquery.extensions import db, log_activity
from eduquery.models.cca import CCA, SchoolCCA
from eduquery.models.programme import school_distinctives, school_programmes
from eduquery.models.school import School
from eduquery.models.subject import Subject, school_subjects

logger = logging.getLogger(__name__)

RARE_OFFERING_MAX_SCHOOLS = 3
RARE_OFFERING_TYPES = ("subjects", "ccas")

# =========================================================
# FRAME HELPERS
# =========================================================

def _frame(query, columns):
    with store_errors():
        rows = query.all()
    return pd.DataFrame([tuple(r) for r in rows], columns=columns)


def _schools():
    return _frame(
        db.session.query(
            School.school_id,
            School.school_name,
            School.zone_code,
            School.mainlevel_code,
            School.address,
        ),
        ["school_id", "school_name", "zone_code", "mainlevel_code", "address"],
    )


def _links(table, item_column):
    return _frame(
        db.session.query(table.c.school_id, table.c[item_column]),
        ["school_id", "item_id"],
    )


def _subject_links():
    return _links(school_subjects, "subject_id")


def _cca_links():
    return _links(SchoolCCA.__table__, "cca_id")


def _programme_links():
    return _links(school_programmes, "programme_id")


def _distinctive_links():
    return _links(school_distinctives, "distinctive_id")


def _per_school_count(schools, links, name):
    counts = links.groupby("school_id")["item_id"].nunique().rename(name)
    return (
        schools.set_index("school_id")
        .join(counts)
        .fillna({name: 0})
        .astype({name: int})
        .reset_index()
    )


def _records(df):
    """JSON-safe records: NaN -> None, numpy scalars -> Python."""
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


# =========================================================
# REPORTS
# =========================================================

def zone_statistics():
    schools = _schools()
    if schools.empty:
        data = []
    else:
        schools["address_length"] = schools["address"].fillna("").str.len()
        grouped = (
            schools.groupby("zone_code")
            .agg(
                total_schools=("school_id", "count"),
                school_types=("mainlevel_code", "nunique"),
                avg_address_length=("address_length", "mean"),
            )
            .round({"avg_address_length": 2})
            .reset_index()
            .sort_values("total_schools", ascending=False)
        )
        data = _records(grouped)

    log_activity("view_zone_statistics", {"zones_analyzed": len(data)})
    return data


def _diversity(count):
    if count > 10:
        return "High"
    if count > 5:
        return "Medium"
    return "Low"


def subject_counts(limit=20):
    """Schools with the most subjects, each tagged High/Medium/Low."""
    df = _per_school_count(_schools(), _subject_links(), "subject_count")
    df = df[df["subject_count"] > 0]
    df = df.sort_values(["subject_count", "school_name"], ascending=[False, True]).head(limit).copy()
    df["subject_diversity"] = df["subject_count"].map(_diversity)

    data = _records(df[["school_id", "school_name", "zone_code", "mainlevel_code",
                        "subject_count", "subject_diversity"]])
    summary = {
        "total_schools": len(data),
        "avg_subjects": round(float(df["subject_count"].mean()), 2) if data else 0,
    }

    log_activity("view_subject_diversity", {"schools_analyzed": len(data)})
    return data, summary


def above_average_subjects():
    df = _per_school_count(_schools(), _subject_links(), "subject_count")
    offering = df[df["subject_count"] > 0]

    if offering.empty:
        data = []
    else:
        average = offering["subject_count"].mean()
        above = df[df["subject_count"] > average].copy()
        above["system_average"] = round(float(average), 2)
        above["difference"] = (above["subject_count"] - average).round(2)
        above = above.sort_values(["subject_count", "school_name"], ascending=[False, True])
        data = _records(above[["school_name", "zone_code", "subject_count",
                               "system_average", "difference"]])

    log_activity("view_above_average_schools", {"schools_found": len(data)})
    return data


def cca_participation(min_schools=3, limit=15):
    """CCAs offered by at least min_schools schools, most widespread first."""
    schools = _schools()
    links = _frame(
        db.session.query(SchoolCCA.school_id, SchoolCCA.cca_id, CCA.cca_generic_name, School.zone_code)
        .join(CCA, SchoolCCA.cca_id == CCA.cca_id)
        .join(School, SchoolCCA.school_id == School.school_id),
        ["school_id", "cca_id", "cca_generic_name", "zone_code"],
    )

    if links.empty:
        data = []
    else:
        total = schools["school_id"].nunique()
        grouped = (
            links.groupby(["cca_id", "cca_generic_name"])
            .agg(
                school_count=("school_id", "nunique"),
                total_offerings=("school_id", "count"),
                zones_offered=("zone_code", lambda z: ", ".join(sorted(z.dropna().unique()))),
            )
            .reset_index()
        )
        grouped = grouped[grouped["school_count"] >= min_schools].copy()
        grouped["percentage_of_schools"] = (grouped["school_count"] * 100.0 / total).round(2)
        grouped = grouped.sort_values(
            ["school_count", "cca_generic_name"], ascending=[False, True]
        ).head(limit)
        data = _records(grouped.drop(columns=["cca_id"]))

    log_activity("view_cca_participation", {"ccas_analyzed": len(data)})
    return data


def programme_distribution():
    schools = _schools()
    links = _programme_links()

    if schools.empty:
        data = []
    else:
        merged = schools.merge(links, on="school_id", how="left")
        grouped = (
            merged.groupby(["mainlevel_code", "zone_code"])
            .agg(
                school_count=("school_id", "nunique"),
                unique_programmes=("item_id", "nunique"),
                total_programme_offerings=("item_id", "count"),
            )
            .reset_index()
            .sort_values(["mainlevel_code", "school_count"], ascending=[True, False])
        )
        data = _records(grouped)

    log_activity("view_programme_distribution", {"combinations": len(data)})
    return data


def _completeness_status(score):
    if score == 100:
        return "Complete"
    if score >= 75:
        return "Good"
    if score >= 50:
        return "Fair"
    return "Incomplete"


def data_completeness(limit=50):
    """
    25 points each for having any subjects, CCAs, programmes and
    distinctive programmes on record.
    """
    df = _schools().drop(columns=["address"])
    for links, name in (
        (_subject_links(), "subject_count"),
        (_cca_links(), "cca_count"),
        (_programme_links(), "programme_count"),
        (_distinctive_links(), "distinctive_count"),
    ):
        df = _per_school_count(df, links, name)

    if df.empty:
        data = []
    else:
        counts = df[["subject_count", "cca_count", "programme_count", "distinctive_count"]]
        df["completeness_score"] = (counts > 0).sum(axis=1) * 25
        df["completeness_status"] = df["completeness_score"].map(_completeness_status)
        df = df.sort_values(
            ["completeness_score", "subject_count", "school_name"],
            ascending=[False, False, True],
        ).head(limit)
        data = _records(df)

    statuses = [row["completeness_status"] for row in data]
    summary = {
        "total_analyzed": len(data),
        "complete_schools": statuses.count("Complete"),
        "good_schools": statuses.count("Good"),
        "fair_schools": statuses.count("Fair"),
        "incomplete_schools": statuses.count("Incomplete"),
        "avg_completeness": (
            round(sum(row["completeness_score"] for row in data) / len(data), 2) if data else 0
        ),
    }

    log_activity("view_data_completeness", summary)
    return data, summary


def zone_comparison():
    schools = _schools()
    subject_links = _subject_links()
    cca_links = _cca_links()
    programme_links = _programme_links()

    if schools.empty:
        data = []
    else:
        per_school = _per_school_count(schools, subject_links, "subject_count")
        per_school = _per_school_count(per_school, cca_links, "cca_count")

        def with_zone(links):
            return links.merge(schools[["school_id", "zone_code"]], on="school_id")

        unique_items = pd.DataFrame({
            "unique_subjects": with_zone(subject_links).groupby("zone_code")["item_id"].nunique(),
            "unique_ccas": with_zone(cca_links).groupby("zone_code")["item_id"].nunique(),
            "unique_programmes": with_zone(programme_links).groupby("zone_code")["item_id"].nunique(),
        })

        # schools with nothing on record do not drag the averages down
        subjects = per_school["subject_count"].where(per_school["subject_count"] > 0)
        ccas = per_school["cca_count"].where(per_school["cca_count"] > 0)
        per_school = per_school.assign(subjects=subjects, ccas=ccas)

        grouped = per_school.groupby("zone_code").agg(
            total_schools=("school_id", "nunique"),
            school_types=("mainlevel_code", "nunique"),
            avg_subjects_per_school=("subjects", "mean"),
            avg_ccas_per_school=("ccas", "mean"),
            max_subjects=("subjects", "max"),
            min_subjects=("subjects", "min"),
        )
        grouped = (
            grouped.join(unique_items)
            .fillna({"unique_subjects": 0, "unique_ccas": 0, "unique_programmes": 0})
            .astype({"unique_subjects": int, "unique_ccas": int, "unique_programmes": int})
            .round({"avg_subjects_per_school": 2, "avg_ccas_per_school": 2})
            .reset_index()
            .sort_values(["total_schools", "zone_code"], ascending=[False, True])
        )
        data = _records(grouped[[
            "zone_code", "total_schools", "school_types", "unique_subjects", "unique_ccas",
            "unique_programmes", "avg_subjects_per_school", "avg_ccas_per_school",
            "max_subjects", "min_subjects",
        ]])
        for row in data:
            for key in ("max_subjects", "min_subjects"):
                if row[key] is not None:
                    row[key] = int(row[key])

    log_activity("view_zone_comparison", {"zones": len(data)})
    return data


def rare_offerings(offering_type="subjects"):
    """Subjects or CCAs found at no more than three schools."""
    if offering_type not in RARE_OFFERING_TYPES:
        raise InvalidInput(f"Type must be one of: {', '.join(RARE_OFFERING_TYPES)}")

    if offering_type == "subjects":
        name_column = "subject_desc"
        rows = _frame(
            db.session.query(School.school_id, School.school_name, School.zone_code,
                             Subject.subject_id, Subject.subject_desc)
            .join(school_subjects, School.school_id == school_subjects.c.school_id)
            .join(Subject, school_subjects.c.subject_id == Subject.subject_id),
            ["school_id", "school_name", "zone_code", "item_id", name_column],
        )
    else:
        name_column = "cca_generic_name"
        rows = _frame(
            db.session.query(School.school_id, School.school_name, School.zone_code,
                             CCA.cca_id, CCA.cca_generic_name)
            .join(SchoolCCA, School.school_id == SchoolCCA.school_id)
            .join(CCA, SchoolCCA.cca_id == CCA.cca_id),
            ["school_id", "school_name", "zone_code", "item_id", name_column],
        )

    if rows.empty:
        data = []
    else:
        rows["schools_offering"] = rows.groupby("item_id")["school_id"].transform("nunique")
        rare = rows[rows["schools_offering"] <= RARE_OFFERING_MAX_SCHOOLS]
        rare = rare.sort_values(["schools_offering", "school_name"])
        data = _records(rare[["school_name", "zone_code", name_column, "schools_offering"]])

    log_activity("view_rare_offerings", {"type": offering_type, "count": len(data)})
    return data
