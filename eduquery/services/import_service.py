# eduquery/services/import_service.py
"""
Loads the MOE school datasets (data.gov.sg CSV exports) into the store.

    general      General information of schools -> raw_general_info + schools
    subjects     Subjects offered               -> subjects + school_subjects
    ccas         Co-curricular activities       -> ccas + school_ccas
    programmes   MOE programmes                 -> programmes + school_programmes
    distinctives ALP / LLP programmes           -> distinctive_programmes + school_distinctives

Rows for schools that are not in the directory are skipped, so
`general` should be loaded first.
"""

import logging
from collections import namedtuple

import click
import pandas as pd
from flask.cli import with_appcontext

from eduquery.errors import InvalidInput, store_errors
from eduquery.extensions import db
from eduquery.models.school import LEVELS, ZONES, School, SchoolGeneralInfo
from eduquery.services.catalog_service import (
    get_or_create_cca,
    get_or_create_distinctive,
    get_or_create_programme,
    get_or_create_subject,
    link_cca,
    link_distinctive,
    link_programme,
    link_subject,
)
from eduquery.utils.text import clean_value, is_valid_postal_code, normalize_name

logger = logging.getLogger(__name__)

ImportResult = namedtuple("ImportResult", ["imported", "skipped"])

PROFILE_FIELDS = [
    column.name
    for column in SchoolGeneralInfo.__table__.columns
    if column.name not in ("id", "school_name")
]

REQUIRED_COLUMNS = {
    "general": ["school_name"],
    "subjects": ["school_name", "subject_desc"],
    "ccas": ["school_name", "cca_generic_name"],
    "programmes": ["school_name", "moe_programme_desc"],
    "distinctives": ["school_name"],
}


# ---------------------------------------------------
# Reading
# ---------------------------------------------------

def read_dataset(source, kind: str) -> pd.DataFrame:
    """CSV -> DataFrame of strings with lower-case, trimmed headers."""
    try:
        df = pd.read_csv(source, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise InvalidInput(f"Could not read {kind} dataset: {e}")

    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in REQUIRED_COLUMNS[kind] if c not in df.columns]
    if missing:
        raise InvalidInput(f"Missing columns in {kind} dataset: {', '.join(missing)}")

    return df


def _normalize_postal_code(value):
    value = clean_value(value)
    if value is None:
        return None
    value = str(value).split(".")[0]
    # spreadsheet exports drop the leading zero of 0xxxxx codes
    if value.isdigit() and len(value) == 5:
        value = value.zfill(6)
    return value


def _schools_by_name():
    return {normalize_name(s.school_name): s for s in School.query.all()}


# ---------------------------------------------------
# Datasets
# ---------------------------------------------------

def import_general_info(source) -> ImportResult:
    """
    Upsert the extended profile by school name; rows with a valid postal
    code, zone and level also create or refresh the directory entry.
    """
    df = read_dataset(source, "general")
    imported = skipped = 0

    with store_errors():
        profiles = {normalize_name(p.school_name): p for p in SchoolGeneralInfo.query.all()}
        schools = _schools_by_name()

        for record in df.to_dict(orient="records"):
            name = clean_value(record.get("school_name"))
            if not name:
                skipped += 1
                continue
            key = normalize_name(name)

            profile = profiles.get(key)
            if profile is None:
                profile = SchoolGeneralInfo(school_name=name)
                db.session.add(profile)
                profiles[key] = profile

            for field in PROFILE_FIELDS:
                if field in record:
                    setattr(profile, field, clean_value(record[field]))
            profile.postal_code = _normalize_postal_code(record.get("postal_code"))

            fields = {
                "school_name": name,
                "address": clean_value(record.get("address")),
                "postal_code": profile.postal_code,
                "zone_code": (clean_value(record.get("zone_code")) or "").upper(),
                "mainlevel_code": (clean_value(record.get("mainlevel_code")) or "").upper(),
                "principal_name": clean_value(record.get("principal_name")),
            }
            if (
                not fields["address"]
                or not fields["principal_name"]
                or not is_valid_postal_code(fields["postal_code"])
                or fields["zone_code"] not in ZONES
                or fields["mainlevel_code"] not in LEVELS
            ):
                logger.info("Profile only for %s (incomplete directory fields)", name)
                skipped += 1
                continue

            school = schools.get(key)
            if school is None:
                school = School(**fields)
                db.session.add(school)
                schools[key] = school
            else:
                for field, value in fields.items():
                    setattr(school, field, value)
            imported += 1

        db.session.commit()

    return ImportResult(imported, skipped)


def _import_links(source, kind, link_row) -> ImportResult:
    df = read_dataset(source, kind)
    imported = skipped = 0

    with store_errors():
        schools = _schools_by_name()
        for record in df.to_dict(orient="records"):
            name = clean_value(record.get("school_name"))
            school = schools.get(normalize_name(name)) if name else None
            if school is None or not link_row(school, record):
                skipped += 1
                continue
            imported += 1
        db.session.commit()

    return ImportResult(imported, skipped)


def import_subjects(source) -> ImportResult:
    def link_row(school, record):
        subject = get_or_create_subject(record.get("subject_desc"))
        link_subject(school, subject)
        return subject is not None
    return _import_links(source, "subjects", link_row)


def import_ccas(source) -> ImportResult:
    def link_row(school, record):
        cca = get_or_create_cca(record.get("cca_generic_name"), record.get("cca_grouping_desc"))
        link = link_cca(
            school,
            cca,
            cca_customized_name=record.get("cca_customized_name"),
            school_section=record.get("school_section"),
        )
        return link is not None
    return _import_links(source, "ccas", link_row)


def import_programmes(source) -> ImportResult:
    def link_row(school, record):
        programme = get_or_create_programme(record.get("moe_programme_desc"))
        link_programme(school, programme)
        return programme is not None
    return _import_links(source, "programmes", link_row)


def import_distinctives(source) -> ImportResult:
    def link_row(school, record):
        distinctive = get_or_create_distinctive(
            alp_domain=record.get("alp_domain"),
            alp_title=record.get("alp_title"),
            llp_domain1=record.get("llp_domain1"),
            llp_title=record.get("llp_title"),
        )
        link_distinctive(school, distinctive)
        return distinctive is not None
    return _import_links(source, "distinctives", link_row)


IMPORTERS = {
    "general": import_general_info,
    "subjects": import_subjects,
    "ccas": import_ccas,
    "programmes": import_programmes,
    "distinctives": import_distinctives,
}


# ---------------------------------------------------
# CLI
# ---------------------------------------------------

@click.command("import-data")
@click.argument("kind", type=click.Choice(sorted(IMPORTERS)))
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_data_command(kind, path):
    """Load a MOE CSV dataset of the given KIND from PATH."""
    try:
        result = IMPORTERS[kind](path)
    except InvalidInput as e:
        raise click.ClickException(e.message)

    logger.info("Imported %s: %d rows, %d skipped", kind, result.imported, result.skipped)
    click.echo(f"{kind}: {result.imported} imported, {result.skipped} skipped")
