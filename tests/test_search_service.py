import pytest
from sqlalchemy import text

from eduquery.errors import InvalidInput, NotFound, QueryExecutionError
from eduquery.extensions import db
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
from eduquery.services.search_service import (
    FIELD_SPECS,
    advanced_search,
    build_advanced_search,
    like_pattern,
    sanitize_criteria,
    search_details,
    universal_search,
)


# ----------------------------
# Sanitisation
# ----------------------------

def test_placeholder_values_are_dropped():
    criteria = sanitize_criteria({"school_name": "NA", "zone_code": "CENTRAL"})
    assert criteria == {"zone_code": "CENTRAL"}


@pytest.mark.parametrize("placeholder", ["NA", "n/a", " Nil ", "none", "-", "", "   "])
def test_every_placeholder_is_treated_as_absent(placeholder):
    criteria = sanitize_criteria({"address": placeholder, "school_name": "Raffles"})
    assert criteria == {"school_name": "Raffles"}


def test_unknown_fields_are_ignored():
    criteria = sanitize_criteria({"school_name": "Raffles", "drop_table": "schools"})
    assert list(criteria) == ["school_name"]


def test_values_are_trimmed_and_truncated():
    criteria = sanitize_criteria({"school_name": "  " + "x" * 150 + "  "})
    assert criteria["school_name"] == "x" * 100


def test_no_usable_criteria_is_invalid_input():
    with pytest.raises(InvalidInput):
        sanitize_criteria({"school_name": "NA", "bogus": "value"})


def test_non_object_criteria_is_invalid_input():
    with pytest.raises(InvalidInput):
        sanitize_criteria(["school_name"])


# ----------------------------
# Statement building
# ----------------------------

def test_zone_only_search_needs_no_catalog_join():
    search = build_advanced_search({"school_name": "NA", "zone_code": "CENTRAL"})
    assert search.criteria == {"zone_code": "CENTRAL"}
    assert search.joins == frozenset()
    assert search.params == ["CENTRAL"]


def test_cca_field_adds_only_the_cca_join():
    search = build_advanced_search({"cca_generic_name": "Bask"})
    assert search.joins == frozenset({"ccas"})
    assert search.params == ["%bask%"]

    sql = str(search.statement)
    assert "school_ccas" in sql
    assert "school_subjects" not in sql
    assert "school_programmes" not in sql


def test_each_join_is_added_once_for_several_fields():
    search = build_advanced_search({
        "cca_generic_name": "ball",
        "cca_grouping_desc": "sports",
        "subject_desc": "math",
    })
    assert search.joins == frozenset({"ccas", "subjects"})
    assert str(search.statement).count("JOIN school_ccas") == 1


def test_params_follow_field_vocabulary_order():
    search = build_advanced_search({"zone_code": "east", "school_name": "Park"})
    assert search.params == ["%park%", "EAST"]


def test_multi_column_field_binds_one_parameter():
    search = build_advanced_search({"vp_name": "Lim"})
    assert search.params == ["%lim%"]
    assert FIELD_SPECS["vp_name"].match == "any_substring"


def test_like_wildcards_are_escaped():
    assert like_pattern("100%_Fun") == "%100\\%\\_fun%"


# ----------------------------
# Execution
# ----------------------------

def test_substring_match_is_case_insensitive(make_school):
    make_school("Bedok Green Primary School")
    make_school("Tampines Primary School")

    results, _ = advanced_search({"school_name": "bedok"})
    assert [r["school_name"] for r in results] == ["Bedok Green Primary School"]


def test_zone_match_is_exact_and_case_insensitive(make_school):
    make_school("Alpha", zone_code="CENTRAL")
    make_school("Beta", zone_code="EAST")

    results, _ = advanced_search({"zone_code": "central"})
    assert [r["school_name"] for r in results] == ["Alpha"]


def test_cca_search_matches_generic_name(make_school):
    hoops = make_school("Hoops Secondary")
    chess = make_school("Chess Secondary")
    link_cca(hoops, get_or_create_cca("BASKETBALL", "PHYSICAL SPORTS"))
    link_cca(chess, get_or_create_cca("CHESS CLUB", "CLUBS AND SOCIETIES"))
    db.session.commit()

    results, criteria = advanced_search({"cca_generic_name": "Bask"})
    assert criteria == {"cca_generic_name": "Bask"}
    assert [r["school_name"] for r in results] == ["Hoops Secondary"]


def test_school_matching_several_join_rows_is_returned_once(make_school):
    school = make_school("Maths Academy")
    link_subject(school, get_or_create_subject("MATHEMATICS"))
    link_subject(school, get_or_create_subject("ADDITIONAL MATHEMATICS"))
    db.session.commit()

    results, _ = advanced_search({"subject_desc": "math"})
    assert len(results) == 1
    assert results[0]["school_id"] == school.school_id


def test_placeholder_catalog_rows_never_match(make_school):
    school = make_school("Placeholder Primary")
    link_subject(school, get_or_create_subject("ART"))
    db.session.commit()
    # stored placeholder, bypassing the upsert's own cleaning
    db.session.execute(text("INSERT INTO subjects (subject_desc) VALUES ('NA')"))
    db.session.execute(text(
        "INSERT INTO school_subjects (school_id, subject_id) "
        "SELECT :sid, subject_id FROM subjects WHERE subject_desc = 'NA'"
    ), {"sid": school.school_id})
    db.session.commit()

    results, _ = advanced_search({"subject_desc": "N"})
    assert results == []


def test_profile_fields_are_searchable_and_returned(make_school, make_profile):
    make_school("Rosyth School")
    make_school("Nanyang Primary")
    make_profile(" ROSYTH SCHOOL ", email_address="rosyth@moe.edu.sg", sap_ind="Yes",
                 mrt_desc="SERANGOON MRT")

    results, _ = advanced_search({"sap_ind": "Yes"})
    assert [r["school_name"] for r in results] == ["Rosyth School"]
    assert results[0]["email_address"] == "rosyth@moe.edu.sg"
    assert results[0]["mrt_desc"] == "SERANGOON MRT"


def test_postal_code_is_an_exact_match(make_school):
    make_school("Bedok Primary", postal_code="510101")

    assert advanced_search({"postal_code": "510101"})[0][0]["school_name"] == "Bedok Primary"
    assert advanced_search({"postal_code": "5101"})[0] == []


def test_vp_name_matches_any_vice_principal_column(make_school, make_profile):
    make_school("Fairfield Methodist")
    make_school("Kranji Secondary")
    make_profile("Fairfield Methodist", first_vp_name="Mr Tan", third_vp_name="Mdm Siti Rahman")
    make_profile("Kranji Secondary", first_vp_name="Mr Ong")

    results, _ = advanced_search({"vp_name": "siti"})
    assert [r["school_name"] for r in results] == ["Fairfield Methodist"]


def test_mothertongue_matches_any_of_three_columns(make_school, make_profile):
    make_school("Nan Hua Primary")
    make_school("Greenwood Primary")
    make_profile("Nan Hua Primary", mothertongue1_code="Chinese", mothertongue3_code="Tamil")
    make_profile("Greenwood Primary", mothertongue1_code="Chinese", mothertongue2_code="Malay")

    results, _ = advanced_search({"mothertongue_code": "tamil"})
    assert [r["school_name"] for r in results] == ["Nan Hua Primary"]


def test_indicators_match_case_sensitively(make_school, make_profile):
    make_school("Catholic High")
    make_profile("Catholic High", sap_ind="Yes")

    assert advanced_search({"sap_ind": "Yes"})[0][0]["school_name"] == "Catholic High"
    assert advanced_search({"sap_ind": "yes"})[0] == []


def test_store_failure_surfaces_as_query_error(make_school):
    make_school("Unreachable Primary")
    db.session.execute(text("DROP TABLE raw_general_info"))
    db.session.commit()

    with pytest.raises(QueryExecutionError):
        advanced_search({"school_name": "unreachable"})


def test_results_are_ordered_by_name_and_capped(app, make_school):
    for name in ("Charlie", "Alpha", "Bravo"):
        make_school(name, zone_code="WEST")
    app.config["SEARCH_RESULT_LIMIT"] = 2

    results, _ = advanced_search({"zone_code": "WEST"})
    assert [r["school_name"] for r in results] == ["Alpha", "Bravo"]


def test_advanced_search_is_logged(make_school, activity_log):
    make_school("Logged School")

    advanced_search({"school_name": "logged", "address": "NA"})

    entry = activity_log.find_one({"action": "advanced_search"})
    assert entry["data"] == {
        "criteria_count": 1,
        "criteria": {"school_name": "logged"},
        "results_count": 1,
    }


# ----------------------------
# Universal search / details
# ----------------------------

def test_universal_search_groups_hits(make_school):
    school = make_school("Science Park Primary")
    link_subject(school, get_or_create_subject("SCIENCE"))
    link_programme(school, get_or_create_programme("Science Enrichment"))
    link_distinctive(school, get_or_create_distinctive(alp_domain="Science", alp_title="Eco Explorers"))
    db.session.commit()

    results = universal_search("science")
    assert len(results["schools"]) == 1
    assert results["subjects"][0]["description"] == "SCIENCE"
    assert results["programmes"][0]["description"] == "Science Enrichment"
    assert results["distinctives"][0]["description"] == "Eco Explorers"
    assert results["total"] == 4


def test_universal_search_requires_a_term():
    with pytest.raises(InvalidInput):
        universal_search("   ")


def test_search_details_lists_schools_for_a_subject(make_school):
    school = make_school("Detail Primary")
    subject = get_or_create_subject("ART")
    link_subject(school, subject)
    db.session.commit()

    details = search_details("subject", subject.subject_id)
    assert details["subject_desc"] == "ART"
    assert details["schools"][0]["school_name"] == "Detail Primary"


def test_search_details_rejects_unknown_type():
    with pytest.raises(InvalidInput):
        search_details("principal", 1)


def test_search_details_missing_item(app):
    with pytest.raises(NotFound):
        search_details("cca", 999)
