# eduquery/routes/school_routes.py
from flask import Blueprint, Response, g, jsonify, request

from eduquery.utils.decorators import admin_required
from eduquery.services.radius_search_service import search_by_postal_code
from eduquery.services.school_service import (
    add_school,
    compare_schools,
    delete_school,
    get_map_schools,
    get_map_stats,
    get_recent_schools,
    get_school_details,
    get_schools_as_csv,
    search_schools,
    update_school,
)
from eduquery.services.catalog_service import (
    get_school_ccas,
    get_school_distinctives,
    get_school_programmes,
    get_school_subjects,
    search_schools_by_cca,
    search_schools_by_distinctive,
    search_schools_by_programme,
    search_schools_by_subject,
)

school_bp = Blueprint("schools", __name__)


# ----------------------------
# DIRECTORY
# ----------------------------

@school_bp.route("", methods=["GET"])
def list_schools():
    schools = search_schools(request.args.get("name"))
    return jsonify({"success": True, "data": schools, "count": len(schools)})


@school_bp.route("", methods=["POST"])
@admin_required
def create_school():
    school = add_school(request.get_json(silent=True), actor=g.current_user)
    return jsonify({"success": True, "data": school}), 201


@school_bp.route("/<int:school_id>", methods=["PUT"])
@admin_required
def edit_school(school_id):
    school = update_school(school_id, request.get_json(silent=True), actor=g.current_user)
    return jsonify({"success": True, "data": school})


@school_bp.route("/<int:school_id>", methods=["DELETE"])
@admin_required
def remove_school(school_id):
    delete_school(school_id, actor=g.current_user)
    return jsonify({"success": True, "message": "School deleted successfully"})


@school_bp.route("/recent", methods=["GET"])
@admin_required
def recent_schools():
    return jsonify({"success": True, "data": get_recent_schools()})


@school_bp.route("/export", methods=["GET"])
@admin_required
def download_schools_csv():
    csv_buffer = get_schools_as_csv()

    return Response(
        csv_buffer.getvalue(),
        mimetype="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=schools.csv"
        }
    )


# ----------------------------
# PER-SCHOOL
# ----------------------------

@school_bp.route("/<int:school_id>/details", methods=["GET"])
def school_details(school_id):
    return jsonify({"success": True, "school": get_school_details(school_id)})


@school_bp.route("/<int:school_id>/subjects", methods=["GET"])
def school_subjects(school_id):
    return jsonify({"success": True, "data": get_school_subjects(school_id)})


@school_bp.route("/<int:school_id>/ccas", methods=["GET"])
def school_ccas(school_id):
    return jsonify({"success": True, "data": get_school_ccas(school_id)})


@school_bp.route("/<int:school_id>/programmes", methods=["GET"])
def school_programmes(school_id):
    return jsonify({"success": True, "data": get_school_programmes(school_id)})


@school_bp.route("/<int:school_id>/distinctives", methods=["GET"])
def school_distinctives(school_id):
    return jsonify({"success": True, "data": get_school_distinctives(school_id)})


# ----------------------------
# SCHOOLS BY CATALOG ITEM
# ----------------------------

@school_bp.route("/subjects", methods=["GET"])
def schools_by_subject():
    return jsonify({"success": True, "data": search_schools_by_subject(request.args.get("name"))})


@school_bp.route("/ccas", methods=["GET"])
def schools_by_cca():
    return jsonify({"success": True, "data": search_schools_by_cca(request.args.get("name"))})


@school_bp.route("/programmes", methods=["GET"])
def schools_by_programme():
    return jsonify({"success": True, "data": search_schools_by_programme(request.args.get("name"))})


@school_bp.route("/distinctives", methods=["GET"])
def schools_by_distinctive():
    return jsonify({"success": True, "data": search_schools_by_distinctive(request.args.get("name"))})


# ----------------------------
# COMPARE / MAP / RADIUS
# ----------------------------

@school_bp.route("/compare", methods=["POST"])
def compare():
    data = request.get_json(silent=True) or {}
    first, second = compare_schools(data.get("school1_id"), data.get("school2_id"))
    return jsonify({"success": True, "data": {"school1": first, "school2": second}})


@school_bp.route("/map", methods=["GET"])
def map_schools():
    schools = get_map_schools(request.args.get("zone"))
    return jsonify({"success": True, "data": schools, "count": len(schools)})


@school_bp.route("/map-stats", methods=["GET"])
def map_stats():
    return jsonify({"success": True, "data": get_map_stats()})


@school_bp.route("/search-by-postal-code", methods=["POST"])
def radius_search():
    data = request.get_json(silent=True) or {}
    result = search_by_postal_code(data.get("postal_code"), data.get("radius_km"))
    return jsonify({"success": True, **result})
