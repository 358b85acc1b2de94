# eduquery/routes/analytics_routes.py
from flask import Blueprint, jsonify, request

from eduquery.extensions import get_activity_logger
from eduquery.services import analytics_service as analytics
from eduquery.utils.decorators import admin_required

analytics_bp = Blueprint("analytics", __name__)


# =========================================================
# DIRECTORY REPORTS (public)
# =========================================================

@analytics_bp.route("/schools-by-zone", methods=["GET"])
def schools_by_zone():
    return jsonify({"success": True, "data": analytics.zone_statistics()})


@analytics_bp.route("/schools-subject-count", methods=["GET"])
def schools_subject_count():
    data, summary = analytics.subject_counts()
    return jsonify({"success": True, "data": data, "summary": summary})


@analytics_bp.route("/above-average-subjects", methods=["GET"])
def above_average_subjects():
    data = analytics.above_average_subjects()
    return jsonify({
        "success": True,
        "data": data,
        "message": f"Found {len(data)} schools with above-average subject offerings",
    })


@analytics_bp.route("/cca-participation", methods=["GET"])
def cca_participation():
    return jsonify({"success": True, "data": analytics.cca_participation()})


@analytics_bp.route("/programme-distribution", methods=["GET"])
def programme_distribution():
    return jsonify({"success": True, "data": analytics.programme_distribution()})


@analytics_bp.route("/data-completeness", methods=["GET"])
def data_completeness():
    data, summary = analytics.data_completeness()
    return jsonify({"success": True, "data": data, "summary": summary})


@analytics_bp.route("/zone-comparison", methods=["GET"])
def zone_comparison():
    return jsonify({"success": True, "data": analytics.zone_comparison()})


@analytics_bp.route("/rare-offerings", methods=["GET"])
def rare_offerings():
    offering_type = request.args.get("type", "subjects")
    return jsonify({
        "success": True,
        "data": analytics.rare_offerings(offering_type),
        "type": offering_type,
    })


# =========================================================
# ACTIVITY LOG (admin)
# =========================================================

@analytics_bp.route("/logs", methods=["GET"])
@admin_required
def activity_logs():
    return jsonify({"success": True, "data": get_activity_logger().recent()})


@analytics_bp.route("/popular", methods=["GET"])
@admin_required
def popular_searches():
    return jsonify({"success": True, "data": get_activity_logger().popular_searches()})


@analytics_bp.route("/activity-trends", methods=["GET"])
@admin_required
def activity_trends():
    return jsonify({"success": True, "data": get_activity_logger().activity_trends()})


@analytics_bp.route("/search-patterns", methods=["GET"])
@admin_required
def search_patterns():
    return jsonify({"success": True, "data": get_activity_logger().search_patterns()})
