# eduquery/routes/search_routes.py
from flask import Blueprint, jsonify, request

from eduquery.services.radius_search_service import lookup_postal_code, reverse_geocode
from eduquery.services.search_service import advanced_search, search_details, universal_search

search_bp = Blueprint("search", __name__)


@search_bp.route("/search/advanced", methods=["POST"])
def advanced():
    results, criteria = advanced_search(request.get_json(silent=True))
    return jsonify({
        "success": True,
        "results": results,
        "count": len(results),
        "criteria": criteria,
    })


@search_bp.route("/search/universal", methods=["GET"])
def universal():
    query = request.args.get("query", "")
    return jsonify({"success": True, "query": query, "results": universal_search(query)})


@search_bp.route("/search/details/<item_type>/<int:item_id>", methods=["GET"])
def details(item_type, item_id):
    return jsonify({"success": True, "type": item_type, "data": search_details(item_type, item_id)})


@search_bp.route("/postal-code/<postal_code>", methods=["GET"])
def postal_code(postal_code):
    return jsonify({"success": True, **lookup_postal_code(postal_code)})


@search_bp.route("/reverse-geocode", methods=["GET"])
def reverse():
    result = reverse_geocode(request.args.get("lat"), request.args.get("lng"))
    return jsonify({"success": True, "data": result})
