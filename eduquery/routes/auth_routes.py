# eduquery/routes/auth_routes.py
from flask import Blueprint, g, jsonify, request

from eduquery.services.auth_service import login
from eduquery.services.user_service import change_password, get_profile
from eduquery.utils.decorators import token_required

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/auth/login", methods=["POST"])
def api_login():
    data = request.get_json(silent=True) or {}
    user, token = login(data.get("username"), data.get("password"))

    return jsonify({
        "success": True,
        "message": "Login successful",
        "user": {"user_id": user.id, "username": user.username, "is_admin": user.is_admin},
        "token": token,
    })


@auth_bp.route("/auth/status", methods=["GET"])
@token_required
def auth_status():
    return jsonify({
        "success": True,
        "authenticated": True,
        "user": {
            "id": g.current_user["user_id"],
            "username": g.current_user["username"],
            "is_admin": g.current_user.get("is_admin", False),
        },
    })


# Tokens are stateless; the client discards its copy
@auth_bp.route("/auth/logout", methods=["POST"])
@token_required
def logout():
    return jsonify({"success": True, "message": "Logout successful"})


@auth_bp.route("/user/profile", methods=["GET"])
@token_required
def profile():
    user = get_profile(g.current_user["user_id"])
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.route("/user/password", methods=["PUT"])
@token_required
def update_password():
    data = request.get_json(silent=True) or {}
    change_password(
        g.current_user["user_id"],
        data.get("currentPassword"),
        data.get("newPassword"),
    )
    return jsonify({"success": True, "message": "Password updated successfully"})
