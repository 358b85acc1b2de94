# eduquery/routes/admin_routes.py
from flask import Blueprint, g, jsonify, request

from eduquery.utils.decorators import admin_required
from eduquery.services.user_service import (
    get_all_users,
    create_user,
    delete_user,
    update_user_role,
)

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    users = get_all_users()
    return jsonify({"success": True, "users": [u.to_dict() for u in users]})


@admin_bp.route("/users", methods=["POST"])
@admin_required
def add_user():
    data = request.get_json(silent=True) or {}
    user = create_user(
        data.get("username"),
        data.get("password"),
        is_admin=bool(data.get("is_admin", False)),
        actor=g.current_user,
    )
    return jsonify({
        "success": True,
        "message": "User created successfully",
        "user": user.to_dict(),
    }), 201


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@admin_required
def remove_user(user_id):
    delete_user(user_id, g.current_user)
    return jsonify({"success": True, "message": "User deleted successfully"})


@admin_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@admin_required
def change_role(user_id):
    data = request.get_json(silent=True) or {}
    user = update_user_role(user_id, data.get("is_admin"), g.current_user)
    return jsonify({
        "success": True,
        "message": "User role updated successfully",
        "user": user.to_dict(),
    })
