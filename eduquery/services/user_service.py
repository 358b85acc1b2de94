# eduquery/services/user_service.py
from eduquery.errors import AuthenticationFailed, Conflict, InvalidInput, NotFound, store_errors
from eduquery.extensions import db, log_activity
from eduquery.models.user import User


def _get_user(user_id) -> User:
    with store_errors():
        user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def get_all_users():
    with store_errors():
        return User.query.order_by(User.created_at.desc(), User.id.desc()).all()


def create_user(username, password, is_admin=False, actor=None):
    if not username or not password:
        raise InvalidInput("Username and password are required")

    with store_errors():
        if User.query.filter_by(username=username).first():
            raise Conflict("Username already exists")

        new_user = User(username=username, is_admin=bool(is_admin))
        new_user.set_password(password)

        db.session.add(new_user)
        db.session.commit()

    log_activity("admin_create_user", {
        "admin_id": actor.get("user_id") if actor else None,
        "admin_username": actor.get("username") if actor else None,
        "new_user_id": new_user.id,
        "new_username": new_user.username,
        "is_admin": new_user.is_admin,
    })
    return new_user


def delete_user(user_id, actor):
    """
    Deletes a user while preventing self-deletion.
    """
    if int(user_id) == actor["user_id"]:
        raise InvalidInput("Cannot delete your own account")

    user = _get_user(user_id)
    username = user.username

    with store_errors():
        db.session.delete(user)
        db.session.commit()

    log_activity("admin_delete_user", {
        "admin_id": actor["user_id"],
        "admin_username": actor["username"],
        "deleted_user_id": int(user_id),
        "deleted_username": username,
    })


def update_user_role(user_id, is_admin, actor):
    if int(user_id) == actor["user_id"]:
        raise InvalidInput("Cannot change your own role")
    if not isinstance(is_admin, bool):
        raise InvalidInput("is_admin must be true or false")

    user = _get_user(user_id)
    with store_errors():
        user.is_admin = is_admin
        db.session.commit()

    log_activity("admin_update_user_role", {
        "admin_id": actor["user_id"],
        "admin_username": actor["username"],
        "updated_user_id": user.id,
        "updated_username": user.username,
        "new_role": "admin" if user.is_admin else "user",
    })
    return user


def get_profile(user_id):
    return _get_user(user_id)


def change_password(user_id, current_password, new_password):
    if not current_password or not new_password:
        raise InvalidInput("Current password and new password are required")

    user = _get_user(user_id)
    if not user.check_password(current_password):
        raise AuthenticationFailed("Current password is incorrect")

    with store_errors():
        user.set_password(new_password)
        db.session.commit()

    log_activity("user_password_change", {"user_id": user.id, "username": user.username})
