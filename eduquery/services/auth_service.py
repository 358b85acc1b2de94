import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from jose import JWTError, jwt

from eduquery.errors import AuthenticationFailed, InvalidInput
from eduquery.extensions import log_activity
from eduquery.models.user import User

logger = logging.getLogger(__name__)


def authenticate_user(username: str, password: str):
    """
    Authenticate user using username & password.
    Returns User object if valid, else None.
    """
    if not username or not password:
        return None

    user = User.query.filter_by(username=username).first()
    if not user:
        return None

    if not user.check_password(password):
        return None

    return user


def issue_token(user: User) -> str:
    config = current_app.config
    claims = {
        "user_id": user.id,
        "username": user.username,
        "is_admin": bool(user.is_admin),
        "exp": datetime.now(timezone.utc) + timedelta(hours=config["JWT_EXPIRES_HOURS"]),
    }
    return jwt.encode(claims, config["JWT_SECRET"], algorithm=config["JWT_ALGORITHM"])


def verify_token(token: str) -> dict:
    """Decoded claims of a valid, unexpired token; AuthenticationFailed otherwise."""
    config = current_app.config
    try:
        claims = jwt.decode(token, config["JWT_SECRET"], algorithms=[config["JWT_ALGORITHM"]])
    except JWTError as e:
        logger.info("Rejected token: %s", e)
        raise AuthenticationFailed("Invalid or expired token")

    if "user_id" not in claims or "username" not in claims:
        raise AuthenticationFailed("Invalid or expired token")
    return claims


def login(username: str, password: str):
    if not username or not password:
        raise InvalidInput("Username and password are required")

    user = authenticate_user(username, password)
    if not user:
        logger.info("Failed login for %s", username)
        raise AuthenticationFailed("Invalid username or password")

    log_activity("user_login", {
        "user_id": user.id,
        "username": user.username,
        "is_admin": user.is_admin,
    })
    return user, issue_token(user)
