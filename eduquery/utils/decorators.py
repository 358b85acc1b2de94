from functools import wraps
from flask import g, request

from eduquery.errors import AuthenticationFailed, PermissionDenied
from eduquery.services.auth_service import verify_token


def _request_token():
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return request.args.get("token")


def token_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        token = _request_token()
        if not token:
            raise AuthenticationFailed("Authentication token required")

        g.current_user = verify_token(token)
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    @token_required
    def wrapped(*args, **kwargs):
        if not g.current_user.get("is_admin"):
            raise PermissionDenied("Admin privileges required")
        return view(*args, **kwargs)
    return wrapped
