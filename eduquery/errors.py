import logging
import traceback
from contextlib import contextmanager

from flask import current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from eduquery.extensions import db

logger = logging.getLogger(__name__)


class EduQueryError(Exception):
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidInput(EduQueryError, ValueError):
    status_code = 400


class AuthenticationFailed(EduQueryError):
    status_code = 401


class PermissionDenied(EduQueryError):
    status_code = 403


class NotFound(EduQueryError):
    status_code = 404


class LocationNotFound(EduQueryError):
    status_code = 404


class Conflict(EduQueryError):
    status_code = 409


class QueryExecutionError(EduQueryError):
    status_code = 500

    def __init__(self, message=None, original=None):
        super().__init__(message)
        self.original = original


@contextmanager
def store_errors():
    """
    Roll back and re-raise store failures as QueryExecutionError,
    keeping the driver message for diagnostics.
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Store query failed: %s", e)
        raise QueryExecutionError(str(e), original=e) from e


def _show_details():
    flag = current_app.config.get("SHOW_ERROR_DETAILS")
    if flag is None:
        return bool(current_app.debug)
    return bool(flag)


def register_error_handlers(app):
    @app.errorhandler(EduQueryError)
    def handle_eduquery_error(e):
        body = {"success": False, "message": e.message}
        if isinstance(e, QueryExecutionError):
            body["error"] = e.message
            if _show_details():
                body["details"] = "".join(
                    traceback.format_exception(type(e), e, e.__traceback__)
                )
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error")
        body = {"success": False, "message": "Internal server error"}
        if _show_details():
            body["error"] = str(e)
        return jsonify(body), 500
