from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def get_geocoder():
    return current_app.extensions["geocoder"]


def get_activity_logger():
    return current_app.extensions["activity_logger"]


def log_activity(action: str, data: dict):
    """Best-effort usage event; never raises into the request."""
    get_activity_logger().append(action, data)
