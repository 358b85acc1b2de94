import atexit
import logging

from flask import Flask
from eduquery.config import Config
from eduquery.extensions import db, migrate


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_object is not None:
        if isinstance(config_object, dict):
            app.config.update(config_object)
        else:
            app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    migrate.init_app(app, db)

    # Registers every model with the metadata
    from eduquery import models  # noqa

    from eduquery.services.activity_log_service import ActivityLogger
    from eduquery.services.geocoding_service import GeocodingClient

    app.extensions["geocoder"] = GeocodingClient.from_config(app.config)
    activity_logger = ActivityLogger.from_config(app.config)
    app.extensions["activity_logger"] = activity_logger
    atexit.register(activity_logger.flush)

    from eduquery.errors import register_error_handlers
    register_error_handlers(app)

    from eduquery.routes.auth_routes import auth_bp
    from eduquery.routes.admin_routes import admin_bp
    from eduquery.routes.school_routes import school_bp
    from eduquery.routes.search_routes import search_bp
    from eduquery.routes.analytics_routes import analytics_bp

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(school_bp, url_prefix="/api/schools")
    app.register_blueprint(search_bp, url_prefix="/api")
    app.register_blueprint(analytics_bp, url_prefix="/api/analytics")

    from eduquery.services.import_service import import_data_command
    app.cli.add_command(import_data_command)

    return app
