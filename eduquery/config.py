import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name, default=None):
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "eduquery-dev-secret")

    # Signed tokens for admin / mutating endpoints
    JWT_SECRET = os.environ.get("JWT_SECRET") or SECRET_KEY
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_HOURS = _env_int("JWT_EXPIRES_HOURS", 24)

    # Relational store
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///eduquery.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Document store (activity logs)
    MONGO_URI = os.environ.get("MONGO_URI")
    MONGO_DB = os.environ.get("MONGO_DB", "eduquery")
    MONGO_COLLECTION = os.environ.get("MONGO_COLLECTION", "activity_logs")
    ACTIVITY_LOG_ASYNC = _env_bool("ACTIVITY_LOG_ASYNC", True)

    # OneMap geocoding
    ONEMAP_BASE_URL = os.environ.get("ONEMAP_BASE_URL", "https://www.onemap.gov.sg")
    ONEMAP_EMAIL = os.environ.get("ONEMAP_EMAIL")
    ONEMAP_PASSWORD = os.environ.get("ONEMAP_PASSWORD")
    GEOCODE_TIMEOUT = float(os.environ.get("GEOCODE_TIMEOUT", "10"))
    GEOCODE_BATCH_SIZE = _env_int("GEOCODE_BATCH_SIZE", 5)
    GEOCODE_BATCH_DELAY = float(os.environ.get("GEOCODE_BATCH_DELAY", "0.1"))
    # None keeps every resolved postal code for the process lifetime
    GEOCODE_CACHE_SIZE = _env_int("GEOCODE_CACHE_SIZE")

    # Advanced search
    SEARCH_RESULT_LIMIT = 100
    SEARCH_VALUE_MAX_LENGTH = 100

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    DEBUG = _env_bool("FLASK_DEBUG", False)
    SHOW_ERROR_DETAILS = None  # falls back to DEBUG
