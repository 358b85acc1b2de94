# tests/conftest.py
import mongomock
import pytest
from sqlalchemy import event

from eduquery import create_app
from eduquery.extensions import db
from eduquery.models import School, SchoolGeneralInfo, User
from eduquery.services.activity_log_service import ActivityLogger
from eduquery.services.auth_service import issue_token
from eduquery.services.geocoding_service import Coordinates, GeocodeCache, district_coordinates


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "MONGO_URI": None,
    "JWT_SECRET": "test-secret",
    "GEOCODE_BATCH_SIZE": 3,
    "GEOCODE_BATCH_DELAY": 0,
    "SHOW_ERROR_DETAILS": False,
}


class StubGeocoder:
    """Stands in for GeocodingClient; answers from a fixed postal code table."""

    def __init__(self, points=None):
        self.points = dict(points or {})
        self.calls = []
        self.cache = GeocodeCache()
        self.reverse_result = None

    def resolve(self, postal_code):
        self.calls.append(postal_code)
        point = self.points.get(postal_code)
        if isinstance(point, Exception):
            raise point
        if point is None:
            return None
        return Coordinates(point[0], point[1], f"BLK {postal_code}")

    def resolve_approximate(self, postal_code, lookup=True):
        cached = self.cache.get(postal_code)
        if cached is not None:
            return cached
        return district_coordinates(postal_code)

    def reverse(self, latitude, longitude):
        return self.reverse_result


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    app.extensions["geocoder"] = StubGeocoder()
    app.extensions["activity_logger"] = ActivityLogger(
        mongomock.MongoClient().eduquery.activity_logs, asynchronous=False
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def geocoder(app):
    return app.extensions["geocoder"]


@pytest.fixture
def activity_log(app):
    return app.extensions["activity_logger"].collection


@pytest.fixture
def statements(app):
    """SQL statements issued while the test runs."""
    issued = []

    def record(conn, cursor, statement, parameters, context, executemany):
        issued.append(statement)

    event.listen(db.engine, "before_cursor_execute", record)
    yield issued
    event.remove(db.engine, "before_cursor_execute", record)


@pytest.fixture
def make_school(app):
    counter = {"n": 0}

    def _make(name=None, postal_code="510101", zone_code="EAST",
              mainlevel_code="PRIMARY", **fields):
        counter["n"] += 1
        school = School(
            school_name=name or f"School {counter['n']}",
            address=fields.pop("address", f"{counter['n']} Test Street"),
            postal_code=postal_code,
            zone_code=zone_code,
            mainlevel_code=mainlevel_code,
            principal_name=fields.pop("principal_name", "Principal Tan"),
        )
        db.session.add(school)
        db.session.commit()
        return school

    return _make


@pytest.fixture
def make_profile(app):
    def _make(school_name, **fields):
        profile = SchoolGeneralInfo(school_name=school_name, **fields)
        db.session.add(profile)
        db.session.commit()
        return profile

    return _make


def _make_user(username, is_admin):
    user = User(username=username, is_admin=is_admin)
    user.set_password("secret123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    return _make_user("admin", True)


@pytest.fixture
def regular_user(app):
    return _make_user("viewer", False)


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {issue_token(admin_user)}"}


@pytest.fixture
def user_headers(regular_user):
    return {"Authorization": f"Bearer {issue_token(regular_user)}"}
