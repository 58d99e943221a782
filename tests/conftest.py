"""Shared fixtures for the GeoScore test suite.

Provides a Flask test client wired to a temporary SQLite database, plus
small POI builders placed at known distances from a fixed origin.
"""

import atexit
import math
import os
import tempfile

import pytest

# Point the DB at a temp file BEFORE importing app/location_store (they read
# GEOSCORE_DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["GEOSCORE_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Ensure Google Maps key is present (maps routes check this)
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")

from app import app, limiter, location_store  # noqa: E402
from geo_math import Point  # noqa: E402
from location_scorer import POI  # noqa: E402

ORIGIN = Point(40.0, -74.0)

# Meters per degree of latitude for R = 6,371 km.
_M_PER_DEG_LAT = 6371e3 * math.pi / 180


def point_north_of(origin: Point, meters: float) -> Point:
    """A point *meters* due north of *origin* (haversine-exact)."""
    return Point(origin.lat + meters / _M_PER_DEG_LAT, origin.lng)


def make_poi(types, meters=0.0, name="place", origin=ORIGIN, place_id=None) -> POI:
    if isinstance(types, str):
        types = (types,)
    return POI(
        name=name,
        location=point_north_of(origin, meters),
        types=tuple(types),
        place_id=place_id,
    )


def make_place(types, lat=40.0, lng=-74.0, name="place", place_id=None) -> dict:
    """A raw Places API result dict."""
    place = {
        "name": name,
        "types": list(types),
        "geometry": {"location": {"lat": lat, "lng": lng}},
        "vicinity": "Somewhere",
    }
    if place_id:
        place["place_id"] = place_id
    return place


@pytest.fixture(autouse=True)
def _fresh_db():
    """Empty the snapshot table before every test."""
    location_store.init_db()
    conn = location_store._get_db()
    conn.execute("DELETE FROM location_snapshots")
    conn.commit()
    conn.close()
    yield


@pytest.fixture()
def client():
    """Flask test client with rate limiting off (we're testing logic, not limits)."""
    app.config["TESTING"] = True
    limiter.enabled = False
    with app.test_client() as c:
        yield c
