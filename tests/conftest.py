"""Shared pytest fixtures for the test suite.

The environment is configured before any ``insighthub`` import so the settings
object picks up an in-memory database, cheap bcrypt rounds and rate limits
high enough to stay out of the way.

Fixture overview
----------------
db             : a session on a freshly created schema, dropped afterwards
client         : FastAPI TestClient (lifespan not run; tables come from ``db``)
org            : organization with an owner, an admin and a member
owner_headers  : bearer headers for the owner (admin_headers, member_headers alike)
"""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["RATE_LIMIT_AUTH_REQUESTS"] = "100000"
os.environ["REPORTS_DIR"] = tempfile.mkdtemp(prefix="insighthub-reports-")
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from insighthub.core.cache import cache
from insighthub.core.ratelimit import api_rate_limiter, auth_rate_limiter
from insighthub.db.base import Base, init_db
from insighthub.db.session import SessionLocal, engine
from insighthub.main import app
from tests.helpers import login, make_org


# ── Database ─────────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _reset_state():
    cache.clear()
    api_rate_limiter.reset()
    auth_rate_limiter.reset()
    yield
    cache.clear()


@pytest.fixture
def client(db):
    return TestClient(app)


# ── Tenants ──────────────────────────────────────────────────────────────────


@pytest.fixture
def org(db):
    return make_org(db)


@pytest.fixture
def other_org(db):
    return make_org(db, name="Globex", slug="globex")


@pytest.fixture
def owner_headers(client, org):
    return login(client, org["owner"].email)


@pytest.fixture
def admin_headers(client, org):
    return login(client, org["admin"].email)


@pytest.fixture
def member_headers(client, org):
    return login(client, org["member"].email)


@pytest.fixture
def reports_dir(tmp_path):
    return tmp_path / "reports"
