"""
Pytest fixtures for passvault backend tests.

Provides test database setup, locations, actors, a certificate factory and
a test client.
"""

from datetime import timedelta

import pytest
from passvault import create_app
from passvault.actors import admin_actor, customer_actor, staff_actor
from passvault.extensions import db
from passvault.services import auth_service, certificate_store, location_service, session_service
from passvault.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CERTIFICATE_PREFIX': 'VLT',
        'FULFILLMENT_WORKFLOW': 'DIRECT',
        'PIN_HASH_ROUNDS': 4,
        'CHANGE_FEED_SIZE': 50,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Core deletes bypass the audit log's ORM guards
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def location(db_session):
    return location_service.create_location(
        slug="downtown", name="Downtown", full_name="Downtown Warehouse", sort_order=1
    )


@pytest.fixture(scope='function')
def other_location(db_session):
    return location_service.create_location(
        slug="eastside", name="Eastside", full_name="Eastside Outlet", sort_order=2
    )


@pytest.fixture
def staff(location):
    return staff_actor(location.id, "staff@downtown")


@pytest.fixture
def other_staff(other_location):
    return staff_actor(other_location.id, "staff@eastside")


@pytest.fixture
def admin():
    return admin_actor("admin@hq")


@pytest.fixture
def owner():
    return customer_actor("owner-1")


@pytest.fixture
def make_certificate(db_session):
    """Issue a certificate; defaults to a DIRECT pass worth 100.00 sold for 60.00."""
    def _make(**overrides):
        params = {
            "owner_id": "owner-1",
            "final_price_cents": 6000,
            "retail_value_cents": 10000,
            "original_price_cents": 12000,
            "auction_id": "auction-1",
            "workflow": "DIRECT",
            "expires_at": utcnow() + timedelta(days=7),
        }
        params.update(overrides)
        return certificate_store.issue_certificate(**params)
    return _make


@pytest.fixture
def expired_at():
    return utcnow() - timedelta(hours=1)


@pytest.fixture
def pins(location, other_location):
    """Staff PIN 1111 / admin PIN 9999 on both locations."""
    for loc in (location, other_location):
        auth_service.set_pin(loc.id, "staff", "1111")
        auth_service.set_pin(loc.id, "admin", "9999")
    return {"staff": "1111", "admin": "9999"}


def _login(client, location_id, role, pin):
    res = client.post("/api/auth/pin", json={"location_id": location_id, "role": role, "pin": pin})
    assert res.status_code == 200, res.get_json()
    return {"Authorization": f"Bearer {res.get_json()['token']}"}


@pytest.fixture
def staff_headers(client, location, pins):
    return _login(client, location.id, "staff", pins["staff"])


@pytest.fixture
def other_staff_headers(client, other_location, pins):
    return _login(client, other_location.id, "staff", pins["staff"])


@pytest.fixture
def admin_headers(client, location, pins):
    return _login(client, location.id, "admin", pins["admin"])


@pytest.fixture
def owner_headers(db_session):
    _session, token = session_service.create_customer_session("owner-1")
    return {"Authorization": f"Bearer {token}"}
