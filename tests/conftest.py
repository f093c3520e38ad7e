"""Shared test fixtures for the payments test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a user plus an active catalog and one inactive plan
- auth_client: test client logged in as the seeded user
"""

import pytest

from noxpay import create_app
from noxpay.extensions import db as _db
from noxpay.models.plan import SubscriptionPlan
from noxpay.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed a user and the plan catalog.

    Returns a dict of plain IDs so tests can use them after commits expire
    the ORM objects.
    """
    user = User(
        id="a1b2c3d4-0000-4000-8000-000000000001",
        email="priya@example.com",
        full_name="Priya Sharma",
        phone_number="+919800000001",
    )
    _db.session.add(user)

    monthly = SubscriptionPlan(
        name="Starter",
        description="Perfect for individuals and small projects",
        interval="monthly",
        price=9999,
        price_usd=None,
        features=["Basic Dashboard Access"],
        active=True,
    )
    weekly = SubscriptionPlan(
        name="Starter",
        interval="weekly",
        price=2999,
        price_usd=45,
        features=[],
        active=True,
    )
    yearly = SubscriptionPlan(
        name="Professional",
        interval="yearly",
        price=2499900,
        price_usd=29900,
        features=["API Access"],
        active=True,
    )
    retired = SubscriptionPlan(
        name="Legacy",
        interval="monthly",
        price=4900,
        active=False,
    )
    _db.session.add_all([monthly, weekly, yearly, retired])
    _db.session.commit()

    return {
        "user_id": user.id,
        "email": user.email,
        "monthly_plan_id": monthly.id,
        "weekly_plan_id": weekly.id,
        "yearly_plan_id": yearly.id,
        "inactive_plan_id": retired.id,
    }


@pytest.fixture
def login_as(client):
    """Return a function that marks the client's session as logged in."""

    def _login(user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = user_id
            sess["_fresh"] = True
        return client

    return _login


@pytest.fixture
def auth_client(login_as, seed_data):
    return login_as(seed_data["user_id"])
