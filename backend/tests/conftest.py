"""
Pytest fixtures for repair ledger tests.

Provides test database setup, two-workshop tenant fixtures, tickets,
API tokens and a test client.
"""

import pytest
from repair_ledger import create_app
from repair_ledger.extensions import db
from repair_ledger.models import Workshop
from repair_ledger.services import subscription_service, ticket_service, token_service
from repair_ledger.time_utils import utctoday


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LEDGER_RETRY_ATTEMPTS': 3,
    'LEDGER_RETRY_BACKOFF': 0,
    'SUBSCRIPTION_GATE_ENABLED': True,
    'SUBSCRIPTION_GRACE_DAYS': 1,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_workshop(name: str, code: str, months: int = 1) -> Workshop:
    """Create a workshop with a paid subscription starting today."""
    workshop = Workshop(name=name, code=code, is_active=True)
    db.session.add(workshop)
    db.session.commit()
    subscription_service.create_subscription(workshop.id, start_date=utctoday(), months=months)
    return workshop


@pytest.fixture(scope='function')
def workshop_a(db_session):
    """Create Workshop A (first tenant) with an active subscription."""
    return make_workshop("Atelier A - Centre", "CENTRE")


@pytest.fixture(scope='function')
def workshop_b(db_session):
    """Create Workshop B (second tenant) with an active subscription."""
    return make_workshop("Atelier B - Nord", "NORD")


@pytest.fixture(scope='function')
def ticket_a(workshop_a):
    """Ticket of Workshop A owing 100.000."""
    return ticket_service.create_ticket(
        workshop_a.id, "100", lookup_code="A-0001", client_name="Sami", device_label="Phone X"
    )


@pytest.fixture(scope='function')
def ticket_b(workshop_b):
    """Ticket of Workshop B owing 80.000."""
    return ticket_service.create_ticket(workshop_b.id, "80", lookup_code="B-0001", client_name="Leila")


@pytest.fixture(scope='function')
def token_a(workshop_a):
    _, token = token_service.issue_token(workshop_a.id, label="Front desk A")
    return token


@pytest.fixture(scope='function')
def token_b(workshop_b):
    _, token = token_service.issue_token(workshop_b.id, label="Front desk B")
    return token


@pytest.fixture(scope='function')
def headers_a(token_a):
    return auth_headers(token_a)


@pytest.fixture(scope='function')
def headers_b(token_b):
    return auth_headers(token_b)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
