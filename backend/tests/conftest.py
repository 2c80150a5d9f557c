"""
Pytest fixtures for quoteflow backend tests.

Provides test database setup, buyer/staff accounts, a small catalog, and
helpers that walk a quotation to a given lifecycle state.
"""

import pytest

from quoteflow import create_app
from quoteflow.extensions import db
from quoteflow.services import catalog_service, quotation_service, workflow_service
from quoteflow.services.auth_service import create_user, create_default_roles


PASSWORD = "Password123!"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'HUMAN_VERIFICATION_SECRET': 'test-secret',
    # Velocity escalation is exercised explicitly in test_risk_gate.py
    'RISK_VELOCITY_THRESHOLD': 100,
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


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    db.session.remove()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    create_default_roles()


@pytest.fixture(scope='function')
def buyer(setup_roles):
    return create_user("acme", "buyer@acme.test", PASSWORD, company_name="Acme Ltd", roles=["buyer"])


@pytest.fixture(scope='function')
def other_buyer(setup_roles):
    return create_user("globex", "buyer@globex.test", PASSWORD, company_name="Globex", roles=["buyer"])


@pytest.fixture(scope='function')
def staff(setup_roles):
    return create_user("sales", "sales@quoteflow.test", PASSWORD, roles=["staff"])


@pytest.fixture(scope='function')
def marble(db_session):
    """Catalog item X: 10 available at 125.00 per sqm."""
    return catalog_service.create_item(
        sku="MRB-001", name="Carrara Marble", price_cents=12500, price_unit="sqm", stock_quantity=10,
    )


@pytest.fixture(scope='function')
def granite(db_session):
    return catalog_service.create_item(
        sku="GRN-001", name="Black Granite", price_cents=8000, price_unit="sqm", stock_quantity=50,
    )


def _submit(buyer, items, **kwargs):
    outcome = workflow_service.submit_quotation(buyer.id, items, **kwargs)
    assert outcome.outcome == "submitted", outcome.to_dict()
    return outcome.quotation


@pytest.fixture(scope='function')
def submit_quotation():
    """submit_quotation(buyer, items, **kwargs) -> submitted Quotation."""
    return _submit


@pytest.fixture(scope='function')
def issue_quotation():
    """issue_quotation(buyer, staff, items, **issue_kwargs) -> issued Quotation."""
    def _issue(buyer, staff, items, **issue_kwargs):
        quotation = _submit(buyer, items)
        return quotation_service.issue(quotation.id, staff.id, **issue_kwargs)
    return _issue


@pytest.fixture(scope='function')
def issued_quotation(buyer, staff, marble, issue_quotation):
    """Issued quotation for 10 x marble, 12% tax, 50.00 shipping."""
    return issue_quotation(
        buyer, staff,
        [{"catalog_item_id": marble.id, "quantity": 10}],
        tax_rate_bps=1200,
        shipping_cents=5000,
    )


@pytest.fixture(scope='function')
def auth_headers(client):
    """auth_headers(username, password=PASSWORD) -> Authorization headers from a real login."""
    def _headers(username: str, password: str = PASSWORD) -> dict:
        response = client.post('/api/auth/login', json={
            'username': username,
            'password': password
        })
        assert response.status_code == 200, response.json
        return {'Authorization': f"Bearer {response.json['token']}"}
    return _headers
