"""
Pytest fixtures for O2C backend tests.

Provides the in-memory application, a per-test table wipe, and the customer /
product / stock fixtures most workflow tests start from.
"""

import pytest

from o2c import create_app
from o2c.extensions import db
from o2c.models import AuditEvent
from o2c.services import customer_service, inventory_service, order_service, product_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(config_overrides={
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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


@pytest.fixture(scope='function')
def customer(db_session):
    """Active US/CA customer with a 1,000.00 credit limit."""
    return customer_service.create_customer(
        code="ACME-01",
        name="Acme Corp",
        email="billing@acme.example",
        credit_limit_cents=100_000,
        country="US",
        state="CA",
        actor_id="tester",
    )


@pytest.fixture(scope='function')
def other_customer(db_session):
    return customer_service.create_customer(
        code="BETA-02",
        name="Beta Inc",
        email="ap@beta.example",
        credit_limit_cents=500_000,
        country="GB",
        actor_id="tester",
    )


@pytest.fixture(scope='function')
def widget(db_session):
    """Product listed at 100.00 with 20 units in stock."""
    product = product_service.create_product(sku="WID-100", name="Widget", price_cents=10_000, actor_id="tester")
    inventory_service.receive_stock(product_id=product.id, quantity=20, reference="PO-SEED-1", actor_id="tester")
    return product


@pytest.fixture(scope='function')
def gadget(db_session):
    """Product listed at 250.00 with 10 units in stock."""
    product = product_service.create_product(sku="GAD-250", name="Gadget", price_cents=25_000, actor_id="tester")
    inventory_service.receive_stock(product_id=product.id, quantity=10, reference="PO-SEED-2", actor_id="tester")
    return product


@pytest.fixture(scope='function')
def draft_order(customer, widget, gadget):
    """2 x 100.00 + 1 x 250.00 at 10% tax: subtotal 450.00, tax 45.00, total 495.00."""
    return order_service.create_order(
        customer_id=customer.id,
        items=[
            {"product_id": widget.id, "quantity": 2, "unit_price_cents": 10_000},
            {"product_id": gadget.id, "quantity": 1, "unit_price_cents": 25_000},
        ],
        tax_rate_bps=1000,
        actor_id="tester",
    )


@pytest.fixture(scope='function')
def audit_log(db_session):
    """Fetch audit events (oldest first), optionally by type and resource id."""
    def _fetch(event_type: str | None = None, resource_id=None) -> list:
        query = db_session.query(AuditEvent)
        if event_type is not None:
            query = query.filter(AuditEvent.event_type == event_type)
        if resource_id is not None:
            query = query.filter(AuditEvent.resource_id == str(resource_id))
        return query.order_by(AuditEvent.id.asc()).all()
    return _fetch
