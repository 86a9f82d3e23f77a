"""
Pytest fixtures for Flowdesk backend tests.

Provides test database setup, owner (tenant) fixtures, and test client.
"""

import pytest
from flowdesk import create_app
from flowdesk.extensions import db
from flowdesk.models import Owner, Product, Customer


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def owner(db_session):
    """Owner A: NGN, 7.5% sale tax."""
    owner = Owner(name="Owner A - Ada Stores", email="ada@example.com", currency="NGN", tax_rate_bps=750, is_active=True)
    db_session.add(owner)
    db_session.commit()
    return owner


@pytest.fixture(scope='function')
def other_owner(db_session):
    """Owner B: second tenant, no sale tax."""
    owner = Owner(name="Owner B - Bola Traders", email="bola@example.com", currency="KES", tax_rate_bps=0, is_active=True)
    db_session.add(owner)
    db_session.commit()
    return owner


def make_product(db_session, owner, *, sku="SKU-001", name="Widget", price_cents=10_000, stock=10, min_stock=5):
    product = Product(
        owner_id=owner.id,
        sku=sku,
        name=name,
        category="General",
        cost_price_cents=price_cents // 2,
        selling_price_cents=price_cents,
        stock_quantity=stock,
        min_stock=min_stock,
        unit="piece",
        is_active=True,
    )
    product.refresh_low_stock()
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, owner):
    """Widget at 100.00 with 10 on hand."""
    return make_product(db_session, owner)


@pytest.fixture(scope='function')
def customer(db_session, owner):
    customer = Customer(
        owner_id=owner.id,
        name="Chidi Okeke",
        email="chidi@example.com",
        phone="+2348012345678",
        customer_type="individual",
        status="active",
        total_purchases=0,
        total_spent_cents=0,
        average_order_value_cents=0,
        loyalty_status="bronze",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


def owner_headers(owner) -> dict:
    """Helper to create tenant headers."""
    return {'X-Owner-Id': str(owner.id)}
