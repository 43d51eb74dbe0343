"""
Pytest fixtures for retail_pos tests.

Provides the test app (in-memory SQLite, foreign keys on), a clean
database per test, and master-data fixtures built through the catalog
service so every product starts with a valid inventory chain.
"""

from __future__ import annotations

import pytest

from retail_pos import create_app
from retail_pos.extensions import db
from retail_pos.services import catalog_service

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'TAX_RATE_BPS': 0,
    'SALE_RETRY_BACKOFF_SECONDS': 0.01,
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
    """Fresh data for each test, schema kept."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def employee(db_session):
    return catalog_service.create_employee(patch={
        "first_name": "Casey",
        "last_name": "Cashier",
        "email": "casey@pos.test",
        "role": "cashier",
    })


@pytest.fixture(scope='function')
def customer(db_session):
    return catalog_service.create_customer(patch={
        "first_name": "Robin",
        "last_name": "Buyer",
        "email": "robin@example.com",
    })


def make_product(sku: str, *, price_cents: int = 5000, cost_cents: int = 3000,
                 stock: int = 10, min_stock: int = 3, name: str | None = None):
    """Create a product through the catalog service (opening stock is logged)."""
    return catalog_service.create_product(patch={
        "sku": sku,
        "name": name or f"Product {sku}",
        "price_cents": price_cents,
        "cost_cents": cost_cents,
        "stock": stock,
        "min_stock": min_stock,
    })


@pytest.fixture(scope='function')
def product(db_session):
    """$50.00 product with 10 in stock."""
    return make_product("SKU-50", price_cents=5000, cost_cents=3000, stock=10)


@pytest.fixture(scope='function')
def cheap_product(db_session):
    """$3.99 product with 100 in stock."""
    return make_product("SKU-399", price_cents=399, cost_cents=150, stock=100, min_stock=20)
