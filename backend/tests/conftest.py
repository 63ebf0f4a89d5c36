"""
Pytest fixtures for stockbook backend tests.

Provides test database setup, service fixtures, and test client.
"""

import pytest
from stockbook import create_app
from stockbook.extensions import db
from stockbook.services.inventory_store import (
    InventoryStore,
    PRODUCT_SPEC,
    CATEGORY_SPEC,
    SUPPLIER_SPEC,
    CUSTOMER_SPEC,
)
from stockbook.services.invoice_service import InvoiceService
from stockbook.services.providers import LOCKS_EXTENSION_KEY
from stockbook.services.stock_ledger import StockLedger

TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


def make_config(**overrides) -> dict:
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUTH_REQUIRED': False,
        'AUTH_JWT_SECRET': TEST_JWT_SECRET,
        'AUTH_JWT_AUDIENCE': 'authenticated',
        'ALLOW_NEGATIVE_STOCK': True,
        'STOCK_RETRY_ATTEMPTS': 3,
        'STOCK_RETRY_BACKOFF': 0.0,
    }
    config.update(overrides)
    return config


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(make_config())

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
def ledger(app, db_session):
    return StockLedger(
        db_session,
        locks=app.extensions[LOCKS_EXTENSION_KEY],
        retry_attempts=3,
        retry_backoff=0.0,
    )


@pytest.fixture(scope='function')
def strict_ledger(app, db_session):
    """Ledger that refuses to take stock below zero."""
    return StockLedger(
        db_session,
        locks=app.extensions[LOCKS_EXTENSION_KEY],
        retry_backoff=0.0,
        allow_negative=False,
    )


@pytest.fixture(scope='function')
def products(db_session):
    return InventoryStore(db_session, PRODUCT_SPEC, retry_backoff=0.0)


@pytest.fixture(scope='function')
def categories(db_session):
    return InventoryStore(db_session, CATEGORY_SPEC, retry_backoff=0.0)


@pytest.fixture(scope='function')
def suppliers(db_session):
    return InventoryStore(db_session, SUPPLIER_SPEC, retry_backoff=0.0)


@pytest.fixture(scope='function')
def customers(db_session):
    return InventoryStore(db_session, CUSTOMER_SPEC, retry_backoff=0.0)


@pytest.fixture(scope='function')
def invoices(db_session, ledger):
    return InvoiceService(db_session, ledger)


@pytest.fixture(scope='function')
def make_product(products):
    """Factory for products with sensible defaults."""
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        payload = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "price_cents": 1000,
            "cost_price_cents": 600,
        }
        payload.update(fields)
        return products.create(payload)

    return _make


def envelope(response):
    """Assert the uniform envelope shape and return the parsed body."""
    body = response.get_json()
    assert isinstance(body, dict), response.data
    assert "success" in body
    if body["success"]:
        assert "data" in body
    else:
        assert body["error"]
        assert body["error_type"]
    return body


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Application on a file-backed SQLite database.

    In-memory SQLite is a single shared connection, so tests that run
    writers on several threads need a real file.
    """
    db_path = tmp_path / "concurrency.db"
    app = create_app(make_config(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        STOCK_RETRY_ATTEMPTS=10,
    ))

    with app.app_context():
        db.create_all()
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
