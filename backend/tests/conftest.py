"""
Pytest fixtures for receivables backend tests.

Provides test database setup, factory fixtures, a per-test stats cache and test client.
"""

from datetime import date

import pytest

from receivables import create_app
from receivables.extensions import db
from receivables.models import User, Customer, Sale
from receivables.services import debt_service, money_box_service, register_service
from receivables.services.cache_service import CacheCoordinator, StatsCache


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
    """Create fresh database (and empty app cache) for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["stats_cache"].cache.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cache(db_session):
    """Standalone cache coordinator, independent of the app's."""
    return CacheCoordinator(StatsCache(default_ttl_seconds=60, max_entries=100))


@pytest.fixture(scope='function')
def cashier(db_session):
    user = User(username="cashier", name="Front Cashier", is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def collector(db_session):
    user = User(username="collector", name="Field Collector", is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Acme Ltd", phone="555-0100")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def other_customer(db_session):
    c = Customer(name="Beta Traders", phone="555-0200")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_sale(db_session, cache):
    """Factory: record a credit sale for a customer."""
    counter = {"n": 0}

    def _make(customer, total_cents, paid_cents=0, due_date=None, invoice_no=None) -> Sale:
        counter["n"] += 1
        return debt_service.record_credit_sale(
            customer_id=customer.id,
            invoice_no=invoice_no or f"INV-{counter['n']:04d}",
            total_amount_cents=total_cents,
            invoice_date=date(2026, 1, 1),
            due_date=due_date,
            paid_amount_cents=paid_cents,
            cache=cache,
        )

    return _make


@pytest.fixture(scope='function')
def open_register(cashier):
    """Open a register session for the cashier with 10000 cents."""
    return register_service.open_register(cashier.id, opening_cash_cents=10000)


@pytest.fixture(scope='function')
def money_box(cashier):
    return money_box_service.create_money_box("Safe", cashier.id, initial_balance_cents=5000)


@pytest.fixture(scope='function')
def actor_headers(cashier):
    return {"X-User-Id": str(cashier.id)}
