"""
Pytest fixtures for the POS backend tests.

Every test gets its own application on a throwaway SQLite file, so the
in-memory caches (catalog snapshot, on-hand figures, holds, rollups) always
start empty alongside the database.
"""

from datetime import datetime, timedelta

import pytest

from dukaan_pos import create_app
from dukaan_pos.extensions import db
from dukaan_pos.services.core import get_core


class FakeClock:
    """Settable 'now' for reservation expiry and invoice timestamps."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'test.db'}",
        'RESERVATION_TIMEOUT_SECONDS': 900,
        'CART_IDLE_TIMEOUT_SECONDS': 1800,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def core(app):
    return get_core()


@pytest.fixture(scope='function')
def clock(core):
    """Pin the engine and ledger to 2026-01-15 10:30 UTC."""
    fake = FakeClock(datetime(2026, 1, 15, 10, 30))
    core.engine.clock = fake
    core.ledger.clock = fake
    return fake


@pytest.fixture(scope='function')
def products(core):
    """A: 10.00 @ 5%, B: 20.00 @ 5%, C: 15.00 untaxed. Ten of each on hand."""
    rows = [
        ("A", "Milk 1L", 1000, 500),
        ("B", "Bread", 2000, 500),
        ("C", "Coffee", 1500, 0),
    ]
    for sku, name, price, bps in rows:
        core.catalog.upsert_product(sku=sku, name=name, unit_price_cents=price, tax_rate_bps=bps)
        core.ledger.restock(sku, 10, note="Opening stock")
    return [r[0] for r in rows]
