"""
Pytest fixtures for payout engine backend tests.

Provides an in-memory database, tenant fixtures, and a CLI runner. Pure
engine tests need none of these.
"""

from datetime import date

import pytest
from app import create_app
from app.extensions import db
from app.models import EmployeeCompensationPlan, Organization, Store


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
def runner(app):
    """Create CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the ledger's ORM guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Cuts", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Barbers", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A."""
    store = Store(org_id=org_a.id, name="Store A1", code="A1", timezone="UTC", tax_rate_bps=0)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    """Create Store B in Organization B."""
    store = Store(org_id=org_b.id, name="Store B1", code="B1", timezone="America/New_York", tax_rate_bps=825)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def commission_plan_a(db_session, org_a):
    """Employee 7 in Org A on 40% commission since 2026-01-01."""
    plan = EmployeeCompensationPlan(
        org_id=org_a.id,
        employee_id=7,
        plan_type="COMMISSION",
        effective_from=date(2026, 1, 1),
        service_commission_bps=4000,
        product_commission_bps=1000,
    )
    db_session.add(plan)
    db_session.commit()
    return plan
