"""
Shared pytest fixtures and configuration for all tests.

Provides the Flask application with an in-memory database, a database
session, and ledger test data (admin, riders, customers).
"""

import pytest
import sys
import os
from decimal import Decimal
from unittest.mock import MagicMock

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aqua_ledger import create_app
from aqua_ledger.models import db, Customer, RiderProfile, User
from aqua_ledger.services.order_service import OrderService
from aqua_ledger.services.daily_closing_service import DailyClosingService


@pytest.fixture(scope='function')
def app():
    """Create application with a clean database for each test."""
    app = create_app('testing')
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    app.config['LEDGER_RETRY_BACKOFF_SECONDS'] = 0

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Provide a database session for testing."""
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def runner(app):
    """Create test CLI runner."""
    return app.test_cli_runner()


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture(scope='function')
def admin(app):
    """Active admin user (notification target)."""
    user = User(email='admin@test.com', phone='03000000000', role='ADMIN', is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def rider(app):
    """Active rider with its user account."""
    user = User(email='rider@test.com', phone='03001111111', role='RIDER', is_active=True)
    db.session.add(user)
    db.session.flush()
    profile = RiderProfile(user_id=user.id, name='Bilal Rider', phone='03001111111', is_active=True)
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture(scope='function')
def second_rider(app):
    """Another active rider."""
    user = User(email='rider2@test.com', role='RIDER', is_active=True)
    db.session.add(user)
    db.session.flush()
    profile = RiderProfile(user_id=user.id, name='Usman Rider', is_active=True)
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture(scope='function')
def inactive_rider(app):
    """Rider who has been deactivated."""
    user = User(email='former@test.com', role='RIDER', is_active=False)
    db.session.add(user)
    db.session.flush()
    profile = RiderProfile(user_id=user.id, name='Former Rider', is_active=False)
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture(scope='function')
def customer(app):
    """Active customer with a zero balance."""
    c = Customer(
        name='Ali Raza',
        phone='03211234567',
        house_no='12',
        street_no='4',
        area='G-9',
        city='Islamabad',
        bottle_count=2,
        current_balance=Decimal('0.00'),
        is_active=True
    )
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture(scope='function')
def other_customer(app):
    """Second active customer with a zero balance."""
    c = Customer(name='Sana Tariq', phone='03331234567', current_balance=Decimal('0.00'), is_active=True)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture(scope='function')
def inactive_customer(app):
    """Deactivated customer."""
    c = Customer(name='Moved Away', phone='03009999999', current_balance=Decimal('0.00'), is_active=False)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture(scope='function')
def notifier():
    """Mock notification dispatcher."""
    return MagicMock()


@pytest.fixture(scope='function')
def order_service(app, notifier):
    """Order service wired to the mock notifier."""
    return OrderService(notifier=notifier)


@pytest.fixture(scope='function')
def closing_service(app, notifier):
    """Daily closing service wired to the mock notifier."""
    return DailyClosingService(app, notifier=notifier)


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as pure unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "edge_case: marks tests as edge case / boundary tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
