"""
Unit Tests for Database Utilities
Tests conflict detection, get_or_create and the transaction runner

Run with: pytest tests/test_db_utils.py -v
"""

import pytest
import threading

from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from aqua_ledger.models import db, Customer
from aqua_ledger.utils import db_utils
from aqua_ledger.utils.db_utils import (
    LOCK_POOL_SIZE, customer_lock, get_or_create, is_conflict, run_in_transaction
)
from aqua_ledger.utils.exceptions import Conflict, InvalidState, StoreFailure


def _db_error(cls, orig):
    return cls('SELECT 1', {}, orig)


@pytest.mark.unit
class TestIsConflict:
    """Tests for retryable error detection"""

    def test_integrity_error(self):
        assert is_conflict(_db_error(IntegrityError, Exception('UNIQUE constraint failed')))

    def test_sqlite_locked(self):
        assert is_conflict(_db_error(OperationalError, Exception('database is locked')))

    def test_postgres_serialization_failure(self):
        orig = Exception('could not serialize access')
        orig.pgcode = '40001'
        assert is_conflict(_db_error(OperationalError, orig))

    def test_mysql_deadlock(self):
        assert is_conflict(_db_error(OperationalError, Exception(1213, 'Deadlock found')))

    def test_other_errors(self):
        assert not is_conflict(_db_error(ProgrammingError, Exception('syntax error')))
        assert not is_conflict(ValueError('nope'))


@pytest.mark.integration
class TestRunInTransaction:
    """Tests for the commit-or-rollback wrapper"""

    def test_commits_result(self, app):
        def _create():
            customer = Customer(name='Committed')
            db.session.add(customer)
            return customer

        customer = run_in_transaction(_create)
        db.session.rollback()
        assert db.session.get(Customer, customer.id).name == 'Committed'

    def test_ledger_error_rolls_back(self, app):
        def _fail():
            db.session.add(Customer(name='Rolled Back'))
            db.session.flush()
            raise InvalidState('nope')

        with pytest.raises(InvalidState):
            run_in_transaction(_fail)
        assert Customer.query.count() == 0

    def test_retries_then_conflict(self, app):
        attempts = []

        def _always_conflicts():
            attempts.append(1)
            raise _db_error(OperationalError, Exception('database is locked'))

        with pytest.raises(Conflict):
            run_in_transaction(_always_conflicts)
        assert len(attempts) == app.config['LEDGER_MAX_RETRIES'] + 1

    def test_retry_succeeds(self, app):
        attempts = []

        def _conflicts_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise _db_error(IntegrityError, Exception('UNIQUE constraint failed'))
            return 'ok'

        assert run_in_transaction(_conflicts_once) == 'ok'
        assert len(attempts) == 2

    def test_store_failure(self, app):
        def _broken():
            raise _db_error(ProgrammingError, Exception('no such table'))

        with pytest.raises(StoreFailure) as exc:
            run_in_transaction(_broken)
        assert exc.value.retryable

    def test_unexpected_error_propagates(self, app):
        def _bug():
            raise KeyError('missing')

        with pytest.raises(KeyError):
            run_in_transaction(_bug)


@pytest.mark.integration
class TestHelpers:
    """Tests for get_or_create and customer locks"""

    def test_get_or_create(self, app):
        first, created = get_or_create(Customer, name='Walk-in Customer')
        second, created_again = get_or_create(Customer, name='Walk-in Customer')

        assert created is True
        assert created_again is False
        assert first.id == second.id

    def test_get_or_create_defaults(self, app):
        customer, _ = get_or_create(Customer, defaults={'city': 'Lahore'}, name='Defaulted')
        assert customer.city == 'Lahore'

    def test_customer_lock_is_reentrant(self):
        with customer_lock(1):
            with customer_lock(1):
                pass

    def test_customer_lock_pool_is_bounded(self):
        """Locking many customers never grows the mutex pool"""
        for customer_id in range(LOCK_POOL_SIZE * 10):
            with customer_lock(customer_id):
                pass
        assert len(db_utils._customer_locks) == LOCK_POOL_SIZE

    def test_colliding_customers_nest(self):
        """Ids sharing a pool slot can still be locked by the same thread"""
        with customer_lock(1):
            with customer_lock(1 + LOCK_POOL_SIZE):
                pass

    @pytest.mark.slow
    def test_customer_lock_serializes(self):
        events = []
        started = threading.Event()

        def worker():
            started.set()
            with customer_lock(99):
                events.append('worker')

        with customer_lock(99):
            thread = threading.Thread(target=worker)
            thread.start()
            started.wait(1)
            events.append('main')
        thread.join(1)

        assert events == ['main', 'worker']
