"""
Database Utilities
Helper functions for database operations and ledger transactions
"""

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app, has_app_context
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from aqua_ledger.models import db
from aqua_ledger.utils.exceptions import Conflict, LedgerError, StoreFailure

logger = logging.getLogger(__name__)

# SQLSTATE serialization_failure / deadlock_detected, MySQL deadlock / lock wait timeout
CONFLICT_SQLSTATES = {'40001', '40P01'}
CONFLICT_MYSQL_CODES = {1205, 1213}

# Fixed mutex pool; customer ids share a slot by hash
LOCK_POOL_SIZE = 64
_customer_locks = [threading.RLock() for _ in range(LOCK_POOL_SIZE)]


def init_database():
    """Initialize database with tables"""
    try:
        db.create_all()
        logger.info("Database tables created successfully")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error creating database tables: {e}")
        return False


def get_or_create(model, defaults=None, **kwargs):
    """
    Get existing record or create new one

    The new record is flushed, not committed; the caller owns the transaction.

    Args:
        model: SQLAlchemy model class
        defaults: Extra fields used only when creating
        **kwargs: Fields to search/create with

    Returns:
        tuple: (instance, created) where created is bool
    """
    instance = model.query.filter_by(**kwargs).order_by(model.id).first()
    if instance:
        return instance, False
    instance = model(**kwargs, **(defaults or {}))
    db.session.add(instance)
    db.session.flush()
    return instance, True


@contextmanager
def customer_lock(customer_id):
    """
    Serialize ledger work for one customer inside this process.

    Row locks cover multi-process deployments on databases that support
    SELECT ... FOR UPDATE; this mutex covers stores that ignore it (SQLite).
    """
    with _customer_locks[hash(customer_id) % LOCK_POOL_SIZE]:
        yield


def is_conflict(error):
    """Check whether a database error is a retryable write conflict"""
    if isinstance(error, (IntegrityError, StaleDataError)):
        return True
    if not isinstance(error, DBAPIError):
        return False
    if error.connection_invalidated:
        return True

    orig = error.orig
    sqlstate = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    args = getattr(orig, 'args', None) or ()
    if args and args[0] in CONFLICT_MYSQL_CODES:
        return True
    return 'database is locked' in str(orig)


def _retry_settings():
    if has_app_context():
        return (current_app.config.get('LEDGER_MAX_RETRIES', 3),
                current_app.config.get('LEDGER_RETRY_BACKOFF_SECONDS', 0.05))
    return 3, 0.05


def run_in_transaction(operation, *args, **kwargs):
    """
    Run operation and commit it as one unit of work.

    Any failure rolls the whole session back. Write conflicts are retried
    from scratch with exponential backoff; the operation must therefore
    re-read everything it needs.

    Raises:
        LedgerError: re-raised unchanged from the operation
        Conflict: write conflicts persisted after all retries
        StoreFailure: the transaction could not be committed
    """
    max_retries, backoff = _retry_settings()
    name = getattr(operation, '__name__', 'operation')
    attempt = 0

    while True:
        try:
            result = operation(*args, **kwargs)
            db.session.commit()
            return result
        except LedgerError as e:
            db.session.rollback()
            logger.warning(f"{name} rejected: {e.kind} {e.message}")
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            if not is_conflict(e):
                logger.error(f"{name} failed, transaction rolled back: {e}")
                raise StoreFailure('Transaction could not be committed') from e

            attempt += 1
            if attempt > max_retries:
                logger.warning(f"{name} conflicted after {max_retries} retries: {e}")
                raise Conflict('Concurrent update detected, please retry') from e

            wait_time = backoff * (2 ** (attempt - 1))
            logger.debug(f"{name} conflicted, retrying in {wait_time:.2f}s (attempt {attempt}/{max_retries})")
            time.sleep(wait_time)
        except Exception:
            db.session.rollback()
            logger.exception(f"{name} failed unexpectedly, transaction rolled back")
            raise
