"""
Database helpers for ledger-scoped queries and atomic units of work.

Usage
-----
In any service function::

    from utils.db_helpers import ledger_query, unit_of_work

    # Every budget period of one ledger
    periods = ledger_query(BudgetPeriod, ledger_id).order_by(BudgetPeriod.id).all()

    # Several writes that must land together (or not at all)
    with unit_of_work():
        ...

``unit_of_work`` commits once at the end.  Any exception rolls the whole
session back; SQLAlchemy failures (constraint violations, deadlocks, lost
connections) come out as ``OperationFailed`` so callers can tell "retry"
apart from a domain error.
"""
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from services.errors import InvalidInput, LedgerError, OperationFailed


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

@contextmanager
def unit_of_work():
    """Run the enclosed block in the current session transaction and commit once."""
    try:
        yield db.session
        db.session.commit()
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception('Unit of work rolled back after a storage error')
        raise OperationFailed() from exc
    except Exception:
        db.session.rollback()
        raise


# ---------------------------------------------------------------------------
# Ledger-scoped queries
# ---------------------------------------------------------------------------

def ledger_query(model, ledger_id):
    """Return a query for *model* pre-filtered to one ledger.

    Examples::

        ledger_query(Transaction, ledger_id).filter_by(transaction_type='expense').all()
        ledger_query(LedgerMember, ledger_id).count()
    """
    if not hasattr(model, 'ledger_id'):
        raise AttributeError(
            f"ledger_query() called on {model.__name__} but it has no ledger_id column."
        )
    return model.query.filter(model.ledger_id == ledger_id)


def ledger_get(model, ledger_id, record_id):
    """Fetch a single record by *record_id* within a ledger, or ``None``."""
    return ledger_query(model, ledger_id).filter(model.id == record_id).first()


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

# Largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal('99999999.99')


def to_decimal(value, field='amount'):
    """Coerce *value* to a 2dp Decimal or raise InvalidInput."""
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f'{field} must be a number', details={'field': field})
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidInput(f'{field} must be a finite number', details={'field': field})
        if abs(amount) > MAX_AMOUNT:
            raise InvalidInput(f'{field} must not exceed {MAX_AMOUNT}', details={'field': field})
        return amount.quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        raise InvalidInput(f'{field} must be a number', details={'field': field}) from None


def as_decimal(value):
    """Convert a value read from the database (Decimal, float, int or None) to Decimal."""
    if value is None:
        return Decimal('0')
    return Decimal(str(value))
