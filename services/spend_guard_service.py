"""
Spend Guard
Checks an expense against its category's monthly limit before the
transaction is written.

Only expenses are checked, and only when the month has a limit for the
category; unbudgeted categories are unconstrained.  ``allow_exceed`` skips
the check entirely; it is passed explicitly by the write path once the user
has confirmed the overspend.
"""
from collections import namedtuple
from decimal import Decimal

from services.budget_service import BudgetService
from services.period_service import resolve_period
from utils.db_helpers import as_decimal


class SpendDecision(namedtuple('SpendDecision', ['accepted', 'limit', 'spent', 'remaining', 'period'])):
    """Outcome of a budget check. ``limit``/``spent``/``remaining`` are None when nothing was checked."""
    __slots__ = ()

    @classmethod
    def accept(cls, period=None, limit=None, spent=None, remaining=None):
        return cls(True, limit, spent, remaining, period)

    @classmethod
    def reject(cls, period, limit, spent):
        return cls(False, limit, spent, max(Decimal('0'), limit - spent), period)


class SpendGuard:

    @staticmethod
    def check(ledger_id, category_id, amount, transaction_type, txn_date,
              exclude_transaction_id=None, allow_exceed=False, lock=False):
        """
        Decide whether an expense of *amount* on *txn_date* fits the category budget.

        Rejected when ``spent + amount > limit``, where ``spent`` excludes
        ``exclude_transaction_id`` (the row being edited, if any).

        ``lock=True`` reads the limit row FOR UPDATE so concurrent postings to
        the same budget serialise inside the caller's unit of work.
        """
        if transaction_type != 'expense' or allow_exceed:
            return SpendDecision.accept()

        period = resolve_period(txn_date)
        bp = BudgetService.get_period(ledger_id, period)
        if bp is None:
            return SpendDecision.accept(period.key)

        row = BudgetService.get_limit(bp.id, category_id, lock=lock)
        if row is None:
            return SpendDecision.accept(period.key)

        limit = as_decimal(row.limit_amount)
        spent = BudgetService.spent_for(ledger_id, category_id, period,
                                        exclude_transaction_id=exclude_transaction_id)
        if spent + as_decimal(amount) > limit:
            return SpendDecision.reject(period.key, limit, spent)
        return SpendDecision.accept(period.key, limit, spent, max(Decimal('0'), limit - spent))

    @staticmethod
    def check_update(txn, changes, allow_exceed=False, lock=False):
        """Re-check an existing transaction with *changes* applied.

        Any of ledger_id / category_id / amount / transaction_type /
        transaction_date in *changes* replaces the stored value; the
        transaction's own stored amount never counts against itself.
        """
        merged = {
            'ledger_id': txn.ledger_id,
            'category_id': txn.category_id,
            'amount': txn.amount,
            'transaction_type': txn.transaction_type,
            'transaction_date': txn.transaction_date,
        }
        merged.update({k: v for k, v in changes.items() if k in merged and v is not None})
        return SpendGuard.check(
            merged['ledger_id'],
            merged['category_id'],
            merged['amount'],
            merged['transaction_type'],
            merged['transaction_date'],
            exclude_transaction_id=txn.id,
            allow_exceed=allow_exceed,
            lock=lock,
        )
