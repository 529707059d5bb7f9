"""
Reallocation Service
====================
Moves budget between categories inside one month so the month's overall
allocation stays put: one category's limit is set to a new amount while one
or more *source* categories give up matching amounts.

All or nothing
--------------
The target upsert and every source reduction happen in a single session
transaction.  Sources are all evaluated before anything is decided, so the
caller gets every problem back at once; if any source fails the whole
transaction is rolled back (the target's new limit included) and
``ReallocateFailed`` is raised with one entry per failing source:

  INVALID_INPUT  - amount missing, not a number, not positive, or the source is the target
  NO_BUDGET      - the source category has no limit in this month
  INSUFFICIENT   - the reduction would push the limit below what is already spent;
                   carries current / spent / requested_reduction / min_allowed / max_reduction

Locking
-------
The period row and each limit row are read FOR UPDATE before any arithmetic,
so two reallocations against the same month run one after the other instead
of both reading the same starting limits.
"""
import logging
from decimal import Decimal

from extensions import db
from services.budget_service import BudgetService
from services.errors import InvalidInput, LedgerError, ReallocateFailed
from services.period_service import resolve_period
from utils.db_helpers import as_decimal, to_decimal, unit_of_work

logger = logging.getLogger(__name__)

REASON_INVALID_INPUT = 'INVALID_INPUT'
REASON_NO_BUDGET = 'NO_BUDGET'
REASON_INSUFFICIENT = 'INSUFFICIENT'


class ReallocationService:

    @staticmethod
    def _parse_source(source):
        """Return ``(category_id, amount)`` from a source mapping; either may be None if unreadable."""
        category_id = source.get('category_id', source.get('categoryId'))
        try:
            category_id = int(category_id)
        except (TypeError, ValueError):
            category_id = None
        raw_amount = source.get('amount', source.get('amount_to_remove'))
        try:
            amount = to_decimal(raw_amount)
        except LedgerError:
            amount = None
        return category_id, amount

    @staticmethod
    def _check_source(ledger_id, period, period_id, target_category_id, source):
        """Apply one source reduction in the session, or return its failure dict."""
        category_id, amount = ReallocationService._parse_source(source)
        if category_id is None or amount is None or amount <= 0 or category_id == target_category_id:
            return {
                'category_id': category_id,
                'reason': REASON_INVALID_INPUT,
            }

        row = BudgetService.get_limit(period_id, category_id, lock=True)
        if row is None:
            return {'category_id': category_id, 'reason': REASON_NO_BUDGET}

        current = as_decimal(row.limit_amount)
        spent = BudgetService.spent_for(ledger_id, category_id, period)
        new_limit = current - amount
        if new_limit < spent:
            return {
                'category_id': category_id,
                'reason': REASON_INSUFFICIENT,
                'current': str(current),
                'spent': str(spent),
                'requested_reduction': str(amount),
                'min_allowed': str(spent),
                'max_reduction': str(max(Decimal('0'), current - spent)),
            }

        row.limit_amount = new_limit
        db.session.flush()
        return None

    @staticmethod
    def reallocate(ledger_id, period_token, target_category_id, target_amount, sources):
        """
        Set *target_category_id*'s limit to *target_amount* and take the listed
        amounts off each source category, atomically.

        Args:
            ledger_id:           Ledger whose month is being edited.
            period_token:        Anything PeriodResolver accepts.
            target_category_id:  Category receiving the new limit.
            target_amount:       New limit for the target (replace, not add).
            sources:             Iterable of {'category_id', 'amount'} mappings.

        Returns:
            dict with 'ledger_id', 'period', 'period_id', 'target' and 'sources'
            (each with the category's new limit).

        Raises:
            InvalidPeriod, InvalidInput, CategoryNotFound, ReallocateFailed,
            OperationFailed.
        """
        period = resolve_period(period_token)
        target_amount = to_decimal(target_amount)
        if target_amount < 0:
            raise InvalidInput('amount must be a non-negative number', details={'field': 'amount'})
        sources = list(sources or [])
        if not sources:
            raise InvalidInput('At least one source category is required', details={'field': 'sources'})
        if any(not isinstance(s, dict) for s in sources):
            raise InvalidInput('Each source must be an object with category_id and amount',
                               details={'field': 'sources'})

        with unit_of_work():
            BudgetService.require_ledger(ledger_id, lock=True)
            BudgetService.require_category(target_category_id)
            bp = BudgetService.get_or_create_period(ledger_id, period, lock=True)

            BudgetService.upsert_limit(bp.id, target_category_id, target_amount)

            failures = []
            for source in sources:
                failure = ReallocationService._check_source(
                    ledger_id, period, bp.id, target_category_id, source
                )
                if failure is not None:
                    failures.append(failure)

            if failures:
                logger.info(
                    f"ledger {ledger_id}: reallocation into category {target_category_id} "
                    f"for {period.key} rejected ({len(failures)} failing source(s))"
                )
                raise ReallocateFailed(failures)

            new_limits = {
                row.category_id: as_decimal(row.limit_amount)
                for row in bp.limits
            }
            result = {
                'ledger_id': ledger_id,
                'period': period.key,
                'period_id': bp.id,
                'target': {
                    'category_id': target_category_id,
                    'limit': new_limits.get(target_category_id, target_amount),
                },
                'sources': [
                    {'category_id': cid, 'limit': new_limits.get(cid)}
                    for cid in dict.fromkeys(ReallocationService._parse_source(s)[0] for s in sources)
                ],
            }

        logger.info(f"ledger {ledger_id}: reallocated {len(sources)} source(s) into category "
                    f"{target_category_id} for {period.key}")
        return result
