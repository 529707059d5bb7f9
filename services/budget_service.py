"""
Budget Service
==============
Per-category spending limits for a ledger, organised by calendar month.

Each ledger-month is one ``BudgetPeriod`` row holding a title, an optional
overall ``total_budget`` and any number of ``BudgetLimit`` rows (one per
category).  Limits are upserted: setting a limit replaces the stored amount,
it never adds to it.

Spend
-----
Spend for a category is the sum of *expense* transactions of that ledger and
category whose date falls in ``[period.start, period.end)``.  The progress
report aggregates spend per category in a subquery first and only then
left-joins it onto the limits; joining transactions straight onto limits
would multiply rows and inflate both sides of the comparison.

Legacy periods
--------------
Older databases may hold more than one period row for the same month.  Every
lookup takes the lowest id; ``merge_duplicate_periods()`` folds the others
into it.
"""
import logging
from collections import OrderedDict
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from extensions import db
from models.budgets import BudgetPeriod, BudgetLimit
from models.categories import Category
from models.ledgers import Ledger
from models.transactions import Transaction
from services.errors import CategoryNotFound, InvalidInput, LedgerNotFound, PeriodNotFound
from services.period_service import resolve_period
from utils.db_helpers import as_decimal, ledger_query, to_decimal, unit_of_work

logger = logging.getLogger(__name__)

STATUS_NO_BUDGET = 'no_budget'
STATUS_ON_TRACK = 'on_track'
STATUS_AT_RISK = 'at_risk'
STATUS_OVER = 'over'


class BudgetService:

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def get_period(ledger_id, period, lock=False):
        """Return the canonical BudgetPeriod for a resolved month, or ``None``.

        Matches on the month of ``start_date`` and picks the lowest id when
        legacy duplicates exist.  ``lock=True`` reads the row FOR UPDATE.
        """
        q = (
            ledger_query(BudgetPeriod, ledger_id)
            .filter(BudgetPeriod.start_date >= period.start,
                    BudgetPeriod.start_date < period.end)
            .order_by(BudgetPeriod.id)
        )
        if lock:
            q = q.with_for_update()
        return q.first()

    @staticmethod
    def get_or_create_period(ledger_id, period, lock=False):
        """Return the period row for *period*, creating it (flush only) when absent.

        A FOR UPDATE read of a missing row locks nothing, so writers must hold
        the ledger row lock (``require_ledger(lock=True)``) before calling this.
        """
        bp = BudgetService.get_period(ledger_id, period, lock=lock)
        if bp is None:
            bp = BudgetPeriod(
                ledger_id=ledger_id,
                title=BudgetService.default_title(period.key),
                start_date=period.start,
                end_date=period.last_day,
            )
            db.session.add(bp)
            db.session.flush()
            logger.info(f"ledger {ledger_id}: created budget period {bp.id} for {period.key}")
        return bp

    @staticmethod
    def get_limit(period_id, category_id, lock=False):
        q = BudgetLimit.query.filter_by(period_id=period_id, category_id=category_id)
        if lock:
            q = q.with_for_update()
        return q.first()

    @staticmethod
    def default_title(period_key):
        template = current_app.config.get('DEFAULT_PERIOD_TITLE', '{period} budget')
        return template.format(period=period_key)

    @staticmethod
    def spent_for(ledger_id, category_id, period, exclude_transaction_id=None):
        """Sum of expense amounts for one ledger/category inside *period*.

        ``exclude_transaction_id`` leaves one transaction out of the total;
        used when an existing transaction is being re-checked after an edit.
        """
        q = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
            Transaction.ledger_id == ledger_id,
            Transaction.category_id == category_id,
            Transaction.transaction_type == 'expense',
            Transaction.transaction_date >= period.start,
            Transaction.transaction_date < period.end,
        )
        if exclude_transaction_id is not None:
            q = q.filter(Transaction.id != exclude_transaction_id)
        return as_decimal(q.scalar())

    @staticmethod
    def classify(limit, spent):
        """Return ``(progress, status)`` for a limit and the amount spent against it."""
        if limit is None or limit <= 0:
            return None, STATUS_NO_BUDGET
        progress = spent / limit
        threshold = Decimal(str(current_app.config.get('BUDGET_AT_RISK_THRESHOLD', 0.8)))
        if progress > 1:
            status = STATUS_OVER
        elif progress >= threshold:
            status = STATUS_AT_RISK
        else:
            status = STATUS_ON_TRACK
        return round(float(progress), 4), status

    # ------------------------------------------------------------------
    # Progress report
    # ------------------------------------------------------------------

    @staticmethod
    def _spend_by_category(ledger_id, period):
        return (
            db.session.query(
                Transaction.category_id.label('category_id'),
                func.sum(Transaction.amount).label('spent'),
            )
            .filter(
                Transaction.ledger_id == ledger_id,
                Transaction.transaction_type == 'expense',
                Transaction.transaction_date >= period.start,
                Transaction.transaction_date < period.end,
            )
            .group_by(Transaction.category_id)
            .subquery()
        )

    @staticmethod
    def get_progress(ledger_id, period_token=None):
        """
        Budget progress for every category with a limit in the resolved month.

        Returns:
            dict with keys:
              'period'        - YYYY-MM key
              'start_date'    - first day (ISO)
              'end_date'      - exclusive end (ISO)
              'period_id'     - BudgetPeriod id, or None when the month has no budget
              'title'         - period title or None
              'total_budget'  - explicit overall budget override (Decimal) or None
              'items'         - list of per-category dicts (limit, spent, remaining,
                                progress, status)
              'totals'        - {'budget', 'spent'}; budget prefers the override
        """
        period = resolve_period(period_token)
        report = {
            'period': period.key,
            'start_date': period.start.isoformat(),
            'end_date': period.end.isoformat(),
            'period_id': None,
            'title': None,
            'total_budget': None,
            'items': [],
            'totals': {'budget': Decimal('0'), 'spent': Decimal('0')},
        }

        bp = BudgetService.get_period(ledger_id, period)
        if bp is None:
            return report

        spend = BudgetService._spend_by_category(ledger_id, period)
        rows = (
            db.session.query(
                Category.id,
                Category.name,
                Category.category_type,
                BudgetLimit.limit_amount,
                spend.c.spent,
            )
            .select_from(BudgetLimit)
            .join(Category, Category.id == BudgetLimit.category_id)
            .outerjoin(spend, spend.c.category_id == BudgetLimit.category_id)
            .filter(BudgetLimit.period_id == bp.id)
            .order_by(Category.category_type.desc(), Category.name.asc())
            .all()
        )

        limit_sum = Decimal('0')
        spent_sum = Decimal('0')
        for category_id, name, category_type, limit_amount, spent in rows:
            limit = as_decimal(limit_amount)
            spent = as_decimal(spent)
            progress, status = BudgetService.classify(limit, spent)
            report['items'].append({
                'category_id': category_id,
                'category_name': name,
                'category_type': category_type,
                'limit': limit,
                'spent': spent,
                'remaining': max(Decimal('0'), limit - spent),
                'progress': progress,
                'status': status,
            })
            limit_sum += limit
            spent_sum += spent

        total_budget = as_decimal(bp.total_budget) if bp.total_budget is not None else None
        report.update({
            'period_id': bp.id,
            'title': bp.title,
            'total_budget': total_budget,
            'totals': {
                'budget': total_budget if total_budget is not None else limit_sum,
                'spent': spent_sum,
            },
        })
        return report

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def require_ledger(ledger_id, lock=False):
        q = Ledger.query.filter(Ledger.id == ledger_id)
        if lock:
            q = q.with_for_update()
        ledger = q.first()
        if ledger is None:
            raise LedgerNotFound(details={'ledger_id': ledger_id})
        return ledger

    @staticmethod
    def require_category(category_id):
        category = db.session.get(Category, category_id)
        if category is None:
            raise CategoryNotFound(details={'category_id': category_id})
        return category

    @staticmethod
    def upsert_limit(period_id, category_id, amount):
        """Set the limit for (period, category) to *amount*; flush only."""
        row = BudgetService.get_limit(period_id, category_id, lock=True)
        if row is None:
            row = BudgetLimit(period_id=period_id, category_id=category_id, limit_amount=amount)
            db.session.add(row)
        else:
            row.limit_amount = amount
        db.session.flush()
        return row

    @staticmethod
    def set_limit(ledger_id, period_token, category_id, amount):
        """Create or replace one category's limit for the resolved month.

        Creates the month's BudgetPeriod when it does not exist yet.
        Raises CategoryNotFound, InvalidInput or InvalidPeriod.
        """
        period = resolve_period(period_token)
        amount = to_decimal(amount)
        if amount < 0:
            raise InvalidInput('amount must be a non-negative number', details={'field': 'amount'})

        with unit_of_work():
            BudgetService.require_ledger(ledger_id, lock=True)
            BudgetService.require_category(category_id)
            bp = BudgetService.get_or_create_period(ledger_id, period, lock=True)
            BudgetService.upsert_limit(bp.id, category_id, amount)
            result = {
                'ledger_id': ledger_id,
                'period': period.key,
                'period_id': bp.id,
                'category_id': category_id,
                'amount': amount,
            }

        logger.info(f"ledger {ledger_id}: limit for category {category_id} in {period.key} set to {amount}")
        return result

    @staticmethod
    def set_period_meta(ledger_id, period_token, title=None, total_budget=None, clear_total=False):
        """Upsert the month's title and/or overall budget override.

        ``total_budget`` replaces any earlier override; ``clear_total=True``
        removes it so reports fall back to the sum of category limits.
        """
        period = resolve_period(period_token)
        if total_budget is not None:
            total_budget = to_decimal(total_budget, field='total_budget')
            if total_budget < 0:
                raise InvalidInput('total_budget must be a non-negative number',
                                   details={'field': 'total_budget'})
        title = (title or '').strip() or None

        with unit_of_work():
            BudgetService.require_ledger(ledger_id, lock=True)
            bp = BudgetService.get_or_create_period(ledger_id, period, lock=True)
            if title is not None:
                bp.title = title
            if clear_total:
                bp.total_budget = None
            elif total_budget is not None:
                bp.total_budget = total_budget
            db.session.flush()
            result = {
                'ledger_id': ledger_id,
                'period': period.key,
                'period_id': bp.id,
                'title': bp.title,
                'total_budget': as_decimal(bp.total_budget) if bp.total_budget is not None else None,
            }
        return result

    @staticmethod
    def delete_limit(ledger_id, period_token, category_id):
        """Remove one category's limit. Returns True if a row was deleted.

        Raises PeriodNotFound when the month has no budget period at all.
        """
        period = resolve_period(period_token)
        with unit_of_work():
            bp = BudgetService.get_period(ledger_id, period, lock=True)
            if bp is None:
                raise PeriodNotFound(details={'period': period.key})
            removed = (
                BudgetLimit.query
                .filter_by(period_id=bp.id, category_id=category_id)
                .delete(synchronize_session=False)
            )
        return removed > 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @staticmethod
    def merge_duplicate_periods(ledger_id=None):
        """Fold duplicate period rows for the same (ledger, month) into the lowest id.

        Limits on a duplicate move to the canonical row unless it already has
        a limit for that category, in which case the canonical value wins.
        A missing title or total override is taken from the first duplicate
        that has one.

        Returns the number of duplicate rows removed.
        """
        q = BudgetPeriod.query.order_by(BudgetPeriod.id)
        if ledger_id is not None:
            q = q.filter(BudgetPeriod.ledger_id == ledger_id)

        with unit_of_work():
            groups = OrderedDict()
            for bp in q.with_for_update().all():
                groups.setdefault((bp.ledger_id, bp.period_key), []).append(bp)

            removed = 0
            for (lid, key), rows in groups.items():
                if len(rows) < 2:
                    continue
                canonical, duplicates = rows[0], rows[1:]
                taken = {limit.category_id for limit in canonical.limits}
                for dup in duplicates:
                    for limit in dup.limits.all():
                        if limit.category_id in taken:
                            db.session.delete(limit)
                        else:
                            limit.period_id = canonical.id
                            taken.add(limit.category_id)
                    if not canonical.title and dup.title:
                        canonical.title = dup.title
                    if canonical.total_budget is None and dup.total_budget is not None:
                        canonical.total_budget = dup.total_budget
                    db.session.flush()
                    db.session.delete(dup)
                    removed += 1
                logger.info(f"ledger {lid}: merged {len(duplicates)} duplicate period(s) for {key} into {canonical.id}")

        return removed
