"""
Tests for ReallocationService: moving budget between categories all-or-nothing.
"""
from decimal import Decimal

import pytest

from conftest import make_transaction
from models.budgets import BudgetLimit
from services.budget_service import BudgetService
from services.errors import CategoryNotFound, InvalidInput, ReallocateFailed
from services.period_service import resolve_period
from services.reallocation_service import ReallocationService


def _limits(ledger_id, key='2025-03'):
    bp = BudgetService.get_period(ledger_id, resolve_period(key))
    return {row.category_id: row.limit_amount for row in bp.limits} if bp else {}


@pytest.fixture
def budgeted(app, ledger, owner, groceries, dining):
    """Groceries: limit 100, spent 90.  Dining: limit 50, spent 0."""
    lid = ledger['id']
    BudgetService.set_limit(lid, '2025-03', groceries.id, 100)
    BudgetService.set_limit(lid, '2025-03', dining.id, 50)
    make_transaction(lid, owner, groceries, 90)
    return lid


class TestReallocate:
    def test_source_covers_increase(self, app, budgeted, groceries, dining):
        result = ReallocationService.reallocate(
            budgeted, '2025-03', groceries.id, 140,
            [{'category_id': dining.id, 'amount': 40}],
        )

        assert _limits(budgeted) == {groceries.id: Decimal('140.00'), dining.id: Decimal('10.00')}
        assert result['period'] == '2025-03'
        assert result['target'] == {'category_id': groceries.id, 'limit': Decimal('140.00')}
        assert result['sources'] == [{'category_id': dining.id, 'limit': Decimal('10.00')}]

    def test_insufficient_source_changes_nothing(self, app, budgeted, groceries, dining):
        with pytest.raises(ReallocateFailed) as exc:
            ReallocationService.reallocate(
                budgeted, '2025-03', groceries.id, 160,
                [{'category_id': dining.id, 'amount': 60}],
            )

        assert exc.value.code == 'REALLOCATE_FAILED'
        assert exc.value.http_status == 409
        assert len(exc.value.failures) == 1
        failure = exc.value.failures[0]
        assert failure['category_id'] == dining.id
        assert failure['reason'] == 'INSUFFICIENT'
        assert Decimal(failure['current']) == Decimal('50')
        assert Decimal(failure['spent']) == 0
        assert Decimal(failure['requested_reduction']) == Decimal('60')
        assert Decimal(failure['min_allowed']) == 0
        assert Decimal(failure['max_reduction']) == Decimal('50')
        assert _limits(budgeted) == {groceries.id: Decimal('100.00'), dining.id: Decimal('50.00')}

    def test_reduction_cannot_go_below_spend(self, app, budgeted, groceries, dining):
        """Groceries has 90 spent, so it can give up at most 10."""
        with pytest.raises(ReallocateFailed) as exc:
            ReallocationService.reallocate(
                budgeted, '2025-03', dining.id, 70,
                [{'category_id': groceries.id, 'amount': 20}],
            )
        failure = exc.value.failures[0]
        assert failure['reason'] == 'INSUFFICIENT'
        assert Decimal(failure['min_allowed']) == Decimal('90')
        assert Decimal(failure['max_reduction']) == Decimal('10')

    def test_reduction_down_to_spend_allowed(self, app, budgeted, groceries, dining):
        ReallocationService.reallocate(
            budgeted, '2025-03', dining.id, 60,
            [{'category_id': groceries.id, 'amount': 10}],
        )
        assert _limits(budgeted) == {groceries.id: Decimal('90.00'), dining.id: Decimal('60.00')}

    def test_one_bad_source_rolls_back_the_good_ones(self, app, budgeted, owner, groceries, dining, fun):
        with pytest.raises(ReallocateFailed) as exc:
            ReallocationService.reallocate(
                budgeted, '2025-03', fun.id, 50,
                [
                    {'category_id': dining.id, 'amount': 20},   # fine on its own
                    {'category_id': groceries.id, 'amount': 30},  # below spend
                ],
            )

        assert [f['category_id'] for f in exc.value.failures] == [groceries.id]
        assert _limits(budgeted) == {groceries.id: Decimal('100.00'), dining.id: Decimal('50.00')}
        assert BudgetLimit.query.count() == 2

    def test_all_failures_reported_together(self, app, budgeted, groceries, dining, fun):
        with pytest.raises(ReallocateFailed) as exc:
            ReallocationService.reallocate(
                budgeted, '2025-03', dining.id, 80,
                [
                    {'category_id': fun.id, 'amount': 10},        # no limit this month
                    {'category_id': groceries.id, 'amount': -5},  # not positive
                    {'category_id': dining.id, 'amount': 5},      # source is the target
                    {'category_id': 'x', 'amount': 5},
                ],
            )

        reasons = [(f['category_id'], f['reason']) for f in exc.value.failures]
        assert reasons == [
            (fun.id, 'NO_BUDGET'),
            (groceries.id, 'INVALID_INPUT'),
            (dining.id, 'INVALID_INPUT'),
            (None, 'INVALID_INPUT'),
        ]

    def test_budget_neutral_when_target_starts_at_zero(self, app, budgeted, groceries, dining, fun):
        before = sum(_limits(budgeted).values())

        ReallocationService.reallocate(
            budgeted, '2025-03', fun.id, 15,
            [{'category_id': dining.id, 'amount': 5}, {'categoryId': groceries.id, 'amount': 10}],
        )

        after = _limits(budgeted)
        assert after[fun.id] == Decimal('15.00')
        assert sum(after.values()) == before

    def test_unknown_target_category(self, app, budgeted, dining):
        with pytest.raises(CategoryNotFound):
            ReallocationService.reallocate(
                budgeted, '2025-03', 9999, 10, [{'category_id': dining.id, 'amount': 10}],
            )
        assert _limits(budgeted)[dining.id] == Decimal('50.00')

    @pytest.mark.parametrize('sources', [[], None, ['not-a-dict']])
    def test_malformed_source_list(self, app, budgeted, groceries, sources):
        with pytest.raises(InvalidInput):
            ReallocationService.reallocate(budgeted, '2025-03', groceries.id, 100, sources)

    def test_negative_target_amount(self, app, budgeted, groceries, dining):
        with pytest.raises(InvalidInput):
            ReallocationService.reallocate(
                budgeted, '2025-03', groceries.id, -1, [{'category_id': dining.id, 'amount': 1}],
            )

    def test_creates_period_for_empty_month(self, app, ledger, groceries, dining):
        """A brand new month has no limits, so every source is NO_BUDGET and nothing persists."""
        with pytest.raises(ReallocateFailed):
            ReallocationService.reallocate(
                ledger['id'], '2025-05', groceries.id, 10, [{'category_id': dining.id, 'amount': 10}],
            )
        assert BudgetService.get_period(ledger['id'], resolve_period('2025-05')) is None


class TestLocking:
    def test_ledger_row_locked_before_period_lookup(self, app, budgeted, groceries, dining, monkeypatch):
        calls = []
        original = BudgetService.require_ledger

        def recording(ledger_id, lock=False):
            calls.append((ledger_id, lock))
            return original(ledger_id, lock=lock)

        monkeypatch.setattr(BudgetService, 'require_ledger', recording)
        ReallocationService.reallocate(
            budgeted, '2025-03', groceries.id, 110,
            [{'category_id': dining.id, 'amount': 10}],
        )

        assert calls == [(budgeted, True)]
