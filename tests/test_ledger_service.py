"""
Tests for LedgerService and the ledger-scoped query helpers.

The isolation tests are the most security-critical in the suite: they verify
that ledger_query() and ledger_get() never leak one ledger's rows into
another, and that access checks follow membership.
"""
from datetime import date

import pytest

from conftest import make_category, make_transaction
from extensions import db
from models.budgets import BudgetLimit, BudgetPeriod
from models.categories import Category
from models.ledgers import Ledger, LedgerMember
from models.transactions import Transaction
from services.budget_service import BudgetService
from services.errors import Forbidden, InvalidInput, LedgerNotFound
from services.ledger_service import LedgerService
from services.membership_service import MembershipService
from utils.db_helpers import ledger_get, ledger_query


@pytest.fixture
def other_ledger(app, outsider):
    return LedgerService.create_ledger('Dave only', outsider.id)


class TestCreateAndRead:
    def test_create_makes_owner_membership(self, app, owner):
        result = LedgerService.create_ledger('  Holiday fund  ', owner.id)

        assert result['name'] == 'Holiday fund'
        assert result['owner_id'] == owner.id
        assert result['owner_name'] == 'alice'
        members = LedgerMember.query.filter_by(ledger_id=result['id']).all()
        assert [(m.user_id, m.role.value) for m in members] == [(owner.id, 'owner')]

    @pytest.mark.parametrize('name', ['', '   ', None, 'x' * 101])
    def test_bad_name(self, app, owner, name):
        with pytest.raises(InvalidInput):
            LedgerService.create_ledger(name, owner.id)
        assert Ledger.query.count() == 0

    def test_list_for_user(self, app, shared_ledger, other_ledger, owner, viewer, outsider):
        assert [l.id for l in LedgerService.list_for_user(viewer.id)] == [shared_ledger['id']]
        assert [l.id for l in LedgerService.list_for_user(outsider.id)] == [other_ledger['id']]

    def test_detail(self, app, shared_ledger, viewer, outsider):
        detail = LedgerService.get_detail(shared_ledger['id'], viewer.id)
        assert detail['member_count'] == 3
        assert detail['accessible'] is True
        assert detail['my_role'] == 'viewer'

        stranger_view = LedgerService.get_detail(shared_ledger['id'], outsider.id)
        assert stranger_view['accessible'] is False
        assert stranger_view['my_role'] is None

    def test_missing_ledger(self, app):
        with pytest.raises(LedgerNotFound):
            LedgerService.get_ledger(9999)


class TestRenameAndDelete:
    def test_editor_can_rename(self, app, shared_ledger, editor):
        assert LedgerService.rename(shared_ledger['id'], editor.id, 'Family')['name'] == 'Family'

    def test_viewer_cannot_rename(self, app, shared_ledger, viewer):
        with pytest.raises(Forbidden):
            LedgerService.rename(shared_ledger['id'], viewer.id, 'Mine now')
        assert db.session.get(Ledger, shared_ledger['id']).name == 'Household'

    def test_only_owner_deletes(self, app, shared_ledger, editor):
        with pytest.raises(Forbidden):
            LedgerService.delete(shared_ledger['id'], editor.id)
        assert db.session.get(Ledger, shared_ledger['id']) is not None

    def test_delete_cascades(self, app, shared_ledger, other_ledger, owner, outsider, groceries):
        lid = shared_ledger['id']
        BudgetService.set_limit(lid, '2025-03', groceries.id, 100)
        BudgetService.set_limit(other_ledger['id'], '2025-03', groceries.id, 100)
        make_transaction(lid, owner, groceries, 10)
        make_transaction(other_ledger['id'], outsider, groceries, 10)

        assert LedgerService.delete(lid, owner.id) is True

        assert db.session.get(Ledger, lid) is None
        for model in (LedgerMember, BudgetPeriod, Transaction):
            assert ledger_query(model, lid).count() == 0
            assert ledger_query(model, other_ledger['id']).count() == 1
        assert BudgetLimit.query.count() == 1


class TestVisibleCategories:
    def test_union_of_member_categories(self, app, shared_ledger, owner, editor, outsider, groceries, salary):
        bobs = make_category(editor, 'Hobbies')
        make_category(outsider, 'Not shared')

        names = [c.name for c in LedgerService.visible_categories(shared_ledger['id'])]
        assert names == ['Salary', 'Groceries', 'Hobbies']

        expense_ids = [c.id for c in LedgerService.visible_categories(shared_ledger['id'], 'expense')]
        assert expense_ids == [groceries.id, bobs.id]


class TestLedgerQueryIsolation:
    def test_query_returns_own_ledger_rows_only(self, app, ledger, other_ledger, owner, outsider, groceries):
        mine = make_transaction(ledger['id'], owner, groceries, 1, date(2025, 3, 1))
        make_transaction(other_ledger['id'], outsider, groceries, 2, date(2025, 3, 1))

        results = ledger_query(Transaction, ledger['id']).all()
        assert [t.id for t in results] == [mine.id], \
            "ledger_query must not return another ledger's rows"

    def test_get_refuses_other_ledgers_record(self, app, ledger, other_ledger, outsider, groceries):
        theirs = make_transaction(other_ledger['id'], outsider, groceries, 2)

        assert ledger_get(Transaction, ledger['id'], theirs.id) is None
        assert ledger_get(Transaction, other_ledger['id'], theirs.id).id == theirs.id

    def test_model_without_ledger_column_rejected(self, app):
        with pytest.raises(AttributeError):
            ledger_query(Category, 1)

    def test_access_follows_membership(self, app, shared_ledger, viewer, outsider):
        lid = shared_ledger['id']
        assert LedgerService.can_access(lid, viewer.id) is True
        assert LedgerService.can_access(lid, outsider.id) is False

        MembershipService.leave(lid, viewer.id)
        assert LedgerService.can_access(lid, viewer.id) is False
