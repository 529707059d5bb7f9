"""
Ledger Service
Creation, listing and deletion of ledgers.  Membership changes live in
MembershipService; this module only creates the founding owner row.
"""
from sqlalchemy import or_

from extensions import db
from models.budgets import BudgetLimit, BudgetPeriod
from models.categories import Category
from models.ledgers import Ledger, LedgerMember, MemberRole
from models.transactions import Transaction
from services.errors import Forbidden, InvalidInput, LedgerNotFound
from services.membership_service import MembershipService
from utils.db_helpers import ledger_query, unit_of_work


def _clean_name(name):
    name = (name or '').strip()
    if not name:
        raise InvalidInput('Ledger name is required', details={'field': 'name'})
    if len(name) > 100:
        raise InvalidInput('Ledger name must be at most 100 characters', details={'field': 'name'})
    return name


class LedgerService:

    @staticmethod
    def create_ledger(name, owner_id):
        """Create a ledger and its owner membership in one transaction."""
        name = _clean_name(name)
        with unit_of_work():
            ledger = Ledger(name=name, owner_id=owner_id)
            db.session.add(ledger)
            db.session.flush()
            db.session.add(LedgerMember(ledger_id=ledger.id, user_id=owner_id, role=MemberRole.OWNER))
            db.session.flush()
            result = ledger.to_dict()
        return result

    @staticmethod
    def get_ledger(ledger_id):
        ledger = db.session.get(Ledger, ledger_id)
        if ledger is None:
            raise LedgerNotFound(details={'ledger_id': ledger_id})
        return ledger

    @staticmethod
    def can_access(ledger_id, user_id):
        """True if *user_id* owns or is a member of the ledger."""
        return (
            db.session.query(Ledger.id)
            .outerjoin(LedgerMember, (LedgerMember.ledger_id == Ledger.id) & (LedgerMember.user_id == user_id))
            .filter(Ledger.id == ledger_id)
            .filter(or_(Ledger.owner_id == user_id, LedgerMember.id.isnot(None)))
            .first()
        ) is not None

    @staticmethod
    def list_for_user(user_id):
        """Ledgers the user owns or belongs to, newest first."""
        return (
            Ledger.query
            .outerjoin(LedgerMember, LedgerMember.ledger_id == Ledger.id)
            .filter(or_(Ledger.owner_id == user_id, LedgerMember.user_id == user_id))
            .distinct()
            .order_by(Ledger.created_at.desc(), Ledger.id.desc())
            .all()
        )

    @staticmethod
    def get_detail(ledger_id, user_id):
        """Ledger dict with its members and whether *user_id* may see it."""
        ledger = LedgerService.get_ledger(ledger_id)
        members = MembershipService.list_members(ledger_id)
        detail = ledger.to_dict()
        detail.update({
            'member_count': len(members),
            'members': [m.to_dict() for m in members],
            'accessible': LedgerService.can_access(ledger_id, user_id),
        })
        role = MembershipService.get_role(ledger_id, user_id)
        detail['my_role'] = role.value if role else None
        return detail

    @staticmethod
    def rename(ledger_id, user_id, name):
        """Rename a ledger; owners and editors only."""
        name = _clean_name(name)
        with unit_of_work():
            ledger = LedgerService.get_ledger(ledger_id)
            role = MembershipService.get_role(ledger_id, user_id)
            if role is None or not role.can_edit:
                raise Forbidden('Only the owner or an editor can rename this ledger')
            ledger.name = name
            result = ledger.to_dict()
        return result

    @staticmethod
    def delete(ledger_id, user_id):
        """Delete a ledger with its members, budget periods, limits and transactions; owner only."""
        with unit_of_work():
            ledger = LedgerService.get_ledger(ledger_id)
            if ledger.owner_id != user_id:
                raise Forbidden('Only the owner can delete this ledger')
            period_ids = [pid for (pid,) in db.session.query(BudgetPeriod.id).filter(BudgetPeriod.ledger_id == ledger_id)]
            if period_ids:
                BudgetLimit.query.filter(BudgetLimit.period_id.in_(period_ids)).delete(synchronize_session=False)
            ledger_query(BudgetPeriod, ledger_id).delete(synchronize_session=False)
            ledger_query(Transaction, ledger_id).delete(synchronize_session=False)
            ledger_query(LedgerMember, ledger_id).delete(synchronize_session=False)
            db.session.delete(ledger)
        return True

    @staticmethod
    def visible_categories(ledger_id, category_type=None):
        """Union of the categories owned by the ledger's members."""
        member_ids = db.select(LedgerMember.user_id).where(LedgerMember.ledger_id == ledger_id)
        q = Category.query.filter(Category.user_id.in_(member_ids))
        if category_type:
            q = q.filter(Category.category_type == category_type)
        return q.order_by(Category.category_type.desc(), Category.name.asc()).all()
