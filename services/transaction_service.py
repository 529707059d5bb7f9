"""
Transaction Service
===================
The write path for ledger transactions.  Every create and every edit runs
the SpendGuard inside the same unit of work as the insert/update, with the
category's limit row locked, so two postings against one budget cannot both
squeeze under the same remaining amount.

Access rules
------------
  list / get      - any member of the transaction's ledger
  create          - owner or editor of the ledger
  update / delete - the author only (and, when moving ledgers, an owner or
                    editor of the destination ledger)

A budget rejection raises ``BudgetExceeded`` carrying limit / spent /
remaining; the caller can resubmit with ``allow_exceed=True`` once the user
has confirmed.
"""
import logging
from datetime import date, datetime

from extensions import db
from models.categories import Category
from models.ledgers import LedgerMember
from models.transactions import Transaction, TRANSACTION_TYPES
from services.errors import (
    BudgetExceeded, CategoryNotFound, Forbidden, InvalidInput, TransactionNotFound,
)
from services.membership_service import MembershipService
from services import period_service
from services.spend_guard_service import SpendGuard
from utils.db_helpers import to_decimal, unit_of_work

logger = logging.getLogger(__name__)

# Request field name → column name
FIELD_ALIASES = {
    'ledger_id': 'ledger_id',
    'category_id': 'category_id',
    'amount': 'amount',
    'type': 'transaction_type',
    'transaction_type': 'transaction_type',
    'date': 'transaction_date',
    'transaction_date': 'transaction_date',
    'note': 'note',
}


def parse_date(value, field='date'):
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise InvalidInput(f'{field} must be a date in YYYY-MM-DD format', details={'field': field}) from None


def _clean_type(value):
    value = (value or '').strip().lower() if isinstance(value, str) else value
    if value not in TRANSACTION_TYPES:
        raise InvalidInput("type must be either 'income' or 'expense'", details={'field': 'type'})
    return value


def _clean_amount(value):
    amount = to_decimal(value)
    if amount <= 0:
        raise InvalidInput('amount must be a positive number', details={'field': 'amount'})
    return amount


def _clean_note(value):
    note = (value or '').strip()
    if len(note) > 255:
        raise InvalidInput('note must be at most 255 characters', details={'field': 'note'})
    return note


def _parse_id(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f'{field} must be an integer', details={'field': field}) from None


class TransactionService:

    @staticmethod
    def _require_writer(ledger_id, user_id):
        role = MembershipService.get_role(ledger_id, user_id)
        if role is None:
            raise Forbidden('User is not a member of this ledger')
        if not role.can_edit:
            raise Forbidden('Viewers cannot record transactions')
        return role

    @staticmethod
    def _require_category(category_id):
        if db.session.get(Category, category_id) is None:
            raise CategoryNotFound(details={'category_id': category_id})

    @staticmethod
    def _raise_if_rejected(decision):
        if not decision.accepted:
            raise BudgetExceeded(decision.limit, decision.spent, decision.remaining)

    @staticmethod
    def normalize_changes(changes):
        """Map request fields onto columns and validate each supplied value."""
        cleaned = {}
        for key, value in (changes or {}).items():
            column = FIELD_ALIASES.get(key)
            if column is None or value is None:
                continue
            if column in ('ledger_id', 'category_id'):
                cleaned[column] = _parse_id(value, key)
            elif column == 'amount':
                cleaned[column] = _clean_amount(value)
            elif column == 'transaction_type':
                cleaned[column] = _clean_type(value)
            elif column == 'transaction_date':
                cleaned[column] = parse_date(value, field=key)
            elif column == 'note':
                cleaned[column] = _clean_note(value)
        return cleaned

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def create(ledger_id, user_id, category_id, amount, transaction_type,
               transaction_date=None, note='', allow_exceed=False):
        """Record a transaction after the budget check. Returns it as a dict."""
        transaction_type = _clean_type(transaction_type)
        amount = _clean_amount(amount)
        transaction_date = (parse_date(transaction_date) if transaction_date
                            else period_service.default_resolver.today())
        note = _clean_note(note)

        with unit_of_work():
            TransactionService._require_writer(ledger_id, user_id)
            TransactionService._require_category(category_id)
            decision = SpendGuard.check(
                ledger_id, category_id, amount, transaction_type, transaction_date,
                allow_exceed=allow_exceed, lock=True,
            )
            TransactionService._raise_if_rejected(decision)

            txn = Transaction(
                ledger_id=ledger_id,
                category_id=category_id,
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type,
                transaction_date=transaction_date,
                note=note,
            )
            db.session.add(txn)
            db.session.flush()
            result = txn.to_dict()

        if allow_exceed and transaction_type == 'expense':
            logger.info(f"ledger {ledger_id}: transaction {result['id']} recorded with budget override by user {user_id}")
        return result

    @staticmethod
    def update(txn_id, user_id, changes, allow_exceed=False):
        """Apply *changes* to the caller's own transaction after re-checking the budget."""
        cleaned = TransactionService.normalize_changes(changes)
        if not cleaned:
            raise InvalidInput('No fields to update.')

        with unit_of_work():
            txn = (
                Transaction.query
                .filter(Transaction.id == txn_id, Transaction.user_id == user_id)
                .with_for_update()
                .first()
            )
            if txn is None:
                raise TransactionNotFound(details={'transaction_id': txn_id})
            if 'ledger_id' in cleaned and cleaned['ledger_id'] != txn.ledger_id:
                TransactionService._require_writer(cleaned['ledger_id'], user_id)
            if 'category_id' in cleaned:
                TransactionService._require_category(cleaned['category_id'])

            decision = SpendGuard.check_update(txn, cleaned, allow_exceed=allow_exceed, lock=True)
            TransactionService._raise_if_rejected(decision)

            for column, value in cleaned.items():
                setattr(txn, column, value)
            db.session.flush()
            result = txn.to_dict()
        return result

    @staticmethod
    def delete(txn_id, user_id):
        with unit_of_work():
            txn = Transaction.query.filter_by(id=txn_id, user_id=user_id).first()
            if txn is None:
                raise TransactionNotFound(details={'transaction_id': txn_id})
            db.session.delete(txn)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _visible_query(user_id):
        member_ledgers = db.select(LedgerMember.ledger_id).where(LedgerMember.user_id == user_id)
        return Transaction.query.filter(Transaction.ledger_id.in_(member_ledgers))

    @staticmethod
    def get(txn_id, user_id):
        txn = TransactionService._visible_query(user_id).filter(Transaction.id == txn_id).first()
        if txn is None:
            raise TransactionNotFound(details={'transaction_id': txn_id})
        return txn

    @staticmethod
    def list_for_user(user_id, ledger_id=None, category_id=None, transaction_type=None,
                      min_amount=None, max_amount=None, start_date=None, end_date=None):
        """Transactions in every ledger the user belongs to, newest first.

        ``end_date`` is inclusive.
        """
        q = TransactionService._visible_query(user_id)
        if ledger_id is not None:
            q = q.filter(Transaction.ledger_id == ledger_id)
        if category_id is not None:
            q = q.filter(Transaction.category_id == category_id)
        if transaction_type:
            q = q.filter(Transaction.transaction_type == _clean_type(transaction_type))
        if min_amount is not None:
            q = q.filter(Transaction.amount >= to_decimal(min_amount, field='min_amount'))
        if max_amount is not None:
            q = q.filter(Transaction.amount <= to_decimal(max_amount, field='max_amount'))
        if start_date:
            q = q.filter(Transaction.transaction_date >= parse_date(start_date, field='start_date'))
        if end_date:
            q = q.filter(Transaction.transaction_date <= parse_date(end_date, field='end_date'))
        return q.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).all()
