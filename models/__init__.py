# Models package - Import all models for Flask-SQLAlchemy

from models.budgets import BudgetLimit, BudgetPeriod
from models.categories import Category
from models.ledgers import Ledger, LedgerMember, MemberRole
from models.transactions import Transaction
from models.users import User

__all__ = [
    'BudgetLimit',
    'BudgetPeriod',
    'Category',
    'Ledger',
    'LedgerMember',
    'MemberRole',
    'Transaction',
    'User',
]
