"""
Shared pytest fixtures for the Ledger Budgets test suite.

All tests run against an in-memory SQLite database (TestingConfig).
A single app context is pushed for the whole session so that SQLAlchemy
objects remain attached throughout.  After each test, clean_db wipes all
rows so tests are fully independent.

"Today" is pinned to 2025-03-15 through the ``fixed_clock`` fixture; tests
that create transactions without a date rely on it.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest
from flask import g

from app import create_app
from extensions import db as _db


# ---------------------------------------------------------------------------
# Application / database lifecycle
# ---------------------------------------------------------------------------

@pytest.fixture(scope='session')
def app():
    """Create a test Flask application with an in-memory SQLite database."""
    application = create_app('testing')
    ctx = application.app_context()
    ctx.push()
    _db.create_all()
    yield application
    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture(autouse=True)
def clean_db(app):
    """Wipe every table after each test so tests never share state."""
    yield
    _db.session.rollback()
    for table in reversed(_db.metadata.sorted_tables):
        _db.session.execute(table.delete())
    _db.session.commit()
    _db.session.expunge_all()


@pytest.fixture(autouse=True)
def fixed_clock(monkeypatch):
    """Pin the default period resolver to 2025-03-15 12:00 local time."""
    from services import period_service
    resolver = period_service.PeriodResolver(clock=lambda: datetime(2025, 3, 15, 12, 0))
    monkeypatch.setattr(period_service, 'default_resolver', resolver)
    return resolver


# ---------------------------------------------------------------------------
# Common model helpers
# ---------------------------------------------------------------------------

def make_user(username, email, password='TestPass1!'):
    from models.users import User
    u = User(username=username, email=email)
    u.set_password(password)
    _db.session.add(u)
    _db.session.commit()
    return u


def make_category(user, name, category_type='expense'):
    from models.categories import Category
    c = Category(user_id=user.id, name=name, category_type=category_type)
    _db.session.add(c)
    _db.session.commit()
    return c


def make_transaction(ledger_id, user, category, amount, txn_date=date(2025, 3, 10),
                     transaction_type='expense'):
    """Insert a transaction directly, bypassing the budget check."""
    from models.transactions import Transaction
    t = Transaction(
        ledger_id=ledger_id,
        category_id=category.id,
        user_id=user.id,
        amount=Decimal(str(amount)),
        transaction_type=transaction_type,
        transaction_date=txn_date,
    )
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture
def owner(app):
    return make_user('alice', 'alice@example.com')


@pytest.fixture
def editor(app):
    return make_user('bob', 'bob@example.com')


@pytest.fixture
def viewer(app):
    return make_user('carol', 'carol@example.com')


@pytest.fixture
def outsider(app):
    return make_user('dave', 'dave@example.com')


@pytest.fixture
def ledger(app, owner):
    """A ledger owned by alice with no other members."""
    from services.ledger_service import LedgerService
    return LedgerService.create_ledger('Household', owner.id)


@pytest.fixture
def shared_ledger(app, ledger, editor, viewer):
    """The household ledger with bob as editor and carol as viewer."""
    from services.membership_service import MembershipService
    MembershipService.add_member(ledger['id'], editor.id, 'editor')
    MembershipService.add_member(ledger['id'], viewer.id, 'viewer')
    return ledger


@pytest.fixture
def groceries(app, owner):
    return make_category(owner, 'Groceries')


@pytest.fixture
def dining(app, owner):
    return make_category(owner, 'Dining')


@pytest.fixture
def fun(app, owner):
    return make_category(owner, 'Fun')


@pytest.fixture
def salary(app, owner):
    return make_category(owner, 'Salary', 'income')


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def client(app):
    # The session-wide app context keeps per-request caches on g
    for key in ('_login_user', 'csrf_token', 'csrf_valid'):
        g.pop(key, None)
    return app.test_client()


def login_as(client, user):
    """Log *user* in on the test client's session."""
    # The session-wide app context keeps Flask-Login's cached user on g
    g.pop('_login_user', None)
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
