"""
Permission helpers for ledger-level access control.

Every ledger route carries a ``ledger_id`` URL parameter.  The caller's
membership row in that ledger decides what they may do:

    action                                  roles
    ──────────────────────────────────────  ─────────────────────
    read ledger, members, budgets           owner, editor, viewer
    rename ledger, set/delete limits,       owner, editor
    reallocate, edit period meta
    add/remove members, change roles        owner
    delete ledger                           owner

Non-members get ``403 FORBIDDEN``; a missing ledger gets ``404 LEDGER_NOT_FOUND``.
Transfer and leave are checked inside MembershipService itself, because the
rules there depend on the locked member rows.
"""
from functools import wraps

from flask import g
from flask_login import current_user

from extensions import db
from models.ledgers import Ledger, MemberRole
from services.errors import Forbidden, LedgerNotFound
from services.membership_service import MembershipService

# Shortcuts for the decorator below
ANY_MEMBER = (MemberRole.OWNER, MemberRole.EDITOR, MemberRole.VIEWER)
EDITORS = (MemberRole.OWNER, MemberRole.EDITOR)
OWNER_ONLY = (MemberRole.OWNER,)


def current_role(ledger_id):
    """Return the logged-in user's MemberRole in *ledger_id*, or ``None``."""
    if not current_user.is_authenticated:
        return None
    return MembershipService.get_role(ledger_id, current_user.id)


def ledger_role_required(*roles):
    """Restrict a view that takes ``ledger_id`` to members holding one of *roles*.

    The resolved role is stored on ``g.ledger_role`` for the view to use.

    Usage::

        @ledgers_bp.route('/ledgers/<int:ledger_id>/members', methods=['POST'])
        @ledger_role_required(*OWNER_ONLY)
        def add_member(ledger_id):
            ...
    """
    allowed = set(roles or ANY_MEMBER)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            ledger_id = kwargs.get('ledger_id')
            if db.session.get(Ledger, ledger_id) is None:
                raise LedgerNotFound(details={'ledger_id': ledger_id})
            role = current_role(ledger_id)
            if role is None:
                raise Forbidden('You are not a member of this ledger')
            if role not in allowed:
                raise Forbidden(f'This action requires one of: {", ".join(sorted(r.value for r in allowed))}')
            g.ledger_role = role
            return view(*args, **kwargs)
        return wrapped
    return decorator
