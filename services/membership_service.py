"""
Membership Service
==================
Role changes for ledger members under one rule: a ledger with members has
exactly one owner, and ``Ledger.owner_id`` points at that owner's user.

Transitions
-----------
  add_member(role=owner)     - existing owner(s) are demoted to viewer first
  change_role(→ owner)       - swap: the current owner becomes a viewer
  change_role(owner → other) - only if another owner exists (legacy data), else SOLE_OWNER
  remove_member(owner)       - refused; ownership must be transferred first
  transfer_ownership         - caller must be the owner; target becomes owner and
                               the caller's own membership is removed
  leave                      - any non-owner may remove themself

Locking order
-------------
Every transition locks the ledger row first and then the ledger's member
rows (ordered by id) with SELECT ... FOR UPDATE, and reads the current
owner from those locked rows.  Two concurrent promotions therefore queue
behind each other instead of both seeing "one owner" and producing two.
"""
from flask import current_app

from extensions import db
from models.ledgers import Ledger, LedgerMember, MemberRole
from models.users import User
from services.errors import (
    AlreadyMember, InvalidInput, LedgerNotFound, MemberNotFound, NotOwner,
    OwnerMustTransfer, SoleOwner, TargetNotFound, UserNotFound,
)
from utils.db_helpers import ledger_query, unit_of_work


def _parse_role(role):
    try:
        return MemberRole.parse(role)
    except ValueError:
        raise InvalidInput("role must be one of 'owner', 'editor', 'viewer'",
                           details={'field': 'role'}) from None


class MembershipService:

    # ------------------------------------------------------------------
    # Locked reads
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_ledger(ledger_id):
        ledger = Ledger.query.filter(Ledger.id == ledger_id).with_for_update().first()
        if ledger is None:
            raise LedgerNotFound(details={'ledger_id': ledger_id})
        return ledger

    @staticmethod
    def _lock_members(ledger_id):
        return (
            ledger_query(LedgerMember, ledger_id)
            .order_by(LedgerMember.id)
            .with_for_update()
            .all()
        )

    @staticmethod
    def _make_owner(ledger, members, target):
        """Demote every other owner to viewer, promote *target*, move the owner pointer."""
        for member in members:
            if member.id != target.id and member.role is MemberRole.OWNER:
                member.role = MemberRole.VIEWER
        target.role = MemberRole.OWNER
        ledger.owner_id = target.user_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def add_member(ledger_id, user_id, role=MemberRole.VIEWER):
        """Add *user_id* to the ledger with *role*. Returns the new member as a dict."""
        role = _parse_role(role)
        with unit_of_work():
            ledger = MembershipService._lock_ledger(ledger_id)
            if db.session.get(User, user_id) is None:
                raise UserNotFound(details={'user_id': user_id})
            members = MembershipService._lock_members(ledger_id)
            if any(m.user_id == user_id for m in members):
                raise AlreadyMember(details={'user_id': user_id})

            member = LedgerMember(ledger_id=ledger_id, user_id=user_id, role=MemberRole.VIEWER)
            db.session.add(member)
            db.session.flush()

            if role is MemberRole.OWNER:
                MembershipService._make_owner(ledger, members, member)
            elif role is MemberRole.EDITOR or role is MemberRole.VIEWER:
                member.role = role
            else:
                raise AssertionError(f'unhandled role {role}')
            db.session.flush()
            result = member.to_dict()

        current_app.logger.info(f'ledger {ledger_id}: added user {user_id} as {role.value}')
        return result

    @staticmethod
    def change_role(ledger_id, member_id, role):
        """Change one member's role while keeping exactly one owner."""
        role = _parse_role(role)
        with unit_of_work():
            ledger = MembershipService._lock_ledger(ledger_id)
            members = MembershipService._lock_members(ledger_id)
            member = next((m for m in members if m.id == member_id), None)
            if member is None:
                raise MemberNotFound(details={'member_id': member_id})

            if role is MemberRole.OWNER:
                MembershipService._make_owner(ledger, members, member)
            elif role is MemberRole.EDITOR or role is MemberRole.VIEWER:
                if member.role is MemberRole.OWNER:
                    other_owners = [m for m in members
                                    if m.id != member.id and m.role is MemberRole.OWNER]
                    if not other_owners:
                        raise SoleOwner(details={'member_id': member_id})
                    ledger.owner_id = other_owners[0].user_id
                member.role = role
            else:
                raise AssertionError(f'unhandled role {role}')
            db.session.flush()
            result = member.to_dict()

        current_app.logger.info(f'ledger {ledger_id}: member {member_id} is now {role.value}')
        return result

    @staticmethod
    def remove_member(ledger_id, member_id):
        """Remove a non-owner member. The owner can only go via transfer_ownership()."""
        with unit_of_work():
            MembershipService._lock_ledger(ledger_id)
            member = (
                ledger_query(LedgerMember, ledger_id)
                .filter(LedgerMember.id == member_id)
                .with_for_update()
                .first()
            )
            if member is None:
                raise MemberNotFound(details={'member_id': member_id})
            if member.role is MemberRole.OWNER:
                raise OwnerMustTransfer(details={'member_id': member_id})
            db.session.delete(member)

        current_app.logger.info(f'ledger {ledger_id}: removed member {member_id}')
        return True

    @staticmethod
    def transfer_ownership(ledger_id, caller_user_id, target_member_id):
        """
        Hand the ledger to another member and remove the caller's membership.

        Raises:
            NotOwner        - caller is not the current owner
            TargetNotFound  - target_member_id is not a member of this ledger
            InvalidInput    - caller tried to transfer to themself
        """
        with unit_of_work():
            ledger = MembershipService._lock_ledger(ledger_id)
            members = MembershipService._lock_members(ledger_id)

            caller = next((m for m in members if m.user_id == caller_user_id), None)
            if caller is None or caller.role is not MemberRole.OWNER:
                raise NotOwner(details={'user_id': caller_user_id})

            target = next((m for m in members if m.id == target_member_id), None)
            if target is None:
                raise TargetNotFound(details={'member_id': target_member_id})
            if target.id == caller.id:
                raise InvalidInput('Choose another member to receive ownership',
                                   details={'field': 'new_owner_member_id'})

            MembershipService._make_owner(ledger, members, target)
            db.session.flush()
            # Leave after transfer
            db.session.delete(caller)
            db.session.flush()
            result = {'ledger_id': ledger_id, 'owner_id': target.user_id, 'owner_member_id': target.id}

        current_app.logger.info(
            f'ledger {ledger_id}: ownership transferred from user {caller_user_id} to user {result["owner_id"]}'
        )
        return result

    @staticmethod
    def leave(ledger_id, user_id):
        """Remove the caller's own membership; the owner must transfer first."""
        with unit_of_work():
            MembershipService._lock_ledger(ledger_id)
            member = (
                ledger_query(LedgerMember, ledger_id)
                .filter(LedgerMember.user_id == user_id)
                .with_for_update()
                .first()
            )
            if member is None:
                raise MemberNotFound(details={'user_id': user_id})
            if member.role is MemberRole.OWNER:
                raise OwnerMustTransfer(details={'user_id': user_id})
            db.session.delete(member)

        current_app.logger.info(f'ledger {ledger_id}: user {user_id} left')
        return True

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    @staticmethod
    def list_members(ledger_id, role=None):
        q = ledger_query(LedgerMember, ledger_id).join(User, User.id == LedgerMember.user_id)
        if role is not None:
            q = q.filter(LedgerMember.role == _parse_role(role))
        return q.order_by(User.username.asc(), LedgerMember.id.asc()).all()

    @staticmethod
    def get_membership(ledger_id, user_id):
        return ledger_query(LedgerMember, ledger_id).filter(LedgerMember.user_id == user_id).first()

    @staticmethod
    def get_role(ledger_id, user_id):
        """Return the caller's MemberRole in the ledger, or None if not a member."""
        member = MembershipService.get_membership(ledger_id, user_id)
        return member.role if member else None

    @staticmethod
    def find_owner_violations():
        """List ledgers that break the single-owner rule or whose owner pointer is stale."""
        problems = []
        for ledger in Ledger.query.order_by(Ledger.id).all():
            owners = ledger_query(LedgerMember, ledger.id).filter(
                LedgerMember.role == MemberRole.OWNER
            ).order_by(LedgerMember.id).all()
            has_members = ledger_query(LedgerMember, ledger.id).count() > 0
            if has_members and len(owners) != 1:
                problems.append({'ledger_id': ledger.id, 'problem': 'owner_count',
                                 'owners': [m.user_id for m in owners]})
            elif owners and owners[0].user_id != ledger.owner_id:
                problems.append({'ledger_id': ledger.id, 'problem': 'owner_pointer',
                                 'owner_id': ledger.owner_id, 'owners': [owners[0].user_id]})
        return problems
