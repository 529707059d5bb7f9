"""
Tests for MembershipService: a ledger with members always has exactly one owner.
"""
import pytest

from extensions import db
from models.ledgers import Ledger, LedgerMember, MemberRole
from services.errors import (
    AlreadyMember, InvalidInput, LedgerNotFound, MemberNotFound, NotOwner,
    OwnerMustTransfer, SoleOwner, TargetNotFound, UserNotFound,
)
from services.membership_service import MembershipService


def _member(ledger_id, user):
    return MembershipService.get_membership(ledger_id, user.id)


def _owners(ledger_id):
    return LedgerMember.query.filter_by(ledger_id=ledger_id, role=MemberRole.OWNER).all()


def _assert_single_owner(ledger_id, user):
    owners = _owners(ledger_id)
    assert [m.user_id for m in owners] == [user.id]
    assert db.session.get(Ledger, ledger_id).owner_id == user.id


# ---------------------------------------------------------------------------
# Role enum
# ---------------------------------------------------------------------------

class TestMemberRole:
    @pytest.mark.parametrize('raw, expected', [
        ('owner', MemberRole.OWNER), (' Editor ', MemberRole.EDITOR), (MemberRole.VIEWER, MemberRole.VIEWER),
    ])
    def test_parse(self, raw, expected):
        assert MemberRole.parse(raw) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            MemberRole.parse('admin')

    def test_capabilities(self):
        assert [r.can_edit for r in MemberRole] == [True, True, False]
        assert [r.can_manage_members for r in MemberRole] == [True, False, False]


# ---------------------------------------------------------------------------
# add_member
# ---------------------------------------------------------------------------

class TestAddMember:
    def test_creator_is_sole_owner(self, app, ledger, owner):
        _assert_single_owner(ledger['id'], owner)

    def test_default_role_is_viewer(self, app, ledger, editor):
        result = MembershipService.add_member(ledger['id'], editor.id)
        assert result['role'] == 'viewer'
        assert result['user_id'] == editor.id

    def test_adding_as_owner_demotes_current_owner(self, app, ledger, owner, editor):
        MembershipService.add_member(ledger['id'], editor.id, 'owner')

        _assert_single_owner(ledger['id'], editor)
        assert _member(ledger['id'], owner).role is MemberRole.VIEWER

    def test_already_member(self, app, shared_ledger, editor):
        with pytest.raises(AlreadyMember):
            MembershipService.add_member(shared_ledger['id'], editor.id, 'viewer')

    def test_unknown_user(self, app, ledger):
        with pytest.raises(UserNotFound):
            MembershipService.add_member(ledger['id'], 9999)

    def test_unknown_ledger(self, app, editor):
        with pytest.raises(LedgerNotFound):
            MembershipService.add_member(9999, editor.id)

    def test_unknown_role(self, app, ledger, editor):
        with pytest.raises(InvalidInput):
            MembershipService.add_member(ledger['id'], editor.id, 'admin')
        assert _member(ledger['id'], editor) is None


# ---------------------------------------------------------------------------
# change_role
# ---------------------------------------------------------------------------

class TestChangeRole:
    def test_sole_owner_cannot_be_demoted(self, app, ledger, owner):
        member_id = _member(ledger['id'], owner).id

        with pytest.raises(SoleOwner) as exc:
            MembershipService.change_role(ledger['id'], member_id, 'viewer')

        assert exc.value.http_status == 409
        _assert_single_owner(ledger['id'], owner)

    def test_promotion_swaps_owner(self, app, shared_ledger, owner, editor):
        lid = shared_ledger['id']
        MembershipService.change_role(lid, _member(lid, editor).id, 'owner')

        _assert_single_owner(lid, editor)
        assert _member(lid, owner).role is MemberRole.VIEWER

    def test_editor_viewer_swap(self, app, shared_ledger, editor, viewer):
        lid = shared_ledger['id']
        MembershipService.change_role(lid, _member(lid, editor).id, 'viewer')
        MembershipService.change_role(lid, _member(lid, viewer).id, 'editor')

        assert _member(lid, editor).role is MemberRole.VIEWER
        assert _member(lid, viewer).role is MemberRole.EDITOR

    def test_legacy_second_owner_allows_demotion(self, app, shared_ledger, owner, editor):
        """Data written before the single-owner rule may hold two owners."""
        lid = shared_ledger['id']
        _member(lid, editor).role = MemberRole.OWNER
        db.session.commit()

        MembershipService.change_role(lid, _member(lid, owner).id, 'editor')

        _assert_single_owner(lid, editor)

    def test_member_of_other_ledger_not_found(self, app, ledger, shared_ledger, outsider):
        from services.ledger_service import LedgerService
        other = LedgerService.create_ledger('Other', outsider.id)
        foreign_member_id = _member(other['id'], outsider).id

        with pytest.raises(MemberNotFound):
            MembershipService.change_role(ledger['id'], foreign_member_id, 'editor')


# ---------------------------------------------------------------------------
# remove / leave / transfer
# ---------------------------------------------------------------------------

class TestRemoveAndLeave:
    def test_owner_cannot_be_removed(self, app, shared_ledger, owner):
        lid = shared_ledger['id']
        with pytest.raises(OwnerMustTransfer):
            MembershipService.remove_member(lid, _member(lid, owner).id)
        _assert_single_owner(lid, owner)

    def test_remove_viewer(self, app, shared_ledger, viewer):
        lid = shared_ledger['id']
        assert MembershipService.remove_member(lid, _member(lid, viewer).id) is True
        assert _member(lid, viewer) is None

    def test_owner_cannot_leave(self, app, shared_ledger, owner):
        with pytest.raises(OwnerMustTransfer):
            MembershipService.leave(shared_ledger['id'], owner.id)

    def test_editor_leaves(self, app, shared_ledger, editor):
        MembershipService.leave(shared_ledger['id'], editor.id)
        assert MembershipService.get_role(shared_ledger['id'], editor.id) is None

    def test_non_member_cannot_leave(self, app, shared_ledger, outsider):
        with pytest.raises(MemberNotFound):
            MembershipService.leave(shared_ledger['id'], outsider.id)


class TestTransferOwnership:
    def test_transfer_then_caller_is_gone(self, app, shared_ledger, owner, editor):
        lid = shared_ledger['id']
        target_id = _member(lid, editor).id

        result = MembershipService.transfer_ownership(lid, owner.id, target_id)

        assert result == {'ledger_id': lid, 'owner_id': editor.id, 'owner_member_id': target_id}
        _assert_single_owner(lid, editor)
        assert _member(lid, owner) is None

    def test_non_owner_cannot_transfer(self, app, shared_ledger, owner, editor, viewer):
        lid = shared_ledger['id']
        with pytest.raises(NotOwner) as exc:
            MembershipService.transfer_ownership(lid, editor.id, _member(lid, viewer).id)
        assert exc.value.http_status == 403
        _assert_single_owner(lid, owner)

    def test_target_must_be_member(self, app, shared_ledger, owner):
        with pytest.raises(TargetNotFound):
            MembershipService.transfer_ownership(shared_ledger['id'], owner.id, 9999)
        _assert_single_owner(shared_ledger['id'], owner)

    def test_cannot_transfer_to_self(self, app, shared_ledger, owner):
        lid = shared_ledger['id']
        with pytest.raises(InvalidInput):
            MembershipService.transfer_ownership(lid, owner.id, _member(lid, owner).id)
        _assert_single_owner(lid, owner)


# ---------------------------------------------------------------------------
# Projections and checks
# ---------------------------------------------------------------------------

class TestProjections:
    def test_list_members_sorted_by_username(self, app, shared_ledger):
        names = [m.user.username for m in MembershipService.list_members(shared_ledger['id'])]
        assert names == ['alice', 'bob', 'carol']

    def test_list_members_by_role(self, app, shared_ledger, editor):
        members = MembershipService.list_members(shared_ledger['id'], 'editor')
        assert [m.user_id for m in members] == [editor.id]

    def test_get_role(self, app, shared_ledger, owner, viewer, outsider):
        lid = shared_ledger['id']
        assert MembershipService.get_role(lid, owner.id) is MemberRole.OWNER
        assert MembershipService.get_role(lid, viewer.id) is MemberRole.VIEWER
        assert MembershipService.get_role(lid, outsider.id) is None

    def test_no_violations_after_transitions(self, app, shared_ledger, owner, editor, viewer):
        lid = shared_ledger['id']
        MembershipService.change_role(lid, _member(lid, viewer).id, 'owner')
        MembershipService.change_role(lid, _member(lid, editor).id, 'owner')
        MembershipService.transfer_ownership(lid, editor.id, _member(lid, owner).id)

        assert MembershipService.find_owner_violations() == []
        _assert_single_owner(lid, owner)

    def test_violations_reported(self, app, shared_ledger, ledger, owner, editor):
        lid = shared_ledger['id']
        _member(lid, editor).role = MemberRole.OWNER
        db.session.commit()

        problems = MembershipService.find_owner_violations()
        assert problems == [{'ledger_id': lid, 'problem': 'owner_count', 'owners': [owner.id, editor.id]}]

    def test_stale_owner_pointer_reported(self, app, shared_ledger, editor):
        lid = shared_ledger['id']
        db.session.get(Ledger, lid).owner_id = editor.id
        db.session.commit()

        problems = MembershipService.find_owner_violations()
        assert [p['problem'] for p in problems] == ['owner_pointer']
