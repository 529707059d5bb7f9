"""
Ledger Routes
Ledger CRUD and membership management.  Role rules live in
MembershipService; these views only parse the request and pick the service.
"""
from flask import jsonify, request
from flask_login import current_user
from . import ledgers_bp
from models.users import User
from services.errors import InvalidInput, UserNotFound
from services.ledger_service import LedgerService
from services.membership_service import MembershipService
from utils.permissions import ledger_role_required, ANY_MEMBER, EDITORS, OWNER_ONLY


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput('Request body must be a JSON object')
    return data


def _resolve_user_id(data):
    """Accept either ``user_id`` or ``email`` for the member being added."""
    if data.get('user_id') is not None:
        try:
            return int(data['user_id'])
        except (TypeError, ValueError):
            raise InvalidInput('user_id must be an integer', details={'field': 'user_id'}) from None
    email = (data.get('email') or '').strip().lower()
    if not email:
        raise InvalidInput('user_id or email is required', details={'field': 'user_id'})
    user = User.query.filter_by(email=email).first()
    if user is None:
        raise UserNotFound(details={'email': email})
    return user.id


# ── Ledgers ───────────────────────────────────────────────────────────────────

@ledgers_bp.route('/ledgers', methods=['GET'])
def list_ledgers():
    ledgers = LedgerService.list_for_user(current_user.id)
    return jsonify([ledger.to_dict() for ledger in ledgers])


@ledgers_bp.route('/ledgers', methods=['POST'])
def create_ledger():
    data = _json_body()
    ledger = LedgerService.create_ledger(data.get('name'), current_user.id)
    return jsonify(ledger), 201


@ledgers_bp.route('/ledgers/<int:ledger_id>', methods=['GET'])
@ledger_role_required(*ANY_MEMBER)
def ledger_detail(ledger_id):
    return jsonify(LedgerService.get_detail(ledger_id, current_user.id))


@ledgers_bp.route('/ledgers/<int:ledger_id>', methods=['PATCH'])
@ledger_role_required(*EDITORS)
def rename_ledger(ledger_id):
    data = _json_body()
    return jsonify(LedgerService.rename(ledger_id, current_user.id, data.get('name')))


@ledgers_bp.route('/ledgers/<int:ledger_id>', methods=['DELETE'])
@ledger_role_required(*OWNER_ONLY)
def delete_ledger(ledger_id):
    LedgerService.delete(ledger_id, current_user.id)
    return jsonify({'success': True})


@ledgers_bp.route('/ledgers/<int:ledger_id>/categories', methods=['GET'])
@ledger_role_required(*ANY_MEMBER)
def ledger_categories(ledger_id):
    categories = LedgerService.visible_categories(ledger_id, request.args.get('type'))
    return jsonify([c.to_dict() for c in categories])


# ── Members ───────────────────────────────────────────────────────────────────

@ledgers_bp.route('/ledgers/<int:ledger_id>/members', methods=['GET'])
@ledger_role_required(*ANY_MEMBER)
def list_members(ledger_id):
    members = MembershipService.list_members(ledger_id, request.args.get('role') or None)
    return jsonify([m.to_dict() for m in members])


@ledgers_bp.route('/ledgers/<int:ledger_id>/members', methods=['POST'])
@ledger_role_required(*OWNER_ONLY)
def add_member(ledger_id):
    data = _json_body()
    user_id = _resolve_user_id(data)
    member = MembershipService.add_member(ledger_id, user_id, data.get('role') or 'viewer')
    return jsonify(member), 201


@ledgers_bp.route('/ledgers/<int:ledger_id>/members/<int:member_id>', methods=['PUT'])
@ledger_role_required(*OWNER_ONLY)
def change_role(ledger_id, member_id):
    data = _json_body()
    return jsonify(MembershipService.change_role(ledger_id, member_id, data.get('role')))


@ledgers_bp.route('/ledgers/<int:ledger_id>/members/<int:member_id>', methods=['DELETE'])
@ledger_role_required(*OWNER_ONLY)
def remove_member(ledger_id, member_id):
    MembershipService.remove_member(ledger_id, member_id)
    return jsonify({'success': True})


@ledgers_bp.route('/ledgers/<int:ledger_id>/transfer-owner', methods=['POST'])
def transfer_owner(ledger_id):
    data = _json_body()
    target = data.get('new_owner_member_id', data.get('member_id'))
    try:
        target = int(target)
    except (TypeError, ValueError):
        raise InvalidInput('new_owner_member_id must be an integer',
                           details={'field': 'new_owner_member_id'}) from None
    return jsonify(MembershipService.transfer_ownership(ledger_id, current_user.id, target))


@ledgers_bp.route('/ledgers/<int:ledger_id>/leave', methods=['POST'])
def leave_ledger(ledger_id):
    MembershipService.leave(ledger_id, current_user.id)
    return jsonify({'success': True})
