from flask import jsonify, request
from flask_login import current_user
from . import transactions_bp
from services.errors import InvalidInput
from services.transaction_service import TransactionService


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput('Request body must be a JSON object')
    return data


def _required_int(data, field):
    try:
        return int(data[field])
    except KeyError:
        raise InvalidInput(f'{field} is required', details={'field': field}) from None
    except (TypeError, ValueError):
        raise InvalidInput(f'{field} must be an integer', details={'field': field}) from None


def _flag(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


@transactions_bp.route('/transactions', methods=['GET'])
def index():
    """List transactions across the caller's ledgers with optional filters"""
    transactions = TransactionService.list_for_user(
        current_user.id,
        ledger_id=request.args.get('ledger_id', type=int),
        category_id=request.args.get('category_id', type=int),
        transaction_type=request.args.get('type'),
        min_amount=request.args.get('min_amount'),
        max_amount=request.args.get('max_amount'),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
    )
    return jsonify([t.to_dict() for t in transactions])


@transactions_bp.route('/transactions', methods=['POST'])
def create():
    """Record a transaction; 409 BUDGET_EXCEEDED unless allow_exceed is set"""
    data = _json_body()
    txn = TransactionService.create(
        ledger_id=_required_int(data, 'ledger_id'),
        user_id=current_user.id,
        category_id=_required_int(data, 'category_id'),
        amount=data.get('amount'),
        transaction_type=data.get('type', data.get('transaction_type')),
        transaction_date=data.get('date', data.get('transaction_date')),
        note=data.get('note', ''),
        allow_exceed=_flag(data.get('allow_exceed', False)),
    )
    return jsonify(txn), 201


@transactions_bp.route('/transactions/<int:txn_id>', methods=['GET'])
def detail(txn_id):
    return jsonify(TransactionService.get(txn_id, current_user.id).to_dict())


@transactions_bp.route('/transactions/<int:txn_id>', methods=['PUT'])
def update(txn_id):
    data = _json_body()
    allow_exceed = _flag(data.pop('allow_exceed', False))
    return jsonify(TransactionService.update(txn_id, current_user.id, data, allow_exceed=allow_exceed))


@transactions_bp.route('/transactions/<int:txn_id>', methods=['DELETE'])
def delete(txn_id):
    TransactionService.delete(txn_id, current_user.id)
    return jsonify({'success': True})
