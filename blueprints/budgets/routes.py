from flask import jsonify, request
from . import budgets_bp
from services.budget_service import BudgetService
from services.errors import BudgetNotFound, InvalidInput
from services.reallocation_service import ReallocationService
from utils.permissions import ledger_role_required, ANY_MEMBER, EDITORS


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput('Request body must be a JSON object')
    return data


def _period(data):
    """``period`` from the body, falling back to ?period="""
    return data.get('period', request.args.get('period'))


@budgets_bp.route('/ledgers/<int:ledger_id>/budgets', methods=['GET'])
@ledger_role_required(*ANY_MEMBER)
def progress(ledger_id):
    """Budget progress per category for ?period= (defaults to this month)"""
    return jsonify(BudgetService.get_progress(ledger_id, request.args.get('period')))


@budgets_bp.route('/ledgers/<int:ledger_id>/budgets/<int:category_id>', methods=['PUT'])
@ledger_role_required(*EDITORS)
def set_limit(ledger_id, category_id):
    """Set a category limit, optionally funding it from other categories"""
    data = _json_body()
    if 'amount' not in data:
        raise InvalidInput('amount is required', details={'field': 'amount'})

    sources = data.get('sources')
    if sources:
        if not isinstance(sources, list):
            raise InvalidInput('sources must be a list', details={'field': 'sources'})
        result = ReallocationService.reallocate(
            ledger_id, _period(data), category_id, data['amount'], sources
        )
    else:
        result = BudgetService.set_limit(ledger_id, _period(data), category_id, data['amount'])
    return jsonify(result)


@budgets_bp.route('/ledgers/<int:ledger_id>/budgets/<int:category_id>', methods=['DELETE'])
@ledger_role_required(*EDITORS)
def delete_limit(ledger_id, category_id):
    period = request.args.get('period')
    if not BudgetService.delete_limit(ledger_id, period, category_id):
        raise BudgetNotFound(details={'category_id': category_id})
    return jsonify({'success': True})


@budgets_bp.route('/ledgers/<int:ledger_id>/budgets/period', methods=['PATCH'])
@ledger_role_required(*EDITORS)
def update_period(ledger_id):
    """Title and overall budget override for one month; total_budget=null clears it"""
    data = _json_body()
    if 'title' not in data and 'total_budget' not in data:
        raise InvalidInput('Provide title and/or total_budget')
    clear_total = 'total_budget' in data and data['total_budget'] is None
    result = BudgetService.set_period_meta(
        ledger_id,
        _period(data),
        title=data.get('title'),
        total_budget=data.get('total_budget'),
        clear_total=clear_total,
    )
    return jsonify(result)
