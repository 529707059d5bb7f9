"""
Domain errors raised by the budget and membership services.

Every error carries a stable ``code`` (the string clients switch on), an HTTP
status for the JSON layer and an optional ``details`` payload.  The app-level
error handler renders them as ``{"code", "message", "details"}``.

``OperationFailed`` is the odd one out: it wraps storage faults (constraint
violations, deadlocks, lost connections) after the unit of work has been
rolled back, and tells the caller to retry.
"""


class LedgerError(Exception):
    code = 'LEDGER_ERROR'
    http_status = 400
    default_message = 'Request could not be completed'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_dict(self):
        return {'code': self.code, 'message': self.message, 'details': self.details}


# ── Validation ────────────────────────────────────────────────────────────────

class InvalidPeriod(LedgerError):
    code = 'INVALID_PERIOD'
    default_message = 'Invalid period format. Expected YYYY-MM'


class InvalidInput(LedgerError):
    code = 'INVALID_INPUT'
    default_message = 'Invalid input'


# ── Lookups ───────────────────────────────────────────────────────────────────

class NotFound(LedgerError):
    http_status = 404


class CategoryNotFound(NotFound):
    code = 'CATEGORY_NOT_FOUND'
    default_message = 'Category not found'


class PeriodNotFound(NotFound):
    code = 'PERIOD_NOT_FOUND'
    default_message = 'Budget period not found'


class BudgetNotFound(NotFound):
    code = 'BUDGET_NOT_FOUND'
    default_message = 'Budget not found'


class LedgerNotFound(NotFound):
    code = 'LEDGER_NOT_FOUND'
    default_message = 'Ledger not found'


class MemberNotFound(NotFound):
    code = 'MEMBER_NOT_FOUND'
    default_message = 'Ledger member not found'


class TargetNotFound(NotFound):
    code = 'TARGET_NOT_FOUND'
    default_message = 'New owner must be an existing member of this ledger'


class UserNotFound(NotFound):
    code = 'USER_NOT_FOUND'
    default_message = 'User not found'


class TransactionNotFound(NotFound):
    code = 'TRANSACTION_NOT_FOUND'
    default_message = 'Transaction not found'


# ── Budget ────────────────────────────────────────────────────────────────────

class BudgetExceeded(LedgerError):
    """Soft rejection: the posting would overspend the category limit.

    The client can retry with ``allow_exceed`` once the user confirms.
    """
    code = 'BUDGET_EXCEEDED'
    http_status = 409
    default_message = 'This expense exceeds the category budget'

    def __init__(self, limit, spent, remaining, message=None):
        super().__init__(message, details={
            'limit': str(limit),
            'spent': str(spent),
            'remaining': str(remaining),
        })
        self.limit = limit
        self.spent = spent
        self.remaining = remaining


class ReallocateFailed(LedgerError):
    code = 'REALLOCATE_FAILED'
    http_status = 409
    default_message = 'Budget reallocation failed; no limits were changed'

    def __init__(self, failures, message=None):
        super().__init__(message, details={'failures': failures})
        self.failures = failures


# ── Membership ────────────────────────────────────────────────────────────────

class Forbidden(LedgerError):
    code = 'FORBIDDEN'
    http_status = 403
    default_message = 'You do not have permission to perform this action'


class NotOwner(Forbidden):
    code = 'NOT_OWNER'
    default_message = 'Only the ledger owner can transfer ownership'


class SoleOwner(LedgerError):
    code = 'SOLE_OWNER'
    http_status = 409
    default_message = 'The ledger must keep an owner; transfer ownership first'


class OwnerMustTransfer(LedgerError):
    code = 'OWNER_MUST_TRANSFER'
    http_status = 409
    default_message = 'The owner cannot leave or be removed; transfer ownership first'


class AlreadyMember(LedgerError):
    code = 'ALREADY_MEMBER'
    http_status = 409
    default_message = 'User is already a member of this ledger'


# ── Storage ───────────────────────────────────────────────────────────────────

class OperationFailed(LedgerError):
    code = 'OPERATION_FAILED'
    http_status = 503
    default_message = 'Operation failed, please retry'
