from flask import Blueprint
from flask_login import login_required

ledgers_bp = Blueprint('ledgers', __name__)

# Require authentication for all routes in this blueprint
@ledgers_bp.before_request
@login_required
def require_login():
    pass

from . import routes
