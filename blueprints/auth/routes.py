"""
Authentication Routes
JSON login and logout with rate limiting, plus the CSRF token JSON clients echo back
"""
from flask import jsonify
from flask_wtf.csrf import generate_csrf
from flask_login import login_user, logout_user, current_user, login_required
from . import auth_bp
from .forms import LoginForm
from models.users import User
from extensions import limiter


def _form_errors(form):
    return {field: errors[0] for field, errors in form.errors.items()}


@auth_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """CSRF token for JSON clients; send it back in the X-CSRFToken header."""
    return jsonify({'csrf_token': generate_csrf()})


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")  # Rate limit login attempts
def login():
    """Log in with email and password; returns the user."""
    if current_user.is_authenticated:
        return jsonify(current_user.to_dict())

    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({'code': 'INVALID_INPUT', 'message': 'Invalid login request',
                        'details': _form_errors(form)}), 400

    email = form.email.data.strip().lower()
    user = User.query.filter_by(email=email).first()

    # Same response for unknown email and wrong password to prevent user enumeration
    if user is None or not user.check_password(form.password.data):
        return jsonify({'code': 'INVALID_CREDENTIALS', 'message': 'Invalid email or password.',
                        'details': {}}), 401
    if not user.is_active:
        return jsonify({'code': 'ACCOUNT_DISABLED', 'message': 'This account has been deactivated.',
                        'details': {}}), 403

    login_user(user, remember=form.remember.data)
    user.update_last_login()
    return jsonify(user.to_dict())


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})
