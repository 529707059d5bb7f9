import os
import logging
import click
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException
from config import config
from extensions import db, migrate, login_manager, csrf, limiter
from services.errors import LedgerError


def configure_logging(app):
    """Configure application logging"""
    if not app.debug and not app.testing:
        # Create logs directory if it doesn't exist
        if not os.path.exists('logs'):
            os.mkdir('logs')

        file_handler = RotatingFileHandler(
            'logs/ledger_budgets.log',
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s '
            '[in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        # Service modules log through their own module loggers
        for name in ('services', 'blueprints'):
            service_logger = logging.getLogger(name)
            service_logger.addHandler(file_handler)
            service_logger.setLevel(logging.INFO)

        app.logger.setLevel(logging.INFO)
        app.logger.info('Ledger Budgets startup')
    else:
        # Development logging to console
        app.logger.setLevel(logging.DEBUG)
        app.logger.info('Ledger Budgets startup (DEBUG mode)')


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses"""
        headers = app.config.get('SECURITY_HEADERS', {})
        for header, value in headers.items():
            response.headers[header] = value
        return response

    # JSON API: no login page to redirect to
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'code': 'UNAUTHORIZED', 'message': 'Login required', 'details': {}}), 401

    @login_manager.user_loader
    def load_user(user_id):
        from models.users import User
        return db.session.get(User, int(user_id))

    # Import models to ensure they're registered with SQLAlchemy
    with app.app_context():
        import models  # noqa: F401

    # Register blueprints
    from blueprints.auth import auth_bp
    from blueprints.ledgers import ledgers_bp
    from blueprints.budgets import budgets_bp
    from blueprints.transactions import transactions_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(ledgers_bp)
    app.register_blueprint(budgets_bp)
    app.register_blueprint(transactions_bp)

    # Create database tables
    with app.app_context():
        db.create_all()

    register_error_handlers(app)
    register_commands(app)

    return app


def register_error_handlers(app):
    """Register global error handlers"""

    @app.errorhandler(LedgerError)
    def ledger_error(error):
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        return jsonify({'code': 'CSRF_FAILED', 'message': error.description, 'details': {}}), 400

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({
            'code': error.name.upper().replace(' ', '_'),
            'message': error.description,
            'details': {},
        }), error.code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f'Internal Server Error: {error}')
        return jsonify({'code': 'INTERNAL_ERROR', 'message': 'Internal server error', 'details': {}}), 500


def register_commands(app):
    """Register Flask CLI commands."""

    @app.cli.group()
    def users():
        """Manage login accounts."""
        pass

    @users.command('create')
    @click.argument('email')
    @click.argument('username')
    @click.password_option()
    def create_user(email, username, password):
        """Create a login account for EMAIL."""
        from models.users import User
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo(f'ERROR: A user with email "{email}" already exists', err=True)
            raise SystemExit(1)
        min_length = app.config.get('PASSWORD_MIN_LENGTH', 10)
        if len(password) < min_length:
            click.echo(f'ERROR: Password must be at least {min_length} characters', err=True)
            raise SystemExit(1)
        user = User(email=email, username=username.strip(), is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'SUCCESS: created user {user.id} "{user.username}" ({email}).')

    @app.cli.group()
    def categories():
        """Manage a user's categories."""
        pass

    @categories.command('add')
    @click.argument('email')
    @click.argument('category_type', type=click.Choice(['income', 'expense']))
    @click.argument('name')
    def add_category(email, category_type, name):
        """Add a category owned by the user with EMAIL."""
        from models.categories import Category
        from models.users import User
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo(f'ERROR: No user found with email "{email}"', err=True)
            raise SystemExit(1)
        name = name.strip()
        if user.categories.filter_by(category_type=category_type, name=name).first():
            click.echo(f'"{name}" ({category_type}) already exists for {user.email}.')
            return
        category = Category(user_id=user.id, category_type=category_type, name=name)
        db.session.add(category)
        db.session.commit()
        click.echo(f'SUCCESS: category {category.id} "{name}" ({category_type}) added for {user.email}.')

    @app.cli.group()
    def budgets():
        """Budget period maintenance."""
        pass

    @budgets.command('merge-periods')
    @click.option('--ledger-id', type=int, default=None, help='Only merge periods of this ledger.')
    def merge_periods(ledger_id):
        """Fold duplicate budget periods for the same month into the oldest row."""
        from services.budget_service import BudgetService
        removed = BudgetService.merge_duplicate_periods(ledger_id)
        if not removed:
            click.echo('No duplicate budget periods found.')
            return
        click.echo(f'SUCCESS: removed {removed} duplicate budget period(s).')

    @app.cli.group()
    def ledgers():
        """Ledger membership checks."""
        pass

    @ledgers.command('check-owners')
    def check_owners():
        """List ledgers without exactly one owner or with a stale owner pointer."""
        from services.membership_service import MembershipService
        problems = MembershipService.find_owner_violations()
        if not problems:
            click.echo('All ledgers have exactly one owner.')
            return
        click.echo(f'{"Ledger":<8} {"Problem":<15} {"Owners"}')
        click.echo('-' * 50)
        for p in problems:
            click.echo(f'{p["ledger_id"]:<8} {p["problem"]:<15} {", ".join(str(o) for o in p["owners"])}')
        raise SystemExit(1)


if __name__ == '__main__':
    app = create_app()
    # SECURITY: Only bind to localhost in development
    app.run(host='127.0.0.1', port=5000, debug=True)
