"""
TherapyDesk Application Factory.
Creates and configures the Flask application instance.
"""
import os
import json
import logging
import uuid
from datetime import datetime, timezone

import click
from flask import Flask, request, g, jsonify

from therapydesk.config import config
from therapydesk.extensions import init_extensions, db


def _init_sentry(app):
    """Initialize Sentry error tracking for production."""
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        app.logger.info('SENTRY_DSN not set: error tracking disabled.')
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=float(os.environ.get('SENTRY_TRACES_RATE', '0.1')),
        environment=os.environ.get('FLASK_ENV', 'production'),
        send_default_pii=False,
    )
    app.logger.info('Sentry error tracking initialized.')


def create_app(config_name=None):
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration to use (development, testing, production)

    Returns:
        Configured Flask application instance
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)

    # Load configuration
    config_class = config[config_name]
    app.config.from_object(config_class)

    # Initialize Sentry (production only)
    if config_name == 'production':
        _init_sentry(app)

    # Call init_app if available (production validation happens here)
    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    # Initialize extensions
    init_extensions(app)

    # Initialize Stripe API key
    if app.config.get('STRIPE_SECRET_KEY'):
        import stripe
        stripe.api_key = app.config['STRIPE_SECRET_KEY']

    # Import models so metadata is complete for create_all / migrations
    from therapydesk import models  # noqa: F401

    register_blueprints(app)
    register_error_handlers(app)
    register_cli_commands(app)
    configure_logging(app)
    register_security_headers(app)

    # Create database tables (development only)
    if config_name == 'development':
        with app.app_context():
            db.create_all()

    return app


def register_blueprints(app):
    """Register all application blueprints."""
    from therapydesk.blueprints.billing import billing_bp

    app.register_blueprint(billing_bp, url_prefix='/billing')


def register_error_handlers(app):
    """Register JSON error handlers for common HTTP errors."""

    def _error(code, message, status):
        return jsonify({'error': {'code': code, 'message': message}}), status

    @app.errorhandler(400)
    def bad_request(error):
        return _error('bad_request', 'Bad request.', 400)

    @app.errorhandler(401)
    def unauthorized(error):
        return _error('unauthorized', 'Unauthorized', 401)

    @app.errorhandler(403)
    def forbidden(error):
        return _error('forbidden', 'Access denied.', 403)

    @app.errorhandler(404)
    def not_found(error):
        return _error('not_found', 'Resource not found.', 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error('method_not_allowed', 'Method not allowed', 405)

    @app.errorhandler(429)
    def ratelimit_error(error):
        return _error('rate_limit_exceeded', 'Too many requests. Try again later.', 429)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        request_id = g.get('request_id', '-')
        app.logger.error('500 Internal Server Error: %s (request_id=%s)', type(error).__name__, request_id, exc_info=True)
        return jsonify({'error': {'code': 'internal_error', 'message': 'Internal server error.', 'request_id': request_id}}), 500


def register_cli_commands(app):
    """Register custom CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        print("Database tables created.")

    @app.cli.command('create-user')
    @click.argument('email')
    @click.option('--name', default=None, help='Full name of the therapist')
    def create_user(email, name):
        """Create a trialing user and print an API access token."""
        from therapydesk.decorators.auth import create_access_token
        from therapydesk.services.subscription_service import SubscriptionService

        user = SubscriptionService.start_trial(email, full_name=name)
        print(f"User {user.email} (id={user.id}) status={user.subscription_status.value}")
        print(create_access_token(user.id))

    @app.cli.command('issue-token')
    @click.argument('email')
    def issue_token(email):
        """Print a fresh API access token for an existing user."""
        from therapydesk.decorators.auth import create_access_token
        from therapydesk.models.user import User

        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException(f'No user with email {email}')
        print(create_access_token(user.id))

    @app.cli.command('expire-trials')
    @click.option('--dry-run', is_flag=True, help='Report without writing')
    def expire_trials(dry_run):
        """Mark users whose free trial has ended as inactive."""
        from therapydesk.services.subscription_service import SubscriptionService

        count = SubscriptionService.expire_trials(dry_run=dry_run)
        if dry_run:
            print(f"[DRY RUN] {count} trial(s) would expire.")
        else:
            print(f"{count} trial(s) expired.")

    @app.cli.command('sync-subscription')
    @click.argument('email')
    def sync_subscription(email):
        """Re-read a user's subscription from Stripe and store its status."""
        from therapydesk.models.user import User
        from therapydesk.services.subscription_service import (
            SubscriptionService, WebhookProcessingError,
        )

        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException(f'No user with email {email}')
        try:
            SubscriptionService.sync_from_stripe(user)
        except WebhookProcessingError as e:
            raise click.ClickException(str(e))
        print(f"{user.email}: {user.subscription_status.value}")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production (cloud log aggregation)."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }
        # Add request_id if available
        try:
            log_entry['request_id'] = g.get('request_id', '-')
        except RuntimeError:
            pass  # Outside request context
        if record.exc_info and record.exc_info[0]:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def configure_logging(app):
    """Configure application logging.

    Production: JSON to stdout.
    Development: plain text.
    """
    if app.testing:
        return

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])

    @app.after_request
    def log_request(response):
        app.logger.info(
            '%s %s %s',
            request.method,
            request.path,
            response.status_code,
        )
        return response

    if not app.debug:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(JSONFormatter())
        stream_handler.setLevel(logging.INFO)

        # Clear existing handlers to avoid duplicates
        app.logger.handlers.clear()
        app.logger.addHandler(stream_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('TherapyDesk startup (JSON logging)')
    else:
        app.logger.setLevel(logging.DEBUG)
        app.logger.info('TherapyDesk startup (development)')


def register_security_headers(app):
    """Register security headers for all responses."""

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        if not app.debug:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response
