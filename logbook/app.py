"""
Pilot Logbook Flask Application.

Main entry point for the web application. Initializes:
- Record store schema
- Stateful services (rate limiter, payload monitor, METAR cache, audit)
- Identity provider client and webhook verifier
- API routes and error handlers

Usage:
    python -m logbook.app

Or with gunicorn:
    gunicorn 'logbook.app:create_app()'
"""

import logging
import os
import time
from typing import Callable, Optional

from flask import Flask
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from logbook.api import endpoints_bp, rpc_bp, webhooks_bp
from logbook.cli import register_commands
from logbook.config import AppConfig, config
from logbook.errors import InternalError, LogbookError
from logbook.models import Database
from logbook.roles import IdentityProvider, RoleService
from logbook.services import (
    AuditLogger,
    ClerkClient,
    MetarService,
    PayloadMonitor,
    RateLimiter,
    WebhookVerifier,
)
from logbook.services.container import EXTENSION_KEY, AppServices

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def build_services(
    app_config: AppConfig,
    identity_provider: Optional[IdentityProvider] = None,
    clock: Optional[Callable[[], float]] = None,
) -> AppServices:
    """Construct every stateful collaborator for one application instance."""
    clock = clock or time.time

    db = Database(app_config.database)
    db.create_all()

    if identity_provider is None:
        identity_provider = ClerkClient.from_config(app_config.identity)

    audit = AuditLogger(db)
    roles = RoleService(db, identity_provider, audit, app_config.admin)

    verifier = None
    if app_config.identity.webhook_secret:
        verifier = WebhookVerifier(
            app_config.identity.webhook_secret,
            tolerance_seconds=app_config.identity.webhook_tolerance_seconds,
            clock=clock,
        )
    else:
        logger.warning('CLERK_WEBHOOK_SECRET not set - webhook deliveries will be refused')

    return AppServices(
        config=app_config,
        db=db,
        identity_provider=identity_provider,
        roles=roles,
        audit=audit,
        rate_limiter=RateLimiter(clock=clock, sweep_interval_ms=app_config.rate_limit.sweep_interval_ms),
        monitor=PayloadMonitor(app_config.monitor),
        metar=MetarService(app_config.weather, clock=clock),
        webhook_verifier=verifier,
        clock=clock,
    )


def create_app(
    app_config: Optional[AppConfig] = None,
    identity_provider: Optional[IdentityProvider] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        app_config: Configuration to use; defaults to the environment-loaded one.
        identity_provider: Client for the identity provider; defaults to ClerkClient.
        clock: Epoch-seconds time source shared by the stateful services.

    Returns:
        Configured Flask application instance.
    """
    app_config = app_config or config

    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = app_config.secret_key
    app.config['TESTING'] = app_config.testing

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    logger.info('Initializing record store...')
    services = build_services(app_config, identity_provider, clock)
    app.extensions[EXTENSION_KEY] = services

    # Register API blueprints
    app.register_blueprint(rpc_bp)
    app.register_blueprint(endpoints_bp)
    app.register_blueprint(webhooks_bp)

    register_commands(app)

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(LogbookError)
    def logbook_error(e: LogbookError):
        return {'error': e.to_dict()}, e.http_status

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(Exception)
    def unhandled(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f'Unhandled error: {e}')
        return {'error': InternalError().to_dict()}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    # Get port from environment or default
    port = int(os.environ.get('PORT', 5000))

    logger.info(f'Starting Pilot Logbook on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
    )


if __name__ == '__main__':
    run_development_server()
