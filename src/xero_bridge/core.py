"""
Xero Bridge Core Application

Backend for the invoice dashboard: Xero OAuth, Xero API passthrough,
notes/reminders storage and the Make.com search relay.
"""
import os
import logging
import secrets
from datetime import datetime
from functools import wraps

from flask import Flask, jsonify, request, make_response, send_from_directory
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config=None):
    """Application factory.

    Configuration is read from the environment once here and treated as
    read-only afterwards. Pass `config` to override values (tests).
    """
    app = Flask(__name__)

    # Apply proxy fix (trust X-Forwarded-* headers from the edge proxy)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    secret_key = os.getenv('FLASK_SECRET_KEY')
    if not secret_key:
        logger.warning("FLASK_SECRET_KEY not set; in-flight Xero sign-ins will not survive a restart")
        secret_key = secrets.token_hex(32)

    app.config.update(
        SECRET_KEY=secret_key,

        # Xero OAuth app
        XERO_CLIENT_ID=os.getenv('XERO_CLIENT_ID'),
        XERO_CLIENT_SECRET=os.getenv('XERO_CLIENT_SECRET'),

        # Public base URL of this deployment; the OAuth callback hangs off it
        APP_BASE_URL=os.getenv('APP_BASE_URL') or os.getenv('URL') or 'http://localhost:8000',

        # Make.com scenario that runs invoice searches
        MAKE_WEBHOOK_URL=os.getenv('MAKE_WEBHOOK_URL'),

        # Built front-end served at / (optional)
        FRONTEND_DIR=os.getenv('FRONTEND_DIR'),

        # Notes/reminders store
        DATABASE_PATH=os.getenv('DATABASE_PATH'),

        AUTH_COOKIE_SECURE=_env_flag('AUTH_COOKIE_SECURE', True),
        HTTP_TIMEOUT=float(os.getenv('HTTP_TIMEOUT', '15')),

        APP_NAME='Xero Bridge',
    )

    if config:
        app.config.update(config)

    # Register blueprints
    from .auth import auth_bp
    from .proxy import proxy_bp
    from .webhook import webhook_bp
    from .store_api import store_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(proxy_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(store_bp)

    # Initialize the document store once on startup
    from .database import init_db, close_db
    with app.app_context():
        init_db().close()
        logger.info("Document store initialized")

    app.teardown_appcontext(close_db)

    # Root: the front-end build when one is configured. Auth redirects land here.
    @app.route('/')
    def index():
        frontend_dir = app.config.get('FRONTEND_DIR')
        if frontend_dir and os.path.exists(os.path.join(frontend_dir, 'index.html')):
            return send_from_directory(frontend_dir, 'index.html')
        return jsonify({'app': app.config['APP_NAME'], 'status': 'ok'})

    # Health check (no auth required)
    @app.route('/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'app': app.config['APP_NAME'],
            'xero_configured': bool(app.config.get('XERO_CLIENT_ID') and app.config.get('XERO_CLIENT_SECRET')),
        })

    # Error handlers
    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': 'Endpoint not found.'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Server error', 'message': 'An error occurred'}), 500

    logger.info("Xero Bridge application initialized")
    return app


def cors_headers_for(methods: str, allow_headers: str = 'Content-Type') -> dict:
    return {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Headers': allow_headers,
        'Access-Control-Allow-Methods': methods,
    }


def cors_enabled(methods: str, allow_headers: str = 'Content-Type'):
    """Decorator adding permissive CORS headers and answering preflights.

    The route must list OPTIONS in its methods.
    """
    cors_headers = cors_headers_for(methods, allow_headers)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if request.method == 'OPTIONS':
                return '', 204, cors_headers
            response = make_response(f(*args, **kwargs))
            for name, value in cors_headers.items():
                response.headers[name] = value
            return response
        return decorated_function
    return decorator


def xero_session_required(f):
    """Decorator requiring the session cookie set after a Xero sign-in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from .auth import AUTHENTICATED_COOKIE
        if request.cookies.get(AUTHENTICATED_COOKIE) != 'true':
            return jsonify({
                'error': 'Unauthorized',
                'message': 'Please connect to Xero first',
            }), 401
        return f(*args, **kwargs)
    return decorated_function
