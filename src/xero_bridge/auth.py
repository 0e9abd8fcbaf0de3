"""
Xero OAuth2 Authentication for Xero Bridge

Authorization Code flow with PKCE:
1. /auth/start seals state + verifier into a short-lived cookie and
   redirects the browser to Xero
2. /auth/callback checks state against the cookie, exchanges the code,
   looks up tenants and redirects back to the app with the token bundle
3. /auth/refresh trades a refresh token for a new pair on demand

Security measures:
- State parameter compared against the sealed cookie (CSRF)
- PKCE S256 binding of the code to the verifier in the cookie
- Correlation cookie is HttpOnly, SameSite=Lax, 15 minute expiry,
  cleared on every callback exit path
- Secrets and raw tokens are never logged
"""
import hmac
import json
import logging
from urllib.parse import urlencode, quote

from flask import Blueprint, request, jsonify, redirect, current_app

from . import xero_client
from .core import cors_enabled, xero_session_required
from .crypto import seal_auth_state, open_auth_state
from .errors import (
    XeroBridgeError, ConfigurationError, ProviderDenied, MissingCode,
    MissingState, SessionExpired, StateMismatch, InvalidInput, TokenExchangeFailed,
    TenantFetchFailed,
)
from .pkce import generate, AUTH_REQUEST_TTL
from .tenants import resolve_tenants

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('xero_bridge.security')

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

CALLBACK_PATH = '/auth/callback'
AUTH_COOKIE = 'xero_auth'

# Long-lived cookies read by /auth/connections and the webhook relay
AUTHENTICATED_COOKIE = 'xero_authenticated'
TENANT_ID_COOKIE = 'xero_tenant_id'
TENANT_NAME_COOKIE = 'xero_tenant_name'
USER_ID_COOKIE = 'xero_user_id'
SESSION_COOKIE_MAX_AGE = 30 * 24 * 60 * 60
SESSION_COOKIES = (AUTHENTICATED_COOKIE, TENANT_ID_COOKIE, TENANT_NAME_COOKIE, USER_ID_COOKIE)


def get_redirect_uri() -> str:
    """The callback URL registered with Xero.

    Used for both the authorization request and the code exchange, which
    Xero requires to match exactly.
    """
    base_url = current_app.config['APP_BASE_URL'].rstrip('/')
    return f"{base_url}{CALLBACK_PATH}"


def _get_client_id() -> str:
    client_id = current_app.config.get('XERO_CLIENT_ID')
    if not client_id:
        logger.error("XERO_CLIENT_ID not configured")
        raise ConfigurationError('Server configuration error (missing Xero client id)')
    return client_id


def _get_client_credentials() -> tuple:
    client_id = current_app.config.get('XERO_CLIENT_ID')
    client_secret = current_app.config.get('XERO_CLIENT_SECRET')
    if not client_id or not client_secret:
        logger.error("Xero client credentials not configured")
        raise ConfigurationError('Server configuration error (missing Xero credentials)')
    return client_id, client_secret


def _cookie_options() -> dict:
    return {
        'path': '/',
        'secure': current_app.config.get('AUTH_COOKIE_SECURE', True),
        'httponly': True,
        'samesite': 'Lax',
    }


def _timeout() -> float:
    return current_app.config.get('HTTP_TIMEOUT', xero_client.DEFAULT_TIMEOUT)


def _redirect_to_app(params: dict):
    """302 to the application root. Tokens may ride in the query string,
    so the response must not be cached or leak a referrer."""
    response = redirect(f"/?{urlencode(params, quote_via=quote)}", code=302)
    response.headers['Cache-Control'] = 'no-store'
    response.headers['Referrer-Policy'] = 'no-referrer'
    return response


def _error_redirect(message: str, **extra):
    return _redirect_to_app({'auth': 'error', 'message': message, **extra})


def _clear_auth_cookie(response):
    options = _cookie_options()
    response.delete_cookie(
        AUTH_COOKIE,
        path=options['path'],
        secure=options['secure'],
        httponly=options['httponly'],
        samesite=options['samesite'],
    )


def _set_session_cookies(response, selection, user_id=None):
    options = dict(_cookie_options(), max_age=SESSION_COOKIE_MAX_AGE)
    response.set_cookie(AUTHENTICATED_COOKIE, 'true', **options)
    response.set_cookie(TENANT_ID_COOKIE, selection.tenant_id, **options)
    response.set_cookie(TENANT_NAME_COOKIE, selection.tenant_name, **options)
    if user_id:
        response.set_cookie(USER_ID_COOKIE, user_id, **options)


@auth_bp.route('/start')
def start():
    """Begin the Xero authorization flow."""
    try:
        client_id = _get_client_id()
    except ConfigurationError:
        return jsonify({
            'error': 'Server error',
            'message': 'Xero integration is not configured',
        }), 500

    auth_state = generate()
    redirect_uri = get_redirect_uri()
    auth_url = xero_client.build_authorize_url(client_id, redirect_uri, auth_state)

    response = redirect(auth_url, code=302)
    response.headers['Cache-Control'] = 'no-cache'
    response.set_cookie(
        AUTH_COOKIE,
        seal_auth_state(auth_state, current_app.config['SECRET_KEY']),
        max_age=AUTH_REQUEST_TTL,
        expires=auth_state.expires_at,
        **_cookie_options()
    )

    logger.info(f"Redirecting to Xero for authorization (redirect_uri={redirect_uri})")
    return response


@auth_bp.route('/callback')
def callback():
    """Handle the Xero redirect back to us.

    Every outcome is a redirect to the app root with auth=success or
    auth=error, and the correlation cookie is always cleared.
    """
    try:
        response = _complete_authorization()
    except XeroBridgeError as e:
        logger.warning(f"Xero callback ended with {e.kind}")
        response = _error_redirect(e.message)
    except Exception:
        logger.exception("Unexpected error in Xero callback")
        response = _error_redirect('Server error while connecting to Xero')

    _clear_auth_cookie(response)
    return response


def _complete_authorization():
    """Run the callback protocol steps in order. Raises on each exit."""
    error = request.args.get('error')
    if error:
        description = request.args.get('error_description') or error
        logger.warning(f"Xero authorization denied: {error}")
        raise ProviderDenied(f"Authentication error: {description}")

    code = request.args.get('code')
    if not code:
        raise MissingCode('No authorization code received from Xero')

    received_state = request.args.get('state')
    if not received_state:
        raise MissingState('Invalid authentication request (missing state)')

    auth_state = open_auth_state(
        request.cookies.get(AUTH_COOKIE, ''),
        current_app.config['SECRET_KEY'],
    )
    if auth_state is None:
        raise SessionExpired('Authentication session expired or invalid')

    if not hmac.compare_digest(received_state.encode('utf-8'), auth_state.state.encode('utf-8')):
        security_logger.warning(
            f"State parameter mismatch on Xero callback from {request.remote_addr}, possible CSRF"
        )
        raise StateMismatch('Invalid authentication request (state mismatch)')

    client_id, client_secret = _get_client_credentials()

    logger.info("Exchanging authorization code for tokens")
    tokens = xero_client.exchange_code(
        code=code,
        code_verifier=auth_state.code_verifier,
        redirect_uri=get_redirect_uri(),
        client_id=client_id,
        client_secret=client_secret,
        timeout=_timeout(),
    )

    try:
        connections = xero_client.fetch_connections(tokens.access_token, timeout=_timeout())
    except TenantFetchFailed as e:
        # The code is spent; hand the tokens over so the client can retry
        # the tenant lookup instead of starting a new consent.
        logger.error(f"Token exchange succeeded but tenant lookup failed ({e.status_code})")
        return _error_redirect(e.message, tokens=json.dumps(tokens.to_client_dict()))

    selection = resolve_tenants(connections)
    if selection.active is None:
        logger.warning("Xero authorization succeeded with no accessible organizations")

    response = _redirect_to_app({
        'auth': 'success',
        'tenantName': selection.tenant_name,
        'tenantId': selection.tenant_id,
        'multipleOrgs': 'true' if selection.multiple else 'false',
        'tenants': json.dumps([t.to_dict() for t in selection.tenants]),
        'tokens': json.dumps(tokens.to_client_dict()),
    })
    _set_session_cookies(response, selection, xero_client.read_user_id(tokens.id_token))

    logger.info(f"Xero authorization complete ({len(selection.tenants)} organizations)")
    return response


def _read_refresh_token() -> str:
    data = request.get_json(force=True, silent=True)
    refresh_token = data.get('refresh_token') if isinstance(data, dict) else None
    if not refresh_token or not isinstance(refresh_token, str):
        raise InvalidInput('Refresh token is required')
    return refresh_token


@auth_bp.route('/refresh', methods=['POST', 'OPTIONS'])
@cors_enabled(methods='POST, OPTIONS')
def refresh():
    """Exchange a refresh token for a new token set.

    Request body (JSON):
    {
        "refresh_token": "..."
    }

    Response:
    {
        "access_token": "...",
        "refresh_token": "...",
        "expires_at": 1700000000000
    }
    """
    try:
        refresh_token = _read_refresh_token()
    except InvalidInput as e:
        return jsonify({'error': e.message}), e.status_code

    try:
        client_id, client_secret = _get_client_credentials()
    except ConfigurationError:
        return jsonify({'error': 'Missing Xero credentials'}), 500

    try:
        tokens = xero_client.refresh_tokens(
            refresh_token, client_id, client_secret, timeout=_timeout()
        )
    except TokenExchangeFailed as e:
        return jsonify({
            'error': 'Failed to refresh token',
            'details': e.body if e.body is not None else e.message,
        }), e.status_code

    logger.info("Refreshed Xero tokens")
    return jsonify(tokens.to_client_dict())


@auth_bp.route('/connections', methods=['GET', 'OPTIONS'])
@cors_enabled(methods='GET, OPTIONS')
@xero_session_required
def connections():
    """Return the tenant recorded in the session cookies at callback time."""
    tenant_id = request.cookies.get(TENANT_ID_COOKIE)
    if not tenant_id:
        return jsonify({
            'error': 'Not Found',
            'message': 'No Xero organization found. Please reconnect to Xero.',
        }), 404

    return jsonify([{
        'tenantId': tenant_id,
        'tenantName': request.cookies.get(TENANT_NAME_COOKIE) or 'Xero Organization',
    }])


@auth_bp.route('/logout', methods=['GET', 'POST'])
def logout():
    """Forget the Xero session cookies."""
    if request.method == 'POST':
        response = jsonify({'success': True})
    else:
        response = redirect('/', code=302)

    options = _cookie_options()
    for name in SESSION_COOKIES:
        response.delete_cookie(
            name,
            path=options['path'],
            secure=options['secure'],
            httponly=options['httponly'],
            samesite=options['samesite'],
        )
    logger.info("Cleared Xero session cookies")
    return response
