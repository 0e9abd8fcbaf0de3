"""
Xero identity and API calls.

Handles:
- Authorization URL construction
- Authorization-code and refresh-token grants
- Connections (tenant) lookup
- Passthrough requests to the accounting API

Each call is a single request/response. Retries are left to the caller.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import jwt
import requests

from .errors import TokenExchangeFailed, TenantFetchFailed
from .models import AuthRequestState, TokenSet

logger = logging.getLogger(__name__)

# Xero endpoints
XERO_AUTHORIZE_URL = 'https://login.xero.com/identity/connect/authorize'
XERO_TOKEN_URL = 'https://identity.xero.com/connect/token'
XERO_CONNECTIONS_URL = 'https://api.xero.com/connections'
XERO_API_BASE_URL = 'https://api.xero.com/api.xro/2.0'

XERO_SCOPES = [
    'openid',
    'profile',
    'email',
    'offline_access',
    'accounting.transactions.read',
    'accounting.settings.read',
]

DEFAULT_TIMEOUT = 15


def build_authorize_url(client_id: str, redirect_uri: str, auth_state: AuthRequestState) -> str:
    """Build the Xero consent URL for one authorization attempt."""
    params = {
        'client_id': client_id,
        'response_type': 'code',
        'redirect_uri': redirect_uri,
        'scope': ' '.join(XERO_SCOPES),
        'state': auth_state.state,
        'code_challenge': auth_state.code_challenge,
        'code_challenge_method': 'S256',
    }
    return f"{XERO_AUTHORIZE_URL}?{urlencode(params)}"


def _post_token_grant(form: dict, client_id: str, client_secret: str,
                      timeout: float) -> TokenSet:
    """POST a grant to the token endpoint with HTTP Basic client auth."""
    grant_type = form.get('grant_type')
    try:
        response = requests.post(
            XERO_TOKEN_URL,
            data=form,
            auth=(client_id, client_secret),
            headers={'Accept': 'application/json'},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Xero token request failed ({grant_type}): {type(e).__name__}")
        raise TokenExchangeFailed("Could not reach Xero", 502) from e

    if not response.ok:
        logger.error(f"Xero token grant {grant_type} rejected: {response.status_code}")
        raise TokenExchangeFailed(
            f"Failed to exchange code for tokens ({response.status_code})",
            response.status_code,
            body=response.text,
        )

    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"Xero token grant {grant_type} returned a non-JSON body")
        raise TokenExchangeFailed("Unexpected response from Xero", 502, body=response.text) from e

    if not isinstance(data, dict) or not data.get('access_token'):
        logger.error(f"Xero token grant {grant_type} returned no access token")
        raise TokenExchangeFailed("Xero did not return an access token", 502)

    return TokenSet.from_token_response(data)


def exchange_code(code: str, code_verifier: str, redirect_uri: str,
                  client_id: str, client_secret: str,
                  timeout: float = DEFAULT_TIMEOUT) -> TokenSet:
    """Exchange an authorization code for tokens.

    redirect_uri must be byte-identical to the one sent in the
    authorization request.

    Raises:
        TokenExchangeFailed: On a non-2xx answer or network error
    """
    return _post_token_grant({
        'grant_type': 'authorization_code',
        'code': code,
        'redirect_uri': redirect_uri,
        'code_verifier': code_verifier,
    }, client_id, client_secret, timeout)


def refresh_tokens(refresh_token: str, client_id: str, client_secret: str,
                   timeout: float = DEFAULT_TIMEOUT) -> TokenSet:
    """Exchange a refresh token for a new token pair.

    Raises:
        TokenExchangeFailed: Carries the upstream status and body
    """
    return _post_token_grant({
        'grant_type': 'refresh_token',
        'refresh_token': refresh_token,
    }, client_id, client_secret, timeout)


def fetch_connections(access_token: str, timeout: float = DEFAULT_TIMEOUT) -> list:
    """List the tenants the access token may reach.

    Raises:
        TenantFetchFailed: On a non-2xx answer or network error
    """
    try:
        response = requests.get(
            XERO_CONNECTIONS_URL,
            headers={
                'Authorization': f'Bearer {access_token}',
                'Accept': 'application/json',
            },
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Xero connections request failed: {type(e).__name__}")
        raise TenantFetchFailed("Could not reach Xero", 502) from e

    if not response.ok:
        logger.error(f"Xero connections lookup failed: {response.status_code}")
        raise TenantFetchFailed(
            "Connected to Xero, but failed to get user details",
            response.status_code,
            body=response.text,
        )

    try:
        connections = response.json()
    except ValueError as e:
        raise TenantFetchFailed("Unexpected response from Xero", 502, body=response.text) from e

    if not isinstance(connections, list):
        raise TenantFetchFailed("Unexpected response from Xero", 502)

    logger.info(f"Found {len(connections)} Xero connections")
    return connections


def read_user_id(id_token: Optional[str]) -> Optional[str]:
    """Read the Xero user id claim from an OpenID id_token.

    The token comes straight from the token endpoint over TLS, so the
    signature is not checked here. The claim is informational only.
    """
    if not id_token:
        return None
    try:
        claims = jwt.decode(id_token, options={'verify_signature': False})
    except jwt.InvalidTokenError as e:
        logger.debug(f"Could not read id_token claims: {e}")
        return None
    return claims.get('xero_userid') or claims.get('sub')


def api_request(method: str, resource: str, authorization: str, tenant_id: str,
                params: Optional[list] = None, body: Optional[bytes] = None,
                timeout: float = DEFAULT_TIMEOUT) -> requests.Response:
    """Forward one call to the accounting API.

    The caller's Authorization header and tenant id are passed through
    unchanged. Network errors propagate as requests.RequestException.
    """
    url = f"{XERO_API_BASE_URL}/{resource.lstrip('/')}"
    logger.info(f"Xero API {method} {resource}")
    return requests.request(
        method,
        url,
        params=params,
        data=body if method != 'GET' else None,
        headers={
            'Authorization': authorization,
            'Xero-Tenant-Id': tenant_id,
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        },
        timeout=timeout,
    )
