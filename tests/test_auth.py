"""
Tests for the Xero authorization flow endpoints
"""

import re
import json
import time
from unittest.mock import patch
from urllib.parse import urlparse, parse_qs

import jwt
from werkzeug.http import parse_date

from conftest import fake_response, TEST_SECRET_KEY
from xero_bridge.crypto import seal_auth_state
from xero_bridge.models import AuthRequestState
from xero_bridge.pkce import code_challenge

REDIRECT_URI = 'https://bridge.example.com/auth/callback'


def start_flow(client):
    """Hit /auth/start and return the authorize URL query params"""
    response = client.get('/auth/start')
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers['Location']).query)


def redirect_params(response):
    location = urlparse(response.headers['Location'])
    assert location.path == '/'
    return {key: values[0] for key, values in parse_qs(location.query, keep_blank_values=True).items()}


def auth_cookie_cleared(response):
    return any(
        header.startswith('xero_auth=;') and 'Expires=Thu, 01 Jan 1970' in header
        for header in response.headers.getlist('Set-Cookie')
    )


def token_response(**extra):
    body = {'access_token': 'at-1', 'refresh_token': 'rt-1', 'expires_in': 1800}
    body.update(extra)
    return fake_response(200, body)


class TestStart:
    """GET /auth/start"""

    def test_redirects_to_xero_with_pkce(self, client):
        response = client.get('/auth/start')

        assert response.status_code == 302
        assert response.headers['Location'].startswith('https://login.xero.com/identity/connect/authorize?')
        assert response.headers['Cache-Control'] == 'no-cache'

        params = parse_qs(urlparse(response.headers['Location']).query)
        assert params['redirect_uri'] == [REDIRECT_URI]
        assert params['code_challenge_method'] == ['S256']

    def test_sets_http_only_cookie(self, client):
        response = client.get('/auth/start')

        cookie_headers = [h for h in response.headers.getlist('Set-Cookie') if h.startswith('xero_auth=')]
        assert len(cookie_headers) == 1
        assert 'HttpOnly' in cookie_headers[0]
        assert 'SameSite=Lax' in cookie_headers[0]
        assert 'Max-Age=900' in cookie_headers[0]
        assert 'Path=/' in cookie_headers[0]

    def test_cookie_secure_with_fifteen_minute_expiry(self, app, client):
        app.config['AUTH_COOKIE_SECURE'] = True
        issued_at = time.time()

        response = client.get('/auth/start')

        cookie_header = next(h for h in response.headers.getlist('Set-Cookie') if h.startswith('xero_auth='))
        assert 'Secure' in cookie_header
        expires = parse_date(re.search(r'Expires=([^;]+)', cookie_header).group(1))
        assert abs(expires.timestamp() - (issued_at + 900)) < 5

    def test_state_never_reused(self, client):
        first = start_flow(client)
        second = start_flow(client)
        assert first['state'] != second['state']

    def test_unconfigured(self, app, client):
        app.config['XERO_CLIENT_ID'] = None

        response = client.get('/auth/start')

        assert response.status_code == 500
        assert response.get_json()['message'] == 'Xero integration is not configured'
        assert not any(h.startswith('xero_auth=') for h in response.headers.getlist('Set-Cookie'))


class TestCallback:
    """GET /auth/callback"""

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_success(self, mock_post, mock_get, client):
        id_token = jwt.encode({'xero_userid': 'user-9'}, 'k' * 32, algorithm='HS256')
        mock_post.return_value = token_response(id_token=id_token)
        mock_get.return_value = fake_response(200, [
            {'tenantId': 'A', 'tenantName': 'Alpha'},
            {'tenantId': 'B', 'tenantName': 'Beta'},
        ])
        authorize = start_flow(client)

        response = client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}")

        assert response.status_code == 302
        params = redirect_params(response)
        assert params['auth'] == 'success'
        assert params['tenantId'] == 'A'
        assert params['tenantName'] == 'Alpha'
        assert params['multipleOrgs'] == 'true'
        assert json.loads(params['tenants']) == [
            {'tenantId': 'A', 'tenantName': 'Alpha'},
            {'tenantId': 'B', 'tenantName': 'Beta'},
        ]
        tokens = json.loads(params['tokens'])
        assert tokens['access_token'] == 'at-1'
        assert tokens['refresh_token'] == 'rt-1'
        assert tokens['expires_at'] > int(time.time() * 1000)

        assert response.headers['Cache-Control'] == 'no-store'
        assert response.headers['Referrer-Policy'] == 'no-referrer'
        assert auth_cookie_cleared(response)
        assert client.get_cookie('xero_auth') is None
        assert client.get_cookie('xero_authenticated').value == 'true'
        assert client.get_cookie('xero_tenant_id').value == 'A'
        assert client.get_cookie('xero_user_id').value == 'user-9'

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_exchange_uses_start_redirect_uri_and_verifier(self, mock_post, mock_get, client):
        mock_post.return_value = token_response()
        mock_get.return_value = fake_response(200, [{'tenantId': 'A', 'tenantName': 'Alpha'}])
        authorize = start_flow(client)

        client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}")

        form = mock_post.call_args.kwargs['data']
        assert form['redirect_uri'] == authorize['redirect_uri'][0]
        assert form['code'] == 'abc'
        assert code_challenge(form['code_verifier']) == authorize['code_challenge'][0]

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_single_tenant(self, mock_post, mock_get, client):
        mock_post.return_value = token_response()
        mock_get.return_value = fake_response(200, [{'tenantId': 'A', 'tenantName': 'Alpha'}])
        authorize = start_flow(client)

        params = redirect_params(client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}"))

        assert params['auth'] == 'success'
        assert params['multipleOrgs'] == 'false'

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_no_tenants_still_success(self, mock_post, mock_get, client):
        mock_post.return_value = token_response()
        mock_get.return_value = fake_response(200, [])
        authorize = start_flow(client)

        params = redirect_params(client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}"))

        assert params['auth'] == 'success'
        assert params['tenantId'] == ''
        assert params['tenantName'] == ''
        assert params['multipleOrgs'] == 'false'
        assert json.loads(params['tenants']) == []

    @patch('xero_bridge.xero_client.requests.post')
    def test_state_mismatch_never_exchanges(self, mock_post, client):
        start_flow(client)

        with patch('xero_bridge.auth.security_logger') as mock_security_logger:
            response = client.get('/auth/callback?code=abc&state=forged')

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert 'state mismatch' in params['message']
        mock_post.assert_not_called()
        mock_security_logger.warning.assert_called_once()
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_provider_error(self, mock_post, client):
        start_flow(client)

        response = client.get('/auth/callback?error=access_denied&error_description=User+cancelled')

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert params['message'] == 'Authentication error: User cancelled'
        mock_post.assert_not_called()
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_missing_code(self, mock_post, client):
        authorize = start_flow(client)

        response = client.get(f"/auth/callback?state={authorize['state'][0]}")

        assert redirect_params(response)['message'] == 'No authorization code received from Xero'
        mock_post.assert_not_called()
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_missing_state(self, mock_post, client):
        start_flow(client)

        response = client.get('/auth/callback?code=abc')

        assert 'missing state' in redirect_params(response)['message']
        mock_post.assert_not_called()
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_missing_cookie(self, mock_post, client):
        response = client.get('/auth/callback?code=abc&state=whatever')

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert params['message'] == 'Authentication session expired or invalid'
        mock_post.assert_not_called()
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_expired_cookie(self, mock_post, client):
        now = int(time.time())
        stale = AuthRequestState('s' * 32, 'v' * 64, 'c', now - 2000, now - 1)
        client.set_cookie('xero_auth', seal_auth_state(stale, TEST_SECRET_KEY))

        response = client.get(f"/auth/callback?code=abc&state={'s' * 32}")

        assert redirect_params(response)['message'] == 'Authentication session expired or invalid'
        mock_post.assert_not_called()

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_replayed_callback_rejected(self, mock_post, mock_get, client):
        mock_post.return_value = token_response()
        mock_get.return_value = fake_response(200, [{'tenantId': 'A', 'tenantName': 'Alpha'}])
        authorize = start_flow(client)
        callback_url = f"/auth/callback?code=abc&state={authorize['state'][0]}"

        first = client.get(callback_url)
        second = client.get(callback_url)

        assert redirect_params(first)['auth'] == 'success'
        assert redirect_params(second)['message'] == 'Authentication session expired or invalid'
        assert mock_post.call_count == 1

    @patch('xero_bridge.xero_client.requests.post')
    def test_token_exchange_failure(self, mock_post, client):
        mock_post.return_value = fake_response(400, text='{"error":"invalid_grant","secret":"x"}')
        authorize = start_flow(client)

        response = client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}")

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert params['message'] == 'Failed to exchange code for tokens (400)'
        assert 'invalid_grant' not in response.headers['Location']
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.get')
    @patch('xero_bridge.xero_client.requests.post')
    def test_tenant_fetch_failure_hands_over_tokens(self, mock_post, mock_get, client):
        mock_post.return_value = token_response()
        mock_get.return_value = fake_response(500, text='upstream broke')
        authorize = start_flow(client)

        response = client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}")

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert params['message'] == 'Connected to Xero, but failed to get user details'
        assert json.loads(params['tokens'])['access_token'] == 'at-1'
        assert client.get_cookie('xero_authenticated') is None
        assert auth_cookie_cleared(response)

    @patch('xero_bridge.xero_client.requests.post')
    def test_unexpected_error(self, mock_post, client):
        mock_post.side_effect = RuntimeError('boom')
        authorize = start_flow(client)

        response = client.get(f"/auth/callback?code=abc&state={authorize['state'][0]}")

        params = redirect_params(response)
        assert params['auth'] == 'error'
        assert 'boom' not in params['message']
        assert auth_cookie_cleared(response)


class TestRefresh:
    """POST /auth/refresh"""

    @patch('xero_bridge.xero_client.requests.post')
    def test_success(self, mock_post, client):
        mock_post.return_value = fake_response(200, {
            'access_token': 'at-2', 'refresh_token': 'rt-2', 'expires_in': 1800,
        })

        response = client.post('/auth/refresh', json={'refresh_token': 'rt-1'})

        assert response.status_code == 200
        body = response.get_json()
        assert body['access_token'] == 'at-2'
        assert body['refresh_token'] == 'rt-2'
        assert body['expires_at'] > int(time.time() * 1000)
        assert mock_post.call_args.kwargs['data'] == {
            'grant_type': 'refresh_token',
            'refresh_token': 'rt-1',
        }
        assert response.headers['Access-Control-Allow-Origin'] == '*'

    @patch('xero_bridge.xero_client.requests.post')
    def test_upstream_status_and_body_passed_through(self, mock_post, client):
        mock_post.return_value = fake_response(400, text='{"error":"invalid_grant"}')

        response = client.post('/auth/refresh', json={'refresh_token': 'rt-1'})

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'Failed to refresh token'
        assert body['details'] == '{"error":"invalid_grant"}'

    def test_missing_refresh_token(self, client):
        response = client.post('/auth/refresh', json={})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Refresh token is required'

    def test_invalid_json(self, client):
        response = client.post('/auth/refresh', data='not json', content_type='application/json')
        assert response.status_code == 400

    def test_get_not_allowed(self, client):
        response = client.get('/auth/refresh')

        assert response.status_code == 405
        assert response.get_json()['error'] == 'Method not allowed'

    def test_preflight(self, client):
        response = client.options('/auth/refresh')

        assert response.status_code == 204
        assert 'POST' in response.headers['Access-Control-Allow-Methods']

    def test_missing_credentials(self, app, client):
        app.config['XERO_CLIENT_SECRET'] = ''

        response = client.post('/auth/refresh', json={'refresh_token': 'rt-1'})

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Missing Xero credentials'


class TestConnections:
    """GET /auth/connections"""

    def test_requires_session(self, client):
        response = client.get('/auth/connections')
        assert response.status_code == 401

    def test_returns_session_tenant(self, session_client):
        response = session_client.get('/auth/connections')

        assert response.status_code == 200
        assert response.get_json() == [{'tenantId': 'tenant-123', 'tenantName': 'Acme'}]

    def test_default_name(self, client):
        client.set_cookie('xero_authenticated', 'true')
        client.set_cookie('xero_tenant_id', 'tenant-123')

        response = client.get('/auth/connections')

        assert response.get_json()[0]['tenantName'] == 'Xero Organization'

    def test_no_tenant(self, client):
        client.set_cookie('xero_authenticated', 'true')

        response = client.get('/auth/connections')

        assert response.status_code == 404


class TestLogout:

    def test_post_clears_session(self, session_client):
        response = session_client.post('/auth/logout')

        assert response.get_json() == {'success': True}
        assert session_client.get_cookie('xero_authenticated') is None
        assert session_client.get_cookie('xero_tenant_id') is None

    def test_get_redirects_home(self, session_client):
        response = session_client.get('/auth/logout')

        assert response.status_code == 302
        assert urlparse(response.headers['Location']).path == '/'
