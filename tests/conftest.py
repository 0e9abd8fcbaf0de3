"""
Pytest fixtures for Xero Bridge tests
"""

import pytest
from unittest.mock import MagicMock

from xero_bridge.core import create_app

TEST_SECRET_KEY = 'test-secret-key-for-sealing-cookies'


@pytest.fixture
def app(tmp_path):
    """App wired to a throwaway database and fake Xero credentials"""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': TEST_SECRET_KEY,
        'XERO_CLIENT_ID': 'test-client-id',
        'XERO_CLIENT_SECRET': 'test-client-secret',
        'APP_BASE_URL': 'https://bridge.example.com/',
        'MAKE_WEBHOOK_URL': 'https://hook.example.com/search',
        'DATABASE_PATH': str(tmp_path / 'store.db'),
        'AUTH_COOKIE_SECURE': False,
        'HTTP_TIMEOUT': 5,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session_client(client):
    """Client carrying the cookies set after a completed Xero sign-in"""
    client.set_cookie('xero_authenticated', 'true')
    client.set_cookie('xero_tenant_id', 'tenant-123')
    client.set_cookie('xero_tenant_name', 'Acme')
    return client


def fake_response(status_code=200, json_data=None, text=None, content=None):
    """Stand-in for a requests.Response"""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError('No JSON')
    response.text = text if text is not None else ''
    response.content = content if content is not None else response.text.encode('utf-8')
    return response
