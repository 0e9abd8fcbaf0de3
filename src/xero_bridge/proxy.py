"""
Xero accounting API passthrough.

The browser holds the access token and chosen tenant; this endpoint only
relays calls to api.xro/2.0 so they are made server-side.

Endpoints:
- GET|POST|PUT /api/xero-api/<resource> - Forwarded to Xero as-is
"""
import logging
from urllib.parse import unquote

import requests
from flask import Blueprint, request, jsonify, current_app, Response

from . import xero_client
from .core import cors_enabled

logger = logging.getLogger(__name__)

proxy_bp = Blueprint('proxy', __name__, url_prefix='/api/xero-api')


def build_query_params(args) -> list:
    """Turn incoming query args into the params list sent to Xero.

    The front-end encodes `where` filter expressions before putting them
    in the URL, so after the normal decode they are still encoded once.
    Decode that layer here; requests encodes the value again on the way
    out, so Xero sees a single encoding.
    """
    params = []
    for key, value in args.items(multi=True):
        if key == 'where':
            value = unquote(value)
        params.append((key, value))
    return params


@proxy_bp.route('/<path:resource>', methods=['GET', 'POST', 'PUT', 'OPTIONS'])
@cors_enabled(methods='GET, POST, PUT, OPTIONS',
              allow_headers='Content-Type, Authorization, Xero-Tenant-Id')
def forward(resource):
    """Relay one request to the Xero accounting API."""
    authorization = request.headers.get('Authorization')
    tenant_id = request.headers.get('Xero-Tenant-Id')

    if not authorization or not tenant_id:
        return jsonify({'error': 'Missing authentication details'}), 401

    body = request.get_data() if request.method != 'GET' else None

    try:
        upstream = xero_client.api_request(
            request.method,
            resource,
            authorization=authorization,
            tenant_id=tenant_id,
            params=build_query_params(request.args),
            body=body or None,
            timeout=current_app.config.get('HTTP_TIMEOUT', xero_client.DEFAULT_TIMEOUT),
        )
    except requests.RequestException as e:
        logger.error(f"Xero API request failed for {resource}: {type(e).__name__}")
        return jsonify({'error': 'Bad gateway', 'message': 'Could not reach Xero'}), 502

    if not upstream.ok:
        logger.warning(f"Xero API {request.method} {resource} returned {upstream.status_code}")

    return Response(
        upstream.content,
        status=upstream.status_code,
        content_type='application/json',
    )
