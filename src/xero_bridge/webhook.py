"""
Invoice search relay to Make.com.

The dashboard's invoice search runs in a Make.com scenario. This endpoint
forwards the search filter to the scenario webhook and normalizes whatever
comes back into a shape the front-end can render.
"""
import re
import json
import logging
from typing import Tuple

import requests
from flask import Blueprint, request, jsonify, current_app

from .core import cors_enabled, xero_session_required
from .models import SearchFilter

logger = logging.getLogger(__name__)

webhook_bp = Blueprint('webhook', __name__, url_prefix='/api')

BARE_NUMBER_RE = re.compile(r'^\s*\d+\s*$')
SIMPLE_TEXT_MAX = 100
PREVIEW_LENGTH = 100


def normalize_relay_response(response_text: str) -> Tuple[int, object]:
    """Map a raw scenario response to (status_code, json_body).

    Accepted shapes are a JSON array of invoices or an object holding an
    `Invoices` array. An empty body means no results.
    """
    if not response_text or not response_text.strip():
        logger.warning("Empty response received from Make.com")
        return 200, []

    is_bare_number = bool(BARE_NUMBER_RE.match(response_text))
    is_simple_text = (
        len(response_text) < SIMPLE_TEXT_MAX
        and '{' not in response_text
        and '[' not in response_text
    )
    if is_bare_number or is_simple_text:
        logger.warning(f"Make.com returned a simple value instead of invoice data: {response_text!r}")
        return 502, {
            'error': 'Integration Error',
            'message': 'Make.com webhook is not configured to return proper invoice data. '
                       'Please check the webhook configuration.',
            'responseValue': response_text,
        }

    try:
        data = json.loads(response_text)
    except ValueError:
        logger.error("Unable to parse Make.com response as JSON")
        return 502, {
            'error': 'Parse Error',
            'message': 'Unable to parse response from Make.com as JSON',
            'responsePreview': response_text[:PREVIEW_LENGTH],
        }

    if isinstance(data, list):
        return 200, data
    if isinstance(data, dict) and isinstance(data.get('Invoices'), list):
        return 200, data

    logger.warning("Unexpected data format from Make.com")
    return 500, {
        'error': 'Invalid Response',
        'message': 'Received unexpected data format from Make.com webhook',
        'data': data,
    }


def relay_search(search_filter: SearchFilter, webhook_url: str, timeout: float) -> Tuple[int, object]:
    """POST the filter to the scenario and normalize the answer."""
    try:
        response = requests.post(
            webhook_url,
            json=search_filter.to_payload(),
            headers={'Content-Type': 'application/json'},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Make.com webhook request failed: {type(e).__name__}")
        return 502, {
            'error': 'Integration Error',
            'message': 'Could not reach the Make.com webhook',
        }

    logger.info(f"Make.com webhook answered {response.status_code} ({len(response.text)} chars)")
    return normalize_relay_response(response.text)


@webhook_bp.route('/make-webhook', methods=['POST', 'OPTIONS'])
@cors_enabled(methods='POST, OPTIONS')
@xero_session_required
def make_webhook():
    """Run an invoice search through Make.com.

    Request body (JSON):
    {
        "tenantId": "optional, defaults to the session tenant",
        "searchTerm": "", "status": "", "dateFrom": "", "dateTo": "",
        "sortBy": "Date", "sortOrder": "desc"
    }
    """
    from .auth import TENANT_ID_COOKIE

    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        return jsonify({
            'error': 'Bad Request',
            'message': 'Invalid JSON in request body',
        }), 400

    tenant_id = data.get('tenantId') or request.cookies.get(TENANT_ID_COOKIE)
    if not tenant_id:
        return jsonify({
            'error': 'Bad Request',
            'message': 'Missing tenant ID',
        }), 400

    webhook_url = current_app.config.get('MAKE_WEBHOOK_URL')
    if not webhook_url:
        logger.error("MAKE_WEBHOOK_URL not configured")
        return jsonify({
            'error': 'Server Configuration Error',
            'message': 'Webhook URL not configured. Please contact the administrator.',
        }), 500

    search_filter = SearchFilter.from_request(data, tenant_id)
    status, body = relay_search(
        search_filter,
        webhook_url,
        timeout=current_app.config.get('HTTP_TIMEOUT', 15),
    )
    return jsonify(body), status
