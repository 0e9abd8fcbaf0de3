"""
Notes and Reminders API

REST endpoints over the SQLite document store.

Endpoints:
- GET /api/store/notes/<account_number> - List notes for an account
- POST /api/store/notes - Add a note
- PUT /api/store/notes/<note_id> - Update text/category
- DELETE /api/store/notes/<note_id> - Delete a note
- GET /api/store/reminders/<account_number> - List reminders for an account
- POST /api/store/reminders - Add a reminder
- PUT /api/store/reminders/<reminder_id> - Update a reminder
- PUT /api/store/reminders/<reminder_id>/complete - Mark complete
- DELETE /api/store/reminders/<reminder_id> - Delete a reminder
- POST /api/store/batch-status - Note/reminder flags for many invoices
"""

import sqlite3
import logging

from flask import Blueprint, request, jsonify

from .core import cors_headers_for, xero_session_required
from .database import (
    get_db, parse_due_date,
    list_notes, create_note, update_note, delete_note,
    list_reminders, create_reminder, update_reminder, delete_reminder,
    batch_status,
)

logger = logging.getLogger(__name__)

store_bp = Blueprint('store', __name__, url_prefix='/api/store')

MAX_BATCH_INVOICE_IDS = 30

STORE_CORS_HEADERS = cors_headers_for('GET, POST, PUT, DELETE, OPTIONS')


@xero_session_required
def _session_gate():
    return None


@store_bp.before_request
def require_xero_session():
    """All store endpoints need a connected Xero session. Preflights are
    answered here without one."""
    if request.method == 'OPTIONS':
        return '', 204
    return _session_gate()


@store_bp.after_request
def add_cors_headers(response):
    for name, value in STORE_CORS_HEADERS.items():
        response.headers[name] = value
    return response


@store_bp.errorhandler(sqlite3.Error)
def database_error(error):
    logger.error(f"Document store error: {error}")
    return jsonify({'error': 'Database error', 'details': 'The request could not be completed'}), 500


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _missing_field(data: dict, required: tuple):
    for field in required:
        if not data.get(field):
            return field
    return None


def _non_string_field(data: dict, fields: tuple):
    """First field present with a non-null, non-string value."""
    for field in fields:
        if data.get(field) is not None and not isinstance(data[field], str):
            return field
    return None


def _validation_error(data: dict, required: tuple, optional: tuple = ()):
    missing = _missing_field(data, required)
    if missing:
        return jsonify({'error': f'Missing required field: {missing}'}), 400
    invalid = _non_string_field(data, required + optional)
    if invalid:
        return jsonify({'error': f'Field must be a string: {invalid}'}), 400
    return None


def _normalize_recurring(value):
    return value if value and value != 'none' else None


# ============ Notes ============

@store_bp.route('/notes/<account_number>', methods=['GET'])
def get_notes(account_number):
    notes = list_notes(get_db(), account_number)
    logger.info(f"Found {len(notes)} notes for account {account_number}")
    return jsonify({'notes': notes})


@store_bp.route('/notes', methods=['POST'])
def add_note():
    """Add a note.

    Request body (JSON):
    {
        "accountNumber": "ACC-001",
        "text": "Called about overdue invoice",
        "invoiceId": "optional",
        "category": "optional"
    }
    """
    data = _json_body()
    error = _validation_error(data, ('accountNumber', 'text'), ('invoiceId', 'category'))
    if error:
        return error

    note_id = create_note(
        get_db(),
        account_number=data['accountNumber'],
        text=data['text'],
        invoice_id=data.get('invoiceId'),
        category=data.get('category'),
    )
    logger.info(f"Note {note_id} added for account {data['accountNumber']}")

    return jsonify({
        'id': note_id,
        'success': True,
        'message': 'Note added successfully',
    }), 201


@store_bp.route('/notes/<note_id>', methods=['PUT'])
def edit_note(note_id):
    data = _json_body()
    text = data.get('text')
    category = data.get('category')
    if text is None and category is None:
        return jsonify({'error': 'No fields to update'}), 400
    if 'text' in data and (not isinstance(text, str) or not text):
        return jsonify({'error': 'Field must be a non-empty string: text'}), 400
    invalid = _non_string_field(data, ('category',))
    if invalid:
        return jsonify({'error': f'Field must be a string: {invalid}'}), 400

    if not update_note(get_db(), note_id, text=text, category=category):
        return jsonify({'error': 'Note not found'}), 404

    return jsonify({'success': True, 'message': 'Note updated successfully'})


@store_bp.route('/notes/<note_id>', methods=['DELETE'])
def remove_note(note_id):
    if not delete_note(get_db(), note_id):
        return jsonify({'error': 'Note not found'}), 404

    logger.info(f"Note {note_id} deleted")
    return jsonify({'success': True, 'message': 'Note deleted successfully'})


# ============ Reminders ============

@store_bp.route('/reminders/<account_number>', methods=['GET'])
def get_reminders(account_number):
    reminders = list_reminders(get_db(), account_number)
    logger.info(f"Found {len(reminders)} reminders for account {account_number}")
    return jsonify({'reminders': reminders})


@store_bp.route('/reminders', methods=['POST'])
def add_reminder():
    """Add a reminder.

    Request body (JSON):
    {
        "accountNumber": "ACC-001",
        "text": "Chase payment",
        "dueDate": "2024-05-01" or full ISO datetime,
        "invoiceId": "optional",
        "recurring": "optional, 'none' means not recurring"
    }
    """
    data = _json_body()
    error = _validation_error(data, ('accountNumber', 'text', 'dueDate'), ('invoiceId', 'recurring'))
    if error:
        return error

    try:
        due_date = parse_due_date(data['dueDate'])
    except ValueError:
        return jsonify({
            'error': 'Invalid due date format. Please use YYYY-MM-DD or a full ISO string.'
        }), 400

    reminder_id = create_reminder(
        get_db(),
        account_number=data['accountNumber'],
        text=data['text'],
        due_date=due_date,
        invoice_id=data.get('invoiceId'),
        recurring=_normalize_recurring(data.get('recurring')),
    )
    logger.info(f"Reminder {reminder_id} added for account {data['accountNumber']}")

    return jsonify({
        'id': reminder_id,
        'success': True,
        'message': 'Reminder added successfully',
    }), 201


@store_bp.route('/reminders/<reminder_id>', methods=['PUT'])
def edit_reminder(reminder_id):
    data = _json_body()
    if not any(key in data for key in ('text', 'dueDate', 'completed', 'recurring')):
        return jsonify({'error': 'No fields provided to update'}), 400
    if 'text' in data and (not isinstance(data['text'], str) or not data['text']):
        return jsonify({'error': 'Field must be a non-empty string: text'}), 400
    invalid = _non_string_field(data, ('recurring',))
    if invalid:
        return jsonify({'error': f'Field must be a string: {invalid}'}), 400

    fields = {}
    if 'text' in data:
        fields['text'] = data['text']
    if 'dueDate' in data:
        try:
            fields['due_date'] = parse_due_date(data['dueDate'])
        except ValueError:
            return jsonify({
                'error': 'Invalid due date format for update. Please use YYYY-MM-DD or a full ISO string.'
            }), 400
    if 'completed' in data:
        fields['completed'] = 1 if data['completed'] else 0
    if 'recurring' in data:
        fields['recurring'] = _normalize_recurring(data['recurring'])

    if not update_reminder(get_db(), reminder_id, fields):
        return jsonify({'error': 'Reminder not found'}), 404

    return jsonify({'success': True, 'message': 'Reminder updated successfully'})


@store_bp.route('/reminders/<reminder_id>/complete', methods=['PUT'])
def complete_reminder(reminder_id):
    if not update_reminder(get_db(), reminder_id, {'completed': 1}):
        return jsonify({'error': 'Reminder not found'}), 404

    logger.info(f"Reminder {reminder_id} marked as complete")
    return jsonify({'success': True, 'message': 'Reminder marked as complete'})


@store_bp.route('/reminders/<reminder_id>', methods=['DELETE'])
def remove_reminder(reminder_id):
    if not delete_reminder(get_db(), reminder_id):
        return jsonify({'error': 'Reminder not found'}), 404

    logger.info(f"Reminder {reminder_id} deleted")
    return jsonify({'success': True, 'message': 'Reminder deleted successfully'})


# ============ Batch status ============

@store_bp.route('/batch-status', methods=['POST'])
def get_batch_status():
    """Note/reminder presence for a page of invoices.

    Request body (JSON):
    {
        "invoiceIds": ["inv-1", "inv-2"]
    }

    Response:
    {
        "inv-1": {"hasNote": true, "hasReminder": false},
        ...
    }
    """
    invoice_ids = _json_body().get('invoiceIds')
    if not isinstance(invoice_ids, list) or not invoice_ids:
        return jsonify({'error': 'Missing or invalid invoiceIds array in request body.'}), 400
    if len(invoice_ids) > MAX_BATCH_INVOICE_IDS:
        logger.warning(f"batch-status received {len(invoice_ids)} invoice ids")
        return jsonify({
            'error': f'Too many invoice IDs provided. Maximum is {MAX_BATCH_INVOICE_IDS} per request.'
        }), 400

    invoice_ids = [str(invoice_id) for invoice_id in invoice_ids]
    return jsonify(batch_status(get_db(), invoice_ids))
