"""
SQLite document store for Xero Bridge

Two record kinds, both keyed by the customer's account number:
- notes: free-text notes, optionally tied to an invoice and a category
- reminders: dated follow-ups, optionally recurring

Ids and timestamps are assigned server-side.
"""

import os
import uuid
import sqlite3
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from flask import current_app, g

logger = logging.getLogger(__name__)

# Default database location - can be overridden by DATABASE_PATH
DEFAULT_DB_DIR = Path(os.environ.get("DATA_DIR", "./data"))
DEFAULT_DB_NAME = "xero_bridge.db"


def get_db_path() -> Path:
    """Get the database path from app config, falling back to the data dir."""
    configured = current_app.config.get('DATABASE_PATH')
    if configured:
        path = Path(configured)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    DEFAULT_DB_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_DB_DIR / DEFAULT_DB_NAME


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get a database connection with proper settings."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row

    # WAL mode for concurrent readers alongside a writer
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 30000")

    return conn


def init_db(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Create the notes and reminders tables if needed.

    Called once from the application factory.
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS notes (
            id TEXT PRIMARY KEY,
            account_number TEXT NOT NULL,
            invoice_id TEXT,
            text TEXT NOT NULL,
            category TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS reminders (
            id TEXT PRIMARY KEY,
            account_number TEXT NOT NULL,
            invoice_id TEXT,
            text TEXT NOT NULL,
            due_date TEXT NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            recurring TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_notes_account ON notes(account_number)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_notes_invoice ON notes(invoice_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_reminders_account ON reminders(account_number)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_reminders_invoice ON reminders(invoice_id)")

    conn.commit()
    return conn


def get_db() -> sqlite3.Connection:
    """Request-scoped connection, closed on app context teardown."""
    if 'store_db_conn' not in g:
        g.store_db_conn = get_connection()
    return g.store_db_conn


def close_db(exception=None):
    conn = g.pop('store_db_conn', None)
    if conn is not None:
        conn.close()


def utc_now_iso() -> str:
    """Current UTC time as an ISO string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_due_date(value) -> str:
    """Normalize a due date to a UTC ISO timestamp.

    Accepts `YYYY-MM-DD` or a full ISO 8601 datetime (with or without a
    trailing Z). Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a recognizable date
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Invalid date value")

    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# ============ Notes ============

def _note_to_dict(row: sqlite3.Row) -> Dict:
    return {
        'id': row['id'],
        'accountNumber': row['account_number'],
        'invoiceId': row['invoice_id'],
        'text': row['text'],
        'category': row['category'],
        'createdAt': row['created_at'],
        'updatedAt': row['updated_at'],
    }


def list_notes(conn: sqlite3.Connection, account_number: str) -> List[Dict]:
    """Notes for an account, newest first."""
    rows = conn.execute(
        "SELECT * FROM notes WHERE account_number = ? ORDER BY created_at DESC, rowid DESC",
        (account_number,)
    ).fetchall()
    return [_note_to_dict(row) for row in rows]


def create_note(conn: sqlite3.Connection, account_number: str, text: str,
                invoice_id: Optional[str] = None, category: Optional[str] = None) -> str:
    note_id = uuid.uuid4().hex
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO notes (id, account_number, invoice_id, text, category, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (note_id, account_number, invoice_id or None, text, category or None, now, now)
    )
    conn.commit()
    return note_id


def update_note(conn: sqlite3.Connection, note_id: str, text: Optional[str] = None,
                category: Optional[str] = None) -> bool:
    """Update the given fields. Returns False if the note does not exist."""
    assignments = ["updated_at = ?"]
    values = [utc_now_iso()]
    if text is not None:
        assignments.append("text = ?")
        values.append(text)
    if category is not None:
        assignments.append("category = ?")
        values.append(category)

    values.append(note_id)
    cursor = conn.execute(
        f"UPDATE notes SET {', '.join(assignments)} WHERE id = ?",
        values
    )
    conn.commit()
    return cursor.rowcount > 0


def delete_note(conn: sqlite3.Connection, note_id: str) -> bool:
    cursor = conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
    conn.commit()
    return cursor.rowcount > 0


# ============ Reminders ============

def _reminder_to_dict(row: sqlite3.Row) -> Dict:
    return {
        'id': row['id'],
        'accountNumber': row['account_number'],
        'invoiceId': row['invoice_id'],
        'text': row['text'],
        'dueDate': row['due_date'],
        'completed': bool(row['completed']),
        'recurring': row['recurring'],
        'createdAt': row['created_at'],
        'updatedAt': row['updated_at'],
    }


def list_reminders(conn: sqlite3.Connection, account_number: str) -> List[Dict]:
    """Reminders for an account, soonest due first."""
    rows = conn.execute(
        "SELECT * FROM reminders WHERE account_number = ? ORDER BY due_date ASC, rowid ASC",
        (account_number,)
    ).fetchall()
    return [_reminder_to_dict(row) for row in rows]


def create_reminder(conn: sqlite3.Connection, account_number: str, text: str, due_date: str,
                    invoice_id: Optional[str] = None, recurring: Optional[str] = None) -> str:
    """Insert a reminder. `due_date` must already be normalized."""
    reminder_id = uuid.uuid4().hex
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO reminders (id, account_number, invoice_id, text, due_date, completed,
                               recurring, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
        """,
        (reminder_id, account_number, invoice_id or None, text, due_date,
         recurring or None, now, now)
    )
    conn.commit()
    return reminder_id


def update_reminder(conn: sqlite3.Connection, reminder_id: str, fields: Dict) -> bool:
    """Apply already-validated column updates.

    Args:
        fields: Mapping of column name (text, due_date, completed, recurring)
            to new value

    Returns:
        False if the reminder does not exist
    """
    allowed = ('text', 'due_date', 'completed', 'recurring')
    assignments = ["updated_at = ?"]
    values = [utc_now_iso()]
    for column in allowed:
        if column in fields:
            assignments.append(f"{column} = ?")
            values.append(fields[column])

    values.append(reminder_id)
    cursor = conn.execute(
        f"UPDATE reminders SET {', '.join(assignments)} WHERE id = ?",
        values
    )
    conn.commit()
    return cursor.rowcount > 0


def delete_reminder(conn: sqlite3.Connection, reminder_id: str) -> bool:
    cursor = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
    conn.commit()
    return cursor.rowcount > 0


# ============ Batch status ============

def batch_status(conn: sqlite3.Connection, invoice_ids: List[str]) -> Dict[str, Dict[str, bool]]:
    """Which invoices have at least one note and/or reminder."""
    placeholders = ', '.join('?' for _ in invoice_ids)

    note_rows = conn.execute(
        f"SELECT DISTINCT invoice_id FROM notes WHERE invoice_id IN ({placeholders})",
        invoice_ids
    ).fetchall()
    reminder_rows = conn.execute(
        f"SELECT DISTINCT invoice_id FROM reminders WHERE invoice_id IN ({placeholders})",
        invoice_ids
    ).fetchall()

    with_notes = {row['invoice_id'] for row in note_rows}
    with_reminders = {row['invoice_id'] for row in reminder_rows}

    return {
        invoice_id: {
            'hasNote': invoice_id in with_notes,
            'hasReminder': invoice_id in with_reminders,
        }
        for invoice_id in invoice_ids
    }
