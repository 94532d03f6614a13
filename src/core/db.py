"""
SQLite storage for memos, edit locks, the rollback ledger and the outbox.
One connection per call; conditional multi-statement writes run inside BEGIN IMMEDIATE.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import get_db_path, ensure_db_directory

REQUIRED_TABLES = [
    'memos',
    'edit_locks',
    'rollback_log',
    'users',
    'outbox',
    'calendar_events',
    'activity_log',
]


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path(), timeout=10)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def immediate_transaction() -> Generator[sqlite3.Connection, None, None]:
    """Connection holding the database write lock until the block exits.

    Commits when the block completes and rolls back if it raises, so a
    read-check-write sequence inside it cannot interleave with another writer.
    """
    with get_db() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Authoritative memos, delivered copies and notification entries share one shape
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS memos (
                id TEXT PRIMARY KEY,
                sender_id TEXT NOT NULL,
                recipient_id TEXT,
                recipients TEXT NOT NULL DEFAULT '[]',
                departments TEXT NOT NULL DEFAULT '[]',
                subject TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                priority TEXT NOT NULL DEFAULT 'medium',
                status TEXT NOT NULL,
                activity_type TEXT,
                original_memo_id TEXT,
                metadata TEXT NOT NULL DEFAULT '{}',
                attachments TEXT NOT NULL DEFAULT '[]',
                signatures TEXT NOT NULL DEFAULT '[]',
                history TEXT NOT NULL DEFAULT '[]',
                acknowledgments TEXT NOT NULL DEFAULT '[]',
                is_read BOOLEAN DEFAULT FALSE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memos_original ON memos(original_memo_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memos_recipient ON memos(recipient_id, status)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS edit_locks (
                resource_id TEXT PRIMARY KEY,
                locked_by TEXT NOT NULL,
                lock_time TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS rollback_log (
                id TEXT PRIMARY KEY,
                operation_type TEXT NOT NULL,
                status TEXT NOT NULL,
                performed_by TEXT NOT NULL,
                rolled_back_by TEXT,
                timestamp TEXT NOT NULL,
                rolled_back_at TEXT,
                rollback_reason TEXT,
                error TEXT,
                payload TEXT NOT NULL DEFAULT '{}'
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_rollback_type_ts ON rollback_log(operation_type, timestamp DESC)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT NOT NULL DEFAULT '',
                role TEXT NOT NULL DEFAULT 'faculty',
                department TEXT,
                is_active BOOLEAN DEFAULT TRUE,
                updated_at TEXT NOT NULL,
                updated_by TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS outbox (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_type TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'queued',
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_outbox_status ON outbox(status, id)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS calendar_events (
                id TEXT PRIMARY KEY,
                memo_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                starts_at TEXT NOT NULL,
                ends_at TEXT NOT NULL,
                all_day BOOLEAN DEFAULT FALSE,
                category TEXT NOT NULL DEFAULT 'standard',
                participants TEXT NOT NULL DEFAULT '{}',
                created_by TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'scheduled',
                created_at TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_calendar_memo ON calendar_events(memo_id)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS activity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                actor TEXT NOT NULL,
                action TEXT NOT NULL,
                target_id TEXT,
                payload TEXT
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_activity_ts ON activity_log(ts DESC)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
