"""
Data access for memos, user profiles, calendar entries and the activity log.
Functions accept an optional open connection so callers can group writes in one transaction.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from .db import get_db, immediate_transaction
from .schema import Memo, MemoStatus, UserProfile, next_version, to_db_ts, utc_now

from util.logging import logger

MEMO_JSON_FIELDS = ['recipients', 'departments', 'metadata', 'attachments',
                    'signatures', 'history', 'acknowledgments']
MEMO_EDITABLE_FIELDS = ['subject', 'content', 'priority', 'recipients', 'departments',
                        'recipient_id', 'metadata', 'attachments', 'signatures']
USER_EDITABLE_FIELDS = ['email', 'first_name', 'last_name', 'role', 'department', 'is_active']


def new_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def _connection(conn: Optional[sqlite3.Connection]):
    """Reuse the caller's connection, or open a short write transaction."""
    if conn is not None:
        yield conn
    else:
        with immediate_transaction() as own:
            yield own


def _encode(column: str, value: Any) -> Any:
    if column in MEMO_JSON_FIELDS:
        return json.dumps(value)
    if isinstance(value, MemoStatus):
        return value.value
    return value


# Memos

def insert_memo(memo: Memo, conn: Optional[sqlite3.Connection] = None) -> Memo:
    """Insert a memo row."""
    with _connection(conn) as c:
        c.execute(
            '''
            INSERT INTO memos (
                id, sender_id, recipient_id, recipients, departments, subject, content,
                priority, status, activity_type, original_memo_id, metadata, attachments,
                signatures, history, acknowledgments, is_read, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                memo.id, memo.sender_id, memo.recipient_id,
                json.dumps(memo.recipients), json.dumps(memo.departments),
                memo.subject, memo.content, memo.priority, memo.status.value,
                memo.activity_type, memo.original_memo_id, json.dumps(memo.metadata),
                json.dumps(memo.attachments), json.dumps(memo.signatures),
                json.dumps(memo.history), json.dumps(memo.acknowledgments),
                memo.is_read, memo.created_at, memo.updated_at,
            )
        )
    return memo


def get_memo(memo_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Memo]:
    """Get a single memo row by id."""
    if conn is not None:
        row = conn.execute('SELECT * FROM memos WHERE id = ?', (memo_id,)).fetchone()
    else:
        with get_db() as own:
            row = own.execute('SELECT * FROM memos WHERE id = ?', (memo_id,)).fetchone()
    return Memo.from_row(row) if row else None


def transition_memo_status(memo_id: str, expected: MemoStatus, new_status: MemoStatus,
                           history_entry: Optional[Dict[str, Any]] = None,
                           conn: Optional[sqlite3.Connection] = None) -> bool:
    """Compare-and-set the status column; appends a history entry on success.

    Returns False when the stored status no longer equals `expected`.
    """
    with _connection(conn) as c:
        row = c.execute(
            'SELECT history, updated_at FROM memos WHERE id = ? AND status = ?',
            (memo_id, expected.value)
        ).fetchone()
        if row is None:
            return False

        history = json.loads(row["history"])
        if history_entry:
            history.append(history_entry)

        cursor = c.execute(
            'UPDATE memos SET status = ?, history = ?, updated_at = ? WHERE id = ? AND status = ?',
            (new_status.value, json.dumps(history), next_version(row["updated_at"]),
             memo_id, expected.value)
        )
        return cursor.rowcount == 1


def update_memo_fields(memo_id: str, changes: Dict[str, Any], updated_at: str,
                       conn: Optional[sqlite3.Connection] = None) -> bool:
    """Write editable columns of a memo and its new version marker."""
    unknown = set(changes) - set(MEMO_EDITABLE_FIELDS) - {'acknowledgments', 'is_read', 'status'}
    if unknown:
        raise ValueError(f"Cannot update memo fields: {sorted(unknown)}")

    columns = list(changes)
    assignments = ", ".join(f"{column} = ?" for column in columns)
    params = [_encode(column, changes[column]) for column in columns]
    params += [updated_at, memo_id]

    with _connection(conn) as c:
        cursor = c.execute(f'UPDATE memos SET {assignments}, updated_at = ? WHERE id = ?', params)
        return cursor.rowcount == 1


def delete_memos(memo_ids: Iterable[str], conn: Optional[sqlite3.Connection] = None) -> int:
    """Delete the given memo rows if they exist; returns how many were removed."""
    ids = list(memo_ids)
    if not ids:
        return 0
    placeholders = ",".join("?" for _ in ids)
    with _connection(conn) as c:
        cursor = c.execute(f'DELETE FROM memos WHERE id IN ({placeholders})', ids)
        return cursor.rowcount


def find_copies(original_memo_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Memo]:
    """Delivered copies linked to an authoritative memo."""
    query = '''
        SELECT * FROM memos
        WHERE original_memo_id = ? AND activity_type IS NULL
        ORDER BY created_at, id
    '''
    if conn is not None:
        rows = conn.execute(query, (original_memo_id,)).fetchall()
    else:
        with get_db() as own:
            rows = own.execute(query, (original_memo_id,)).fetchall()
    return [Memo.from_row(row) for row in rows]


def find_copy_for_recipient(original_memo_id: str, recipient_id: str,
                            conn: Optional[sqlite3.Connection] = None) -> Optional[Memo]:
    query = '''
        SELECT * FROM memos
        WHERE original_memo_id = ? AND recipient_id = ? AND activity_type IS NULL
    '''
    if conn is not None:
        row = conn.execute(query, (original_memo_id, recipient_id)).fetchone()
    else:
        with get_db() as own:
            row = own.execute(query, (original_memo_id, recipient_id)).fetchone()
    return Memo.from_row(row) if row else None


def list_inbox(user_id: str, limit: int = 100) -> List[Memo]:
    """Memos and notifications addressed to a user, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            '''
            SELECT * FROM memos
            WHERE recipient_id = ? AND status NOT IN ('deleted', 'archived')
            ORDER BY created_at DESC
            LIMIT ?
            ''',
            (user_id, limit)
        ).fetchall()
    return [Memo.from_row(row) for row in rows]


def list_notifications(related_memo_id: str, event_type: Optional[str] = None,
                       include_archived: bool = False) -> List[Memo]:
    """Notification entries that point at a memo via metadata.relatedMemoId."""
    query = '''
        SELECT * FROM memos
        WHERE activity_type IS NOT NULL
          AND json_extract(metadata, '$.relatedMemoId') = ?
    '''
    params: List[Any] = [related_memo_id]
    if event_type:
        query += " AND json_extract(metadata, '$.eventType') = ?"
        params.append(event_type)
    if not include_archived:
        query += " AND status != 'archived'"
    query += ' ORDER BY created_at'
    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
    return [Memo.from_row(row) for row in rows]


def archive_notifications(related_memo_id: str, event_type: str) -> int:
    """Archive live notification entries of one event type for a memo."""
    with immediate_transaction() as conn:
        cursor = conn.execute(
            '''
            UPDATE memos SET status = 'archived', updated_at = ?
            WHERE activity_type IS NOT NULL
              AND json_extract(metadata, '$.eventType') = ?
              AND json_extract(metadata, '$.relatedMemoId') = ?
              AND status != 'archived'
            ''',
            (to_db_ts(utc_now()), event_type, related_memo_id)
        )
        return cursor.rowcount


def get_memo_count() -> int:
    try:
        with get_db() as conn:
            return conn.execute('SELECT COUNT(*) FROM memos WHERE activity_type IS NULL').fetchone()[0]
    except sqlite3.Error as e:
        logger.error(f"Failed to count memos: {e}")
        return 0


# Users

def insert_user(user: UserProfile) -> UserProfile:
    with immediate_transaction() as conn:
        conn.execute(
            '''
            INSERT INTO users (id, email, first_name, last_name, role, department,
                               is_active, updated_at, updated_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (user.id, user.email, user.first_name, user.last_name, user.role,
             user.department, user.is_active, user.updated_at, user.updated_by)
        )
    return user


def get_user(user_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[UserProfile]:
    if conn is not None:
        row = conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
    else:
        with get_db() as own:
            row = own.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
    return UserProfile.from_row(row) if row else None


def get_users(user_ids: Iterable[str]) -> Dict[str, UserProfile]:
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    with get_db() as conn:
        rows = conn.execute(f'SELECT * FROM users WHERE id IN ({placeholders})', ids).fetchall()
    return {row["id"]: UserProfile.from_row(row) for row in rows}


def list_users(role: Optional[str] = None, departments: Optional[List[str]] = None,
               active_only: bool = True) -> List[UserProfile]:
    query = 'SELECT * FROM users WHERE 1 = 1'
    params: List[Any] = []
    if role:
        query += ' AND role = ?'
        params.append(role)
    if departments:
        query += f' AND department IN ({",".join("?" for _ in departments)})'
        params.extend(departments)
    if active_only:
        query += ' AND is_active = 1'
    query += ' ORDER BY id'
    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
    return [UserProfile.from_row(row) for row in rows]


def update_user_fields(user_id: str, changes: Dict[str, Any], updated_at: str, updated_by: str,
                       conn: Optional[sqlite3.Connection] = None) -> bool:
    unknown = set(changes) - set(USER_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

    columns = list(changes)
    assignments = ", ".join(f"{column} = ?" for column in columns)
    params = [changes[column] for column in columns] + [updated_at, updated_by, user_id]
    prefix = f"{assignments}, " if assignments else ""
    with _connection(conn) as c:
        cursor = c.execute(
            f'UPDATE users SET {prefix}updated_at = ?, updated_by = ? WHERE id = ?', params
        )
        return cursor.rowcount == 1


# Calendar entries

def insert_calendar_event(event: Dict[str, Any], conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
    with _connection(conn) as c:
        c.execute(
            '''
            INSERT INTO calendar_events (id, memo_id, title, description, starts_at, ends_at,
                                         all_day, category, participants, created_by, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (event["id"], event["memo_id"], event["title"], event.get("description"),
             event["starts_at"], event["ends_at"], event.get("all_day", False),
             event.get("category", "standard"), json.dumps(event.get("participants", {})),
             event["created_by"], event.get("status", "scheduled"), event["created_at"])
        )
    return event


def list_calendar_events(memo_id: str) -> List[Dict[str, Any]]:
    with get_db() as conn:
        rows = conn.execute(
            'SELECT * FROM calendar_events WHERE memo_id = ? ORDER BY starts_at', (memo_id,)
        ).fetchall()
    events = []
    for row in rows:
        event = dict(row)
        event["participants"] = json.loads(event["participants"])
        event["all_day"] = bool(event["all_day"])
        events.append(event)
    return events


def delete_calendar_events(memo_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
    with _connection(conn) as c:
        cursor = c.execute('DELETE FROM calendar_events WHERE memo_id = ?', (memo_id,))
        return cursor.rowcount


def delete_calendar_event(event_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
    with _connection(conn) as c:
        return c.execute('DELETE FROM calendar_events WHERE id = ?', (event_id,)).rowcount


# Activity log

def add_event(actor: str, action: str, target_id: Optional[str] = None,
              payload: Optional[Dict[str, Any]] = None) -> bool:
    """Append an audit record; failures are logged and reported as False."""
    try:
        with get_db() as conn:
            conn.execute(
                'INSERT INTO activity_log (ts, actor, action, target_id, payload) VALUES (?, ?, ?, ?, ?)',
                (to_db_ts(utc_now()), actor, action, target_id, json.dumps(payload or {}))
            )
            conn.commit()
            return True
    except sqlite3.Error as e:
        logger.error(f"Database error during add_event for action '{action}': {e}")
        return False


def list_events(target_id: Optional[str] = None, action: Optional[str] = None,
                limit: int = 100) -> List[Dict[str, Any]]:
    """List recent audit records, newest first."""
    if limit <= 0:
        return []

    query = 'SELECT id, ts, actor, action, target_id, payload FROM activity_log WHERE 1 = 1'
    params: List[Any] = []
    if target_id:
        query += ' AND target_id = ?'
        params.append(target_id)
    if action:
        query += ' AND action = ?'
        params.append(action)
    query += ' ORDER BY id DESC LIMIT ?'
    params.append(limit)

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()

    events = []
    for row in rows:
        event = dict(row)
        try:
            event["payload"] = json.loads(row["payload"]) if row["payload"] else {}
        except (json.JSONDecodeError, ValueError):
            event["payload"] = {"raw_data": row["payload"]}
        events.append(event)
    return events
