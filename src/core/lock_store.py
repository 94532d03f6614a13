"""
Persistent record of edit locks, one row per locked resource.
Liveness is decided by comparing expires_at with the caller's clock in every statement.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .db import get_db
from .schema import EditLock, to_db_ts


class LockStore:
    """Conditional writes over the edit_locks table."""

    def try_claim(self, resource_id: str, actor_id: str, now: datetime, expires_at: datetime) -> bool:
        """Create or take over the lock row in one statement.

        Succeeds when no row exists, when the existing row has expired, or when
        `actor_id` already holds it (renewal keeps the original lock_time).
        """
        now_ts = to_db_ts(now)
        with get_db() as conn:
            cursor = conn.execute(
                '''
                INSERT INTO edit_locks (resource_id, locked_by, lock_time, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(resource_id) DO UPDATE SET
                    lock_time = CASE
                        WHEN edit_locks.locked_by = excluded.locked_by AND edit_locks.expires_at > ?
                        THEN edit_locks.lock_time
                        ELSE excluded.lock_time
                    END,
                    locked_by = excluded.locked_by,
                    expires_at = excluded.expires_at
                WHERE edit_locks.expires_at <= ? OR edit_locks.locked_by = excluded.locked_by
                ''',
                (resource_id, actor_id, now_ts, to_db_ts(expires_at), now_ts, now_ts)
            )
            conn.commit()
            return cursor.rowcount == 1

    def extend(self, resource_id: str, actor_id: str, now: datetime, expires_at: datetime) -> bool:
        """Push out expires_at of a live lock held by `actor_id`."""
        with get_db() as conn:
            cursor = conn.execute(
                '''
                UPDATE edit_locks SET expires_at = ?
                WHERE resource_id = ? AND locked_by = ? AND expires_at > ?
                ''',
                (to_db_ts(expires_at), resource_id, actor_id, to_db_ts(now))
            )
            conn.commit()
            return cursor.rowcount == 1

    def delete(self, resource_id: str, actor_id: str, now: datetime) -> bool:
        """Drop the row if `actor_id` holds it or it has expired."""
        with get_db() as conn:
            cursor = conn.execute(
                '''
                DELETE FROM edit_locks
                WHERE resource_id = ? AND (locked_by = ? OR expires_at <= ?)
                ''',
                (resource_id, actor_id, to_db_ts(now))
            )
            conn.commit()
            return cursor.rowcount == 1

    def force_delete(self, resource_id: str) -> Optional[EditLock]:
        """Drop the row regardless of holder; returns what was removed."""
        with get_db() as conn:
            row = conn.execute(
                'SELECT * FROM edit_locks WHERE resource_id = ?', (resource_id,)
            ).fetchone()
            if row is None:
                return None
            conn.execute('DELETE FROM edit_locks WHERE resource_id = ?', (resource_id,))
            conn.commit()
            return EditLock.from_row(row)

    def get(self, resource_id: str) -> Optional[EditLock]:
        """Raw row, live or expired."""
        with get_db() as conn:
            row = conn.execute(
                'SELECT * FROM edit_locks WHERE resource_id = ?', (resource_id,)
            ).fetchone()
            return EditLock.from_row(row) if row else None

    def get_many(self, resource_ids: Iterable[str]) -> Dict[str, EditLock]:
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with get_db() as conn:
            rows = conn.execute(
                f'SELECT * FROM edit_locks WHERE resource_id IN ({placeholders})', ids
            ).fetchall()
            return {row["resource_id"]: EditLock.from_row(row) for row in rows}

    def list_live(self, now: datetime, holder: Optional[str] = None) -> List[EditLock]:
        query = 'SELECT * FROM edit_locks WHERE expires_at > ?'
        params = [to_db_ts(now)]
        if holder:
            query += ' AND locked_by = ?'
            params.append(holder)
        query += ' ORDER BY expires_at'
        with get_db() as conn:
            return [EditLock.from_row(row) for row in conn.execute(query, params).fetchall()]

    def purge_expired(self, now: datetime) -> int:
        """Housekeeping only; an expired row is already treated as absent."""
        with get_db() as conn:
            cursor = conn.execute('DELETE FROM edit_locks WHERE expires_at <= ?', (to_db_ts(now),))
            conn.commit()
            return cursor.rowcount
