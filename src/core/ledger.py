"""
Rollback ledger - append-mostly log of multi-step operations and their compensating inverses.

Rollback is forward recovery: each operation type registers an explicit, idempotent
inverse that is replayed against the captured payload. The inverse and the status
change to rolled_back commit together; if the inverse raises, the entry keeps its
status and the failure propagates.
"""

import json
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .config import ROLLBACK_AVAILABLE_LIMIT, ROLLBACK_QUERY_LIMIT, ROLLBACK_WINDOW_HOURS
from .dao import add_event, new_id
from .db import get_db, immediate_transaction
from .errors import AlreadyRolledBack, InvalidState, NotFound
from .schema import RollbackLogEntry, RollbackStatus, to_db_ts, utc_now

from util.logging import logger

# inverse(entry, conn) -> summary of what was undone
Inverse = Callable[[RollbackLogEntry, Any], Dict[str, Any]]

ROLLBACKABLE_STATUSES = (RollbackStatus.COMPLETED, RollbackStatus.FAILED)


class RollbackLedger:
    """Persistent ledger over the rollback_log table."""

    def __init__(self, clock=utc_now):
        self.clock = clock
        self._inverses: Dict[str, Inverse] = {}

    def register_inverse(self, operation_type: str, inverse: Inverse):
        """Register the compensating action for an operation type."""
        if not callable(inverse):
            raise ValueError(f"Inverse must be callable: {inverse}")
        self._inverses[operation_type] = inverse

    def open(self, operation_type: str, performed_by: str, payload: Dict[str, Any], conn=None) -> str:
        """Record intent before any mutating step runs. Returns the entry id."""
        entry_id = new_id()
        params = (entry_id, operation_type, RollbackStatus.PENDING.value, performed_by,
                  to_db_ts(self.clock()), json.dumps(payload))
        statement = '''
            INSERT INTO rollback_log (id, operation_type, status, performed_by, timestamp, payload)
            VALUES (?, ?, ?, ?, ?, ?)
        '''
        if conn is not None:
            conn.execute(statement, params)
        else:
            with immediate_transaction() as own:
                own.execute(statement, params)

        logger.log_rollback(entry_id, operation_type, RollbackStatus.PENDING.value, {"performed_by": performed_by})
        return entry_id

    def record_progress(self, entry_id: str, payload: Dict[str, Any], conn=None) -> bool:
        """Replace the captured payload while the operation is still running."""
        statement = 'UPDATE rollback_log SET payload = ? WHERE id = ? AND status = ?'
        params = (json.dumps(payload), entry_id, RollbackStatus.PENDING.value)
        if conn is not None:
            return conn.execute(statement, params).rowcount == 1
        with immediate_transaction() as own:
            return own.execute(statement, params).rowcount == 1

    def mark_completed(self, entry_id: str) -> bool:
        return self._close(entry_id, RollbackStatus.COMPLETED)

    def mark_failed(self, entry_id: str, error: str) -> bool:
        return self._close(entry_id, RollbackStatus.FAILED, error)

    def _close(self, entry_id: str, status: RollbackStatus, error: Optional[str] = None) -> bool:
        with immediate_transaction() as conn:
            row = conn.execute('SELECT operation_type FROM rollback_log WHERE id = ? AND status = ?',
                               (entry_id, RollbackStatus.PENDING.value)).fetchone()
            if row is None:
                logger.warning(f"Ledger entry {entry_id} is not pending; cannot mark {status.value}")
                return False
            conn.execute('UPDATE rollback_log SET status = ?, error = ? WHERE id = ?',
                         (status.value, error, entry_id))

        logger.log_rollback(entry_id, row["operation_type"], status.value, {"error": error} if error else None)
        return True

    def rollback(self, entry_id: str, actor: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Replay the inverse of a completed or failed operation.

        Raises:
            NotFound: no such entry.
            AlreadyRolledBack: the entry was already reversed.
            InvalidState: the entry is still pending, has no registered inverse, or the inverse failed.
        """
        operation_type = None
        try:
            with immediate_transaction() as conn:
                row = conn.execute('SELECT * FROM rollback_log WHERE id = ?', (entry_id,)).fetchone()
                if row is None:
                    raise NotFound(f"Rollback log entry {entry_id} not found")

                entry = RollbackLogEntry.from_row(row)
                operation_type = entry.operation_type
                if entry.status is RollbackStatus.ROLLED_BACK:
                    raise AlreadyRolledBack(f"Operation {entry_id} has already been rolled back")
                if entry.status not in ROLLBACKABLE_STATUSES:
                    raise InvalidState(f"Operation {entry_id} is {entry.status.value} and cannot be rolled back")

                inverse = self._inverses.get(entry.operation_type)
                if inverse is None:
                    raise InvalidState(f"Unsupported operation type: {entry.operation_type}")

                summary = inverse(entry, conn)

                now = self.clock()
                conn.execute(
                    '''
                    UPDATE rollback_log
                    SET status = ?, rolled_back_by = ?, rolled_back_at = ?,
                        rollback_reason = COALESCE(?, rollback_reason)
                    WHERE id = ?
                    ''',
                    (RollbackStatus.ROLLED_BACK.value, actor, to_db_ts(now), reason, entry_id)
                )
        except (NotFound, AlreadyRolledBack, InvalidState):
            raise
        except Exception as e:
            logger.log_rollback(entry_id, operation_type or "unknown", "failed", {"error": str(e)})
            self._record_error(entry_id, f"rollback failed: {e}")
            raise InvalidState(f"Rollback of {entry_id} failed: {e}") from e

        logger.log_rollback(entry_id, operation_type, RollbackStatus.ROLLED_BACK.value,
                            {"rolled_back_by": actor, **summary})
        add_event(actor, "rollback_performed", entry_id, {"operation_type": operation_type, "reason": reason, **summary})
        return {"ok": True, "entry_id": entry_id, "operation_type": operation_type, "result": summary}

    def annotate(self, entry_id: str, reason: str) -> RollbackLogEntry:
        """Set the reason string; the only change allowed after an entry closes."""
        with immediate_transaction() as conn:
            cursor = conn.execute('UPDATE rollback_log SET rollback_reason = ? WHERE id = ?', (reason, entry_id))
            if cursor.rowcount == 0:
                raise NotFound(f"Rollback log entry {entry_id} not found")
        return self.get(entry_id)

    def get(self, entry_id: str) -> RollbackLogEntry:
        with get_db() as conn:
            row = conn.execute('SELECT * FROM rollback_log WHERE id = ?', (entry_id,)).fetchone()
        if row is None:
            raise NotFound(f"Rollback log entry {entry_id} not found")
        return RollbackLogEntry.from_row(row)

    def query(self, operation_type: Optional[str] = None, status: Optional[str] = None,
              since_hours: Optional[float] = None, limit: int = ROLLBACK_QUERY_LIMIT,
              offset: int = 0) -> List[RollbackLogEntry]:
        """Filtered audit view, newest first."""
        sql = 'SELECT * FROM rollback_log WHERE 1 = 1'
        params: List[Any] = []
        if operation_type:
            sql += ' AND operation_type = ?'
            params.append(operation_type)
        if status:
            sql += ' AND status = ?'
            params.append(RollbackStatus(status).value)
        if since_hours is not None:
            sql += ' AND timestamp >= ?'
            params.append(to_db_ts(self.clock() - timedelta(hours=since_hours)))
        sql += ' ORDER BY timestamp DESC LIMIT ? OFFSET ?'
        params += [limit, offset]

        with get_db() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [RollbackLogEntry.from_row(row) for row in rows]

    def count(self, operation_type: Optional[str] = None, status: Optional[str] = None) -> int:
        sql = 'SELECT COUNT(*) FROM rollback_log WHERE 1 = 1'
        params: List[Any] = []
        if operation_type:
            sql += ' AND operation_type = ?'
            params.append(operation_type)
        if status:
            sql += ' AND status = ?'
            params.append(status)
        with get_db() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def available(self, operation_type: Optional[str] = None,
                  hours: Optional[float] = None) -> List[RollbackLogEntry]:
        """Recent completed operations eligible for manual reversal."""
        return self.query(
            operation_type=operation_type,
            status=RollbackStatus.COMPLETED.value,
            since_hours=hours if hours is not None else ROLLBACK_WINDOW_HOURS,
            limit=ROLLBACK_AVAILABLE_LIMIT,
        )

    def _record_error(self, entry_id: str, error: str):
        try:
            with immediate_transaction() as conn:
                conn.execute('UPDATE rollback_log SET error = ? WHERE id = ?', (error, entry_id))
        except Exception as e:
            logger.error(f"Could not record rollback error on {entry_id}: {e}")


# Global ledger instance
rollback_ledger = RollbackLedger()
