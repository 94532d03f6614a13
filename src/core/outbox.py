"""
Outbox for post-commit side effects (notifications, calendar, backup, email).

A committed workflow transition enqueues tasks here; handlers run afterwards, in
the calling thread, in a background thread, or from the heartbeat worker. A
failing handler is retried up to OUTBOX_MAX_ATTEMPTS and never affects the
transition that enqueued it.
"""

import json
import threading
from typing import Any, Callable, Dict, List, Optional

from .backup import backup_memo
from .calendar_events import create_event_for_memo
from .config import OUTBOX_MAX_ATTEMPTS, get_outbox_dispatch
from .db import get_db, immediate_transaction
from .mailer import email_memo
from .notifications import (
    archive_review_notifications,
    notify_acknowledgment,
    notify_author,
    notify_reviewers,
)
from .schema import to_db_ts, utc_now

from util.logging import logger

QUEUED = "queued"
RUNNING = "running"
DONE = "done"
FAILED = "failed"

# Task types
NOTIFY_AUTHOR = "notify_author"
NOTIFY_REVIEWERS = "notify_reviewers"
ARCHIVE_REVIEW_NOTIFICATIONS = "archive_review_notifications"
NOTIFY_ACKNOWLEDGMENT = "notify_acknowledgment"
CALENDAR_EVENT = "calendar_event"
BACKUP_MEMO = "backup_memo"
EMAIL = "email"

Handler = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class Outbox:
    """Persistent side-effect queue over the outbox table."""

    def __init__(self, max_attempts: int = OUTBOX_MAX_ATTEMPTS):
        self.max_attempts = max_attempts
        self._handlers: Dict[str, Handler] = {}
        self._drain_lock = threading.Lock()

    def register_handler(self, task_type: str, handler: Handler):
        if not callable(handler):
            raise ValueError(f"Outbox handler must be callable: {handler}")
        self._handlers[task_type] = handler

    def handlers(self) -> List[str]:
        return sorted(self._handlers)

    def enqueue(self, task_type: str, payload: Dict[str, Any]) -> int:
        """Persist a task and dispatch it according to OUTBOX_DISPATCH."""
        now = to_db_ts(utc_now())
        with immediate_transaction() as conn:
            cursor = conn.execute(
                '''
                INSERT INTO outbox (task_type, payload, status, attempts, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                ''',
                (task_type, json.dumps(payload), QUEUED, now, now)
            )
            task_id = cursor.lastrowid

        logger.log_outbox_task(str(task_id), task_type, "queued")
        self._dispatch()
        return task_id

    def _dispatch(self):
        mode = get_outbox_dispatch()
        if mode == "inline":
            self.drain()
        elif mode == "thread":
            threading.Thread(target=self.drain, name="outbox-drain", daemon=True).start()

    def _claim(self, limit: int) -> List[Dict[str, Any]]:
        """Move up to `limit` queued tasks to running and return them."""
        with immediate_transaction() as conn:
            rows = conn.execute(
                'SELECT * FROM outbox WHERE status = ? ORDER BY id LIMIT ?', (QUEUED, limit)
            ).fetchall()
            if rows:
                ids = [row["id"] for row in rows]
                conn.execute(
                    f'UPDATE outbox SET status = ?, updated_at = ? WHERE id IN ({",".join("?" for _ in ids)})',
                    [RUNNING, to_db_ts(utc_now())] + ids
                )
        return [dict(row) for row in rows]

    def drain(self, limit: int = 50) -> Dict[str, int]:
        """Run queued tasks through their handlers."""
        stats = {"processed": 0, "done": 0, "retry": 0, "failed": 0}
        with self._drain_lock:
            for task in self._claim(limit):
                stats["processed"] += 1
                outcome = self._run(task)
                stats[outcome] += 1
        return stats

    def _run(self, task: Dict[str, Any]) -> str:
        task_id, task_type = task["id"], task["task_type"]
        attempts = task["attempts"] + 1
        handler = self._handlers.get(task_type)

        try:
            if handler is None:
                raise LookupError(f"No outbox handler registered for {task_type}")
            handler(json.loads(task["payload"]))
        except Exception as e:
            status = FAILED if attempts >= self.max_attempts else QUEUED
            self._finish(task_id, status, attempts, str(e))
            logger.log_outbox_task(str(task_id), task_type, "failed" if status == FAILED else "retry",
                                   attempts, str(e))
            return "failed" if status == FAILED else "retry"

        self._finish(task_id, DONE, attempts, None)
        logger.log_outbox_task(str(task_id), task_type, "done", attempts)
        return "done"

    def _finish(self, task_id: int, status: str, attempts: int, error: Optional[str]):
        with immediate_transaction() as conn:
            conn.execute(
                'UPDATE outbox SET status = ?, attempts = ?, last_error = ?, updated_at = ? WHERE id = ?',
                (status, attempts, error, to_db_ts(utc_now()), task_id)
            )

    def requeue_stale(self) -> int:
        """Return tasks left running by a crashed worker to the queue."""
        with immediate_transaction() as conn:
            cursor = conn.execute('UPDATE outbox SET status = ? WHERE status = ?', (QUEUED, RUNNING))
            return cursor.rowcount

    def list_tasks(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = 'SELECT * FROM outbox'
        params: List[Any] = []
        if status:
            query += ' WHERE status = ?'
            params.append(status)
        query += ' ORDER BY id DESC LIMIT ?'
        params.append(limit)
        with get_db() as conn:
            rows = conn.execute(query, params).fetchall()

        tasks = []
        for row in rows:
            task = dict(row)
            task["payload"] = json.loads(task["payload"])
            tasks.append(task)
        return tasks


def register_default_handlers(target: Outbox):
    """Wire the side-effect collaborators to their task types."""
    target.register_handler(NOTIFY_AUTHOR, notify_author)
    target.register_handler(NOTIFY_REVIEWERS, notify_reviewers)
    target.register_handler(ARCHIVE_REVIEW_NOTIFICATIONS, archive_review_notifications)
    target.register_handler(NOTIFY_ACKNOWLEDGMENT, notify_acknowledgment)
    target.register_handler(CALENDAR_EVENT, create_event_for_memo)
    target.register_handler(BACKUP_MEMO, backup_memo)
    target.register_handler(EMAIL, email_memo)


# Global outbox instance
outbox = Outbox()
register_default_handlers(outbox)
