"""
Tests for the side-effect outbox: dispatch modes, retries and stale task recovery.
"""

import pytest

from src.core.db import get_db
from src.core.outbox import DONE, FAILED, QUEUED, RUNNING, Outbox


@pytest.fixture
def box():
    return Outbox(max_attempts=2)


class TestOutboxDispatch:
    """Inline and deferred dispatch."""

    def test_inline_runs_handler_immediately(self, box):
        seen = []
        box.register_handler("probe", seen.append)

        task_id = box.enqueue("probe", {"memoId": "m1"})

        assert seen == [{"memoId": "m1"}]
        task = box.list_tasks()[0]
        assert task["id"] == task_id
        assert task["status"] == DONE
        assert task["attempts"] == 1

    def test_deferred_waits_for_drain(self, box, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
        seen = []
        box.register_handler("probe", seen.append)

        box.enqueue("probe", {"n": 1})
        box.enqueue("probe", {"n": 2})
        assert seen == []
        assert len(box.list_tasks(status=QUEUED)) == 2

        stats = box.drain()
        assert stats == {"processed": 2, "done": 2, "retry": 0, "failed": 0}
        assert seen == [{"n": 1}, {"n": 2}]

    def test_register_non_callable(self, box):
        with pytest.raises(ValueError):
            box.register_handler("probe", None)


class TestOutboxFailures:
    """Failing handlers are retried, then parked as failed."""

    def test_retry_then_fail(self, box, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")

        def broken(payload):
            raise RuntimeError("relay unavailable")

        box.register_handler("probe", broken)
        box.enqueue("probe", {})

        assert box.drain()["retry"] == 1
        assert box.list_tasks()[0]["status"] == QUEUED

        assert box.drain()["failed"] == 1
        task = box.list_tasks()[0]
        assert task["status"] == FAILED
        assert task["attempts"] == 2
        assert task["last_error"] == "relay unavailable"

        assert box.drain()["processed"] == 0

    def test_missing_handler_counts_as_failure(self, box, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
        box.enqueue("nobody_listens", {})
        box.drain()
        box.drain()
        task = box.list_tasks()[0]
        assert task["status"] == FAILED
        assert "No outbox handler" in task["last_error"]

    def test_enqueue_never_raises_for_handler_errors(self, box):
        def broken(payload):
            raise ValueError("bad payload")

        box.register_handler("probe", broken)
        box.enqueue("probe", {})
        assert box.list_tasks()[0]["last_error"] == "bad payload"

    def test_requeue_stale(self, box, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
        box.register_handler("probe", lambda payload: None)
        task_id = box.enqueue("probe", {})
        with get_db() as conn:
            conn.execute("UPDATE outbox SET status = ? WHERE id = ?", (RUNNING, task_id))
            conn.commit()

        assert box.drain()["processed"] == 0
        assert box.requeue_stale() == 1
        assert box.drain()["done"] == 1
