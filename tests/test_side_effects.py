"""
Tests for the best-effort collaborators behind the outbox: notifications, calendar, email.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from src.core.calendar_events import create_event_for_memo, event_window
from src.core.dao import list_calendar_events, list_notifications
from src.core.ledger import rollback_ledger
from src.core.mailer import MailError, email_memo, send_email
from src.core.notifications import (
    archive_review_notifications,
    notify_author,
    notify_reviewers,
)
from src.core.schema import RollbackStatus
from src.core.workflow import workflow


@pytest.fixture
def pending_memo(directory, monkeypatch):
    monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
    return workflow.submit("sec1", {
        "subject": "Lab safety",
        "content": "Goggles required",
        "recipients": ["f1", "f2"],
        "priority": "high",
        "metadata": {"eventDate": "2025-06-02", "allDay": True},
    })


class TestNotifications:

    def test_reviewers_exclude_author(self, directory, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
        memo = workflow.submit("admin1", {"subject": "Admin memo", "recipients": ["f1"]})

        assert notify_reviewers({"memoId": memo.id}) == {"notified": 1}
        notes = list_notifications(memo.id, "memo_pending_review")
        assert [n.recipient_id for n in notes] == ["admin2"]
        assert notes[0].sender_id == "system"
        assert notes[0].kind.value == "notification"

    def test_archive_review_notifications(self, pending_memo):
        notify_reviewers({"memoId": pending_memo.id})
        assert archive_review_notifications({"memoId": pending_memo.id}) == {"archived": 2}
        assert list_notifications(pending_memo.id, "memo_pending_review") == []
        assert len(list_notifications(pending_memo.id, "memo_pending_review", include_archived=True)) == 2

    def test_unknown_decision(self, pending_memo):
        with pytest.raises(ValueError):
            notify_author({"memoId": pending_memo.id, "decision": "maybe"})

    def test_missing_memo(self, directory):
        with pytest.raises(LookupError):
            notify_reviewers({"memoId": "gone"})


class TestCalendar:

    def test_event_window_timed(self):
        start, end, all_day = event_window({"eventDate": "2025-06-02", "eventTime": "09:15"})
        assert (start.hour, start.minute) == (9, 15)
        assert (end - start).total_seconds() == 3600
        assert all_day is False

    def test_event_window_all_day(self):
        start, end, all_day = event_window({"eventDate": "2025-06-02T00:00:00Z", "allDay": True})
        assert all_day is True
        assert (start.hour, end.hour, end.minute) == (0, 23, 59)

    def test_create_event_once(self, pending_memo):
        first = create_event_for_memo({"memoId": pending_memo.id, "by": "admin1"})
        second = create_event_for_memo({"memoId": pending_memo.id, "by": "admin1"})

        assert first["created"] is True
        assert second == {"created": False, "reason": "already scheduled"}
        events = list_calendar_events(pending_memo.id)
        assert len(events) == 1
        assert events[0]["category"] == "high"
        assert sorted(events[0]["participants"]["users"]) == ["f1@example.edu", "f2@example.edu"]

    def test_event_creation_is_reversible(self, pending_memo):
        created = create_event_for_memo({"memoId": pending_memo.id, "by": "admin1"})

        entry = rollback_ledger.get(created["rollback_entry_id"])
        assert entry.operation_type == "calendar_event_creation"
        assert entry.status is RollbackStatus.COMPLETED
        assert entry.payload["eventId"] == created["event_id"]

        outcome = rollback_ledger.rollback(entry.id, "admin1", "event cancelled")

        assert outcome["result"]["calendar_events_removed"] == 1
        assert list_calendar_events(pending_memo.id) == []

    def test_no_event_date(self, directory, monkeypatch):
        monkeypatch.setenv("OUTBOX_DISPATCH", "deferred")
        memo = workflow.submit("sec1", {"subject": "Plain", "recipients": ["f1"]})
        assert create_event_for_memo({"memoId": memo.id})["created"] is False


class TestMailer:

    def test_skipped_without_relay(self, pending_memo):
        result = email_memo({"memoId": pending_memo.id, "userIds": ["f1"]})
        assert result == {"sent": False, "reason": "relay not configured"}

    @patch('src.core.mailer.requests.post')
    def test_posts_to_relay(self, mock_post, pending_memo, monkeypatch):
        monkeypatch.setenv("MAIL_WEBHOOK_URL", "http://mail.local/send")
        mock_post.return_value = MagicMock(status_code=200)

        result = email_memo({"memoId": pending_memo.id, "userIds": ["f1", "f2", "ghost"]})

        assert result == {"sent": True, "recipients": 2}
        body = mock_post.call_args.kwargs["json"]
        assert sorted(body["to"]) == ["f1@example.edu", "f2@example.edu"]
        assert body["subject"] == "Lab safety"

    @patch('src.core.mailer.requests.post')
    def test_relay_error_raises(self, mock_post, monkeypatch):
        monkeypatch.setenv("MAIL_WEBHOOK_URL", "http://mail.local/send")
        mock_post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(MailError):
            send_email(["a@example.edu"], "s", "t")
