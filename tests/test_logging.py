"""
Audit logging and payload redaction.
"""

import logging

from util.logging import audit_event, logger, sanitize_payload


class TestSanitizePayload:

    def test_sensitive_fields_redacted(self):
        payload = {"subject": "Budget", "content": "salary table", "attachments": [{"name": "a.pdf"}]}
        assert sanitize_payload(payload) == {
            "subject": "Budget",
            "content": "[REDACTED]",
            "attachments": "[REDACTED]",
        }

    def test_reveal_sensitive(self):
        assert sanitize_payload({"content": "x"}, reveal_sensitive=True) == {"content": "x"}

    def test_custom_fields_and_nesting(self):
        payload = {"outer": [{"email": "a@example.edu", "name": "A"}]}
        assert sanitize_payload(payload, sensitive_fields=["email"]) == {
            "outer": [{"email": "[REDACTED]", "name": "A"}],
        }

    def test_long_strings_truncated(self):
        result = sanitize_payload({"reason": "x" * 150})
        assert result["reason"] == "x" * 100 + "..."


class TestAuditEvent:

    def test_memo_events_are_workflow_audits(self, caplog):
        with caplog.at_level(logging.INFO, logger="memo_routing"):
            audit_event("memo_approved", {"memo_id": "m1"}, {"content": "secret", "copies": 3})

        message = caplog.records[-1].getMessage()
        assert "Operation: workflow_audit, Status: audit" in message
        assert "'memo_id': 'm1'" in message
        assert "secret" not in message
        assert "'copies': 3" in message

    def test_other_events_use_their_name(self, caplog):
        with caplog.at_level(logging.INFO, logger="memo_routing"):
            audit_event("backup.created", {"backup_id": "b1"})
        assert "Operation: backup_created" in caplog.records[-1].getMessage()

    def test_rollback_failures_log_as_errors(self, caplog):
        with caplog.at_level(logging.INFO, logger="memo_routing"):
            logger.log_rollback("e1", "memo_approval", "failed", {"error": "boom"})
        assert caplog.records[-1].levelno == logging.ERROR
