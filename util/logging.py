"""
Structured logging and audit helpers for the memo routing core.
Every component logs through the module-level `logger`; audit records go through `audit_event`.
"""

import logging
from typing import Any, Dict, List

DEFAULT_SENSITIVE_FIELDS = ['content', 'data', 'attachments', 'payload', 'secret', 'password']


class StructuredLogger:
    """Structured logger for lock, workflow, rollback and side-effect operations."""

    def __init__(self, name: str = "memo_routing"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_lock_operation(self, operation: str, resource_id: str, actor: str, status: str = "success", details: Dict[str, Any] = None):
        """Log an edit lock operation."""
        log_details = {"resource_id": resource_id, "actor": actor}
        if details:
            log_details.update(details)

        self.log_operation(f"lock.{operation}", status, log_details)

    def log_workflow_transition(self, memo_id: str, from_status: str, to_status: str, actor: str, reason: str = ""):
        """Log a memo status transition."""
        log_details = {
            "memo_id": memo_id,
            "from": from_status,
            "to": to_status,
            "actor": actor,
        }
        if reason:
            log_details["reason"] = reason[:100]

        self.log_operation("workflow.transition", "success", log_details)

    def log_rollback(self, entry_id: str, operation_type: str, status: str, details: Dict[str, Any] = None):
        """Log a rollback ledger state change."""
        log_details = {"entry_id": entry_id, "operation_type": operation_type}
        if details:
            log_details.update(details)

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation("rollback", status, log_details, level=level)

    def log_outbox_task(self, task_id: str, task_type: str, status: str, attempts: int = 0, error: str = None):
        """Log an outbox task dispatch."""
        log_details = {"task_id": task_id, "task_type": task_type, "attempts": attempts}
        if error:
            log_details["error"] = error[:200]

        level = logging.WARNING if status in ("retry", "failed") else logging.INFO
        self.log_operation(f"outbox.{task_type}", status, log_details, level=level)

    def log_side_effect(self, effect: str, memo_id: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a best-effort side effect."""
        log_details = {"memo_id": memo_id}
        if details:
            log_details.update(details)

        level = logging.WARNING if status == "failed" else logging.INFO
        self.log_operation(f"side_effect.{effect}", status, log_details, level=level)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

    def exception(self, message: str) -> None:
        """Log an error message with the active traceback."""
        self.logger.exception(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    # Determine operation type from event_type
    if event_type.startswith("lock"):
        operation = "lock_audit"
    elif event_type.startswith("memo"):
        operation = "workflow_audit"
    elif event_type.startswith("rollback"):
        operation = "rollback_audit"
    else:
        operation = event_type.replace(".", "_")

    logger.log_operation(operation, "audit", {"event": event_type, **log_details})


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
