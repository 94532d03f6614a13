"""
Workflow orchestrator - the memo state machine from submission through review and fan-out.

Every status change goes through `assert_transition`, the single place that raises
InvalidTransition. Approval is protected by the rollback ledger: the pending ->
approved claim and the ledger entry commit together, copies are created one by one,
and a failure midway drives the compensating rollback before the error surfaces.
Side effects are enqueued on the outbox only after the core transition commits.
"""

from typing import Any, Dict, List, Optional

from .dao import (
    delete_calendar_events,
    delete_memos,
    find_copies,
    get_memo,
    insert_memo,
    new_id,
    transition_memo_status,
    update_memo_fields,
    MEMO_EDITABLE_FIELDS,
)
from .db import immediate_transaction
from .errors import (
    InvalidState,
    InvalidTransition,
    ManualInterventionRequired,
    NotFound,
    PartialFailure,
    Unauthorized,
    ValidationFailed,
)
from .fanout import DeliveryFanout, resolve_recipients
from .ledger import RollbackLedger, rollback_ledger
from .locks import EditLockManager, lock_manager
from .outbox import (
    ARCHIVE_REVIEW_NOTIFICATIONS,
    BACKUP_MEMO,
    CALENDAR_EVENT,
    EMAIL,
    NOTIFY_ACKNOWLEDGMENT,
    NOTIFY_AUTHOR,
    NOTIFY_REVIEWERS,
    Outbox,
    outbox,
)
from .schema import (
    Acknowledgment,
    Memo,
    MemoKind,
    MemoStatus,
    OperationType,
    Priority,
    RollbackLogEntry,
    UserRole,
    WorkflowEntry,
    next_version,
    to_db_ts,
    utc_now,
)
from .version_guard import OptimisticVersionGuard, memo_version_guard

from util.logging import audit_event, logger

# Allowed status changes. None is "no record yet".
TRANSITIONS = {
    None: {MemoStatus.DRAFT, MemoStatus.PENDING},
    MemoStatus.DRAFT: {MemoStatus.PENDING, MemoStatus.ARCHIVED, MemoStatus.DELETED},
    MemoStatus.PENDING: {MemoStatus.APPROVED, MemoStatus.REJECTED},
    MemoStatus.APPROVED: {MemoStatus.SENT, MemoStatus.PENDING, MemoStatus.ARCHIVED, MemoStatus.DELETED},
    MemoStatus.REJECTED: {MemoStatus.PENDING, MemoStatus.ARCHIVED, MemoStatus.DELETED},
    MemoStatus.SENT: {MemoStatus.ARCHIVED, MemoStatus.DELETED},
    MemoStatus.SCHEDULED: {MemoStatus.ARCHIVED, MemoStatus.DELETED},
    MemoStatus.ARCHIVED: {MemoStatus.DELETED},
    MemoStatus.DELETED: {
        MemoStatus.DRAFT, MemoStatus.APPROVED, MemoStatus.REJECTED,
        MemoStatus.SENT, MemoStatus.SCHEDULED, MemoStatus.ARCHIVED,
    },
}

EDITABLE_STATUSES = {MemoStatus.DRAFT, MemoStatus.PENDING}


def assert_transition(current: Optional[MemoStatus], target: MemoStatus):
    """Raise InvalidTransition unless `current -> target` is in the table."""
    if target not in TRANSITIONS.get(current, set()):
        current_name = current.value if current else "none"
        raise InvalidTransition(
            f"Cannot move memo from {current_name} to {target.value}",
            current=current.value if current else None,
            target=target.value,
        )


def _history(action: str, by: str, reason: Optional[str] = None) -> Dict[str, Any]:
    return WorkflowEntry(action=action, by=by, at=to_db_ts(utc_now()), reason=reason).to_dict()


def _validate_submission(payload: Dict[str, Any], require_audience: bool = True):
    subject = (payload.get("subject") or "").strip()
    if not subject:
        raise ValidationFailed("subject is required")
    if require_audience and not (payload.get("recipients") or payload.get("departments")):
        raise ValidationFailed("at least one recipient or department is required")
    priority = payload.get("priority", Priority.MEDIUM.value)
    if priority not in {p.value for p in Priority}:
        raise ValidationFailed(f"priority must be one of: {[p.value for p in Priority]}")


def merge_acknowledgments(memo: Memo, copies: List[Memo]) -> List[Dict[str, Any]]:
    """Acknowledgments across the memo and its copies, one per user (earliest wins)."""
    merged: Dict[str, Acknowledgment] = {}
    for source in [memo] + copies:
        for raw in source.acknowledgments:
            ack = Acknowledgment.from_dict(raw)
            existing = merged.get(ack.user_id)
            if existing is None or ack.acknowledged_at < existing.acknowledged_at:
                merged[ack.user_id] = ack
    return [ack.to_dict() for ack in sorted(merged.values(), key=lambda a: a.acknowledged_at)]


class WorkflowOrchestrator:
    """Memo lifecycle operations."""

    def __init__(self, ledger: RollbackLedger = rollback_ledger, side_effects: Outbox = outbox,
                 locks: EditLockManager = lock_manager, guard: OptimisticVersionGuard = memo_version_guard):
        self.ledger = ledger
        self.outbox = side_effects
        self.locks = locks
        self.guard = guard
        self.fanout = DeliveryFanout(ledger)

        ledger.register_inverse(OperationType.MEMO_APPROVAL.value, self._invert_approval)
        ledger.register_inverse(OperationType.MEMO_REJECTION.value, self._invert_rejection)
        ledger.register_inverse(OperationType.MEMO_DELETION.value, self._invert_deletion)

    # Submission

    def submit(self, author_id: str, payload: Dict[str, Any]) -> Memo:
        """Create the single authoritative record in pending. No copies are created."""
        _validate_submission(payload)
        assert_transition(None, MemoStatus.PENDING)
        memo = self._create(author_id, payload, MemoStatus.PENDING)

        logger.log_workflow_transition(memo.id, "none", MemoStatus.PENDING.value, author_id)
        audit_event("memo_submitted", {"memo_id": memo.id, "author": author_id},
                    {"recipients": len(memo.recipients), "departments": memo.departments})
        self._enqueue(NOTIFY_REVIEWERS, {"memoId": memo.id})
        return memo

    def save_draft(self, author_id: str, payload: Dict[str, Any]) -> Memo:
        _validate_submission(payload, require_audience=False)
        assert_transition(None, MemoStatus.DRAFT)
        memo = self._create(author_id, payload, MemoStatus.DRAFT)
        logger.log_workflow_transition(memo.id, "none", MemoStatus.DRAFT.value, author_id)
        return memo

    def submit_draft(self, author_id: str, memo_id: str) -> Memo:
        memo = self._require_memo(memo_id)
        if memo.sender_id != author_id:
            raise Unauthorized("Only the author can submit a draft")
        _validate_submission({
            "subject": memo.subject,
            "recipients": memo.recipients,
            "departments": memo.departments,
            "priority": memo.priority,
        })
        self._transition(memo, MemoStatus.PENDING, author_id)

        self._enqueue(NOTIFY_REVIEWERS, {"memoId": memo.id})
        return self._require_memo(memo_id)

    def _create(self, author_id: str, payload: Dict[str, Any], status: MemoStatus) -> Memo:
        now = to_db_ts(utc_now())
        recipients = list(dict.fromkeys(payload.get("recipients") or []))
        metadata = dict(payload.get("metadata") or {})
        metadata.pop("originalMemoId", None)
        memo = Memo(
            id=new_id(),
            sender_id=author_id,
            recipient_id=recipients[0] if recipients else None,
            recipients=recipients,
            departments=list(payload.get("departments") or []),
            subject=payload["subject"].strip(),
            content=payload.get("content") or "",
            priority=payload.get("priority", Priority.MEDIUM.value),
            status=status,
            metadata=metadata,
            attachments=list(payload.get("attachments") or []),
            signatures=list(payload.get("signatures") or []),
            created_at=now,
            updated_at=now,
        )
        return insert_memo(memo)

    # Review

    def approve(self, reviewer_id: str, memo_id: str) -> Dict[str, Any]:
        """Approve a pending memo and deliver one copy per resolved recipient.

        Raises:
            InvalidTransition: the memo is not pending (including a second approve).
            PartialFailure: fan-out failed; copies were removed and the memo is pending again.
            ManualInterventionRequired: fan-out failed and so did the compensating rollback.
        """
        self._require_reviewable(memo_id)

        with immediate_transaction() as conn:
            memo = get_memo(memo_id, conn)
            assert_transition(memo.status, MemoStatus.APPROVED)
            payload = {"memoId": memo_id, "previousStatus": memo.status.value, "copyIds": []}
            entry_id = self.ledger.open(OperationType.MEMO_APPROVAL.value, reviewer_id, payload, conn)
            claimed = transition_memo_status(memo_id, memo.status, MemoStatus.APPROVED,
                                             _history("approved", reviewer_id), conn)
            if not claimed:
                raise InvalidTransition(f"Memo {memo_id} changed state during approval",
                                        current=memo.status.value, target=MemoStatus.APPROVED.value)

        # Copies and side effects use the snapshot read under the claim.
        approved_at = to_db_ts(utc_now())
        try:
            recipients = resolve_recipients(memo)
            copy_ids = self.fanout.deliver(memo, recipients, reviewer_id, approved_at, entry_id, payload)
        except Exception as e:
            self._recover_approval(entry_id, memo_id, reviewer_id, e)

        self.ledger.mark_completed(entry_id)
        logger.log_workflow_transition(memo_id, MemoStatus.PENDING.value, MemoStatus.APPROVED.value, reviewer_id)
        audit_event("memo_approved", {"memo_id": memo_id, "reviewer": reviewer_id, "entry_id": entry_id},
                    {"copies": len(copy_ids)})

        self._enqueue(NOTIFY_AUTHOR, {"memoId": memo_id, "decision": "approved", "by": reviewer_id,
                                      "copies": len(copy_ids)})
        self._enqueue(ARCHIVE_REVIEW_NOTIFICATIONS, {"memoId": memo_id})
        if memo.metadata.get("eventDate"):
            self._enqueue(CALENDAR_EVENT, {"memoId": memo_id, "by": reviewer_id})
        self._enqueue(BACKUP_MEMO, {"memoId": memo_id})
        self._enqueue(EMAIL, {"memoId": memo_id, "userIds": recipients,
                              "subject": f"New memo: {memo.subject}"})

        return {
            "memo": self._require_memo(memo_id).to_dict(),
            "copies": copy_ids,
            "rollback_entry_id": entry_id,
        }

    def _recover_approval(self, entry_id: str, memo_id: str, reviewer_id: str, cause: Exception):
        logger.error(f"Fan-out for memo {memo_id} failed, rolling back entry {entry_id}: {cause}")
        try:
            self.ledger.mark_failed(entry_id, str(cause))
            self.ledger.rollback(entry_id, reviewer_id, reason=f"automatic rollback: {cause}")
        except Exception as rollback_error:
            logger.error(f"Automatic rollback of {entry_id} failed: {rollback_error}")
            audit_event("rollback_manual_intervention", {"entry_id": entry_id, "memo_id": memo_id},
                        {"cause": str(cause), "rollback_error": str(rollback_error)})
            raise ManualInterventionRequired(
                f"Approval of memo {memo_id} failed and could not be rolled back; "
                f"manual intervention required for ledger entry {entry_id}",
                entry_id, cause, rollback_error,
            ) from rollback_error
        raise PartialFailure(
            f"Approval of memo {memo_id} failed during delivery and was rolled back: {cause}",
            entry_id, cause,
        ) from cause

    def reject(self, reviewer_id: str, memo_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Reject a pending memo. Author notification is best-effort."""
        self._require_reviewable(memo_id)

        with immediate_transaction() as conn:
            current = get_memo(memo_id, conn)
            assert_transition(current.status, MemoStatus.REJECTED)
            entry_id = self.ledger.open(
                OperationType.MEMO_REJECTION.value, reviewer_id,
                {"memoId": memo_id, "previousStatus": current.status.value, "reason": reason}, conn,
            )
            claimed = transition_memo_status(memo_id, current.status, MemoStatus.REJECTED,
                                             _history("rejected", reviewer_id, reason), conn)
            if not claimed:
                raise InvalidTransition(f"Memo {memo_id} changed state during rejection",
                                        current=current.status.value, target=MemoStatus.REJECTED.value)
        self.ledger.mark_completed(entry_id)

        logger.log_workflow_transition(memo_id, MemoStatus.PENDING.value, MemoStatus.REJECTED.value,
                                       reviewer_id, reason or "")
        audit_event("memo_rejected", {"memo_id": memo_id, "reviewer": reviewer_id}, {"reason": reason})

        memo = self._require_memo(memo_id)
        self._enqueue(NOTIFY_AUTHOR, {"memoId": memo_id, "decision": "rejected", "by": reviewer_id,
                                      "reason": reason})
        self._enqueue(ARCHIVE_REVIEW_NOTIFICATIONS, {"memoId": memo_id})
        self._enqueue(EMAIL, {"memoId": memo_id, "userIds": [memo.sender_id],
                              "subject": f"Memo Rejected: {memo.subject}",
                              "text": reason or "Your memo was rejected."})
        return {"memo": memo.to_dict(), "rollback_entry_id": entry_id}

    # User actions

    def edit(self, actor_id: str, memo_id: str, changes: Dict[str, Any],
             client_version: Optional[str], actor_role: Optional[str] = None) -> Memo:
        """Guarded edit of a draft or pending memo's content."""
        memo = self._require_memo(memo_id)
        if memo.sender_id != actor_id and actor_role != UserRole.ADMIN.value:
            raise Unauthorized("Only the author or an admin can edit this memo")

        unknown = set(changes) - set(MEMO_EDITABLE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Fields cannot be edited: {sorted(unknown)}")
        if "subject" in changes and not (changes["subject"] or "").strip():
            raise ValidationFailed("subject is required")
        if "priority" in changes and changes["priority"] not in {p.value for p in Priority}:
            raise ValidationFailed(f"priority must be one of: {[p.value for p in Priority]}")
        if "metadata" in changes:
            changes = dict(changes, metadata={k: v for k, v in (changes["metadata"] or {}).items()
                                              if k != "originalMemoId"})

        self.locks.ensure_editable(memo_id, actor_id)

        def mutation(current: Memo) -> Dict[str, Any]:
            if current.status not in EDITABLE_STATUSES:
                raise InvalidTransition(f"Memo {memo_id} is {current.status.value} and can no longer be edited",
                                        current=current.status.value)
            return dict(changes)

        version = self.guard.check_and_apply(memo_id, client_version, mutation, actor_id)
        self.locks.notify_edit_success(memo_id, actor_id, {"version": version})
        audit_event("memo_edited", {"memo_id": memo_id, "actor": actor_id}, {"fields": sorted(changes)})
        return self._require_memo(memo_id)

    def archive(self, actor_id: str, memo_id: str) -> Memo:
        memo = self._require_memo(memo_id)
        self._require_owner_or_recipient(memo, actor_id)
        self._transition(memo, MemoStatus.ARCHIVED, actor_id)
        return self._require_memo(memo_id)

    def delete(self, actor_id: str, memo_id: str, actor_role: Optional[str] = None) -> Dict[str, Any]:
        """Soft-delete; recorded in the ledger so an admin can restore it."""
        memo = self._require_memo(memo_id)
        if actor_role != UserRole.ADMIN.value:
            self._require_owner_or_recipient(memo, actor_id)

        with immediate_transaction() as conn:
            current = get_memo(memo_id, conn)
            assert_transition(current.status, MemoStatus.DELETED)
            entry_id = self.ledger.open(
                OperationType.MEMO_DELETION.value, actor_id,
                {"memoId": memo_id, "previousStatus": current.status.value}, conn,
            )
            claimed = transition_memo_status(memo_id, current.status, MemoStatus.DELETED,
                                             _history("deleted", actor_id), conn)
            if not claimed:
                raise InvalidTransition(f"Memo {memo_id} changed state during deletion",
                                        current=current.status.value, target=MemoStatus.DELETED.value)
        self.ledger.mark_completed(entry_id)

        logger.log_workflow_transition(memo_id, memo.status.value, MemoStatus.DELETED.value, actor_id)
        return {"memo": self._require_memo(memo_id).to_dict(), "rollback_entry_id": entry_id}

    def acknowledge(self, user_id: str, copy_id: str) -> Memo:
        """Record that the recipient of a delivered copy has acknowledged it."""
        with immediate_transaction() as conn:
            memo = get_memo(copy_id, conn)
            if memo is None or memo.kind is not MemoKind.MEMO:
                raise NotFound(f"Memo {copy_id} not found")
            if not memo.is_delivered_copy:
                raise InvalidTransition("Only delivered copies can be acknowledged", current=memo.status.value)
            if memo.recipient_id != user_id:
                raise Unauthorized("Only the recipient can acknowledge this memo")
            if any(ack.get("userId") == user_id for ack in memo.acknowledgments):
                raise InvalidTransition(f"Memo {copy_id} already acknowledged by {user_id}")

            acknowledgments = memo.acknowledgments + [
                Acknowledgment(user_id=user_id, acknowledged_at=to_db_ts(utc_now())).to_dict()
            ]
            update_memo_fields(copy_id, {"acknowledgments": acknowledgments, "is_read": True},
                               next_version(memo.updated_at), conn)

        original_id = memo.original_memo_id or memo.id
        audit_event("memo_acknowledged", {"memo_id": original_id, "copy_id": copy_id, "user_id": user_id})
        self._enqueue(NOTIFY_ACKNOWLEDGMENT, {"memoId": original_id, "copyId": copy_id, "userId": user_id})
        return self._require_memo(copy_id)

    # Read path

    def get_memo(self, viewer_id: str, memo_id: str, viewer_role: Optional[str] = None) -> Dict[str, Any]:
        """Fetch a memo; its author sees acknowledgments merged from every delivered copy."""
        memo = self._require_memo(memo_id)
        is_author = memo.sender_id == viewer_id
        is_recipient = memo.recipient_id == viewer_id or viewer_id in memo.recipients
        if not (is_author or is_recipient or viewer_role == UserRole.ADMIN.value):
            raise Unauthorized("Not allowed to view this memo")

        data = memo.to_dict()
        if memo.kind is MemoKind.MEMO and not memo.is_delivered_copy and (is_author or viewer_role == UserRole.ADMIN.value):
            data["acknowledgments"] = merge_acknowledgments(memo, find_copies(memo.id))
        return data

    def list_copies(self, memo_id: str) -> List[Memo]:
        self._require_memo(memo_id)
        return find_copies(memo_id)

    # Inverses

    def _invert_approval(self, entry: RollbackLogEntry, conn) -> Dict[str, Any]:
        memo_id = entry.payload["memoId"]
        previous = MemoStatus(entry.payload.get("previousStatus", MemoStatus.PENDING.value))

        recorded = entry.payload.get("copyIds", [])
        linked = [c.id for c in find_copies(memo_id, conn)]
        removed = delete_memos(list(dict.fromkeys(recorded + linked)), conn)
        calendar_removed = delete_calendar_events(memo_id, conn)
        restored = self._restore_status(conn, memo_id, {MemoStatus.APPROVED}, previous, entry)
        return {
            "copies_removed": removed,
            "calendar_events_removed": calendar_removed,
            "status_restored": restored,
            "not_reversed": ["notification", "email", "backup"],
        }

    def _invert_rejection(self, entry: RollbackLogEntry, conn) -> Dict[str, Any]:
        memo_id = entry.payload["memoId"]
        previous = MemoStatus(entry.payload.get("previousStatus", MemoStatus.PENDING.value))
        restored = self._restore_status(conn, memo_id, {MemoStatus.REJECTED}, previous, entry)
        return {"status_restored": restored, "not_reversed": ["notification", "email"]}

    def _invert_deletion(self, entry: RollbackLogEntry, conn) -> Dict[str, Any]:
        memo_id = entry.payload["memoId"]
        previous = MemoStatus(entry.payload["previousStatus"])
        restored = self._restore_status(conn, memo_id, {MemoStatus.DELETED}, previous, entry)
        return {"status_restored": restored}

    def _restore_status(self, conn, memo_id: str, from_statuses, previous: MemoStatus,
                        entry: RollbackLogEntry) -> Optional[str]:
        """Move the memo back to `previous`; a memo already there is left alone."""
        current = get_memo(memo_id, conn)
        if current is None:
            raise InvalidState(f"Memo {memo_id} no longer exists")
        if current.status is previous:
            return None
        if current.status not in from_statuses:
            raise InvalidState(
                f"Memo {memo_id} is {current.status.value}; expected one of "
                f"{sorted(s.value for s in from_statuses)} to roll back {entry.operation_type}"
            )

        assert_transition(current.status, previous)
        transition_memo_status(memo_id, current.status, previous,
                               _history("rolled_back", entry.performed_by, f"ledger entry {entry.id}"), conn)
        logger.log_workflow_transition(memo_id, current.status.value, previous.value, "rollback")
        return previous.value

    # Helpers

    def _require_memo(self, memo_id: str) -> Memo:
        memo = get_memo(memo_id)
        if memo is None:
            raise NotFound(f"Memo {memo_id} not found")
        return memo

    def _require_reviewable(self, memo_id: str) -> Memo:
        memo = self._require_memo(memo_id)
        if memo.kind is not MemoKind.MEMO:
            raise InvalidTransition(f"{memo.kind.value} entries are not part of the review workflow")
        if memo.is_delivered_copy:
            raise InvalidTransition("Delivered copies cannot be reviewed",
                                    current=memo.status.value)
        return memo

    def _require_owner_or_recipient(self, memo: Memo, actor_id: str):
        if actor_id not in (memo.sender_id, memo.recipient_id):
            raise Unauthorized("Only the author or recipient can change this memo")

    def _transition(self, memo: Memo, target: MemoStatus, actor_id: str):
        assert_transition(memo.status, target)
        if not transition_memo_status(memo.id, memo.status, target, _history(target.value, actor_id)):
            latest = self._require_memo(memo.id)
            assert_transition(latest.status, target)
            raise InvalidTransition(f"Memo {memo.id} changed state concurrently",
                                    current=latest.status.value, target=target.value)
        logger.log_workflow_transition(memo.id, memo.status.value, target.value, actor_id)

    def _enqueue(self, task_type: str, payload: Dict[str, Any]):
        """Queue a best-effort side effect; failures are logged only."""
        try:
            self.outbox.enqueue(task_type, payload)
        except Exception as e:
            logger.log_side_effect(task_type, payload.get("memoId", ""), status="failed",
                                   details={"error": str(e), "stage": "enqueue"})


# Global orchestrator instance
workflow = WorkflowOrchestrator()


def submit_memo(author_id: str, payload: Dict[str, Any]) -> Memo:
    return workflow.submit(author_id, payload)


def approve_memo(reviewer_id: str, memo_id: str) -> Dict[str, Any]:
    return workflow.approve(reviewer_id, memo_id)


def reject_memo(reviewer_id: str, memo_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    return workflow.reject(reviewer_id, memo_id, reason)


def acknowledge_memo(user_id: str, copy_id: str) -> Memo:
    return workflow.acknowledge(user_id, copy_id)
