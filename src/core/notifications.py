"""
In-app notifications. A notification is a memos row with a non-null activity type
and metadata.relatedMemoId pointing at the memo it concerns.
"""

from typing import Any, Dict, Optional

from .dao import archive_notifications, get_memo, insert_memo, list_users, new_id
from .schema import Memo, MemoStatus, UserRole, to_db_ts, utc_now

from util.logging import logger

NOTIFICATION_ACTIVITY = "system_notification"
SYSTEM_SENDER = "system"

PENDING_REVIEW_EVENT = "memo_pending_review"
DECISION_EVENTS = {
    "approved": "memo_approved",
    "rejected": "memo_rejected",
}
ACKNOWLEDGED_EVENT = "memo_acknowledged"


def create_notification(recipient_id: str, subject: str, content: str, event_type: str,
                        related_memo_id: str, priority: str = "medium",
                        extra: Optional[Dict[str, Any]] = None) -> Memo:
    """Insert one notification entry addressed to a user."""
    now = to_db_ts(utc_now())
    metadata = {"eventType": event_type, "relatedMemoId": related_memo_id}
    if extra:
        metadata.update(extra)

    notification = Memo(
        id=new_id(),
        sender_id=SYSTEM_SENDER,
        recipient_id=recipient_id,
        recipients=[recipient_id],
        subject=subject,
        content=content,
        priority=priority,
        status=MemoStatus.SENT,
        activity_type=NOTIFICATION_ACTIVITY,
        metadata=metadata,
        created_at=now,
        updated_at=now,
    )
    return insert_memo(notification)


def _require_memo(memo_id: str) -> Memo:
    memo = get_memo(memo_id)
    if memo is None:
        raise LookupError(f"Memo {memo_id} not found")
    return memo


def notify_reviewers(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Tell every active admin that a memo awaits review."""
    memo = _require_memo(payload["memoId"])
    reviewers = [user for user in list_users(role=UserRole.ADMIN.value) if user.id != memo.sender_id]

    for reviewer in reviewers:
        create_notification(
            reviewer.id,
            subject=f"Memo Pending Review: {memo.subject}",
            content=f"A memo from {memo.sender_id} is waiting for approval.",
            event_type=PENDING_REVIEW_EVENT,
            related_memo_id=memo.id,
            priority=memo.priority,
        )

    logger.log_side_effect("notify_reviewers", memo.id, details={"reviewers": len(reviewers)})
    return {"notified": len(reviewers)}


def notify_author(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Tell the author about a review decision."""
    memo = _require_memo(payload["memoId"])
    decision = payload["decision"]
    reason = payload.get("reason")

    if decision == "approved":
        subject = f"Memo Approved: {memo.subject}"
        content = f"Your memo was approved by {payload.get('by')} and delivered to {payload.get('copies', 0)} recipient(s)."
    elif decision == "rejected":
        subject = f"Memo Rejected: {memo.subject}"
        content = f"Your memo was rejected by {payload.get('by')}."
        if reason:
            content += f" Reason: {reason}"
    else:
        raise ValueError(f"Unknown review decision: {decision}")

    create_notification(
        memo.sender_id,
        subject=subject,
        content=content,
        event_type=DECISION_EVENTS[decision],
        related_memo_id=memo.id,
        priority=memo.priority,
        extra={"reason": reason} if reason else None,
    )
    logger.log_side_effect("notify_author", memo.id, details={"decision": decision})
    return {"notified": 1}


def notify_acknowledgment(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Tell the author that a recipient acknowledged their memo."""
    memo = _require_memo(payload["memoId"])
    create_notification(
        memo.sender_id,
        subject=f"Memo Acknowledged: {memo.subject}",
        content=f"{payload['userId']} acknowledged your memo.",
        event_type=ACKNOWLEDGED_EVENT,
        related_memo_id=memo.id,
        extra={"acknowledgedBy": payload["userId"], "copyId": payload.get("copyId")},
    )
    logger.log_side_effect("notify_acknowledgment", memo.id, details={"user_id": payload["userId"]})
    return {"notified": 1}


def archive_review_notifications(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Archive the pending-review notifications once a decision is made."""
    archived = archive_notifications(payload["memoId"], PENDING_REVIEW_EVENT)
    logger.log_side_effect("archive_review_notifications", payload["memoId"], details={"archived": archived})
    return {"archived": archived}
