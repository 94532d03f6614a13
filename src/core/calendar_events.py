"""
Calendar entries for approved memos that carry an event date in their metadata.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict

from .dao import delete_calendar_event, get_memo, get_users, insert_calendar_event, list_calendar_events, new_id
from .db import immediate_transaction
from .ledger import rollback_ledger
from .schema import OperationType, RollbackLogEntry, to_db_ts, utc_now

from util.logging import logger

EVENT_DURATION = timedelta(hours=1)

PRIORITY_CATEGORIES = {
    "urgent": "urgent",
    "high": "high",
    "medium": "standard",
    "low": "low",
}


def event_window(metadata: Dict[str, Any]):
    """Start, end and all-day flag from eventDate / eventTime / allDay metadata."""
    event_date = date.fromisoformat(str(metadata["eventDate"])[:10])
    event_time = metadata.get("eventTime")
    all_day = bool(metadata.get("allDay")) or not event_time

    if all_day:
        start = datetime.combine(event_date, time.min, tzinfo=timezone.utc)
        end = datetime.combine(event_date, time(23, 59, 59), tzinfo=timezone.utc)
    else:
        hour, minute = (int(part) for part in str(event_time).split(":")[:2])
        start = datetime.combine(event_date, time(hour, minute), tzinfo=timezone.utc)
        end = start + EVENT_DURATION
    return start, end, all_day


def create_event_for_memo(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Create the calendar entry for an approved memo; repeated calls add nothing."""
    memo_id = payload["memoId"]
    memo = get_memo(memo_id)
    if memo is None:
        raise LookupError(f"Memo {memo_id} not found")

    if not memo.metadata.get("eventDate"):
        return {"created": False, "reason": "no event date"}

    if list_calendar_events(memo_id):
        return {"created": False, "reason": "already scheduled"}

    start, end, all_day = event_window(memo.metadata)
    recipients = get_users(memo.recipients)
    created_by = payload.get("by", memo.sender_id)
    event = {
        "id": new_id(),
        "memo_id": memo_id,
        "title": memo.subject,
        "description": memo.content[:500],
        "starts_at": to_db_ts(start),
        "ends_at": to_db_ts(end),
        "all_day": all_day,
        "category": PRIORITY_CATEGORIES.get(memo.priority, "standard"),
        "participants": {
            "users": [user.email for user in recipients.values()],
            "departments": memo.departments,
        },
        "created_by": created_by,
        "created_at": to_db_ts(utc_now()),
    }
    with immediate_transaction() as conn:
        entry_id = rollback_ledger.open(OperationType.CALENDAR_EVENT_CREATION.value, created_by,
                                        {"memoId": memo_id, "eventId": event["id"]}, conn)
        insert_calendar_event(event, conn)
    rollback_ledger.mark_completed(entry_id)

    logger.log_side_effect("calendar_event", memo_id, details={"event_id": event["id"], "all_day": all_day})
    return {"created": True, "event_id": event["id"], "rollback_entry_id": entry_id}


def _invert_event_creation(entry: RollbackLogEntry, conn) -> Dict[str, Any]:
    removed = delete_calendar_event(entry.payload["eventId"], conn)
    return {"calendar_events_removed": removed}


rollback_ledger.register_inverse(OperationType.CALENDAR_EVENT_CREATION.value, _invert_event_creation)
