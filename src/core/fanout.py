"""
Delivery fan-out - one `sent` copy per resolved recipient of an approved memo.

Copies are created one recipient at a time. Each copy insert commits together with
the ledger payload update that records it, so the ledger always holds the exact
prefix of copies that exist.
"""

import copy
from typing import Any, Dict, List, Optional

from .dao import find_copy_for_recipient, get_users, insert_memo, list_users, new_id
from .db import immediate_transaction
from .ledger import RollbackLedger
from .schema import Memo, MemoStatus, UserRole

from util.logging import logger

DELIVERED_EVENT = "memo_delivered"


def resolve_recipients(memo: Memo) -> List[str]:
    """Explicit recipients if any, otherwise active faculty of the memo's departments.

    The sender is excluded, only active faculty receive copies, and duplicates
    collapse in first-seen order.
    """
    if memo.recipients:
        known = get_users(memo.recipients)
        candidates = [
            user_id for user_id in memo.recipients
            if user_id in known
            and known[user_id].is_active
            and known[user_id].role == UserRole.FACULTY.value
        ]
    elif memo.departments:
        candidates = [user.id for user in list_users(role=UserRole.FACULTY.value, departments=memo.departments)]
    else:
        candidates = []

    resolved = []
    for user_id in candidates:
        if user_id != memo.sender_id and user_id not in resolved:
            resolved.append(user_id)
    return resolved


class DeliveryFanout:
    """Creates delivered copies for an approved memo."""

    def __init__(self, ledger: RollbackLedger):
        self.ledger = ledger

    def build_copy(self, memo: Memo, recipient_id: str, approved_by: str, approved_at: str) -> Memo:
        """The delivered copy for one recipient; attachments and signatures are deep-copied."""
        metadata = copy.deepcopy(memo.metadata)
        metadata.update({
            "originalMemoId": memo.id,
            "eventType": DELIVERED_EVENT,
            "approvedBy": approved_by,
            "approvedAt": approved_at,
        })
        return Memo(
            id=new_id(),
            sender_id=memo.sender_id,
            recipient_id=recipient_id,
            recipients=[recipient_id],
            departments=list(memo.departments),
            subject=memo.subject,
            content=memo.content,
            priority=memo.priority,
            status=MemoStatus.SENT,
            metadata=metadata,
            attachments=copy.deepcopy(memo.attachments),
            signatures=copy.deepcopy(memo.signatures),
            created_at=approved_at,
            updated_at=approved_at,
        )

    def create_copy(self, memo: Memo, recipient_id: str, approved_by: str, approved_at: str,
                    entry_id: str, payload: Dict[str, Any]) -> Optional[str]:
        """Insert one copy and record it in the ledger entry, atomically.

        Returns the new copy id, or None when the recipient already has a copy.
        """
        with immediate_transaction() as conn:
            if find_copy_for_recipient(memo.id, recipient_id, conn) is not None:
                return None

            delivered = self.build_copy(memo, recipient_id, approved_by, approved_at)
            insert_memo(delivered, conn)
            payload["copyIds"] = payload.get("copyIds", []) + [delivered.id]
            self.ledger.record_progress(entry_id, payload, conn)
            return delivered.id

    def deliver(self, memo: Memo, recipients: List[str], approved_by: str, approved_at: str,
                entry_id: str, payload: Dict[str, Any]) -> List[str]:
        """Create copies sequentially; the first failure propagates to the caller."""
        created = []
        for recipient_id in recipients:
            copy_id = self.create_copy(memo, recipient_id, approved_by, approved_at, entry_id, payload)
            if copy_id is None:
                logger.warning(f"Recipient {recipient_id} already holds a copy of memo {memo.id}")
                continue
            created.append(copy_id)

        logger.log_operation("fanout.deliver", "success", {
            "memo_id": memo.id,
            "recipients": len(recipients),
            "copies": len(created),
        })
        return created
