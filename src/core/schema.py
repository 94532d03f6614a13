"""
Domain records for memo routing: memos, edit locks, rollback ledger entries and user profiles.
Persistence uses one physical row shape per table; these dataclasses are the typed view of a row.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

TS_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_ts(value: datetime) -> str:
    """Fixed-width UTC text form; lexical order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TS_FORMAT)


def from_db_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp (or any ISO-8601 string) to an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, TS_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def next_version(previous: Optional[str], now: Optional[datetime] = None) -> str:
    """A version marker strictly greater than `previous`."""
    candidate = now or utc_now()
    prior = from_db_ts(previous)
    if prior is not None and candidate <= prior:
        candidate = prior + timedelta(microseconds=1)
    return to_db_ts(candidate)


class MemoStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    SCHEDULED = "scheduled"
    ARCHIVED = "archived"
    DELETED = "deleted"


class MemoKind(str, Enum):
    """What a row in the memos table represents."""
    MEMO = "memo"
    NOTIFICATION = "notification"
    ACTIVITY = "activity"


# activityType values that are notifications addressed to a user
NOTIFICATION_ACTIVITY_TYPES = {"system_notification", "memo_received"}


def memo_kind_for(activity_type: Optional[str]) -> MemoKind:
    """Derive the kind tag from the stored activity type discriminator."""
    if activity_type is None:
        return MemoKind.MEMO
    if activity_type in NOTIFICATION_ACTIVITY_TYPES:
        return MemoKind.NOTIFICATION
    return MemoKind.ACTIVITY


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RollbackStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class OperationType(str, Enum):
    MEMO_APPROVAL = "memo_approval"
    MEMO_REJECTION = "memo_rejection"
    MEMO_DELETION = "memo_deletion"
    CALENDAR_EVENT_CREATION = "calendar_event_creation"


class UserRole(str, Enum):
    ADMIN = "admin"
    SECRETARY = "secretary"
    FACULTY = "faculty"


@dataclass
class WorkflowEntry:
    action: str
    by: str
    at: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"action": self.action, "by": self.by, "at": self.at}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class Acknowledgment:
    user_id: str
    acknowledged_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "acknowledgedAt": self.acknowledged_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Acknowledgment':
        return cls(user_id=data["userId"], acknowledged_at=data["acknowledgedAt"])


@dataclass
class Memo:
    """One row of the memos table: authoritative memo, delivered copy, or notification."""
    id: str
    sender_id: str
    subject: str
    status: MemoStatus
    created_at: str
    updated_at: str
    recipient_id: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    departments: List[str] = field(default_factory=list)
    content: str = ""
    priority: str = Priority.MEDIUM.value
    activity_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    signatures: List[Dict[str, Any]] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    acknowledgments: List[Dict[str, Any]] = field(default_factory=list)
    is_read: bool = False

    @property
    def kind(self) -> MemoKind:
        return memo_kind_for(self.activity_type)

    @property
    def original_memo_id(self) -> Optional[str]:
        return self.metadata.get("originalMemoId")

    @property
    def is_delivered_copy(self) -> bool:
        return self.kind is MemoKind.MEMO and self.original_memo_id is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the API representation."""
        data = asdict(self)
        data["status"] = self.status.value
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_row(cls, row) -> 'Memo':
        """Build from a sqlite3.Row of the memos table."""
        return cls(
            id=row["id"],
            sender_id=row["sender_id"],
            recipient_id=row["recipient_id"],
            recipients=json.loads(row["recipients"]),
            departments=json.loads(row["departments"]),
            subject=row["subject"],
            content=row["content"],
            priority=row["priority"],
            status=MemoStatus(row["status"]),
            activity_type=row["activity_type"],
            metadata=json.loads(row["metadata"]),
            attachments=json.loads(row["attachments"]),
            signatures=json.loads(row["signatures"]),
            history=json.loads(row["history"]),
            acknowledgments=json.loads(row["acknowledgments"]),
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class EditLock:
    resource_id: str
    locked_by: str
    lock_time: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now

    def remaining_seconds(self, now: datetime) -> float:
        return max(0.0, (self.expires_at - now).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "locked_by": self.locked_by,
            "lock_time": to_db_ts(self.lock_time),
            "expires_at": to_db_ts(self.expires_at),
        }

    @classmethod
    def from_row(cls, row) -> 'EditLock':
        return cls(
            resource_id=row["resource_id"],
            locked_by=row["locked_by"],
            lock_time=from_db_ts(row["lock_time"]),
            expires_at=from_db_ts(row["expires_at"]),
        )


@dataclass
class RollbackLogEntry:
    """Ledger record of one multi-step operation and the state needed to invert it."""
    id: str
    operation_type: str
    status: RollbackStatus
    performed_by: str
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    rolled_back_by: Optional[str] = None
    rolled_back_at: Optional[datetime] = None
    rollback_reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for JSON serialization."""
        data = asdict(self)
        data['status'] = self.status.value
        data['timestamp'] = self.timestamp.isoformat()
        data['rolled_back_at'] = self.rolled_back_at.isoformat() if self.rolled_back_at else None
        return data

    @classmethod
    def from_row(cls, row) -> 'RollbackLogEntry':
        return cls(
            id=row["id"],
            operation_type=row["operation_type"],
            status=RollbackStatus(row["status"]),
            performed_by=row["performed_by"],
            timestamp=from_db_ts(row["timestamp"]),
            payload=json.loads(row["payload"]),
            rolled_back_by=row["rolled_back_by"],
            rolled_back_at=from_db_ts(row["rolled_back_at"]),
            rollback_reason=row["rollback_reason"],
            error=row["error"],
        )


@dataclass
class UserProfile:
    id: str
    email: str
    updated_at: str
    first_name: str = ""
    last_name: str = ""
    role: str = UserRole.FACULTY.value
    department: Optional[str] = None
    is_active: bool = True
    updated_by: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row) -> 'UserProfile':
        return cls(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            role=row["role"],
            department=row["department"],
            is_active=bool(row["is_active"]),
            updated_at=row["updated_at"],
            updated_by=row["updated_by"],
        )
