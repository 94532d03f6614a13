"""
Request and response models for the memo routing HTTP surface.
"""

from pydantic import BaseModel, field_validator, ConfigDict, Field
from typing import Optional, List, Dict, Any

from ..core.schema import Priority, UserRole

VALID_PRIORITIES = [p.value for p in Priority]
VALID_ROLES = [r.value for r in UserRole]


# Locks

class LockResponse(BaseModel):
    ok: bool
    ttl: Optional[int] = None


class LockStatusResponse(BaseModel):
    locked: bool
    lockedBy: Optional[str] = None
    remaining: int = 0


class BatchLockRequest(BaseModel):
    resource_ids: List[str]

    @field_validator('resource_ids')
    @classmethod
    def ids_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('resource_ids cannot be empty')
        if any(not item.strip() for item in v):
            raise ValueError('resource_ids cannot contain empty ids')
        return v


class ActiveLock(BaseModel):
    resource_id: str
    locked_by: str
    lock_time: str
    expires_at: str
    remaining: int


# Memos

class MemoSubmitRequest(BaseModel):
    subject: str
    content: str = ""
    recipients: List[str] = Field(default_factory=list)
    departments: List[str] = Field(default_factory=list)
    priority: str = Priority.MEDIUM.value
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    signatures: List[Dict[str, Any]] = Field(default_factory=list)
    draft: bool = False

    @field_validator('priority')
    @classmethod
    def priority_must_be_valid(cls, v):
        if v not in VALID_PRIORITIES:
            raise ValueError(f'priority must be one of: {VALID_PRIORITIES}')
        return v


class MemoEditRequest(BaseModel):
    """Partial update; `version` is the updated_at the client last saw."""
    model_config = ConfigDict(extra='forbid')

    version: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    recipients: Optional[List[str]] = None
    departments: Optional[List[str]] = None
    priority: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    signatures: Optional[List[Dict[str, Any]]] = None

    @field_validator('priority')
    @classmethod
    def priority_must_be_valid(cls, v):
        if v is not None and v not in VALID_PRIORITIES:
            raise ValueError(f'priority must be one of: {VALID_PRIORITIES}')
        return v

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={'version'})


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class MemoResponse(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    sender_id: str
    subject: str
    status: str
    kind: str
    created_at: str
    updated_at: str


class ApprovalResponse(BaseModel):
    memo: Dict[str, Any]
    copies: List[str]
    rollback_entry_id: str


class DecisionResponse(BaseModel):
    memo: Dict[str, Any]
    rollback_entry_id: str


# Users

class UserCreateRequest(BaseModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: str = UserRole.FACULTY.value
    department: Optional[str] = None
    is_active: bool = True

    @field_validator('id', 'email')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v

    @field_validator('role')
    @classmethod
    def role_must_be_valid(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f'role must be one of: {VALID_ROLES}')
        return v


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    version: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('role')
    @classmethod
    def role_must_be_valid(cls, v):
        if v is not None and v not in VALID_ROLES:
            raise ValueError(f'role must be one of: {VALID_ROLES}')
        return v

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={'version'})


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    department: Optional[str] = None
    is_active: bool
    updated_at: str
    updated_by: Optional[str] = None


# Rollback ledger

class RollbackEntryResponse(BaseModel):
    id: str
    operation_type: str
    status: str
    performed_by: str
    timestamp: str
    payload: Dict[str, Any]
    rolled_back_by: Optional[str] = None
    rolled_back_at: Optional[str] = None
    rollback_reason: Optional[str] = None
    error: Optional[str] = None


class RollbackListResponse(BaseModel):
    entries: List[RollbackEntryResponse]
    total: int
    limit: int
    offset: int


class RollbackRequest(BaseModel):
    reason: Optional[str] = None


class RollbackResponse(BaseModel):
    ok: bool
    entry_id: str
    operation_type: str
    result: Dict[str, Any]


# System

class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    memo_count: int
