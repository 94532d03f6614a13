"""
Rollback ledger endpoints: audit views and manual rollback (admin only).
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from .deps import Actor, require_admin
from .schemas import RollbackEntryResponse, RollbackListResponse, RollbackRequest, RollbackResponse
from ..core.config import ROLLBACK_QUERY_LIMIT
from ..core.errors import NotFound, ValidationFailed
from ..core.ledger import rollback_ledger
from ..core.schema import RollbackStatus

router = APIRouter()

VALID_STATUSES = [s.value for s in RollbackStatus]


@router.get("/logs", response_model=RollbackListResponse)
def list_logs_endpoint(
    operation_type: Optional[str] = None,
    status: Optional[str] = None,
    since_hours: Optional[float] = Query(None, gt=0),
    limit: int = Query(ROLLBACK_QUERY_LIMIT, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_admin),
):
    if status is not None and status not in VALID_STATUSES:
        raise ValidationFailed(f"status must be one of: {VALID_STATUSES}")

    entries = rollback_ledger.query(operation_type, status, since_hours, limit, offset)
    return {
        "entries": [entry.to_dict() for entry in entries],
        "total": rollback_ledger.count(operation_type, status),
        "limit": limit,
        "offset": offset,
    }


@router.get("/logs/{entry_id}", response_model=RollbackEntryResponse)
def get_log_endpoint(entry_id: str, actor: Actor = Depends(require_admin)):
    return rollback_ledger.get(entry_id).to_dict()


@router.get("/available", response_model=RollbackListResponse)
def available_endpoint(operation_type: Optional[str] = None,
                       hours: Optional[float] = Query(None, gt=0),
                       actor: Actor = Depends(require_admin)):
    """Completed operations still inside the rollback window."""
    entries = rollback_ledger.available(operation_type, hours)
    return {"entries": [entry.to_dict() for entry in entries], "total": len(entries),
            "limit": len(entries), "offset": 0}


@router.post("/{entry_id}", response_model=RollbackResponse)
def rollback_endpoint(entry_id: str, req: Optional[RollbackRequest] = Body(None),
                      actor: Actor = Depends(require_admin)):
    """Manually reverse a completed or failed operation."""
    try:
        return rollback_ledger.rollback(entry_id, actor.id, req.reason if req else None)
    except NotFound as e:
        return JSONResponse(status_code=400, content=e.to_dict())
