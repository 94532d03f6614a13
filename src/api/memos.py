"""
Memo workflow endpoints: submission, review, acknowledgment and user actions.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends

from .deps import Actor, get_actor, require_admin
from .schemas import (
    ApprovalResponse,
    DecisionResponse,
    MemoEditRequest,
    MemoResponse,
    MemoSubmitRequest,
    RejectRequest,
)
from ..core.workflow import workflow

router = APIRouter()


@router.post("", response_model=MemoResponse, status_code=201)
def submit_memo_endpoint(req: MemoSubmitRequest, actor: Actor = Depends(get_actor)):
    """Submit a memo for review, or save it as a draft with `draft: true`."""
    payload = req.model_dump(exclude={"draft"})
    memo = workflow.save_draft(actor.id, payload) if req.draft else workflow.submit(actor.id, payload)
    return memo.to_dict()


@router.post("/{memo_id}/submit", response_model=MemoResponse)
def submit_draft_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    return workflow.submit_draft(actor.id, memo_id).to_dict()


@router.get("/{memo_id}", response_model=MemoResponse)
def get_memo_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    return workflow.get_memo(actor.id, memo_id, actor.role)


@router.patch("/{memo_id}", response_model=MemoResponse)
def edit_memo_endpoint(memo_id: str, req: MemoEditRequest, actor: Actor = Depends(get_actor)):
    memo = workflow.edit(actor.id, memo_id, req.changes(), req.version, actor.role)
    return memo.to_dict()


@router.post("/{memo_id}/approve", response_model=ApprovalResponse)
def approve_memo_endpoint(memo_id: str, actor: Actor = Depends(require_admin)):
    return workflow.approve(actor.id, memo_id)


@router.post("/{memo_id}/reject", response_model=DecisionResponse)
def reject_memo_endpoint(memo_id: str, req: Optional[RejectRequest] = Body(None),
                         actor: Actor = Depends(require_admin)):
    return workflow.reject(actor.id, memo_id, req.reason if req else None)


@router.post("/{memo_id}/acknowledge", response_model=MemoResponse)
def acknowledge_memo_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    return workflow.acknowledge(actor.id, memo_id).to_dict()


@router.post("/{memo_id}/archive", response_model=MemoResponse)
def archive_memo_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    return workflow.archive(actor.id, memo_id).to_dict()


@router.delete("/{memo_id}", response_model=DecisionResponse)
def delete_memo_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    return workflow.delete(actor.id, memo_id, actor.role)


@router.get("/{memo_id}/copies", response_model=List[Dict[str, Any]])
def list_copies_endpoint(memo_id: str, actor: Actor = Depends(get_actor)):
    workflow.get_memo(actor.id, memo_id, actor.role)
    return [copy.to_dict() for copy in workflow.list_copies(memo_id)]
