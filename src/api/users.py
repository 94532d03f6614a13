"""
User profile endpoints. Updates honor edit locks and the optimistic version guard.
"""

from fastapi import APIRouter, Depends

from .deps import Actor, get_actor, require_admin
from .schemas import UserCreateRequest, UserResponse, UserUpdateRequest
from ..core.profiles import create_profile, get_profile, update_profile

router = APIRouter()


@router.post("", response_model=UserResponse, status_code=201)
def create_user_endpoint(req: UserCreateRequest, actor: Actor = Depends(require_admin)):
    return create_profile(actor.id, req.model_dump()).to_dict()


@router.get("/{user_id}", response_model=UserResponse)
def get_user_endpoint(user_id: str, actor: Actor = Depends(get_actor)):
    return get_profile(user_id).to_dict()


@router.put("/{user_id}", response_model=UserResponse)
def update_user_endpoint(user_id: str, req: UserUpdateRequest, actor: Actor = Depends(get_actor)):
    profile = update_profile(actor.id, user_id, req.changes(), req.version, actor.role)
    return profile.to_dict()
