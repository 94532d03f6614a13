"""
User profile operations. Profile edits are guarded the same way memo edits are:
a live edit lock held by someone else blocks the write, and a stale version is a conflict.
"""

from typing import Any, Dict, Optional

from .dao import USER_EDITABLE_FIELDS, get_user, insert_user
from .errors import NotFound, Unauthorized, ValidationFailed
from .locks import lock_manager
from .schema import UserProfile, UserRole, to_db_ts, utc_now
from .version_guard import user_version_guard

from util.logging import audit_event

VALID_ROLES = [role.value for role in UserRole]


def _check_role(role: str):
    if role not in VALID_ROLES:
        raise ValidationFailed(f"role must be one of: {VALID_ROLES}")


def create_profile(actor_id: str, data: Dict[str, Any]) -> UserProfile:
    user_id = (data.get("id") or "").strip()
    email = (data.get("email") or "").strip()
    if not user_id or not email:
        raise ValidationFailed("id and email are required")
    role = data.get("role", UserRole.FACULTY.value)
    _check_role(role)
    if get_user(user_id) is not None:
        raise ValidationFailed(f"User {user_id} already exists")

    profile = UserProfile(
        id=user_id,
        email=email,
        first_name=data.get("first_name", ""),
        last_name=data.get("last_name", ""),
        role=role,
        department=data.get("department"),
        is_active=data.get("is_active", True),
        updated_at=to_db_ts(utc_now()),
        updated_by=actor_id,
    )
    insert_user(profile)
    audit_event("user_created", {"user_id": user_id, "actor": actor_id}, {"role": role})
    return profile


def get_profile(user_id: str) -> UserProfile:
    profile = get_user(user_id)
    if profile is None:
        raise NotFound(f"User {user_id} not found")
    return profile


def update_profile(actor_id: str, user_id: str, changes: Dict[str, Any], client_version: Optional[str],
                   actor_role: Optional[str] = None) -> UserProfile:
    """Apply profile changes when the caller's version is current.

    Users may edit their own profile; admins may edit anyone's and are the only
    ones allowed to change role or active state.
    """
    is_admin = actor_role == UserRole.ADMIN.value
    if actor_id != user_id and not is_admin:
        raise Unauthorized("Only the user or an admin can edit this profile")

    unknown = set(changes) - set(USER_EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Fields cannot be edited: {sorted(unknown)}")
    if not is_admin and ({"role", "is_active"} & set(changes)):
        raise Unauthorized("Only an admin can change role or active state")
    if "role" in changes:
        _check_role(changes["role"])
    if "email" in changes and not (changes["email"] or "").strip():
        raise ValidationFailed("email cannot be empty")

    lock_manager.ensure_editable(user_id, actor_id)
    version = user_version_guard.check_and_apply(user_id, client_version, changes, actor_id)
    lock_manager.notify_edit_success(user_id, actor_id, {"version": version})

    audit_event("user_updated", {"user_id": user_id, "actor": actor_id}, {"fields": sorted(changes)})
    return get_profile(user_id)
