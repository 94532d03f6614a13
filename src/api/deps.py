"""
Caller identity for the HTTP layer. Authentication happens upstream; the
gateway forwards the authenticated user in X-User-Id and X-User-Role.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from ..core.schema import UserRole


@dataclass
class Actor:
    id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def get_actor(x_user_id: Optional[str] = Header(None), x_user_role: Optional[str] = Header(None)) -> Actor:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return Actor(id=x_user_id.strip(), role=(x_user_role or "").strip().lower() or None)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor
