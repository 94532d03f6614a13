"""
Edit lock manager - short-lived exclusive editing claims on shared records (memos, user profiles).

A lock is live iff expires_at > now at the moment it is checked; there is no
background sweep deciding liveness. Acquire is a single conditional upsert so two
actors racing for the same expired lock cannot both win.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import get_lock_ttl
from .dao import add_event
from .errors import Expired, Locked
from .events import (
    EDIT_SUCCESS,
    LOCK_ACQUIRED,
    LOCK_REFRESHED,
    LOCK_RELEASED,
    LockEventBus,
    lock_events,
)
from .lock_store import LockStore
from .schema import EditLock, utc_now

from util.logging import logger

# Attempts to claim before reporting a holder, covering a lock expiring mid-check
MAX_CLAIM_ATTEMPTS = 3


def _remaining(lock: EditLock, now: datetime) -> int:
    return int(math.ceil(lock.remaining_seconds(now)))


class EditLockManager:
    """Acquire, refresh, release and inspect edit locks."""

    def __init__(self, store: Optional[LockStore] = None, bus: Optional[LockEventBus] = None,
                 clock: Callable[[], datetime] = utc_now, ttl_seconds: Optional[int] = None):
        self.store = store or LockStore()
        self.bus = bus if bus is not None else lock_events
        self.clock = clock
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds if self._ttl_seconds is not None else get_lock_ttl()

    def acquire(self, resource_id: str, actor_id: str) -> Dict[str, Any]:
        """Take the lock, or renew it when `actor_id` already holds it.

        Raises:
            Locked: a live lock is held by another actor.
        """
        for _ in range(MAX_CLAIM_ATTEMPTS):
            now = self.clock()
            expires_at = now + timedelta(seconds=self.ttl_seconds)
            if self.store.try_claim(resource_id, actor_id, now, expires_at):
                self._record(LOCK_ACQUIRED, resource_id, actor_id, {"expires_at": expires_at.isoformat()})
                return {"ok": True, "ttl": self.ttl_seconds}

            current = self.store.get(resource_id)
            if current is not None and current.is_live(now) and current.locked_by != actor_id:
                remaining = _remaining(current, now)
                logger.log_lock_operation("acquire", resource_id, actor_id, status="locked",
                                          details={"holder": current.locked_by, "remaining": remaining})
                raise Locked(resource_id, remaining, current.locked_by)

        raise Locked(resource_id, self.ttl_seconds, None)

    def refresh(self, resource_id: str, actor_id: str) -> Dict[str, Any]:
        """Extend a live lock held by `actor_id`.

        Raises:
            Expired: no live lock exists; the caller must acquire again.
            Locked: a live lock is held by another actor.
        """
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        if self.store.extend(resource_id, actor_id, now, expires_at):
            self._record(LOCK_REFRESHED, resource_id, actor_id, {"expires_at": expires_at.isoformat()})
            return {"ok": True, "ttl": self.ttl_seconds}

        current = self.store.get(resource_id)
        if current is None or not current.is_live(now):
            logger.log_lock_operation("refresh", resource_id, actor_id, status="expired")
            raise Expired(resource_id)
        raise Locked(resource_id, _remaining(current, now), current.locked_by)

    def release(self, resource_id: str, actor_id: str) -> Dict[str, Any]:
        """Drop the lock. Releasing an absent or expired lock is a no-op success.

        Raises:
            Locked: a live lock is held by another actor.
        """
        now = self.clock()
        if self.store.delete(resource_id, actor_id, now):
            self._record(LOCK_RELEASED, resource_id, actor_id)
            return {"ok": True}

        current = self.store.get(resource_id)
        if current is not None and current.is_live(now) and current.locked_by != actor_id:
            raise Locked(resource_id, _remaining(current, now), current.locked_by)
        return {"ok": True}

    def status(self, resource_id: str) -> Dict[str, Any]:
        """Read-only view of one resource's lock."""
        return self._status_for(self.store.get(resource_id), self.clock())

    def batch_status(self, resource_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Lock view for every requested resource id, in one store round trip."""
        ids = list(resource_ids)
        now = self.clock()
        locks = self.store.get_many(ids)
        return {resource_id: self._status_for(locks.get(resource_id), now) for resource_id in ids}

    def holder(self, resource_id: str) -> Optional[str]:
        """Actor holding a live lock on the resource, if any."""
        lock = self.store.get(resource_id)
        if lock is not None and lock.is_live(self.clock()):
            return lock.locked_by
        return None

    def ensure_editable(self, resource_id: str, actor_id: str):
        """Raise Locked when someone other than `actor_id` holds a live lock."""
        now = self.clock()
        lock = self.store.get(resource_id)
        if lock is not None and lock.is_live(now) and lock.locked_by != actor_id:
            raise Locked(resource_id, _remaining(lock, now), lock.locked_by)

    def active_locks(self, holder: Optional[str] = None) -> List[Dict[str, Any]]:
        now = self.clock()
        return [
            {**lock.to_dict(), "remaining": _remaining(lock, now)}
            for lock in self.store.list_live(now, holder)
        ]

    def force_release(self, resource_id: str, admin_id: str) -> Dict[str, Any]:
        """Administrative release regardless of holder."""
        removed = self.store.force_delete(resource_id)
        if removed is None:
            return {"ok": True, "released": False}

        self._record(LOCK_RELEASED, resource_id, admin_id,
                     {"forced": True, "previous_holder": removed.locked_by})
        return {"ok": True, "released": True, "previous_holder": removed.locked_by}

    def purge_expired(self) -> int:
        purged = self.store.purge_expired(self.clock())
        if purged:
            logger.log_lock_operation("purge", "*", "system", details={"purged": purged})
        return purged

    def notify_edit_success(self, resource_id: str, actor_id: str, details: Dict[str, Any] = None):
        """Broadcast that a guarded write landed on the resource."""
        self.bus.publish(EDIT_SUCCESS, resource_id, {"by": actor_id, **(details or {})})

    def _status_for(self, lock: Optional[EditLock], now: datetime) -> Dict[str, Any]:
        if lock is None or not lock.is_live(now):
            return {"locked": False, "lockedBy": None, "remaining": 0}
        return {"locked": True, "lockedBy": lock.locked_by, "remaining": _remaining(lock, now)}

    def _record(self, event_type: str, resource_id: str, actor_id: str, details: Dict[str, Any] = None):
        logger.log_lock_operation(event_type, resource_id, actor_id, details=details)
        add_event(actor_id, event_type, resource_id, details)
        self.bus.publish(event_type, resource_id, {"by": actor_id, **(details or {})})


# Global lock manager instance
lock_manager = EditLockManager()


def acquire_lock(resource_id: str, actor_id: str) -> Dict[str, Any]:
    return lock_manager.acquire(resource_id, actor_id)


def refresh_lock(resource_id: str, actor_id: str) -> Dict[str, Any]:
    return lock_manager.refresh(resource_id, actor_id)


def release_lock(resource_id: str, actor_id: str) -> Dict[str, Any]:
    return lock_manager.release(resource_id, actor_id)


def lock_status(resource_id: str) -> Dict[str, Any]:
    return lock_manager.status(resource_id)


def batch_lock_status(resource_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    return lock_manager.batch_status(resource_ids)
