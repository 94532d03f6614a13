"""
Optimistic version guard - rejects writes based on a stale client-known version.

The version marker is the record's updated_at. The read, the comparison and the
write happen inside one BEGIN IMMEDIATE transaction, so a conflicting write is
rejected with nothing applied.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from .dao import get_memo, get_user, update_memo_fields, update_user_fields
from .db import immediate_transaction
from .errors import Conflict, NotFound, ValidationFailed
from .locks import lock_manager
from .schema import from_db_ts, next_version

from util.logging import logger

Mutation = Union[Dict[str, Any], Callable[[Any], Dict[str, Any]]]


@dataclass
class VersionedRecord:
    version: str
    updated_by: Optional[str]
    record: Any


def _parse_client_version(client_version: Union[str, datetime, None]) -> Optional[datetime]:
    if client_version is None or client_version == "":
        return None
    if isinstance(client_version, datetime):
        return from_db_ts(client_version.isoformat())
    try:
        return from_db_ts(client_version)
    except ValueError:
        raise ValidationFailed(f"Invalid version marker: {client_version}")


class OptimisticVersionGuard:
    """Check-then-write over one record type."""

    def __init__(self, name: str, loader: Callable, writer: Callable, holder_lookup: Callable = None):
        self.name = name
        self._loader = loader
        self._writer = writer
        self._holder_lookup = holder_lookup

    def check_and_apply(self, resource_id: str, client_version: Union[str, datetime, None],
                        mutation: Mutation, actor_id: str) -> str:
        """Apply `mutation` unless the stored version is newer than `client_version`.

        `mutation` is a dict of column changes or a callable that builds one from
        the current record. A missing client version skips the comparison.

        Returns:
            The new version marker.

        Raises:
            NotFound: no such record.
            Conflict: stored version is strictly newer than the client's.
        """
        client_ts = _parse_client_version(client_version)

        with immediate_transaction() as conn:
            current = self._loader(resource_id, conn)
            if current is None:
                raise NotFound(f"{self.name} {resource_id} not found")

            stored_ts = from_db_ts(current.version)
            if client_ts is not None and stored_ts > client_ts:
                holder = self._holder_lookup(resource_id) if self._holder_lookup else None
                logger.log_operation(f"version_guard.{self.name}", "conflict", {
                    "resource_id": resource_id,
                    "client_version": client_version if isinstance(client_version, str) else str(client_version),
                    "current_version": current.version,
                })
                raise Conflict(resource_id, current.version, holder, current.updated_by)

            changes = mutation(current.record) if callable(mutation) else dict(mutation)
            new_version = next_version(current.version)
            self._writer(resource_id, changes, new_version, actor_id, conn)

        logger.log_operation(f"version_guard.{self.name}", "applied", {
            "resource_id": resource_id,
            "fields": sorted(changes),
            "version": new_version,
        })
        return new_version


def _load_user(resource_id: str, conn) -> Optional[VersionedRecord]:
    user = get_user(resource_id, conn)
    if user is None:
        return None
    return VersionedRecord(user.updated_at, user.updated_by, user)


def _write_user(resource_id: str, changes: Dict[str, Any], new_version: str, actor_id: str, conn):
    update_user_fields(resource_id, changes, new_version, actor_id, conn)


def _load_memo(resource_id: str, conn) -> Optional[VersionedRecord]:
    memo = get_memo(resource_id, conn)
    if memo is None:
        return None
    last_by = memo.history[-1]["by"] if memo.history else memo.sender_id
    return VersionedRecord(memo.updated_at, last_by, memo)


def _write_memo(resource_id: str, changes: Dict[str, Any], new_version: str, actor_id: str, conn):
    update_memo_fields(resource_id, changes, new_version, conn)


def _current_holder(resource_id: str) -> Optional[str]:
    return lock_manager.holder(resource_id)


user_version_guard = OptimisticVersionGuard("user", _load_user, _write_user, _current_holder)
memo_version_guard = OptimisticVersionGuard("memo", _load_memo, _write_memo, _current_holder)
