"""
Edit lock endpoints and the lock event stream.
"""

import asyncio
from typing import Dict, List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from .deps import Actor, get_actor, require_admin
from .schemas import ActiveLock, BatchLockRequest, LockResponse, LockStatusResponse
from ..core.events import lock_events
from ..core.locks import lock_manager

from util.logging import logger

router = APIRouter()


# Fixed paths are declared before /{resource_id} so they are not captured by it
@router.post("/batch", response_model=Dict[str, LockStatusResponse])
def batch_status_endpoint(req: BatchLockRequest, actor: Actor = Depends(get_actor)):
    """Lock status for many resources at once (list views)."""
    return lock_manager.batch_status(req.resource_ids)


@router.get("", response_model=List[ActiveLock])
def list_locks_endpoint(mine: bool = False, actor: Actor = Depends(get_actor)):
    if not mine and not actor.is_admin:
        mine = True
    return lock_manager.active_locks(actor.id if mine else None)


@router.post("/{resource_id}", response_model=LockResponse)
def acquire_endpoint(resource_id: str, actor: Actor = Depends(get_actor)):
    return lock_manager.acquire(resource_id, actor.id)


@router.post("/{resource_id}/refresh", response_model=LockResponse)
def refresh_endpoint(resource_id: str, actor: Actor = Depends(get_actor)):
    return lock_manager.refresh(resource_id, actor.id)


@router.post("/{resource_id}/release", response_model=LockResponse)
def release_endpoint(resource_id: str, actor: Actor = Depends(get_actor)):
    return lock_manager.release(resource_id, actor.id)


@router.get("/{resource_id}", response_model=LockStatusResponse)
def status_endpoint(resource_id: str, actor: Actor = Depends(get_actor)):
    return lock_manager.status(resource_id)


@router.delete("/{resource_id}")
def force_release_endpoint(resource_id: str, actor: Actor = Depends(require_admin)):
    return lock_manager.force_release(resource_id, actor.id)


@router.websocket("/ws/{resource_id}")
async def lock_stream(websocket: WebSocket, resource_id: str):
    """Push lock_acquired / lock_released / edit_success events for one resource."""
    viewer = (websocket.headers.get("x-user-id") or "").strip()
    if not viewer:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(event):
        loop.call_soon_threadsafe(queue.put_nowait, event)

    unsubscribe = lock_events.subscribe(resource_id, forward)
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        current = await run_in_threadpool(lock_manager.status, resource_id)
        await websocket.send_json({"type": "lock_status", "resource_id": resource_id, **current})
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                await websocket.send_json(getter.result())
            else:
                getter.cancel()

            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    break
                receiver = asyncio.ensure_future(websocket.receive())
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        unsubscribe()
        logger.debug(f"Lock stream for {resource_id} closed ({viewer})")
