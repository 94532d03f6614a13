#!/usr/bin/env python3
"""
Heartbeat worker for the memo routing core: drains the side-effect outbox and
purges expired edit lock rows. Run it alongside the API when OUTBOX_DISPATCH=deferred.
"""

import sys
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import LOCK_PURGE_INTERVAL_SEC, OUTBOX_INTERVAL_SEC, is_heartbeat_enabled
from src.core.db import init_db
from src.core.heartbeat import register_task, start, stop
from src.core.locks import lock_manager
from src.core.outbox import outbox

from util.logging import logger


def outbox_drain_task():
    return outbox.drain()


def purge_expired_locks_task():
    return {"purged": lock_manager.purge_expired()}


def main():
    try:
        if not is_heartbeat_enabled():
            logger.error("Worker requires HEARTBEAT_ENABLED=true")
            sys.exit(1)

        init_db()
        requeued = outbox.requeue_stale()
        if requeued:
            logger.warning(f"Requeued {requeued} outbox task(s) left running by a previous worker")

        register_task("outbox_drain", OUTBOX_INTERVAL_SEC, outbox_drain_task)
        register_task("purge_expired_locks", LOCK_PURGE_INTERVAL_SEC, purge_expired_locks_task)

        start()

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
        stop()
    except Exception as e:
        logger.exception(f"Critical error: {e}")
        stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
