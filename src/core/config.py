"""
Runtime configuration for the memo routing core.
Values come from the environment; a local .env file is loaded first when present.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/memos.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Edit locks
LOCK_TTL_SEC = int(os.getenv("LOCK_TTL_SEC", "30"))

# Rollback ledger
ROLLBACK_WINDOW_HOURS = int(os.getenv("ROLLBACK_WINDOW_HOURS", "24"))
ROLLBACK_QUERY_LIMIT = 50
ROLLBACK_AVAILABLE_LIMIT = 100

# Outbox for post-commit side effects
OUTBOX_DISPATCH = os.getenv("OUTBOX_DISPATCH", "thread")  # inline|thread|deferred
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "3"))
OUTBOX_INTERVAL_SEC = int(os.getenv("OUTBOX_INTERVAL_SEC", "5"))

# Heartbeat worker (default disabled)
HEARTBEAT_ENABLED = os.getenv("HEARTBEAT_ENABLED", "false").lower() == "true"
LOCK_PURGE_INTERVAL_SEC = int(os.getenv("LOCK_PURGE_INTERVAL_SEC", "60"))

# Offsite backup of approved memos (default disabled)
BACKUP_ENABLED = os.getenv("BACKUP_ENABLED", "false").lower() == "true"
BACKUP_DIR = os.getenv("BACKUP_DIR", "./data/backups")
BACKUP_ENCRYPTION_ENABLED = os.getenv("BACKUP_ENCRYPTION_ENABLED", "true").lower() == "true"
BACKUP_UPLOAD_URL = os.getenv("BACKUP_UPLOAD_URL")

# Outbound email relay
MAIL_WEBHOOK_URL = os.getenv("MAIL_WEBHOOK_URL")
MAIL_SENDER = os.getenv("MAIL_SENDER", "memos@localhost")
SIDE_EFFECT_TIMEOUT_SEC = int(os.getenv("SIDE_EFFECT_TIMEOUT_SEC", "10"))

# Version string
VERSION = "1.0.0"

VALID_DISPATCH_MODES = ["inline", "thread", "deferred"]


def get_db_path():
    """Database path, re-read so tests can point it at a temporary file."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_lock_ttl():
    """Edit lock time-to-live in seconds."""
    return int(os.getenv("LOCK_TTL_SEC", str(LOCK_TTL_SEC)))


def get_outbox_dispatch():
    """Outbox dispatch mode (inline|thread|deferred)."""
    return os.getenv("OUTBOX_DISPATCH", OUTBOX_DISPATCH)


def is_backup_enabled():
    """Check if memo backups are enabled."""
    return os.getenv("BACKUP_ENABLED", "false").lower() == "true"


def get_backup_dir():
    """Directory that receives memo backups."""
    return os.getenv("BACKUP_DIR", BACKUP_DIR)


def get_backup_upload_url():
    """Optional remote endpoint for uploading memo backups."""
    return os.getenv("BACKUP_UPLOAD_URL", BACKUP_UPLOAD_URL)


def get_mail_webhook_url():
    """Optional mail relay endpoint."""
    return os.getenv("MAIL_WEBHOOK_URL", MAIL_WEBHOOK_URL)


def is_heartbeat_enabled():
    """Check if the heartbeat worker may start."""
    return os.getenv("HEARTBEAT_ENABLED", "false").lower() == "true"


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_outbox_dispatch() not in VALID_DISPATCH_MODES:
        issues.append(f"Invalid OUTBOX_DISPATCH: {get_outbox_dispatch()}")

    if get_lock_ttl() < 1:
        issues.append("LOCK_TTL_SEC must be >= 1")

    if OUTBOX_MAX_ATTEMPTS < 1:
        issues.append("OUTBOX_MAX_ATTEMPTS must be >= 1")

    if OUTBOX_INTERVAL_SEC < 1:
        issues.append("OUTBOX_INTERVAL_SEC must be >= 1")

    if ROLLBACK_WINDOW_HOURS < 1:
        issues.append("ROLLBACK_WINDOW_HOURS must be >= 1")

    return issues
