"""
Offsite backup of approved memos and full-database backup/restore.

Archives are AES-256-GCM encrypted with a random data key; the data key is wrapped
with a PBKDF2-derived master key and stored in an unencrypted manifest next to the archive.
"""

import json
import os
import hashlib
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, asdict

import requests
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import (
    BACKUP_ENCRYPTION_ENABLED,
    SIDE_EFFECT_TIMEOUT_SEC,
    get_backup_dir,
    get_backup_upload_url,
    get_db_path,
    is_backup_enabled,
)
from .dao import find_copies, get_memo, get_memo_count
from .ledger import rollback_ledger

from util.logging import audit_event, logger

DB_BACKUP_HEADER = b'MEMO_ROUTING_BACKUP_V1\n'
MEMO_SNAPSHOT_HEADER = b'MEMO_SNAPSHOT_V1\n'
DB_SECTION_MARKER = b'\n---DB_DATA---\n'
DEFAULT_MASTER_PASSWORD = "default_master_key_change_in_production"


@dataclass
class BackupManifest:
    """Backup manifest with metadata and integrity checks."""
    backup_id: str
    created_at: datetime
    backup_type: str  # full, memo
    encrypted: bool
    file_count: int
    total_size: int
    version: str = "1.0.0"
    checksum: str = ""
    encrypted_key: Optional[str] = None  # For decrypting the backup
    salt: Optional[str] = None  # PBKDF2 salt for key derivation
    memo_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert manifest to dictionary for JSON serialization."""
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupManifest':
        """Create manifest from dictionary (for restoration)."""
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


class BackupError(Exception):
    """Custom exception for backup operations."""
    pass


class RestoreError(Exception):
    """Custom exception for restore operations."""
    pass


def _master_password() -> str:
    return os.getenv("BACKUP_MASTER_PASSWORD", DEFAULT_MASTER_PASSWORD)


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive encryption key from password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return kdf.derive(password.encode())


def _encrypt_data(data: bytes, key: bytes) -> bytes:
    """Encrypt data using AES-256-GCM."""
    nonce = os.urandom(12)
    cipher = Cipher(algorithms.AES(key), modes.GCM(nonce))
    encryptor = cipher.encryptor()

    ciphertext = encryptor.update(data) + encryptor.finalize()

    # Return nonce + tag + ciphertext
    return nonce + encryptor.tag + ciphertext


def _decrypt_data(encrypted_data: bytes, key: bytes) -> bytes:
    """Decrypt data using AES-256-GCM."""
    if len(encrypted_data) < 28:  # nonce (12) + tag (16) + minimum ciphertext
        raise RestoreError("Encrypted data too short")

    nonce = encrypted_data[:12]
    tag = encrypted_data[12:28]
    ciphertext = encrypted_data[28:]

    cipher = Cipher(algorithms.AES(key), modes.GCM(nonce, tag))
    decryptor = cipher.decryptor()
    try:
        return decryptor.update(ciphertext) + decryptor.finalize()
    except InvalidTag:
        raise RestoreError("Decryption failed: wrong key or corrupted data")


def _calculate_checksum(data: bytes) -> str:
    """Calculate SHA-256 checksum of data."""
    return hashlib.sha256(data).hexdigest()


def _generate_encryption_key() -> Tuple[str, bytes, str]:
    """Generate a random data key; returns (wrapped key hex, raw key, salt hex)."""
    raw_key = secrets.token_bytes(32)
    salt = secrets.token_bytes(16)

    master_key = _derive_key(_master_password(), salt)
    encrypted_key = _encrypt_data(raw_key, master_key)

    return encrypted_key.hex(), raw_key, salt.hex()


def _unwrap_key(manifest: BackupManifest) -> bytes:
    if not manifest.encrypted_key or not manifest.salt:
        raise RestoreError("Missing encryption parameters for encrypted backup")
    master_key = _derive_key(_master_password(), bytes.fromhex(manifest.salt))
    return _decrypt_data(bytes.fromhex(manifest.encrypted_key), master_key)


def _read_sqlite_db(db_path: str) -> bytes:
    """Read SQLite database file as bytes."""
    try:
        with open(db_path, 'rb') as f:
            return f.read()
    except FileNotFoundError:
        raise BackupError(f"Database file not found: {db_path}")
    except PermissionError:
        raise BackupError(f"Permission denied reading database: {db_path}")


def _write_sqlite_db(db_path: str, data: bytes) -> None:
    """Write SQLite database file from bytes."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(db_path, 'wb') as f:
            f.write(data)
    except PermissionError:
        raise RestoreError(f"Permission denied writing database: {db_path}")


def _write_archive(backup_file: Path, manifest: BackupManifest, header: bytes, data_json: bytes,
                   db_data: Optional[bytes], key: Optional[bytes]) -> None:
    """Write archive and manifest; removes both if writing fails."""
    manifest_file = backup_file.with_suffix('.manifest.json')
    backup_file.parent.mkdir(parents=True, exist_ok=True)

    if key:
        data_json = _encrypt_data(data_json, key)
        if db_data is not None:
            db_data = _encrypt_data(db_data, key)

    try:
        with open(backup_file, 'wb') as f:
            f.write(header)
            f.write(data_json)
            if db_data is not None:
                f.write(DB_SECTION_MARKER)
                f.write(db_data)

        # Manifest is always unencrypted for easy inspection
        with open(manifest_file, 'w') as f:
            json.dump(manifest.to_dict(), f, indent=2)
    except OSError as e:
        backup_file.unlink(missing_ok=True)
        manifest_file.unlink(missing_ok=True)
        raise BackupError(f"Writing backup failed: {e}")


def read_archive(backup_path: str, manifest_path: str) -> Tuple[BackupManifest, Dict[str, Any], Optional[bytes]]:
    """Decrypt and validate an archive; returns (manifest, data, db bytes or None)."""
    try:
        with open(manifest_path, 'r') as f:
            manifest = BackupManifest.from_dict(json.load(f))
        with open(backup_path, 'rb') as f:
            content = f.read()
    except FileNotFoundError as e:
        raise RestoreError(f"Backup file not found: {e}")

    header = DB_BACKUP_HEADER if manifest.backup_type == "full" else MEMO_SNAPSHOT_HEADER
    if not content.startswith(header):
        raise RestoreError("Invalid backup file format")

    body = content[len(header):]
    db_data = None
    if manifest.backup_type == "full":
        parts = body.split(DB_SECTION_MARKER, 1)
        if len(parts) != 2:
            raise RestoreError("Invalid backup file structure")
        body, db_data = parts

    if manifest.encrypted:
        key = _unwrap_key(manifest)
        body = _decrypt_data(body, key)
        if db_data is not None:
            db_data = _decrypt_data(db_data, key)

    actual_checksum = _calculate_checksum(body)
    if actual_checksum != manifest.checksum:
        raise RestoreError(f"Backup checksum mismatch: expected {manifest.checksum}, got {actual_checksum}")

    try:
        data = json.loads(body.decode('utf-8'))
    except json.JSONDecodeError as e:
        raise RestoreError(f"Invalid backup data format: {e}")
    return manifest, data, db_data


def _upload(backup_file: Path, manifest: BackupManifest) -> bool:
    url = get_backup_upload_url()
    if not url:
        return False

    with open(backup_file, 'rb') as f:
        response = requests.post(
            url,
            files={"archive": (backup_file.name, f, "application/octet-stream")},
            data={"manifest": json.dumps(manifest.to_dict())},
            timeout=SIDE_EFFECT_TIMEOUT_SEC,
        )
    response.raise_for_status()
    return True


def backup_memo(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Snapshot an approved memo and its delivered copies to the backup directory.

    Uploads the archive when BACKUP_UPLOAD_URL is set.
    """
    memo_id = payload["memoId"]
    if not is_backup_enabled():
        return {"backed_up": False, "reason": "backup disabled"}

    memo = get_memo(memo_id)
    if memo is None:
        raise BackupError(f"Memo {memo_id} not found")

    snapshot = {
        "metadata": {"backup_timestamp": datetime.now().isoformat(), "memo_id": memo_id},
        "memo": memo.to_dict(),
        "copies": [c.to_dict() for c in find_copies(memo_id)],
    }
    data_json = json.dumps(snapshot, indent=2).encode('utf-8')

    encrypt = BACKUP_ENCRYPTION_ENABLED
    encrypted_key_hex = raw_key = salt_hex = None
    if encrypt:
        encrypted_key_hex, raw_key, salt_hex = _generate_encryption_key()

    backup_id = f"memo_{memo_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{secrets.token_hex(4)}"
    backup_file = Path(get_backup_dir()) / f"{backup_id}.bak"
    manifest = BackupManifest(
        backup_id=backup_id,
        created_at=datetime.now(),
        backup_type="memo",
        encrypted=encrypt,
        file_count=1,
        total_size=len(data_json),
        checksum=_calculate_checksum(data_json),
        encrypted_key=encrypted_key_hex,
        salt=salt_hex,
        memo_id=memo_id,
    )
    _write_archive(backup_file, manifest, MEMO_SNAPSHOT_HEADER, data_json, None, raw_key)
    uploaded = _upload(backup_file, manifest)

    audit_event(
        event_type="backup_memo",
        identifiers={"backup_id": backup_id, "memo_id": memo_id},
        payload={"encrypted": encrypt, "copies": len(snapshot["copies"]), "uploaded": uploaded},
    )
    logger.log_side_effect("backup", memo_id, details={"backup_id": backup_id, "uploaded": uploaded})
    return {"backed_up": True, "backup_id": backup_id, "path": str(backup_file), "uploaded": uploaded}


def create_backup(backup_path: str, encrypt: bool = True, dry_run: bool = False) -> BackupManifest:
    """
    Create a full database backup.

    Args:
        backup_path: Path where backup will be created
        encrypt: Whether to encrypt the backup
        dry_run: If True, validate but don't create backup

    Returns:
        BackupManifest: Manifest describing the created backup

    Raises:
        BackupError: If backup creation fails
    """
    if not is_backup_enabled():
        raise BackupError("Backup system is disabled. Enable with BACKUP_ENABLED=true")

    backup_id = f"backup_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{secrets.token_hex(4)}"

    encrypted_key_hex = raw_key = salt_hex = None
    if encrypt:
        encrypted_key_hex, raw_key, salt_hex = _generate_encryption_key()

    summary = {
        "metadata": {"backup_timestamp": datetime.now().isoformat()},
        "memo_count": get_memo_count(),
        "rollback_entries": rollback_ledger.count(),
    }
    data_json = json.dumps(summary, indent=2).encode('utf-8')
    db_data = _read_sqlite_db(get_db_path())

    manifest = BackupManifest(
        backup_id=backup_id,
        created_at=datetime.now(),
        backup_type="full",
        encrypted=encrypt,
        file_count=2,  # JSON summary + SQLite DB
        total_size=len(data_json) + len(db_data),
        checksum=_calculate_checksum(data_json),
        encrypted_key=encrypted_key_hex,
        salt=salt_hex,
    )

    if dry_run:
        return manifest

    _write_archive(Path(backup_path), manifest, DB_BACKUP_HEADER, data_json, db_data, raw_key)

    audit_event(
        event_type="backup_created",
        identifiers={"backup_id": backup_id, "backup_type": manifest.backup_type},
        payload={"encrypted": encrypt, "total_size": manifest.total_size},
    )
    return manifest


def restore_backup(backup_path: str, manifest_path: str, admin_confirmed: bool = False,
                   dry_run: bool = False) -> Dict[str, Any]:
    """
    Restore the database from a full backup.

    Args:
        backup_path: Path to the backup file
        manifest_path: Path to the manifest file
        admin_confirmed: Required because restoring overwrites the live database
        dry_run: If True, validate but don't restore

    Returns:
        Dict containing restoration results

    Raises:
        RestoreError: If restoration fails
    """
    if not is_backup_enabled():
        raise RestoreError("Backup system is disabled. Enable with BACKUP_ENABLED=true")

    manifest, summary, db_data = read_archive(backup_path, manifest_path)
    if manifest.backup_type != "full" or db_data is None:
        raise RestoreError("Only full backups can be restored over the database")

    if dry_run:
        return {"valid": True, "manifest": manifest.to_dict(), "summary": summary, "dry_run": True}

    if not admin_confirmed:
        raise RestoreError("Restoring the database requires admin confirmation")

    warnings = []
    db_path = get_db_path()
    pre_restore_copy = f"{db_path}.pre_restore_backup"
    try:
        shutil.copy2(db_path, pre_restore_copy)
    except OSError as e:
        warnings.append(f"Failed to create pre-restore backup: {e}")

    _write_sqlite_db(db_path, db_data)

    audit_event(
        event_type="backup_restored",
        identifiers={"backup_id": manifest.backup_id, "backup_type": manifest.backup_type},
        payload={"admin_confirmed": admin_confirmed, "encrypted": manifest.encrypted},
    )

    return {
        "success": True,
        "manifest": manifest.to_dict(),
        "summary": summary,
        "warnings": warnings,
    }
