#!/usr/bin/env python3
"""
Command-line backup of the memo routing database.
"""

import argparse
import sys
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.backup import create_backup, BackupError
from src.core.config import BACKUP_ENCRYPTION_ENABLED


def main():
    parser = argparse.ArgumentParser(
        description="Create an encrypted backup of the memo database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s memos_backup                 # Backup, encrypted per BACKUP_ENCRYPTION_ENABLED
  %(prog)s memos_backup --no-encrypt    # Plain backup
  %(prog)s memos_backup --dry-run       # Validate without creating files

Backup creates two files:
- memos_backup (backup data + SQLite database)
- memos_backup.manifest.json (unencrypted manifest with metadata)

Environment variables:
- BACKUP_ENABLED=true (required)
- BACKUP_ENCRYPTION_ENABLED=true (default true)
- BACKUP_MASTER_PASSWORD=... (for encryption, change from default)
        """
    )

    parser.add_argument(
        "backup_path",
        help="Path for the backup file"
    )

    parser.add_argument(
        "--no-encrypt",
        action="store_true",
        help="Disable encryption (overrides environment)"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Validate backup configuration without creating files"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed backup information"
    )

    args = parser.parse_args()

    encrypt = BACKUP_ENCRYPTION_ENABLED and not args.no_encrypt

    try:
        manifest = create_backup(
            backup_path=args.backup_path,
            encrypt=encrypt,
            dry_run=args.dry_run
        )

        if args.dry_run:
            print("DRY RUN - Backup validation completed successfully")
            print(f"Expected Size: {manifest.total_size:,} bytes")
        else:
            print(f"Backup created successfully: {args.backup_path}")
            print(f"Backup ID: {manifest.backup_id}")
            print(f"Size: {manifest.total_size:,} bytes")
            print(f"Encrypted: {manifest.encrypted}")
            if args.verbose:
                print(f"Created: {manifest.created_at}")
                print(f"Checksum: {manifest.checksum}")
                print(f"Manifest: {Path(args.backup_path).with_suffix('.manifest.json')}")

        return 0

    except BackupError as e:
        print(f"ERROR: Backup failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
