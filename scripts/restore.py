#!/usr/bin/env python3
"""
Command-line restore of the memo routing database from a full backup.
"""

import argparse
import json
import sys
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.backup import restore_backup, RestoreError
from src.core.config import get_db_path


def main():
    parser = argparse.ArgumentParser(
        description="Restore the memo database from a backup with validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s memos_backup memos_backup.manifest.json --dry-run          # Validate only
  %(prog)s memos_backup memos_backup.manifest.json --admin-confirmed  # Restore

The restore process:
1. Validates backup integrity and checksums
2. Copies the current database to <DB_PATH>.pre_restore_backup
3. Replaces the database with the backed-up one

Environment variables:
- BACKUP_ENABLED=true (required)
- BACKUP_MASTER_PASSWORD=... (for decryption)
        """
    )

    parser.add_argument(
        "backup_path",
        help="Path to the backup file"
    )

    parser.add_argument(
        "manifest_path",
        help="Path to the backup manifest file"
    )

    parser.add_argument(
        "--admin-confirmed", "-c",
        action="store_true",
        help="Confirm admin approval for overwriting the database"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Validate backup without performing restoration"
    )

    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip the interactive confirmation"
    )

    args = parser.parse_args()

    manifest_path = Path(args.manifest_path)
    if not manifest_path.exists():
        print(f"ERROR: Manifest file not found: {manifest_path}")
        return 1

    backup_path = Path(args.backup_path)
    if not backup_path.exists():
        print(f"ERROR: Backup file not found: {backup_path}")
        return 1

    try:
        with open(manifest_path, 'r') as f:
            manifest_data = json.load(f)

        print("Backup Information:")
        print(f"  ID: {manifest_data.get('backup_id', 'unknown')}")
        print(f"  Type: {manifest_data.get('backup_type', 'unknown')}")
        print(f"  Created: {manifest_data.get('created_at', 'unknown')}")
        print(f"  Encrypted: {manifest_data.get('encrypted', False)}")
        print()

        if not args.dry_run and not args.force:
            print("WARNING: This will overwrite the current database!")
            print(f"Target database: {get_db_path()}")
            response = input("Are you sure you want to proceed? (type 'yes' to continue): ")
            if response.lower() != 'yes':
                print("Operation cancelled by user.")
                return 0

        result = restore_backup(
            backup_path=str(backup_path),
            manifest_path=str(manifest_path),
            admin_confirmed=args.admin_confirmed,
            dry_run=args.dry_run
        )

        summary = result.get("summary", {})
        if args.dry_run:
            print("DRY RUN - Backup validation completed successfully")
        else:
            print("Restore completed successfully")
            for warning in result.get("warnings", []):
                print(f"  - {warning}")
        print(f"Memos: {summary.get('memo_count', 0)}")
        print(f"Rollback entries: {summary.get('rollback_entries', 0)}")

        return 0

    except RestoreError as e:
        print(f"ERROR: Restore failed: {e}")
        return 1
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid manifest file: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
