"""
Timestamped local copies of the database file.
"""

import hashlib
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..exceptions import LocalIOError, create_error_context

logger = logging.getLogger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"
SIDECAR_SUFFIXES = ("-wal", "-shm")


def file_md5(path: Path) -> Optional[str]:
    """md5 of a file's content, or None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def is_sqlite_file(path: Path) -> bool:
    """True if the file is non-empty and starts with the SQLite header."""
    path = Path(path)
    try:
        if path.stat().st_size < len(SQLITE_HEADER):
            return False
        with open(path, "rb") as f:
            return f.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


def remove_sidecars(db_path: Path) -> None:
    """Delete the -wal and -shm companions of a database file."""
    for suffix in SIDECAR_SUFFIXES:
        sidecar = Path(f"{db_path}{suffix}")
        if sidecar.exists():
            sidecar.unlink()
            logger.debug(f"Removed {sidecar.name}")


class BackupManager:
    """
    Copies the database into a backup directory and prunes old copies.

    Args:
        db_path: Live database file
        backup_dir: Directory for backups
        retention: Copies kept per prefix
    """

    def __init__(self, db_path: Path, backup_dir: Path, retention: int = 5):
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir)
        self.retention = retention

    def create_backup(self, prefix: str = "puffin-backup") -> Optional[Path]:
        """
        Copy the live database to ``<prefix>-<timestamp>.db``.

        Returns:
            The backup path, or None when there is no database yet

        Raises:
            LocalIOError: If the copy fails
        """
        if not self.db_path.exists():
            logger.info("No local database to back up")
            return None

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_path = self.backup_dir / f"{prefix}-{timestamp}.db"

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.db_path, backup_path)
        except OSError as e:
            raise LocalIOError(
                message=f"Failed to back up {self.db_path}: {e}",
                error_code="BACKUP_FAILED",
                context=create_error_context(operation="create_backup"),
                user_message="Could not create a local backup. Nothing was changed.",
                cause=e,
            ) from e

        logger.info(f"Created local backup {backup_path.name}")
        self._prune(prefix)
        return backup_path

    def list_backups(self, prefix: Optional[str] = None) -> List[Path]:
        """Backups, newest first."""
        if not self.backup_dir.exists():
            return []
        pattern = f"{prefix}-*.db" if prefix else "*.db"
        return sorted(self.backup_dir.glob(pattern), key=lambda p: p.name, reverse=True)

    def _prune(self, prefix: str) -> None:
        for old in self.list_backups(prefix)[self.retention:]:
            try:
                old.unlink()
                logger.debug(f"Pruned old backup {old.name}")
            except OSError as e:
                logger.warning(f"Could not remove old backup {old.name}: {e}")

    def replace_database(self, candidate: Path) -> None:
        """
        Atomically move a validated candidate over the live database.

        Raises:
            LocalIOError: If the rename fails
        """
        try:
            remove_sidecars(self.db_path)
            os.replace(candidate, self.db_path)
        except OSError as e:
            raise LocalIOError(
                message=f"Failed to replace {self.db_path}: {e}",
                error_code="REPLACE_FAILED",
                context=create_error_context(operation="replace_database"),
                user_message="Could not replace the local database. Your previous data is unchanged.",
                cause=e,
            ) from e
