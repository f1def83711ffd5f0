"""
Local database access for the sync engine.
"""

from .sqlite import SQLiteConnection
from .backup import BackupManager, file_md5, is_sqlite_file, remove_sidecars

__all__ = [
    "SQLiteConnection",
    "BackupManager",
    "file_md5",
    "is_sqlite_file",
    "remove_sidecars",
]
