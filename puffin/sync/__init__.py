"""
Google Drive backup and sync for the local database.
"""

from .base import (
    FileTarget,
    FolderTarget,
    GoogleCredentials,
    SyncCheck,
    SyncConfig,
    SyncResult,
    SyncStatus,
    TokenSet,
)
from .retry import RetryPolicy, with_retry
from .store import EncryptedFileStore, JsonFileStore, MemoryStore, Store, build_cipher
from .config import SyncConfigManager
from .oauth import AuthorizedClient, OAuthBroker
from .google_drive import DriveClient, UploadMode, build_query, extract_drive_id, sanitize_drive_id
from .service import SyncOrchestrator

__all__ = [
    "FileTarget",
    "FolderTarget",
    "GoogleCredentials",
    "SyncCheck",
    "SyncConfig",
    "SyncResult",
    "SyncStatus",
    "TokenSet",
    "RetryPolicy",
    "with_retry",
    "Store",
    "MemoryStore",
    "JsonFileStore",
    "EncryptedFileStore",
    "build_cipher",
    "SyncConfigManager",
    "AuthorizedClient",
    "OAuthBroker",
    "DriveClient",
    "UploadMode",
    "build_query",
    "extract_drive_id",
    "sanitize_drive_id",
    "SyncOrchestrator",
]
