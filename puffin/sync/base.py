"""
Data model for the sync engine.

A sync target is either a named file inside a Drive folder (FolderTarget) or a
fixed Drive file id shared between accounts (FileTarget). SyncConfig holds at
most one of them.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

DEFAULT_BACKUP_FILENAME = "puffin-backup.db"


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class SyncPhase(str, Enum):
    """Phases of a single push or pull."""
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    LOCATING_TARGET = "locating-target"
    BACKING_UP_LOCAL = "backing-up-local"
    TRANSFERRING = "transferring"
    RECORDING_RESULT = "recording-result"
    FAILED = "failed"


class SyncMode(str, Enum):
    FOLDER = "folder"
    FILE = "file"


@dataclass
class TokenSet:
    """OAuth tokens for the connected Google account."""
    access_token: str
    refresh_token: str
    expiry_date: Optional[int] = None  # epoch ms
    token_type: str = "Bearer"
    scope: str = ""

    def is_expired(self, now: Optional[int] = None) -> bool:
        """Tokens without an expiry are treated as still valid."""
        if self.expiry_date is None:
            return False
        return self.expiry_date <= (now if now is not None else now_ms())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry_date": self.expiry_date,
            "token_type": self.token_type,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenSet":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expiry_date=data.get("expiry_date"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )


@dataclass
class GoogleCredentials:
    """OAuth client credentials."""
    client_id: str = ""
    client_secret: str = ""
    api_key: str = ""

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "api_key": self.api_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoogleCredentials":
        return cls(
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret", ""),
            api_key=data.get("api_key", ""),
        )


@dataclass(frozen=True)
class FolderTarget:
    """Backup file located by name inside a Drive folder."""
    folder_id: str
    folder_name: str = ""
    filename: str = DEFAULT_BACKUP_FILENAME
    file_id: Optional[str] = None
    mode: SyncMode = field(default=SyncMode.FOLDER, init=False)

    @property
    def display_name(self) -> str:
        return self.folder_name or self.folder_id

    @property
    def location(self) -> Tuple[str, ...]:
        """Identifies the remote backup regardless of cached names and ids."""
        return (self.mode.value, self.folder_id, self.filename)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "folder_id": self.folder_id,
            "folder_name": self.folder_name,
            "filename": self.filename,
            "file_id": self.file_id,
        }


@dataclass(frozen=True)
class FileTarget:
    """A fixed Drive file, possibly owned by another account."""
    file_id: str
    file_name: str = ""
    mode: SyncMode = field(default=SyncMode.FILE, init=False)

    @property
    def display_name(self) -> str:
        return self.file_name or self.file_id

    @property
    def location(self) -> Tuple[str, ...]:
        return (self.mode.value, self.file_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "file_id": self.file_id,
            "file_name": self.file_name,
        }


SyncTarget = Union[FolderTarget, FileTarget]


def target_from_dict(data: Optional[Dict[str, Any]]) -> Optional[SyncTarget]:
    """Rebuild a target from its persisted form."""
    if not data:
        return None
    mode = data.get("mode")
    if mode == SyncMode.FOLDER.value and data.get("folder_id"):
        return FolderTarget(
            folder_id=data["folder_id"],
            folder_name=data.get("folder_name", ""),
            filename=data.get("filename") or DEFAULT_BACKUP_FILENAME,
            file_id=data.get("file_id"),
        )
    if mode == SyncMode.FILE.value and data.get("file_id"):
        return FileTarget(
            file_id=data["file_id"],
            file_name=data.get("file_name", ""),
        )
    return None


@dataclass
class SyncConfig:
    """Persisted sync state."""
    target: Optional[SyncTarget] = None
    last_synced_at: Optional[int] = None  # epoch ms
    content_hash: Optional[str] = None
    user_email: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return self.target is not None

    @property
    def is_file_based_sync(self) -> bool:
        return isinstance(self.target, FileTarget)

    @property
    def display_name(self) -> Optional[str]:
        return self.target.display_name if self.target else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.to_dict() if self.target else None,
            "last_synced_at": self.last_synced_at,
            "content_hash": self.content_hash,
            "user_email": self.user_email,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncConfig":
        if not data:
            return cls()
        return cls(
            target=target_from_dict(data.get("target")),
            last_synced_at=data.get("last_synced_at"),
            content_hash=data.get("content_hash"),
            user_email=data.get("user_email"),
        )


@dataclass
class RemoteFileInfo:
    """Metadata for a single Drive file."""
    exists: bool
    file_id: Optional[str] = None
    name: Optional[str] = None
    modified_time: Optional[str] = None  # RFC 3339 from Drive
    size: Optional[int] = None
    mime_type: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == "application/vnd.google-apps.folder"


@dataclass
class FolderInfo:
    """A Drive folder confirmed writable."""
    folder_id: str
    name: str


@dataclass
class RemoteBackupInfo:
    """Ephemeral view of the remote backup; never persisted."""
    exists: bool = False
    modified_time: Optional[str] = None
    file_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.exists,
            "modified_time": self.modified_time,
            "error": self.error,
        }


@dataclass
class LocalFileInfo:
    exists: bool = False
    modified_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"exists": self.exists, "modified_time": self.modified_time}


@dataclass
class SyncStatus:
    """Result of SyncOrchestrator.get_status()."""
    configured: bool
    local: LocalFileInfo = field(default_factory=LocalFileInfo)
    remote: RemoteBackupInfo = field(default_factory=RemoteBackupInfo)
    authenticated: bool = False
    display_name: Optional[str] = None
    last_synced_at: Optional[int] = None
    user_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configured": self.configured,
            "authenticated": self.authenticated,
            "display_name": self.display_name,
            "last_synced_at": self.last_synced_at,
            "user_email": self.user_email,
            "local": self.local.to_dict(),
            "remote": self.remote.to_dict(),
        }


@dataclass
class SyncResult:
    """Outcome of push, pull or disconnect."""
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    backup_path: Optional[str] = None
    synced_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
            data["error_code"] = self.error_code
        if self.backup_path is not None:
            data["backup_path"] = self.backup_path
        if self.synced_at is not None:
            data["synced_at"] = self.synced_at
        return data


@dataclass
class ValidationResult:
    """Outcome of validate_target."""
    success: bool
    display_name: Optional[str] = None
    mode: Optional[SyncMode] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "display_name": self.display_name,
        }
        if self.mode is not None:
            data["mode"] = self.mode.value
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class OAuthCallbackResult:
    success: bool
    email: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.email is not None:
            data["email"] = self.email
        if self.error is not None:
            data["error"] = self.error
        return data


class CheckReason(str, Enum):
    """Why check() reached its verdict."""
    NOT_CONFIGURED = "not_configured"
    NEVER_SYNCED = "never_synced"
    NO_CLOUD_BACKUP = "no_cloud_backup"
    IN_SYNC = "in_sync"
    LOCAL_ONLY = "local_only"
    CLOUD_ONLY = "cloud_only"
    CONFLICT = "conflict"
    CHECK_FAILED = "check_failed"


@dataclass
class SyncCheck:
    """Advisory divergence report for the UI."""
    reason: CheckReason
    local_changed: bool = False
    cloud_changed: bool = False
    last_synced_at: Optional[int] = None
    cloud_modified_time: Optional[str] = None
    error: Optional[str] = None

    @property
    def needs_attention(self) -> bool:
        return self.reason in (CheckReason.CLOUD_ONLY, CheckReason.CONFLICT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "needs_attention": self.needs_attention,
            "local_changed": self.local_changed,
            "cloud_changed": self.cloud_changed,
            "last_synced_at": self.last_synced_at,
            "cloud_modified_time": self.cloud_modified_time,
            "error": self.error,
        }
