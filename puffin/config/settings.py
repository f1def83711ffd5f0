"""
Configuration dataclasses for Puffin.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class GoogleSettings:
    """OAuth client settings for Google Drive."""
    client_id: str = ""
    client_secret: str = ""
    api_key: str = ""
    redirect_uri: str = "http://localhost:3000/api/sync/oauth/callback"

    def is_configured(self) -> bool:
        """Sync is only available with both a client id and secret."""
        return bool(self.client_id and self.client_secret)


@dataclass
class SyncSettings:
    """Where the sync engine keeps its files."""
    data_dir: Path = field(default_factory=lambda: Path("data"))
    db_filename: str = "puffin.db"
    backup_filename: str = "puffin-backup.db"
    encryption_key: str = ""
    backup_retention: int = 5

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "sync-config.json"

    @property
    def tokens_path(self) -> Path:
        return self.data_dir / ".sync-tokens.enc"

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / ".sync-credentials.enc"

    @property
    def download_temp_path(self) -> Path:
        return self.data_dir / "puffin-download-temp.db"


@dataclass
class ServerSettings:
    """HTTP server settings."""
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=list)


@dataclass
class PuffinConfig:
    """Top-level application configuration."""
    google: GoogleSettings = field(default_factory=GoogleSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    log_level: LogLevel = LogLevel.INFO
    log_file: Optional[Path] = None

    @property
    def sync_enabled(self) -> bool:
        return self.google.is_configured()
